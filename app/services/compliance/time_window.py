"""
Janelas de tempo permitidas para contato.

Duas verificações independentes:
- Horário legal de ligação (voz): fuso inferido pelo DDD do telefone
- Contexto de negócio: horário comercial, bloqueios de calendário e
  ROEs do tipo time_restriction

O mapa DDD -> fuso é uma heurística aproximada (configurável via
política), não uma fonte autoritativa.
"""
import asyncio
import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.core.timezone import agora_utc, dia_semana, iso_utc, obter_zoneinfo, para_fuso
from app.services.supabase import supabase, executar_com_timeout

from .policy_store import CompliancePolicy, TimeRestrictionRule, politica_padrao
from .types import BusinessContextResult, CallHoursResult

logger = logging.getLogger(__name__)


def area_code_from_phone(phone: str) -> str:
    """
    Extrai o DDD (3 dígitos) do telefone.

    Com 10+ dígitos usa os 10 últimos (descarta código de país).

    Examples:
        >>> area_code_from_phone("+1 (415) 555-0100")
        '415'
    """
    digitos = re.sub(r"\D", "", phone or "")
    if len(digitos) >= 10:
        return digitos[-10:][:3]
    return digitos[:3]


def timezone_from_phone(phone: str, policy: Optional[CompliancePolicy] = None) -> str:
    """Fuso IANA aproximado do telefone (padrão da política se DDD não mapeado)."""
    policy = policy or politica_padrao()
    return policy.area_code_timezones.get(area_code_from_phone(phone), policy.default_timezone)


def check_call_hours(
    phone: str,
    agora: Optional[datetime] = None,
    policy: Optional[CompliancePolicy] = None,
) -> CallHoursResult:
    """
    Verifica horário legal de ligação na hora local do contato.

    Permitido se call_hour_start <= hora < call_hour_end (8h-21h).

    Args:
        phone: Telefone do contato
        agora: Instante de referência (padrão: agora)
        policy: Política efetiva (padrão: politica_padrao())
    """
    policy = policy or politica_padrao()
    fuso = timezone_from_phone(phone, policy)
    local = para_fuso(agora or agora_utc(), fuso)
    hora = local.hour

    if policy.call_hour_start <= hora < policy.call_hour_end:
        return CallHoursResult(allowed=True, timezone=fuso, local_hour=hora)

    return CallHoursResult(
        allowed=False,
        timezone=fuso,
        local_hour=hora,
        reason=(
            f"Outside legal calling hours ({policy.call_hour_start}:00-"
            f"{policy.call_hour_end}:00 {fuso}); local hour is {hora}"
        ),
    )


def hora_local_hhmm(
    policy: CompliancePolicy,
    agora: Optional[datetime] = None,
    phone: Optional[str] = None,
) -> str:
    """HH:MM local do alvo se phone informado, senão do fuso padrão."""
    fuso = timezone_from_phone(phone, policy) if phone else policy.default_timezone
    return para_fuso(agora or agora_utc(), fuso).strftime("%H:%M")


def check_time_restriction_rules(
    policy: CompliancePolicy,
    agora: Optional[datetime] = None,
    phone: Optional[str] = None,
) -> List[TimeRestrictionRule]:
    """
    Avalia DO_NOT_CALL_BEFORE / DO_NOT_CALL_AFTER.

    Returns:
        Regras violadas (vazio se nenhuma)
    """
    hhmm = hora_local_hhmm(policy, agora, phone)

    return [
        regra for regra in policy.rules.values()
        if isinstance(regra, TimeRestrictionRule) and regra.viola(hhmm)
    ]


def _hora(valor: str, padrao: int) -> int:
    try:
        return int(str(valor).split(":")[0])
    except (ValueError, TypeError):
        return padrao


async def _carregar_business_hours(policy: CompliancePolicy) -> Dict[str, Any]:
    """Config de horário comercial (system_config); default em falha."""
    try:
        response = await executar_com_timeout(
            supabase.table("system_config")
            .select("config_value")
            .eq("config_key", "business_hours")
            .limit(1)
            .execute
        )
    except (Exception, asyncio.CancelledError) as e:
        logger.warning(f"[time_window] business_hours indisponível, usando padrão: {e}")
        return dict(policy.business_hours)

    valor = response.data[0].get("config_value") if response.data else None
    if isinstance(valor, str):
        # Coluna text: JSON serializado
        try:
            valor = json.loads(valor)
        except ValueError:
            valor = None
    if not valor or not isinstance(valor, dict):
        if valor:
            logger.warning(f"[time_window] business_hours em formato inesperado, usando padrão: {valor!r}")
        return dict(policy.business_hours)

    config = {**policy.business_hours, **valor}
    if obter_zoneinfo(config.get("timezone") or "") is None:
        logger.warning(f"[time_window] Fuso inválido em business_hours: {config.get('timezone')}")
        config["timezone"] = policy.default_timezone
    return config


async def _carregar_bloqueios(agora: datetime) -> List[Dict[str, Any]]:
    """Bloqueios de calendário cujo intervalo contém agora; vazio em falha."""
    agora_iso = iso_utc(agora)
    try:
        response = await executar_com_timeout(
            supabase.table("business_context")
            .select("*")
            .lte("start_time", agora_iso)
            .gte("end_time", agora_iso)
            .execute
        )
    except (Exception, asyncio.CancelledError) as e:
        logger.warning(f"[time_window] Bloqueios de calendário indisponíveis, ignorando: {e}")
        return []
    return response.data or []


async def check_business_context(
    agora: Optional[datetime] = None,
    policy: Optional[CompliancePolicy] = None,
) -> BusinessContextResult:
    """
    Verifica se é momento de fazer outreach.

    can_outreach = horário comercial E nenhuma ROE bloqueando
    E nenhum bloqueio de calendário ativo.

    Falhas de leitura (config, calendário) não bloqueiam: degradam
    para o padrão com warning.
    """
    policy = policy or politica_padrao()
    agora = agora or agora_utc()

    business_hours = await _carregar_business_hours(policy)
    local = para_fuso(agora, business_hours["timezone"])
    hora = local.hour
    dia = dia_semana(local)

    inicio = _hora(business_hours.get("start"), 9)
    fim = _hora(business_hours.get("end"), 18)
    dias = [str(d).lower() for d in business_hours.get("days") or []]
    em_horario = dia in dias and inicio <= hora < fim

    bloqueios = await _carregar_bloqueios(agora)

    # ROEs já vêm ordenadas por prioridade; primeira que bate bloqueia
    regra_bloqueio = next((r for r in policy.roe if r.bloqueia(hora, dia)), None)

    if not em_horario:
        recomendacoes = ["Queue outreach for next business day"]
    elif regra_bloqueio:
        recomendacoes = [f"Blocked by rule: {regra_bloqueio.rule_name}"]
    elif bloqueios:
        titulo = bloqueios[0].get("title") or bloqueios[0].get("context_type") or bloqueios[0].get("id")
        recomendacoes = [f"Calendar block active: {titulo}"]
    else:
        recomendacoes = ["Clear to proceed with outreach"]

    return BusinessContextResult(
        is_business_hours=em_horario,
        current_hour=hora,
        current_day=dia,
        business_hours=business_hours,
        active_calendar_blocks=bloqueios,
        blocking_rule=(regra_bloqueio.raw or {"rule_name": regra_bloqueio.rule_name}) if regra_bloqueio else None,
        can_outreach=em_horario and regra_bloqueio is None and not bloqueios,
        recommendations=recomendacoes,
    )
