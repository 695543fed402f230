"""
Lockdown monitor.

Conta ações recentes no audit trail contra as lockdown rules ativas e
cria lockdowns automáticos quando um limite é atingido.

- pause_agent: cria lockdown (se ainda não existe ativo para regra/agente)
  e sinaliza bloqueio
- alert_only: não bloqueia; gera recomendação e peso de risco

Lockdowns só são resolvidos por ação externa (humano ou job), nunca
automaticamente pelo monitor.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from app.core.config import ComplianceConfig
from app.core.exceptions import DatabaseError, NotFoundError, ValidationError
from app.core.tasks import safe_create_task
from app.core.timezone import agora_utc, iso_utc, parse_iso
from app.services.slack import notificar_lockdown
from app.services.supabase import supabase, executar_com_timeout

from .audit import contar_eventos, write_audit
from .policy_store import LockdownRule, carregar_lockdown_rules
from .touches import is_duplicate_error
from .types import (
    SCOPE_ALL,
    ActorType,
    AuditEntry,
    Channel,
    LockdownAction,
    LockdownEvaluation,
    LockdownStatus,
    RiskCheck,
    parse_channel,
)

logger = logging.getLogger(__name__)

TABLE_LOCKDOWNS = "security_lockdowns"
TABLE_RULES = "lockdown_rules"


# =============================================================================
# Status (leitura crítica)
# =============================================================================

async def get_active_lockdown(
    agent: Optional[str] = None,
    channel: Optional[Channel] = None,
) -> Optional[dict]:
    """
    Busca lockdown ativo para o agente/canal.

    Casa agent_type igual ao agente, ao canal ou "all".

    Returns:
        Registro do lockdown, lockdown sintético se a leitura falhou
        (fail-safe), ou None
    """
    escopos = [SCOPE_ALL]
    if agent:
        escopos.append(agent)
    if channel:
        escopos.append(parse_channel(channel).value)

    try:
        response = await executar_com_timeout(
            supabase.table(TABLE_LOCKDOWNS)
            .select("*")
            .eq("status", LockdownStatus.ACTIVE.value)
            .in_("agent_type", escopos)
            .order("started_at", desc=True)
            .limit(1)
            .execute
        )
    except (Exception, asyncio.CancelledError) as e:
        logger.error(
            f"[lockdown] Erro ao ler lockdowns ativos, tratando como BLOQUEADO: {e}",
            extra={"agent": agent},
        )
        return {
            "id": None,
            "agent_type": agent or SCOPE_ALL,
            "status": LockdownStatus.ACTIVE.value,
            "reason": "Lockdown status unreadable (fail-safe)",
            "fail_safe": True,
        }

    if response.data:
        return response.data[0]
    return None


# =============================================================================
# Avaliação de regras
# =============================================================================

def _motivo(rule: LockdownRule, count: int) -> str:
    return f"{rule.rule_name}: {count}/{rule.threshold_value} actions in {rule.threshold_window_minutes}min"


async def _criar_lockdown(rule: LockdownRule, escopo: str, motivo: str, count: int) -> Optional[dict]:
    """
    Cria lockdown ativo para (regra, escopo).

    Idempotente: lockdown ativo já existente ou corrida perdida na
    unique constraint resultam em None, sem erro.
    """
    existente = (
        supabase.table(TABLE_LOCKDOWNS)
        .select("id")
        .eq("rule_id", rule.id)
        .eq("agent_type", escopo)
        .eq("status", LockdownStatus.ACTIVE.value)
        .limit(1)
        .execute()
    )
    if existente.data:
        logger.debug(f"[lockdown] Lockdown já ativo para {rule.rule_name}/{escopo}")
        return None

    registro = {
        "rule_id": rule.id,
        "agent_type": escopo,
        "reason": motivo,
        "triggered_value": count,
        "status": LockdownStatus.ACTIVE.value,
        "started_at": iso_utc(),
    }

    try:
        response = supabase.table(TABLE_LOCKDOWNS).insert(registro).execute()
    except Exception as e:
        if is_duplicate_error(e):
            logger.info(f"[lockdown] Lockdown concorrente já criado para {rule.rule_name}/{escopo}")
            return None
        raise

    lockdown = response.data[0] if response.data else registro

    supabase.table(TABLE_RULES).update({
        "trigger_count": rule.trigger_count + 1,
        "last_triggered_at": iso_utc(),
    }).eq("id", rule.id).execute()

    logger.warning(
        f"[lockdown] LOCKDOWN ATIVADO: {escopo} - {motivo}",
        extra={"rule": rule.rule_name, "agent": escopo},
    )

    await write_audit(AuditEntry(
        actor_type=ActorType.SYSTEM,
        actor_module="lockdown_monitor",
        action_type="lockdown_activated",
        entity_type="security_lockdown",
        entity_id=str(lockdown.get("id") or rule.id),
        payload={"rule": rule.rule_name, "agent_type": escopo, "count": count},
    ))
    safe_create_task(notificar_lockdown(lockdown, rule.rule_name), name="notificar_lockdown")

    return lockdown


async def _avaliar_regra(
    rule: LockdownRule,
    agent: Optional[str],
    agora: datetime,
    resultado: LockdownEvaluation,
) -> None:
    """Avalia uma regra e acumula o efeito em resultado."""
    resultado.rules_checked.append(rule.rule_name)

    desde = agora - timedelta(minutes=rule.threshold_window_minutes)

    # agent_type nulo: conta ações de todos os agentes, também no caminho por request
    try:
        count = await contar_eventos(desde, actor=rule.agent_type, action_type=rule.action_type)
    except DatabaseError as e:
        logger.error(f"[lockdown] Erro ao contar ações para {rule.rule_name}, pulando regra: {e}")
        return

    if count < rule.threshold_value:
        return

    motivo = _motivo(rule, count)

    if rule.lockdown_action == LockdownAction.ALERT_ONLY:
        logger.warning(f"[lockdown] Alerta: {motivo}", extra={"rule": rule.rule_name})
        resultado.recommendations.append(f"Alert: {motivo}")
        resultado.risk_checks.append(RiskCheck(f"lockdown_alert:{rule.rule_name}", ComplianceConfig.RISK_ALERT_ONLY))
        return

    escopo = rule.agent_type or agent or SCOPE_ALL

    try:
        if await _criar_lockdown(rule, escopo, motivo, count):
            resultado.lockdowns_created += 1
    except Exception as e:
        # Limite atingido: bloqueia mesmo sem conseguir persistir o lockdown
        logger.error(f"[lockdown] Erro ao criar lockdown para {rule.rule_name}: {e}")

    if not resultado.blocked:
        resultado.blocked = True
        resultado.reason = motivo
    resultado.risk_checks.append(RiskCheck(f"lockdown:{rule.rule_name}", ComplianceConfig.RISK_LOCKDOWN))
    resultado.recommendations.append(f"Agent paused: {motivo}")


async def avaliar_lockdown_rules(
    agent: str,
    action_type: Optional[str],
    rules: Optional[List[LockdownRule]] = None,
    agora: Optional[datetime] = None,
) -> LockdownEvaluation:
    """
    Avalia as lockdown rules que casam com agente/ação.

    Args:
        agent: Agente em contexto
        action_type: Ação sendo verificada
        rules: Regras já carregadas (padrão: carrega do banco)
        agora: Instante de referência

    Returns:
        LockdownEvaluation (blocked=True se alguma pause_agent disparou)
    """
    if rules is None:
        rules = await carregar_lockdown_rules()
    agora = agora or agora_utc()

    resultado = LockdownEvaluation()
    for rule in rules:
        if rule.matches(agent, action_type):
            await _avaliar_regra(rule, agent, agora, resultado)

    return resultado


async def executar_monitor(agora: Optional[datetime] = None) -> Dict:
    """
    Varredura agendada de todas as lockdown rules ativas.

    Sem agente em contexto: regra com agent_type nulo conta ações de
    qualquer agente e, se disparar, trava "all".

    Returns:
        Resumo da execução
    """
    rules = await carregar_lockdown_rules()
    agora = agora or agora_utc()

    resultado = LockdownEvaluation()
    for rule in rules:
        await _avaliar_regra(rule, None, agora, resultado)

    logger.info(
        f"[lockdown] Monitor: {len(resultado.rules_checked)} regras, "
        f"{resultado.lockdowns_created} lockdowns criados"
    )

    return {
        "rules_checked": len(resultado.rules_checked),
        "lockdowns_created": resultado.lockdowns_created,
        "triggered": resultado.blocked,
        "alerts": [r for r in resultado.recommendations if r.startswith("Alert:")],
    }


# =============================================================================
# Gestão
# =============================================================================

async def resolver_lockdown(lockdown_id: str, resolved_by: str, notes: Optional[str] = None) -> dict:
    """
    Resolve lockdown ativo.

    Raises:
        NotFoundError: Se não existe lockdown ativo com esse id
    """
    response = (
        supabase.table(TABLE_LOCKDOWNS)
        .update({
            "status": LockdownStatus.RESOLVED.value,
            "resolved_at": iso_utc(),
            "resolved_by": resolved_by,
            "resolution_notes": notes,
        })
        .eq("id", lockdown_id)
        .eq("status", LockdownStatus.ACTIVE.value)
        .execute()
    )
    if not response.data:
        raise NotFoundError("Lockdown ativo", lockdown_id)

    lockdown = response.data[0]
    logger.info(f"[lockdown] Lockdown {lockdown_id} resolvido por {resolved_by}")

    await write_audit(AuditEntry(
        actor_type=ActorType.USER,
        actor_id=resolved_by,
        action_type="lockdown_resolved",
        entity_type="security_lockdown",
        entity_id=str(lockdown_id),
        payload={"agent_type": lockdown.get("agent_type"), "notes": notes},
        override=True,
    ))
    return lockdown


async def ativar_lockdown_manual(agent_type: str, reason: str, actor: str) -> dict:
    """
    Ativa lockdown manual (sem regra) para um agente, canal ou "all".

    Raises:
        ValidationError: Se agent_type ou reason vazios
    """
    if not agent_type or not reason:
        raise ValidationError("agent_type e reason são obrigatórios")

    registro = {
        "rule_id": None,
        "agent_type": agent_type,
        "reason": reason,
        "triggered_value": None,
        "status": LockdownStatus.ACTIVE.value,
        "started_at": iso_utc(),
    }
    response = supabase.table(TABLE_LOCKDOWNS).insert(registro).execute()
    lockdown = response.data[0] if response.data else registro

    logger.warning(f"[lockdown] Lockdown manual em {agent_type} por {actor}: {reason}")

    await write_audit(AuditEntry(
        actor_type=ActorType.USER,
        actor_id=actor,
        action_type="lockdown_activated",
        entity_type="security_lockdown",
        entity_id=str(lockdown.get("id") or agent_type),
        payload={"agent_type": agent_type, "reason": reason, "manual": True},
        override=True,
    ))
    safe_create_task(notificar_lockdown(lockdown), name="notificar_lockdown")
    return lockdown


def _minutos_ativo(lockdown: dict, agora: datetime) -> Optional[int]:
    if lockdown.get("status") != LockdownStatus.ACTIVE.value or not lockdown.get("started_at"):
        return None
    try:
        inicio = parse_iso(lockdown["started_at"])
    except (TypeError, ValueError):
        return None
    return max(0, int((agora - inicio).total_seconds() // 60))


async def listar_lockdowns(
    status: Optional[str] = None,
    limite: int = 100,
    agora: Optional[datetime] = None,
) -> List[dict]:
    """
    Lista lockdowns (mais recentes primeiro).

    Ativos trazem active_minutes (há quanto tempo o agente está parado).
    """
    query = supabase.table(TABLE_LOCKDOWNS).select("*").order("started_at", desc=True).limit(limite)
    if status:
        query = query.eq("status", LockdownStatus(status).value)

    agora = agora or agora_utc()
    return [
        {**lockdown, "active_minutes": _minutos_ativo(lockdown, agora)}
        for lockdown in query.execute().data or []
    ]
