"""
Policy store do gate de compliance.

Carrega as regras ativas (compliance_rules, rules_of_engagement,
lockdown_rules) e decodifica UMA vez, no carregamento, em objetos
tipados. Nenhuma regra é re-parseada por chamada.

A política efetiva (CompliancePolicy) é um objeto explícito:
- montado a partir de Settings + catálogo de regras
- cacheado com TTL (memória + Redis) e com hook de invalidação
- passado para as operações do gate (o chamador pode passar a sua)

Falha ao ler o catálogo NÃO bloqueia: degrada para a política padrão
(politica_padrao) com log de warning.
"""
import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from app.core.config import settings, ComplianceConfig
from app.core.exceptions import ConfigurationError
from app.core.timezone import obter_zoneinfo
from app.services.redis import cache_get_json, cache_set_json, cache_delete
from app.services.supabase import supabase, executar_com_timeout

from .types import Channel, EnforcementLevel, LockdownAction

logger = logging.getLogger(__name__)

CACHE_KEY = "compliance:policy_catalog"

# Mapa DDD -> fuso (EUA, simplificado). Heurística aproximada:
# DDD não mapeado cai no fuso padrão. Override via AREA_CODE_TIMEZONES.
DEFAULT_AREA_CODE_TIMEZONES: Dict[str, str] = {
    # Eastern
    "201": "America/New_York", "202": "America/New_York", "203": "America/New_York",
    "212": "America/New_York", "215": "America/New_York", "216": "America/New_York",
    "305": "America/New_York", "404": "America/New_York", "407": "America/New_York",
    # Central
    "214": "America/Chicago", "312": "America/Chicago", "314": "America/Chicago",
    "469": "America/Chicago", "512": "America/Chicago", "713": "America/Chicago",
    # Mountain
    "303": "America/Denver",
    # Arizona (sem horário de verão)
    "480": "America/Phoenix", "602": "America/Phoenix",
    # Pacific
    "206": "America/Los_Angeles", "213": "America/Los_Angeles", "310": "America/Los_Angeles",
    "415": "America/Los_Angeles", "503": "America/Los_Angeles", "619": "America/Los_Angeles",
}

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# =============================================================================
# Regras tipadas (tagged union)
# =============================================================================

@dataclass(frozen=True)
class RateLimitRule:
    """Máximo de ações de um tipo numa janela deslizante."""
    rule_key: str
    limit: int
    window_minutes: int
    action_type: str
    target_type: Optional[str] = None
    enforcement: EnforcementLevel = EnforcementLevel.BLOCK
    kind: str = "rate_limit"


@dataclass(frozen=True)
class TimeRestrictionRule:
    """Não agir antes/depois de HH:MM (hora local do alvo)."""
    rule_key: str
    bound: str  # "before" | "after"
    hhmm: str
    enforcement: EnforcementLevel = EnforcementLevel.BLOCK
    kind: str = "time_restriction"

    def viola(self, hora_local: str) -> bool:
        if self.bound == "before":
            return hora_local < self.hhmm
        return hora_local > self.hhmm


@dataclass(frozen=True)
class ConsentRule:
    rule_key: str
    required: bool
    enforcement: EnforcementLevel = EnforcementLevel.WARN
    kind: str = "consent"


@dataclass(frozen=True)
class SpendCapRule:
    """Teto de gasto diário (janela de 24h)."""
    rule_key: str
    cap: float
    enforcement: EnforcementLevel = EnforcementLevel.BLOCK
    kind: str = "spend_cap"


@dataclass(frozen=True)
class FlagRule:
    rule_key: str
    enabled: bool
    enforcement: EnforcementLevel = EnforcementLevel.LOG
    kind: str = "flag"


PolicyRule = Union[RateLimitRule, TimeRestrictionRule, ConsentRule, SpendCapRule, FlagRule]


@dataclass(frozen=True)
class TimeRestrictionROE:
    """Regra de engajamento do tipo time_restriction."""
    rule_name: str
    priority: int
    before_hour: Optional[int] = None
    after_hour: Optional[int] = None
    days: Tuple[str, ...] = ()
    raw: Optional[Dict[str, Any]] = None

    def bloqueia(self, hora: int, dia: str) -> bool:
        if self.before_hour is not None and hora < self.before_hour:
            return True
        if self.after_hour is not None and hora >= self.after_hour:
            return True
        return dia in self.days


@dataclass(frozen=True)
class LockdownRule:
    """Regra de lockdown automático. agent/action None = qualquer."""
    id: str
    rule_name: str
    threshold_value: int
    threshold_window_minutes: int
    lockdown_action: LockdownAction
    agent_type: Optional[str] = None
    action_type: Optional[str] = None
    trigger_count: int = 0

    def matches(self, agent: Optional[str], action: Optional[str]) -> bool:
        agent_ok = self.agent_type is None or self.agent_type == agent
        action_ok = self.action_type is None or self.action_type == action
        return agent_ok and action_ok


# Chaves conhecidas: tipo + parâmetros fixos
_RATE_LIMIT_KEYS = {
    "MAX_SCRAPING_RATE_PER_MINUTE": {"window_minutes": 1, "action_type": "scrape", "target_type": None},
    "MAX_EMAILS_PER_HOUR": {"window_minutes": 60, "action_type": "outreach", "target_type": "email"},
    "MAX_SMS_PER_DAY": {"window_minutes": 1440, "action_type": "outreach", "target_type": "sms"},
}
_TIME_KEYS = {"DO_NOT_CALL_BEFORE": "before", "DO_NOT_CALL_AFTER": "after"}
_SPEND_KEYS = {"MAX_DAILY_AD_SPEND"}
_CONSENT_KEYS = {"REQUIRE_CONSENT_FOR_MARKETING"}
_FLAG_KEYS = {"RESPECT_ROBOTS_TXT", "REQUIRE_CEO_APPROVAL_FOR_NON_API", "FLAG_EU_PHONE_NUMBERS"}


# =============================================================================
# Política
# =============================================================================

@dataclass(frozen=True)
class FrequencyCaps:
    per_channel: Mapping[str, int]
    total: int
    window_hours: int = 24

    def cap_for(self, channel: Channel) -> int:
        return self.per_channel.get(Channel(channel).value, ComplianceConfig.DEFAULT_CHANNEL_CAP)


@dataclass(frozen=True)
class CompliancePolicy:
    """Política efetiva de compliance (imutável)."""
    caps: FrequencyCaps
    call_hour_start: int
    call_hour_end: int
    default_timezone: str
    area_code_timezones: Mapping[str, str]
    business_hours: Mapping[str, Any]
    rules: Mapping[str, PolicyRule] = field(default_factory=dict)
    roe: Tuple[TimeRestrictionROE, ...] = ()
    source: str = "default"

    def rule(self, key: str) -> Optional[PolicyRule]:
        return self.rules.get(key)


@dataclass
class PolicyLoadResult:
    """Resultado explícito do carregamento do catálogo."""
    ok: bool
    rules: Dict[str, PolicyRule] = field(default_factory=dict)
    roe: List[TimeRestrictionROE] = field(default_factory=list)
    error: Optional[str] = None


def _area_codes_efetivos() -> Dict[str, str]:
    mapa = dict(DEFAULT_AREA_CODE_TIMEZONES)
    for ddd, fuso in (settings.AREA_CODE_TIMEZONES or {}).items():
        if obter_zoneinfo(fuso) is None:
            logger.warning(f"[policy] Fuso inválido no override de DDD {ddd}: {fuso} (ignorado)")
            continue
        mapa[str(ddd)] = fuso
    return mapa


def politica_padrao() -> CompliancePolicy:
    """
    Política padrão documentada.

    Usada quando o catálogo de regras não pode ser lido: caps e horários
    de Settings, nenhuma regra de catálogo, nenhuma ROE.

    Raises:
        ConfigurationError: Se DEFAULT_TIMEZONE não é um fuso IANA válido
    """
    if obter_zoneinfo(settings.DEFAULT_TIMEZONE) is None:
        raise ConfigurationError("DEFAULT_TIMEZONE inválido", {"timezone": settings.DEFAULT_TIMEZONE})

    return CompliancePolicy(
        caps=FrequencyCaps(
            per_channel=settings.frequency_caps,
            total=settings.FREQ_CAP_TOTAL_24H,
            window_hours=settings.FREQ_CAP_WINDOW_HOURS,
        ),
        call_hour_start=settings.CALL_HOUR_START,
        call_hour_end=settings.CALL_HOUR_END,
        default_timezone=settings.DEFAULT_TIMEZONE,
        area_code_timezones=_area_codes_efetivos(),
        business_hours={
            "start": ComplianceConfig.BUSINESS_HOURS_START,
            "end": ComplianceConfig.BUSINESS_HOURS_END,
            "timezone": settings.DEFAULT_TIMEZONE,
            "days": list(ComplianceConfig.BUSINESS_DAYS),
        },
        source="default",
    )


# =============================================================================
# Decodificação
# =============================================================================

def _enforcement(row: dict, padrao: EnforcementLevel) -> EnforcementLevel:
    valor = row.get("enforcement_level")
    if not valor:
        return padrao
    return EnforcementLevel(str(valor).lower())


def _bool(valor: Any) -> bool:
    if isinstance(valor, bool):
        return valor
    return str(valor).strip().lower() in ("true", "1", "yes", "on")


def decodificar_regra(row: dict) -> Optional[PolicyRule]:
    """
    Decodifica linha de compliance_rules em regra tipada.

    Returns:
        Regra tipada ou None se a linha é inválida (logada e ignorada)
    """
    key = row.get("rule_key")
    valor = row.get("rule_value")

    try:
        if key in _RATE_LIMIT_KEYS:
            return RateLimitRule(
                rule_key=key,
                limit=int(valor),
                enforcement=_enforcement(row, EnforcementLevel.BLOCK),
                **_RATE_LIMIT_KEYS[key],
            )

        if key in _TIME_KEYS:
            hhmm = str(valor).strip()
            if not _HHMM.match(hhmm):
                raise ValueError(f"horário inválido: {valor}")
            return TimeRestrictionRule(
                rule_key=key,
                bound=_TIME_KEYS[key],
                hhmm=hhmm,
                enforcement=_enforcement(row, EnforcementLevel.BLOCK),
            )

        if key in _SPEND_KEYS:
            return SpendCapRule(
                rule_key=key,
                cap=float(valor),
                enforcement=_enforcement(row, EnforcementLevel.BLOCK),
            )

        if key in _CONSENT_KEYS:
            return ConsentRule(
                rule_key=key,
                required=_bool(valor),
                enforcement=_enforcement(row, EnforcementLevel.WARN),
            )

        if key in _FLAG_KEYS:
            return FlagRule(
                rule_key=key,
                enabled=_bool(valor),
                enforcement=_enforcement(row, EnforcementLevel.LOG),
            )

        # Regra genérica de rate limit: rule_value JSON
        if row.get("rule_type") == "rate_limit" and key:
            params = valor if isinstance(valor, dict) else json.loads(valor)
            return RateLimitRule(
                rule_key=key,
                limit=int(params["limit"]),
                window_minutes=int(params.get("window_minutes", 60)),
                action_type=str(params["action_type"]),
                target_type=params.get("target_type"),
                enforcement=_enforcement(row, EnforcementLevel.BLOCK),
            )

    except (ValueError, TypeError, KeyError) as e:
        logger.warning(f"[policy] Regra {key} inválida, ignorando: {e}")
        return None

    logger.debug(f"[policy] Regra {key} sem decodificador, ignorando")
    return None


def decodificar_roe(row: dict) -> Optional[TimeRestrictionROE]:
    """Decodifica ROE do tipo time_restriction (outros tipos: None)."""
    if row.get("rule_type") != "time_restriction":
        return None

    conditions = row.get("conditions") or {}
    if isinstance(conditions, str):
        try:
            conditions = json.loads(conditions)
        except ValueError:
            logger.warning(f"[policy] ROE {row.get('rule_name')} com conditions inválido")
            return None

    try:
        before = conditions.get("before_hour")
        after = conditions.get("after_hour")
        return TimeRestrictionROE(
            rule_name=row.get("rule_name") or str(row.get("id")),
            priority=int(row.get("priority") or 0),
            before_hour=int(before) if before is not None else None,
            after_hour=int(after) if after is not None else None,
            days=tuple(str(d).lower() for d in conditions.get("days") or ()),
            raw=row,
        )
    except (ValueError, TypeError) as e:
        logger.warning(f"[policy] ROE {row.get('rule_name')} inválida, ignorando: {e}")
        return None


def decodificar_lockdown_rule(row: dict) -> Optional[LockdownRule]:
    try:
        return LockdownRule(
            id=str(row["id"]),
            rule_name=row["rule_name"],
            agent_type=row.get("agent_type") or None,
            action_type=row.get("action_type") or None,
            threshold_value=int(row["threshold_value"]),
            threshold_window_minutes=int(row.get("threshold_window_minutes") or 60),
            lockdown_action=LockdownAction(row.get("lockdown_action") or "pause_agent"),
            trigger_count=int(row.get("trigger_count") or 0),
        )
    except (ValueError, TypeError, KeyError) as e:
        logger.warning(f"[policy] Lockdown rule inválida {row.get('id')}: {e}")
        return None


def _decodificar_catalogo(catalogo: dict) -> PolicyLoadResult:
    rules: Dict[str, PolicyRule] = {}
    for row in catalogo.get("rules") or []:
        regra = decodificar_regra(row)
        if regra:
            rules[regra.rule_key] = regra

    roe = [r for r in (decodificar_roe(row) for row in catalogo.get("roe") or []) if r]
    roe.sort(key=lambda r: r.priority)

    return PolicyLoadResult(ok=True, rules=rules, roe=roe)


# =============================================================================
# Carregamento
# =============================================================================

async def _ler_catalogo() -> dict:
    rules = await executar_com_timeout(
        supabase.table("compliance_rules").select("*").eq("is_active", True).execute
    )
    roe = await executar_com_timeout(
        supabase.table("rules_of_engagement")
        .select("*")
        .eq("is_active", True)
        .order("priority")
        .execute
    )
    return {"rules": rules.data or [], "roe": roe.data or []}


async def carregar_regras_compliance() -> PolicyLoadResult:
    """
    Carrega e decodifica o catálogo de regras.

    Ordem: Redis (TTL) -> Supabase. Não levanta exceção.

    Returns:
        PolicyLoadResult com ok=False e error preenchido em caso de falha
    """
    catalogo = await cache_get_json(CACHE_KEY)

    if catalogo is None:
        try:
            catalogo = await _ler_catalogo()
        except (Exception, asyncio.CancelledError) as e:
            return PolicyLoadResult(ok=False, error=f"{type(e).__name__}: {e}")

        await cache_set_json(CACHE_KEY, catalogo, settings.POLICY_CACHE_TTL_SECONDS)

    return _decodificar_catalogo(catalogo)


_cache: Dict[str, Tuple[CompliancePolicy, float]] = {}


async def obter_politica(force_refresh: bool = False) -> CompliancePolicy:
    """
    Retorna a política efetiva (cache em memória com TTL).

    Em falha de leitura do catálogo, retorna politica_padrao().
    """
    agora = time.monotonic()

    if not force_refresh and "policy" in _cache:
        politica, expira_em = _cache["policy"]
        if agora < expira_em:
            return politica

    base = politica_padrao()
    resultado = await carregar_regras_compliance()

    if not resultado.ok:
        logger.warning(f"[policy] Catálogo de regras indisponível, usando política padrão: {resultado.error}")
        politica = base
    else:
        politica = CompliancePolicy(
            caps=base.caps,
            call_hour_start=base.call_hour_start,
            call_hour_end=base.call_hour_end,
            default_timezone=base.default_timezone,
            area_code_timezones=base.area_code_timezones,
            business_hours=base.business_hours,
            rules=resultado.rules,
            roe=tuple(resultado.roe),
            source="database",
        )

    _cache["policy"] = (politica, agora + settings.POLICY_CACHE_TTL_SECONDS)
    return politica


async def invalidar_cache_politica() -> None:
    """Hook de invalidação: próxima chamada relê o catálogo."""
    _cache.clear()
    await cache_delete(CACHE_KEY)
    logger.info("[policy] Cache de política invalidado")


async def carregar_lockdown_rules() -> List[LockdownRule]:
    """
    Carrega lockdown rules ativas.

    Falha de leitura retorna lista vazia (log de erro): o monitor deixa
    de CRIAR lockdowns nesse ciclo, mas a verificação de lockdowns ativos
    continua fail-safe.
    """
    try:
        response = await executar_com_timeout(
            supabase.table("lockdown_rules").select("*").eq("is_active", True).execute
        )
    except (Exception, asyncio.CancelledError) as e:
        logger.error(f"[lockdown] Erro ao carregar lockdown rules: {e}")
        return []

    return [r for r in (decodificar_lockdown_rule(row) for row in response.data or []) if r]
