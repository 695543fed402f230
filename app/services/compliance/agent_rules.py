"""
Avaliadores das regras de compliance para ações automatizadas.

Um avaliador por tipo de regra (rate limit, horário, consentimento,
teto de gasto, flag). Cada um recebe a regra já decodificada e o
contexto da ação, e devolve:
- None: regra não se aplica a esta ação
- RuleOutcome(triggered=False): regra verificada, sem problema
- RuleOutcome(triggered=True): regra disparou (enforcement da regra)
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Type

from app.core.config import ComplianceConfig
from app.core.exceptions import DatabaseError

from .audit import contar_eventos, somar_payload
from .policy_store import (
    CompliancePolicy,
    ConsentRule,
    FlagRule,
    PolicyRule,
    RateLimitRule,
    SpendCapRule,
    TimeRestrictionRule,
)
from .time_window import hora_local_hhmm
from .types import AgentActionRequest, Channel, EnforcementLevel, ReasonCode

logger = logging.getLogger(__name__)

EU_PHONE_PREFIXES = (
    "+33", "+49", "+39", "+34", "+31", "+32", "+43", "+351", "+353", "+358",
    "+46", "+45", "+372", "+371", "+370", "+48", "+420", "+421", "+386",
    "+385", "+359", "+40", "+30", "+357", "+356",
)

# Ordem de avaliação das regras conhecidas; demais vêm depois, por chave
ORDEM_REGRAS = (
    "RESPECT_ROBOTS_TXT",
    "MAX_SCRAPING_RATE_PER_MINUTE",
    "REQUIRE_CEO_APPROVAL_FOR_NON_API",
    "DO_NOT_CALL_BEFORE",
    "DO_NOT_CALL_AFTER",
    "MAX_EMAILS_PER_HOUR",
    "MAX_SMS_PER_DAY",
    "REQUIRE_CONSENT_FOR_MARKETING",
    "FLAG_EU_PHONE_NUMBERS",
    "MAX_DAILY_AD_SPEND",
)

OFFICIAL_API_SOURCE = "official_api"


@dataclass
class RuleContext:
    request: AgentActionRequest
    policy: CompliancePolicy
    agora: datetime


@dataclass
class RuleOutcome:
    rule_key: str
    triggered: bool = False
    enforcement: EnforcementLevel = EnforcementLevel.LOG
    weight: int = 0
    reason: Optional[str] = None
    reason_code: Optional[ReasonCode] = None
    recommendation: Optional[str] = None


def target_type(request: AgentActionRequest) -> str:
    """
    Tipo do alvo da ação (vira entity_type no audit trail).

    É o que os rate limits por alvo (email/sms) contam.
    """
    if request.target_email:
        return Channel.EMAIL.value
    if request.target_phone:
        canal = (request.metadata or {}).get("channel")
        return Channel.VOICE.value if canal == Channel.VOICE.value else Channel.SMS.value
    if request.resource_url:
        return "url"
    return "agent"


def ordenar_regras(rules: Dict[str, PolicyRule]) -> List[PolicyRule]:
    def chave(regra: PolicyRule):
        if regra.rule_key in ORDEM_REGRAS:
            return (0, ORDEM_REGRAS.index(regra.rule_key), regra.rule_key)
        return (1, 0, regra.rule_key)

    return sorted(rules.values(), key=chave)


# =============================================================================
# Avaliadores
# =============================================================================

_PESO_RATE_LIMIT = {
    "scrape": ComplianceConfig.RISK_SCRAPE_RATE,
    "outreach": ComplianceConfig.RISK_OUTREACH_RATE,
}


async def avaliar_rate_limit(rule: RateLimitRule, ctx: RuleContext) -> Optional[RuleOutcome]:
    request = ctx.request
    if rule.action_type != request.action_type:
        return None
    if rule.target_type and rule.target_type != target_type(request):
        return None

    desde = ctx.agora - timedelta(minutes=rule.window_minutes)
    peso = _PESO_RATE_LIMIT.get(rule.action_type, ComplianceConfig.RISK_OUTREACH_RATE)

    try:
        count = await contar_eventos(desde, action_type=rule.action_type, entity_type=rule.target_type)
    except DatabaseError as e:
        logger.error(f"[compliance] Erro ao contar {rule.rule_key}, bloqueando (fail-safe): {e}")
        return RuleOutcome(
            rule_key=rule.rule_key,
            triggered=True,
            enforcement=EnforcementLevel.BLOCK,
            weight=peso,
            reason=f"Rate limit unreadable for {rule.rule_key} (fail-safe)",
            reason_code=ReasonCode.RATE_LIMIT,
        )

    if count < rule.limit:
        return RuleOutcome(rule_key=rule.rule_key)

    return RuleOutcome(
        rule_key=rule.rule_key,
        triggered=True,
        enforcement=rule.enforcement,
        weight=peso,
        reason=f"Rate limit exceeded: {count}/{rule.limit} {rule.action_type} in {rule.window_minutes}min",
        reason_code=ReasonCode.RATE_LIMIT,
    )


async def avaliar_horario(rule: TimeRestrictionRule, ctx: RuleContext) -> Optional[RuleOutcome]:
    if ctx.request.action_type != "outreach":
        return None

    hhmm = hora_local_hhmm(ctx.policy, ctx.agora, ctx.request.target_phone)
    if not rule.viola(hhmm):
        return RuleOutcome(rule_key=rule.rule_key)

    return RuleOutcome(
        rule_key=rule.rule_key,
        triggered=True,
        enforcement=rule.enforcement,
        weight=ComplianceConfig.RISK_CALL_TIME,
        reason=f"Cannot call {rule.bound} {rule.hhmm}. Current time: {hhmm}",
        reason_code=ReasonCode.CALL_TIME_RESTRICTION,
    )


async def avaliar_consentimento(rule: ConsentRule, ctx: RuleContext) -> Optional[RuleOutcome]:
    if ctx.request.action_type != "outreach" or not rule.required:
        return None

    return RuleOutcome(
        rule_key=rule.rule_key,
        triggered=True,
        enforcement=rule.enforcement,
        weight=ComplianceConfig.RISK_MARKETING_CONSENT,
        recommendation="Ensure lead has opted-in to marketing communications",
    )


async def avaliar_teto_gasto(rule: SpendCapRule, ctx: RuleContext) -> Optional[RuleOutcome]:
    valor = ctx.request.spend_amount
    if valor is None:
        return None

    try:
        gasto = await somar_payload("amount", ctx.agora - timedelta(hours=24), action_type="ad_spend")
    except DatabaseError as e:
        logger.error(f"[compliance] Erro ao somar gasto, bloqueando (fail-safe): {e}")
        return RuleOutcome(
            rule_key=rule.rule_key,
            triggered=True,
            enforcement=EnforcementLevel.BLOCK,
            weight=ComplianceConfig.RISK_AD_SPEND,
            reason="Ad spend total unreadable (fail-safe)",
            reason_code=ReasonCode.RATE_LIMIT,
        )

    if gasto + valor <= rule.cap:
        return RuleOutcome(rule_key=rule.rule_key)

    return RuleOutcome(
        rule_key=rule.rule_key,
        triggered=True,
        enforcement=rule.enforcement,
        weight=ComplianceConfig.RISK_AD_SPEND,
        reason=f"Ad spend limit would be exceeded: ${gasto + valor:.2f} > ${rule.cap:.2f}",
        reason_code=ReasonCode.RATE_LIMIT,
    )


async def avaliar_flag(rule: FlagRule, ctx: RuleContext) -> Optional[RuleOutcome]:
    if not rule.enabled:
        return None
    request = ctx.request

    if rule.rule_key == "RESPECT_ROBOTS_TXT":
        if request.action_type != "scrape" or not request.resource_url:
            return None
        return RuleOutcome(
            rule_key=rule.rule_key,
            recommendation=f"Check robots.txt for {request.resource_url}",
        )

    if rule.rule_key == "REQUIRE_CEO_APPROVAL_FOR_NON_API":
        if request.action_type != "scrape" or request.data_source == OFFICIAL_API_SOURCE:
            return None
        return RuleOutcome(
            rule_key=rule.rule_key,
            triggered=True,
            enforcement=EnforcementLevel.WARN,
            weight=ComplianceConfig.RISK_NON_API_SOURCE,
            reason="Non-API data source requires CEO approval",
            recommendation="Consider using official API if available",
        )

    if rule.rule_key == "FLAG_EU_PHONE_NUMBERS":
        if not request.target_phone:
            return None
        if not request.target_phone.strip().startswith(EU_PHONE_PREFIXES):
            return RuleOutcome(rule_key=rule.rule_key)
        return RuleOutcome(
            rule_key=rule.rule_key,
            triggered=True,
            enforcement=EnforcementLevel.WARN,
            weight=ComplianceConfig.RISK_EU_PHONE,
            reason="EU phone number: GDPR applies",
            recommendation="GDPR applies: Ensure proper consent and data handling",
        )

    return None


AVALIADORES: Dict[Type, Callable[[PolicyRule, RuleContext], Awaitable[Optional[RuleOutcome]]]] = {
    RateLimitRule: avaliar_rate_limit,
    TimeRestrictionRule: avaliar_horario,
    ConsentRule: avaliar_consentimento,
    SpendCapRule: avaliar_teto_gasto,
    FlagRule: avaliar_flag,
}


async def avaliar_regras(ctx: RuleContext) -> List[RuleOutcome]:
    """Avalia todas as regras da política, na ordem fixa."""
    resultados = []
    for regra in ordenar_regras(ctx.policy.rules):
        avaliador = AVALIADORES.get(type(regra))
        if avaliador is None:
            continue
        resultado = await avaliador(regra, ctx)
        if resultado is not None:
            resultados.append(resultado)
    return resultados
