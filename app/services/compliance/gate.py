"""
Gate de compliance.

Ponto único de admissão para todo outbound (sms, email, voz) e para
ações automatizadas de alta velocidade.

Pipeline de contato (ordenado, para no primeiro bloqueio):
0. Emergency stop           -> EMERGENCY_STOP
1. Lockdown ativo           -> LOCKDOWN
2. Supressão (canal ou all) -> SUPPRESSED
3. Consentimento (opcional) -> NO_CONSENT
4. Cap por canal            -> FREQUENCY_CAP_CHANNEL
5. Cap total                -> FREQUENCY_CAP_TOTAL

Caps são best-effort: contagens pontuais, sem lock global. Duas
tentativas concorrentes no limite podem passar.
"""
import inspect
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union

from app.core.config import ComplianceConfig
from app.core.timezone import agora_utc

from .agent_rules import RuleContext, avaliar_regras, target_type
from .audit import write_audit
from .consent import has_valid_consent, is_contact_suppressed, is_do_not_contact
from .emergency import is_emergency_stop_active
from .lockdown import avaliar_lockdown_rules, get_active_lockdown
from .policy_store import CompliancePolicy, obter_politica
from .time_window import check_call_hours
from .touches import get_touch_count, record_outbound_touch
from .types import (
    ActorType,
    AgentActionRequest,
    AgentActionResult,
    AuditEntry,
    CallHoursResult,
    CallType,
    Channel,
    ComplianceCheckResult,
    ConsentType,
    EnforcementLevel,
    EnforcementResult,
    OutboundTouchParams,
    ReasonCode,
    RiskCheck,
    TouchStatus,
    parse_channel,
    require_id,
    somar_risco,
)

logger = logging.getLogger(__name__)

SendFn = Callable[[], Union[Any, Awaitable[Any]]]


def _bloqueio(reason: ReasonCode, message: str, **contagens) -> ComplianceCheckResult:
    return ComplianceCheckResult(allowed=False, reason=reason, message=message, **contagens)


async def assert_can_contact(
    contact_id: str,
    channel: Channel,
    consent_type: Optional[ConsentType] = None,
    require_consent: bool = True,
    agent: Optional[str] = None,
    policy: Optional[CompliancePolicy] = None,
) -> ComplianceCheckResult:
    """
    Decide se o contato pode ser feito agora.

    Args:
        contact_id: ID do contato
        channel: Canal
        consent_type: Exigir este tipo de consentimento (None = qualquer)
        require_consent: Se False, pula a verificação de consentimento
        agent: Agente/módulo que fará o contato (para lockdowns)
        policy: Política efetiva (padrão: obter_politica())

    Returns:
        ComplianceCheckResult; quando allowed, inclui as contagens usadas

    Raises:
        ValidationError: Se contact_id ausente ou canal inválido
    """
    contact_id = require_id(contact_id, "contact_id")
    channel = parse_channel(channel)
    policy = policy or await obter_politica()

    bloqueio = await _bloqueio_absoluto(contact_id, channel, agent)
    if bloqueio:
        return bloqueio
    return await _consentimento_e_caps(contact_id, channel, consent_type, require_consent, policy)


async def _bloqueio_absoluto(
    contact_id: str,
    channel: Channel,
    agent: Optional[str],
) -> Optional[ComplianceCheckResult]:
    """Etapas 0-2: valem antes de qualquer outra regra, inclusive de voz."""
    log_extra = {"contact_id": contact_id, "channel": channel.value}

    if await is_emergency_stop_active():
        logger.warning("[compliance] Bloqueado: emergency stop ativo", extra=log_extra)
        return _bloqueio(ReasonCode.EMERGENCY_STOP, "Emergency stop is active: all outbound is paused")

    lockdown = await get_active_lockdown(agent, channel)
    if lockdown:
        logger.warning(f"[compliance] Bloqueado: lockdown {lockdown.get('agent_type')}", extra=log_extra)
        return _bloqueio(
            ReasonCode.LOCKDOWN,
            f"Lockdown active for {lockdown.get('agent_type')}: {lockdown.get('reason')}",
        )

    if await is_contact_suppressed(contact_id, channel):
        logger.info("[compliance] Bloqueado: contato suprimido", extra=log_extra)
        return _bloqueio(ReasonCode.SUPPRESSED, f"Contact is suppressed for {channel.value}")

    return None


async def _consentimento_e_caps(
    contact_id: str,
    channel: Channel,
    consent_type: Optional[ConsentType],
    require_consent: bool,
    policy: CompliancePolicy,
) -> ComplianceCheckResult:
    """Etapas 3-5."""
    log_extra = {"contact_id": contact_id, "channel": channel.value}

    if require_consent and not await has_valid_consent(contact_id, channel, consent_type):
        logger.info("[compliance] Bloqueado: sem consentimento", extra=log_extra)
        return _bloqueio(ReasonCode.NO_CONSENT, f"No valid consent for {channel.value}")

    janela = policy.caps.window_hours
    channel_touches = await get_touch_count(contact_id, channel, janela)
    cap = policy.caps.cap_for(channel)
    if channel_touches >= cap:
        logger.info(f"[compliance] Bloqueado: cap de {channel.value} ({channel_touches}/{cap})", extra=log_extra)
        return _bloqueio(
            ReasonCode.FREQUENCY_CAP_CHANNEL,
            f"Frequency cap reached for {channel.value}: {channel_touches}/{cap} in {janela}h",
            channel_touches=channel_touches,
        )

    total_touches = await get_touch_count(contact_id, None, janela)
    if total_touches >= policy.caps.total:
        logger.info(f"[compliance] Bloqueado: cap total ({total_touches}/{policy.caps.total})", extra=log_extra)
        return _bloqueio(
            ReasonCode.FREQUENCY_CAP_TOTAL,
            f"Total frequency cap reached: {total_touches}/{policy.caps.total} in {janela}h",
            channel_touches=channel_touches,
            total_touches=total_touches,
        )

    return ComplianceCheckResult(
        allowed=True,
        message="Clear to contact",
        channel_touches=channel_touches,
        total_touches=total_touches,
    )


def _extrair_message_id(resultado: Any) -> Optional[str]:
    """message_id/id do retorno do provedor, se houver."""
    if isinstance(resultado, dict):
        valor = resultado.get("message_id") or resultado.get("id")
        return str(valor) if valor is not None else None
    return None


async def _registrar(
    contact_id: str,
    channel: Channel,
    template_id: Optional[str],
    actor_module: str,
    status: TouchStatus,
    action_type: str,
    payload: dict,
    call_id: Optional[str] = None,
    message_id: Optional[str] = None,
    block_reason: Optional[str] = None,
) -> None:
    """Um touch + uma entrada de auditoria."""
    touch = await record_outbound_touch(OutboundTouchParams(
        contact_id=contact_id,
        channel=channel,
        status=status,
        template_id=template_id,
        call_id=call_id,
        message_id=message_id,
        block_reason=block_reason,
    ))
    if not touch.success:
        logger.warning(
            f"[compliance] Touch {status.value} não registrado: {touch.error}",
            extra={"contact_id": contact_id, "channel": channel.value},
        )

    await write_audit(AuditEntry(
        actor_type=ActorType.MODULE,
        actor_module=actor_module,
        action_type=action_type,
        entity_type="contact",
        entity_id=contact_id,
        payload={
            "channel": channel.value,
            "template_id": template_id,
            "idempotency_key": touch.idempotency_key,
            "duplicate": touch.duplicate,
            **payload,
        },
    ))


async def with_compliance_enforcement(
    contact_id: str,
    channel: Channel,
    template_id: Optional[str],
    actor_module: str,
    send_fn: SendFn,
    consent_type: Optional[ConsentType] = None,
    require_consent: bool = True,
    call_id: Optional[str] = None,
    policy: Optional[CompliancePolicy] = None,
) -> EnforcementResult:
    """
    Executa send_fn somente se o gate permitir.

    - Bloqueado: registra touch "blocked" + auditoria, NÃO chama send_fn
    - Permitido: chama send_fn (sync ou async); registra "sent" em
      sucesso ou "failed" em erro. O erro é relançado ao chamador.

    Uso:
        resultado = await with_compliance_enforcement(
            contact_id, "sms", "welcome_v2", "messaging",
            lambda: provider.send(phone, texto),
        )

    Raises:
        ValidationError: Ids ausentes (antes de qualquer efeito)
        Exception: Qualquer erro de send_fn, após registrar a falha
    """
    contact_id = require_id(contact_id, "contact_id")
    require_id(actor_module, "actor_module")
    channel = parse_channel(channel)

    check = await assert_can_contact(
        contact_id,
        channel,
        consent_type=consent_type,
        require_consent=require_consent,
        agent=actor_module,
        policy=policy,
    )

    if not check.allowed:
        await _registrar(
            contact_id, channel, template_id, actor_module,
            status=TouchStatus.BLOCKED,
            action_type="outbound_blocked",
            payload={"reason": check.reason.value, "message": check.message},
            call_id=call_id,
            block_reason=check.reason.value,
        )
        return EnforcementResult(success=False, blocked=check)

    try:
        resultado = send_fn()
        if inspect.isawaitable(resultado):
            resultado = await resultado
    except Exception as e:
        erro = f"{type(e).__name__}: {e}"[:ComplianceConfig.AUDIT_MAX_ERROR_CHARS]
        logger.error(
            f"[compliance] Falha no envio via {channel.value}: {erro}",
            extra={"contact_id": contact_id, "channel": channel.value},
        )
        await _registrar(
            contact_id, channel, template_id, actor_module,
            status=TouchStatus.FAILED,
            action_type="outbound_failed",
            payload={"error": erro},
            call_id=call_id,
            block_reason=erro,
        )
        raise

    await _registrar(
        contact_id, channel, template_id, actor_module,
        status=TouchStatus.SENT,
        action_type="outbound_sent",
        payload={
            "channel_touches": check.channel_touches,
            "total_touches": check.total_touches,
        },
        call_id=call_id,
        message_id=_extrair_message_id(resultado),
    )

    logger.info(
        f"[compliance] Outbound {channel.value} enviado para {contact_id}",
        extra={"contact_id": contact_id, "channel": channel.value},
    )
    return EnforcementResult(success=True, result=resultado)


async def _regras_de_voz(
    contact_id: str,
    call_type: CallType,
    horario: CallHoursResult,
    policy: CompliancePolicy,
) -> ComplianceCheckResult:
    if not horario.allowed:
        return _bloqueio(ReasonCode.CALL_TIME_RESTRICTION, horario.reason)
    if await is_do_not_contact(contact_id):
        return _bloqueio(ReasonCode.DNC, "Contact is on the do-not-call list")
    if call_type == CallType.AI and not await has_valid_consent(contact_id, Channel.VOICE):
        return _bloqueio(ReasonCode.NO_AI_CONSENT, "AI calls require prior voice consent")
    # Consentimento de IA já conferido acima
    return await _consentimento_e_caps(contact_id, Channel.VOICE, None, False, policy)


async def check_voice_call(
    contact_id: str,
    phone: str,
    call_type: CallType = CallType.HUMAN,
    actor_module: str = "outbound_dialer",
    agora: Optional[datetime] = None,
    policy: Optional[CompliancePolicy] = None,
) -> ComplianceCheckResult:
    """
    Verificação pré-discagem.

    Emergency stop, lockdown e supressão -> horário legal -> DNC ->
    consentimento de voz (só chamadas de IA) -> caps de voz.
    """
    contact_id = require_id(contact_id, "contact_id")
    require_id(phone, "phone")
    call_type = CallType(call_type)
    policy = policy or await obter_politica()

    horario = check_call_hours(phone, agora, policy)
    resultado = await _bloqueio_absoluto(contact_id, Channel.VOICE, actor_module)
    if resultado is None:
        resultado = await _regras_de_voz(contact_id, call_type, horario, policy)

    if not resultado.allowed:
        await write_audit(AuditEntry(
            actor_type=ActorType.MODULE,
            actor_module=actor_module,
            action_type="voice_call_blocked",
            entity_type="contact",
            entity_id=contact_id,
            payload={
                "reason": resultado.reason,
                "call_type": call_type,
                "timezone": horario.timezone,
                "local_hour": horario.local_hour,
            },
        ))

    return resultado


_SEVERIDADE = {EnforcementLevel.LOG: 0, EnforcementLevel.WARN: 1, EnforcementLevel.BLOCK: 2}


async def _auditar_acao(request: AgentActionRequest, resultado: AgentActionResult) -> None:
    """Registra a verificação. São essas linhas que lockdowns e rate limits contam."""
    await write_audit(AuditEntry(
        actor_type=ActorType.MODULE,
        actor_module=request.agent_name,
        action_type=request.action_type,
        entity_type=target_type(request),
        entity_id=request.resource_url or request.target_email or request.target_phone or request.agent_name,
        payload={
            **(request.metadata or {}),
            "approved": resultado.approved,
            "enforcement": resultado.enforcement,
            "reason": resultado.reason,
            "reason_code": resultado.reason_code,
            "risk_score": resultado.risk_score,
            "rules_checked": resultado.rules_checked,
            "data_source": request.data_source,
            # Só gasto aprovado entra na soma diária
            "amount": request.spend_amount if resultado.approved else None,
            "requested_amount": request.spend_amount,
        },
    ))


async def check_agent_action(
    request: AgentActionRequest,
    agora: Optional[datetime] = None,
    policy: Optional[CompliancePolicy] = None,
) -> AgentActionResult:
    """
    Verifica ação automatizada (scrape, outreach, ad_spend, api_call...).

    Ordem: emergency stop -> lockdown ativo -> lockdown rules ->
    regras do catálogo. Enforcement: block nega; warn e log aprovam.
    Risk score = soma única dos pesos coletados (lockdown = 100).

    Raises:
        ValidationError: Se agent_name ou action_type ausentes
    """
    require_id(request.agent_name, "agent_name")
    require_id(request.action_type, "action_type")
    agora = agora or agora_utc()

    if await is_emergency_stop_active():
        resultado = AgentActionResult(
            approved=False,
            enforcement=EnforcementLevel.BLOCK,
            reason="Emergency stop is active",
            reason_code=ReasonCode.EMERGENCY_STOP,
            rules_checked=["EMERGENCY_STOP"],
            risk_score=ComplianceConfig.RISK_LOCKDOWN,
        )
        await _auditar_acao(request, resultado)
        return resultado

    lockdown = await get_active_lockdown(request.agent_name)
    if lockdown:
        resultado = AgentActionResult(
            approved=False,
            enforcement=EnforcementLevel.BLOCK,
            reason=f"Agent is locked down: {lockdown.get('reason')}",
            reason_code=ReasonCode.LOCKDOWN,
            rules_checked=["LOCKDOWN_CHECK"],
            risk_score=ComplianceConfig.RISK_LOCKDOWN,
            lockdown_triggered=True,
        )
        await _auditar_acao(request, resultado)
        return resultado

    avaliacao = await avaliar_lockdown_rules(request.agent_name, request.action_type, agora=agora)
    checks = list(avaliacao.risk_checks)
    recomendacoes = list(avaliacao.recommendations)
    rules_checked = list(avaliacao.rules_checked)

    if avaliacao.blocked:
        resultado = AgentActionResult(
            approved=False,
            enforcement=EnforcementLevel.BLOCK,
            reason=f"Security lockdown triggered: {avaliacao.reason}",
            reason_code=ReasonCode.LOCKDOWN,
            rules_checked=rules_checked,
            risk_score=somar_risco(checks),
            recommendations=recomendacoes,
            lockdown_triggered=True,
        )
        await _auditar_acao(request, resultado)
        return resultado

    policy = policy or await obter_politica()
    outcomes = await avaliar_regras(RuleContext(request=request, policy=policy, agora=agora))

    enforcement = EnforcementLevel.LOG
    reason = None
    reason_code = None
    for outcome in outcomes:
        rules_checked.append(outcome.rule_key)
        if outcome.recommendation:
            recomendacoes.append(outcome.recommendation)
        if not outcome.triggered:
            continue
        checks.append(RiskCheck(outcome.rule_key, outcome.weight))

        # Motivo reportado = o do disparo mais severo (primeiro em caso de empate)
        severidade = _SEVERIDADE[outcome.enforcement]
        if reason is None or severidade > _SEVERIDADE[enforcement]:
            reason = outcome.reason
            reason_code = outcome.reason_code
        if severidade > _SEVERIDADE[enforcement]:
            enforcement = outcome.enforcement

    resultado = AgentActionResult(
        approved=enforcement != EnforcementLevel.BLOCK,
        enforcement=enforcement,
        reason=reason,
        reason_code=reason_code,
        rules_checked=rules_checked,
        risk_score=somar_risco(checks),
        recommendations=recomendacoes,
    )

    logger.info(
        f"[compliance] Ação {request.agent_name}/{request.action_type}: "
        f"{'aprovada' if resultado.approved else 'bloqueada'} (risco {resultado.risk_score})",
        extra={"agent": request.agent_name, "reason": reason},
    )

    await _auditar_acao(request, resultado)
    return resultado
