"""
Router do gate de compliance.

Expõe:
- Verificações (contato, ação de agente, pré-discagem, horários)
- Registro de touches
- Gestão de consentimento/supressão
- Emergency stop
- Lockdowns
- Audit trail e política
"""

from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, Path, Query
from pydantic import BaseModel, Field

from app.core.logging import get_logger
from app.services.compliance import (
    SCOPE_ALL,
    AgentActionRequest,
    CallType,
    Channel,
    ConsentType,
    OutboundTouchParams,
    TouchStatus,
    assert_can_contact,
    ativar_emergency_stop,
    ativar_lockdown_manual,
    buscar_audit,
    check_agent_action,
    check_business_context,
    check_call_hours,
    check_time_restriction_rules,
    check_voice_call,
    desativar_emergency_stop,
    invalidar_cache_politica,
    listar_lockdowns,
    obter_politica,
    obter_status_emergency_stop,
    processar_palavra_chave,
    reativar_contato,
    record_outbound_touch,
    registrar_consentimento,
    resolver_lockdown,
    revogar_consentimento,
    suprimir_contato,
)

router = APIRouter(prefix="/compliance", tags=["compliance"])
logger = get_logger(__name__, component="compliance_api")


# ============================================================
# Schemas
# ============================================================


class ContactCheckRequest(BaseModel):
    """Request para verificar se contato pode ser feito."""

    contact_id: str = Field(..., min_length=1)
    channel: Channel
    consent_type: Optional[ConsentType] = None
    require_consent: bool = True
    agent: Optional[str] = None


class TouchRequest(BaseModel):
    """Registro manual de tentativa de outbound."""

    contact_id: str = Field(..., min_length=1)
    channel: Channel
    status: TouchStatus
    template_id: Optional[str] = None
    call_id: Optional[str] = None
    message_id: Optional[str] = None
    block_reason: Optional[str] = None


class AgentActionBody(BaseModel):
    """Ação automatizada a verificar."""

    agent_name: str = Field(..., min_length=1)
    action_type: str = Field(..., min_length=1, description="scrape, outreach, ad_spend, api_call...")
    resource_url: Optional[str] = None
    data_source: Optional[str] = None
    target_phone: Optional[str] = None
    target_email: Optional[str] = None
    spend_amount: Optional[float] = None
    metadata: Optional[dict[str, Any]] = None


class VoiceCheckRequest(BaseModel):
    """Verificação pré-discagem."""

    contact_id: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=3)
    call_type: CallType = CallType.HUMAN
    actor_module: str = "outbound_dialer"


class ConsentRequest(BaseModel):
    contact_id: str = Field(..., min_length=1)
    channel: Channel
    consent_type: ConsentType = ConsentType.OPT_IN
    source: Optional[str] = None


class RevokeConsentRequest(BaseModel):
    contact_id: str = Field(..., min_length=1)
    channel: Channel


class SuppressionRequest(BaseModel):
    contact_id: str = Field(..., min_length=1)
    channel: str = Field(default=SCOPE_ALL, description="sms, email, voice ou all")
    reason: Optional[str] = None
    source: Optional[str] = None


class SmsKeywordRequest(BaseModel):
    contact_id: str = Field(..., min_length=1)
    text: str


class EmergencyStopRequest(BaseModel):
    """Request para ativar/desativar emergency stop."""

    motivo: str = Field(..., min_length=3, description="Motivo da alteração")
    usuario: str = Field(default="dashboard", description="Usuário que acionou")


class LockdownRequest(BaseModel):
    """Lockdown manual."""

    agent_type: str = Field(..., min_length=1, description="Agente, canal ou all")
    reason: str = Field(..., min_length=3)
    usuario: str = Field(default="dashboard")


class ResolveLockdownRequest(BaseModel):
    usuario: str = Field(default="dashboard")
    notas: Optional[str] = None


# ============================================================
# Verificações
# ============================================================


@router.post("/check-contact")
async def check_contact(request: ContactCheckRequest) -> dict:
    """
    Decide se o contato pode ser feito agora.

    Pipeline: emergency stop -> lockdown -> supressão -> consentimento ->
    cap por canal -> cap total.
    """
    result = await assert_can_contact(
        request.contact_id,
        request.channel,
        consent_type=request.consent_type,
        require_consent=request.require_consent,
        agent=request.agent,
    )
    return result.to_dict()


@router.post("/touches")
async def registrar_touch(request: TouchRequest) -> dict:
    """Registra tentativa (idempotente por contato/canal/template/minuto)."""
    result = await record_outbound_touch(OutboundTouchParams(**request.model_dump()))
    return asdict(result)


@router.post("/agent-action")
async def agent_action(request: AgentActionBody) -> dict:
    """Verifica ação automatizada (scrape, outreach, ad_spend...)."""
    result = await check_agent_action(AgentActionRequest(**request.model_dump()))
    return asdict(result)


@router.post("/voice-check")
async def voice_check(request: VoiceCheckRequest) -> dict:
    """Verificação pré-discagem (horário legal, DNC, consentimento de IA)."""
    result = await check_voice_call(
        request.contact_id,
        request.phone,
        call_type=request.call_type,
        actor_module=request.actor_module,
    )
    return result.to_dict()


@router.get("/call-hours")
async def call_hours(phone: str = Query(..., min_length=3)) -> dict:
    """Horário legal de ligação na hora local do telefone."""
    policy = await obter_politica()
    result = check_call_hours(phone, policy=policy)
    violadas = check_time_restriction_rules(policy, phone=phone)
    return {
        **asdict(result),
        "violated_rules": [r.rule_key for r in violadas],
    }


@router.get("/business-context")
async def business_context() -> dict:
    """Horário comercial, bloqueios de calendário e ROEs."""
    policy = await obter_politica()
    return asdict(await check_business_context(policy=policy))


# ============================================================
# Consentimento e supressão
# ============================================================


@router.post("/consent")
async def registrar_consent(request: ConsentRequest) -> dict:
    registro = await registrar_consentimento(
        request.contact_id, request.channel, request.consent_type, request.source
    )
    return {"success": True, "consent": registro}


@router.post("/consent/revoke")
async def revogar_consent(request: RevokeConsentRequest) -> dict:
    revogados = await revogar_consentimento(request.contact_id, request.channel)
    return {"success": True, "revoked": revogados}


@router.post("/suppressions")
async def suprimir(request: SuppressionRequest) -> dict:
    registro = await suprimir_contato(
        request.contact_id, request.channel, reason=request.reason, source=request.source
    )
    return {"success": True, "suppression": registro}


@router.post("/suppressions/reactivate")
async def reativar(request: SuppressionRequest) -> dict:
    reativados = await reativar_contato(request.contact_id, request.channel)
    return {"success": True, "reactivated": reativados}


@router.post("/sms-keyword")
async def sms_keyword(request: SmsKeywordRequest) -> dict:
    """Processa resposta de SMS (STOP, START...)."""
    acao = await processar_palavra_chave(request.contact_id, request.text)
    return {"processed": acao is not None, "action": acao}


# ============================================================
# Emergency stop
# ============================================================


@router.get("/emergency-stop")
async def emergency_stop_status() -> dict:
    return await obter_status_emergency_stop()


@router.post("/emergency-stop/activate")
async def emergency_stop_activate(request: EmergencyStopRequest) -> dict:
    """
    Ativa o emergency stop.

    ATENÇÃO: bloqueia TODO outbound até ser desativado.
    """
    logger.warning(f"[compliance] Emergency stop solicitado por {request.usuario}")
    return await ativar_emergency_stop(request.motivo, request.usuario)


@router.post("/emergency-stop/deactivate")
async def emergency_stop_deactivate(request: EmergencyStopRequest) -> dict:
    return await desativar_emergency_stop(request.usuario, request.motivo)


# ============================================================
# Lockdowns
# ============================================================


@router.get("/lockdowns")
async def lockdowns(
    status: Optional[str] = Query(default=None, pattern="^(active|resolved)$"),
    limite: int = Query(default=100, ge=1, le=500),
) -> dict:
    items = await listar_lockdowns(status, limite)
    return {"lockdowns": items, "total": len(items)}


@router.post("/lockdowns")
async def lockdown_manual(request: LockdownRequest) -> dict:
    lockdown = await ativar_lockdown_manual(request.agent_type, request.reason, request.usuario)
    return {"success": True, "lockdown": lockdown}


@router.post("/lockdowns/{lockdown_id}/resolve")
async def lockdown_resolve(
    request: ResolveLockdownRequest,
    lockdown_id: str = Path(..., description="ID do lockdown"),
) -> dict:
    lockdown = await resolver_lockdown(lockdown_id, request.usuario, request.notas)
    return {"success": True, "lockdown": lockdown}


# ============================================================
# Audit e política
# ============================================================


@router.get("/audit")
async def audit(
    actor: Optional[str] = None,
    action_type: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    horas: int = Query(default=24, ge=1, le=720),
    limite: int = Query(default=100, ge=1, le=500),
) -> dict:
    entries = await buscar_audit(actor, action_type, entity_type, entity_id, horas, limite)
    return {"entries": entries, "total": len(entries)}


@router.get("/policy")
async def policy() -> dict:
    """Política efetiva (caps, horários, regras carregadas)."""
    politica = await obter_politica()
    return {
        "source": politica.source,
        "frequency_caps": {
            **dict(politica.caps.per_channel),
            "total": politica.caps.total,
            "window_hours": politica.caps.window_hours,
        },
        "call_hours": {"start": politica.call_hour_start, "end": politica.call_hour_end},
        "default_timezone": politica.default_timezone,
        "rules": {key: asdict(regra) for key, regra in politica.rules.items()},
        "roe": [r.rule_name for r in politica.roe],
    }


@router.post("/policy/invalidate")
async def policy_invalidate() -> dict:
    """Força releitura do catálogo de regras na próxima verificação."""
    await invalidar_cache_politica()
    return {"success": True}
