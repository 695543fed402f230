"""
Gate de compliance para outbound e ações automatizadas.

Componentes:
- PolicyStore: Política efetiva + regras tipadas (cache com TTL)
- ConsentLedger: Supressão e consentimento (fail-safe)
- TouchLedger: Registro idempotente de tentativas + contagens
- TimeWindow: Horário legal de ligação e contexto de negócio
- Lockdown: Lockdowns automáticos por volume de ações
- Emergency: Kill switch de processo
- Audit: Trail best-effort de toda decisão
- Gate: Pipeline ordenado de decisão + enforcement
"""
from .types import (
    SCOPE_ALL,
    # Enums
    Channel,
    ConsentType,
    TouchStatus,
    ReasonCode,
    EnforcementLevel,
    LockdownAction,
    LockdownStatus,
    ActorType,
    CallType,
    # Dataclasses
    ComplianceCheckResult,
    OutboundTouchParams,
    TouchRecordResult,
    EnforcementResult,
    AuditEntry,
    RiskCheck,
    CallHoursResult,
    BusinessContextResult,
    LockdownEvaluation,
    AgentActionRequest,
    AgentActionResult,
)

from .policy_store import (
    CompliancePolicy,
    FrequencyCaps,
    PolicyLoadResult,
    obter_politica,
    politica_padrao,
    invalidar_cache_politica,
    carregar_regras_compliance,
    carregar_lockdown_rules,
)

from .consent import (
    is_contact_suppressed,
    has_valid_consent,
    is_do_not_contact,
    registrar_consentimento,
    revogar_consentimento,
    suprimir_contato,
    reativar_contato,
    processar_palavra_chave,
)

from .touches import (
    generate_idempotency_key,
    record_outbound_touch,
    get_touch_count,
)

from .time_window import (
    area_code_from_phone,
    timezone_from_phone,
    check_call_hours,
    check_business_context,
    check_time_restriction_rules,
)

from .lockdown import (
    get_active_lockdown,
    avaliar_lockdown_rules,
    executar_monitor,
    resolver_lockdown,
    ativar_lockdown_manual,
    listar_lockdowns,
)

from .emergency import (
    is_emergency_stop_active,
    ativar_emergency_stop,
    desativar_emergency_stop,
    obter_status_emergency_stop,
)

from .audit import write_audit, buscar_audit

from .gate import (
    assert_can_contact,
    with_compliance_enforcement,
    check_voice_call,
    check_agent_action,
)

__all__ = [
    "SCOPE_ALL",
    # Enums
    "Channel",
    "ConsentType",
    "TouchStatus",
    "ReasonCode",
    "EnforcementLevel",
    "LockdownAction",
    "LockdownStatus",
    "ActorType",
    "CallType",
    # Dataclasses
    "ComplianceCheckResult",
    "OutboundTouchParams",
    "TouchRecordResult",
    "EnforcementResult",
    "AuditEntry",
    "RiskCheck",
    "CallHoursResult",
    "BusinessContextResult",
    "LockdownEvaluation",
    "AgentActionRequest",
    "AgentActionResult",
    # Policy
    "CompliancePolicy",
    "FrequencyCaps",
    "PolicyLoadResult",
    "obter_politica",
    "politica_padrao",
    "invalidar_cache_politica",
    "carregar_regras_compliance",
    "carregar_lockdown_rules",
    # Consent
    "is_contact_suppressed",
    "has_valid_consent",
    "is_do_not_contact",
    "registrar_consentimento",
    "revogar_consentimento",
    "suprimir_contato",
    "reativar_contato",
    "processar_palavra_chave",
    # Touches
    "generate_idempotency_key",
    "record_outbound_touch",
    "get_touch_count",
    # Time window
    "area_code_from_phone",
    "timezone_from_phone",
    "check_call_hours",
    "check_business_context",
    "check_time_restriction_rules",
    # Lockdown
    "get_active_lockdown",
    "avaliar_lockdown_rules",
    "executar_monitor",
    "resolver_lockdown",
    "ativar_lockdown_manual",
    "listar_lockdowns",
    # Emergency
    "is_emergency_stop_active",
    "ativar_emergency_stop",
    "desativar_emergency_stop",
    "obter_status_emergency_stop",
    # Audit
    "write_audit",
    "buscar_audit",
    # Gate
    "assert_can_contact",
    "with_compliance_enforcement",
    "check_voice_call",
    "check_agent_action",
]
