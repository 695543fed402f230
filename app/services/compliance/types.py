"""
Tipos do gate de compliance.

Contrato único para todo outbound (sms, email, voz) e para toda ação
automatizada de alta velocidade (scraping, gasto em anúncios).
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from app.core.exceptions import ValidationError

T = TypeVar("T")

# Escopo de supressão/lockdown que cobre tudo
SCOPE_ALL = "all"


class Channel(str, Enum):
    """Canal de contato."""
    SMS = "sms"
    EMAIL = "email"
    VOICE = "voice"


class ConsentType(str, Enum):
    """Base legal do consentimento."""
    EXPRESS_WRITTEN = "express_written"
    PRIOR_EXPRESS = "prior_express"
    OPT_IN = "opt_in"
    IMPLIED = "implied"


class TouchStatus(str, Enum):
    """Resultado de uma tentativa de outbound."""
    SENT = "sent"
    BLOCKED = "blocked"
    FAILED = "failed"


class ReasonCode(str, Enum):
    """Motivo estruturado de bloqueio."""
    EMERGENCY_STOP = "EMERGENCY_STOP"
    LOCKDOWN = "LOCKDOWN"
    SUPPRESSED = "SUPPRESSED"
    NO_CONSENT = "NO_CONSENT"
    NO_AI_CONSENT = "NO_AI_CONSENT"
    DNC = "DNC"
    FREQUENCY_CAP_CHANNEL = "FREQUENCY_CAP_CHANNEL"
    FREQUENCY_CAP_TOTAL = "FREQUENCY_CAP_TOTAL"
    CALL_TIME_RESTRICTION = "CALL_TIME_RESTRICTION"
    RATE_LIMIT = "RATE_LIMIT"


class EnforcementLevel(str, Enum):
    """Nível de enforcement de uma regra."""
    BLOCK = "block"
    WARN = "warn"
    LOG = "log"


class LockdownAction(str, Enum):
    PAUSE_AGENT = "pause_agent"
    ALERT_ONLY = "alert_only"


class LockdownStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"


class ActorType(str, Enum):
    """Quem executou a ação auditada."""
    MODULE = "module"
    CEO = "ceo"
    USER = "user"
    SYSTEM = "system"


class CallType(str, Enum):
    HUMAN = "human"
    AI = "ai"


def parse_channel(value: Any) -> Channel:
    """
    Converte valor para Channel.

    Raises:
        ValidationError: Se o canal é vazio ou desconhecido
    """
    if isinstance(value, Channel):
        return value
    try:
        return Channel(str(value).lower())
    except ValueError:
        raise ValidationError("Canal inválido", {"channel": value})


def require_id(value: Optional[str], campo: str) -> str:
    """
    Valida identificador obrigatório.

    Raises:
        ValidationError: Se vazio
    """
    if value is None or not str(value).strip():
        raise ValidationError(f"{campo} é obrigatório", {"campo": campo})
    return str(value)


@dataclass
class ComplianceCheckResult:
    """
    Resultado de assert_can_contact.

    Attributes:
        allowed: True se o contato pode ser feito agora
        reason: Código do bloqueio (None quando allowed)
        message: Mensagem legível
        channel_touches: Touches no canal dentro da janela
        total_touches: Touches em todos os canais dentro da janela
    """
    allowed: bool
    reason: Optional[ReasonCode] = None
    message: str = ""
    channel_touches: Optional[int] = None
    total_touches: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "allowed": self.allowed,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
        }
        if self.channel_touches is not None:
            data["channel_touches"] = self.channel_touches
        if self.total_touches is not None:
            data["total_touches"] = self.total_touches
        return data


@dataclass(frozen=True)
class OutboundTouchParams:
    """Tentativa de outbound a registrar."""
    contact_id: str
    channel: Channel
    status: TouchStatus
    template_id: Optional[str] = None
    call_id: Optional[str] = None
    message_id: Optional[str] = None
    block_reason: Optional[str] = None


@dataclass
class TouchRecordResult:
    success: bool
    error: Optional[str] = None
    duplicate: bool = False
    idempotency_key: Optional[str] = None


@dataclass
class EnforcementResult(Generic[T]):
    """
    Resultado de with_compliance_enforcement.

    success=False com blocked preenchido quando o gate bloqueou;
    send_fn não foi chamado nesse caso.
    """
    success: bool
    result: Optional[T] = None
    blocked: Optional[ComplianceCheckResult] = None


@dataclass
class AuditEntry:
    """
    Entrada do audit trail (append-only).

    actor é derivado: actor_id > actor_module > "system".
    """
    actor_type: ActorType
    action_type: str
    entity_type: str
    entity_id: str
    actor_module: Optional[str] = None
    actor_id: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    override: bool = False

    @property
    def actor(self) -> str:
        return self.actor_id or self.actor_module or "system"


@dataclass(frozen=True)
class RiskCheck:
    """Resultado ponderado de uma verificação (para risk score)."""
    check: str
    weight: int


def somar_risco(checks: List[RiskCheck], teto: int = 100) -> int:
    """Soma os pesos uma única vez, limitado ao teto."""
    return min(teto, sum(c.weight for c in checks))


@dataclass
class CallHoursResult:
    allowed: bool
    timezone: str
    local_hour: int
    reason: Optional[str] = None


@dataclass
class BusinessContextResult:
    is_business_hours: bool
    current_hour: int
    current_day: str
    business_hours: Dict[str, Any]
    active_calendar_blocks: List[Dict[str, Any]] = field(default_factory=list)
    blocking_rule: Optional[Dict[str, Any]] = None
    can_outreach: bool = False
    recommendations: List[str] = field(default_factory=list)


@dataclass
class LockdownEvaluation:
    """
    Resultado da avaliação das lockdown rules para um agente/ação.

    blocked=True quando alguma regra pause_agent disparou.
    """
    blocked: bool = False
    reason: Optional[str] = None
    rules_checked: List[str] = field(default_factory=list)
    risk_checks: List[RiskCheck] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    lockdowns_created: int = 0


@dataclass
class AgentActionRequest:
    """
    Pedido de verificação para ação automatizada.

    action_type: scrape, outreach, data_collection, api_call, ad_spend...
    """
    agent_name: str
    action_type: str
    resource_url: Optional[str] = None
    data_source: Optional[str] = None
    target_phone: Optional[str] = None
    target_email: Optional[str] = None
    spend_amount: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class AgentActionResult:
    approved: bool
    enforcement: EnforcementLevel = EnforcementLevel.LOG
    reason: Optional[str] = None
    reason_code: Optional[ReasonCode] = None
    rules_checked: List[str] = field(default_factory=list)
    risk_score: int = 0
    recommendations: List[str] = field(default_factory=list)
    lockdown_triggered: bool = False
