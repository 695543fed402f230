"""
Ledger de touches outbound.

- Registra toda tentativa (sent/blocked/failed) com idempotency key
- Conta touches "sent" em janela deslizante para os frequency caps

Idempotency key = contato + canal + template (ou "direct") + bucket de 60s.
Retry do mesmo envio lógico dentro do bucket colide na unique constraint
e é tratado como sucesso, sem contar duas vezes.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from app.core.config import ComplianceConfig
from app.core.timezone import agora_utc, iso_utc, para_utc
from app.services.supabase import supabase, executar_com_timeout

from .types import (
    Channel,
    OutboundTouchParams,
    TouchRecordResult,
    TouchStatus,
    parse_channel,
    require_id,
)

logger = logging.getLogger(__name__)

TABLE = "outbound_touch_log"


def generate_idempotency_key(
    contact_id: str,
    channel: Channel,
    template_id: Optional[str] = None,
    at: Optional[datetime] = None,
) -> str:
    """
    Gera idempotency key determinística.

    Args:
        contact_id: ID do contato
        channel: Canal
        template_id: Template usado (None = "direct")
        at: Instante da tentativa (padrão: agora)

    Returns:
        "{contact}:{channel}:{template|direct}:{minuto_epoch}"
    """
    at = para_utc(at) if at else agora_utc()
    bucket = int(at.timestamp() // ComplianceConfig.IDEMPOTENCY_BUCKET_SECONDS)
    canal = parse_channel(channel).value
    return f"{contact_id}:{canal}:{template_id or 'direct'}:{bucket}"


def is_duplicate_error(e: Exception) -> bool:
    """Violação de unique constraint (Postgres 23505)."""
    if getattr(e, "code", None) == "23505":
        return True
    error_str = str(e).lower()
    return "23505" in error_str or "duplicate key" in error_str or "unique constraint" in error_str


async def record_outbound_touch(
    params: OutboundTouchParams,
    at: Optional[datetime] = None,
) -> TouchRecordResult:
    """
    Registra tentativa de outbound.

    Duplicata (mesma idempotency key) é sucesso.

    Args:
        params: Dados da tentativa
        at: Instante da tentativa (padrão: agora)

    Returns:
        TouchRecordResult

    Raises:
        ValidationError: Se contact_id ausente ou canal inválido
    """
    contact_id = require_id(params.contact_id, "contact_id")
    channel = parse_channel(params.channel)
    status = TouchStatus(params.status)

    idempotency_key = generate_idempotency_key(contact_id, channel, params.template_id, at)

    registro = {
        "contact_id": contact_id,
        "channel": channel.value,
        "direction": "outbound",
        "message_id": params.message_id,
        "call_id": params.call_id,
        "template_id": params.template_id,
        "idempotency_key": idempotency_key,
        "status": status.value,
        "block_reason": params.block_reason,
    }

    # Duplicata é resolvida dentro do executor para não contar como
    # falha no circuit breaker
    def _insert() -> bool:
        try:
            supabase.table(TABLE).insert(registro).execute()
            return False
        except Exception as e:
            if is_duplicate_error(e):
                return True
            raise

    try:
        duplicate = await executar_com_timeout(_insert)
    except Exception as e:
        logger.error(f"[compliance] Erro ao registrar touch {status.value} para {contact_id}: {e}")
        return TouchRecordResult(success=False, error=str(e), idempotency_key=idempotency_key)

    if duplicate:
        logger.info(
            f"[compliance] Touch duplicado (idempotência): {idempotency_key}",
            extra={"idempotency_key": idempotency_key, "contact_id": contact_id},
        )
        return TouchRecordResult(success=True, duplicate=True, idempotency_key=idempotency_key)

    logger.debug(f"[compliance] Touch {status.value} registrado: {idempotency_key}")
    return TouchRecordResult(success=True, idempotency_key=idempotency_key)


async def get_touch_count(
    contact_id: str,
    channel: Optional[Channel] = None,
    hours: int = 24,
) -> int:
    """
    Conta touches "sent" na janela deslizante.

    Args:
        contact_id: ID do contato
        channel: Canal (None = todos)
        hours: Tamanho da janela em horas, relativa a agora

    Returns:
        Contagem; TOUCH_COUNT_FAIL_SAFE se a leitura falhar
    """
    cutoff = iso_utc(agora_utc() - timedelta(hours=hours))

    query = (
        supabase.table(TABLE)
        .select("id", count="exact")
        .eq("contact_id", contact_id)
        .eq("status", TouchStatus.SENT.value)
        .gte("created_at", cutoff)
    )
    if channel:
        query = query.eq("channel", parse_channel(channel).value)

    try:
        response = await executar_com_timeout(query.execute)
    except (Exception, asyncio.CancelledError) as e:
        logger.error(
            f"[compliance] Erro na contagem de touches, usando fail-safe: {e}",
            extra={"contact_id": contact_id},
        )
        return ComplianceConfig.TOUCH_COUNT_FAIL_SAFE

    if response.count is not None:
        return response.count
    return len(response.data or [])
