"""
Emergency stop (kill switch de processo).

Duas fontes, qualquer uma ativa bloqueia TODO outbound:
- settings.EMERGENCY_STOP_FORCED (não depende do banco)
- business_profile.emergency_stop_active via RPC is_emergency_stop_active()

Leitura é FAIL-SAFE: erro ou timeout = emergency stop ativo.
"""
import asyncio
import logging
from typing import Optional

from app.core.config import settings
from app.core.exceptions import DatabaseError
from app.core.tasks import safe_create_task
from app.core.timezone import iso_utc
from app.services.slack import notificar_emergency_stop
from app.services.supabase import supabase, executar_com_timeout

from .audit import write_audit
from .types import ActorType, AuditEntry

logger = logging.getLogger(__name__)

TABLE = "business_profile"
RPC_NAME = "is_emergency_stop_active"


async def is_emergency_stop_active() -> bool:
    """
    Verifica se o emergency stop está ativo.

    Returns:
        True se ativo OU se a leitura falhou (fail-safe)
    """
    if settings.EMERGENCY_STOP_FORCED:
        return True

    try:
        response = await executar_com_timeout(supabase.rpc(RPC_NAME, {}).execute)
    except (Exception, asyncio.CancelledError) as e:
        logger.error(f"[compliance] Erro ao ler emergency stop, tratando como ATIVO: {e}")
        return True

    return bool(response.data)


async def obter_status_emergency_stop() -> dict:
    """
    Status detalhado para dashboard/API.

    Returns:
        Dict com active, forced, reason, since
    """
    status = {
        "active": settings.EMERGENCY_STOP_FORCED,
        "forced": settings.EMERGENCY_STOP_FORCED,
        "reason": None,
        "since": None,
    }

    try:
        response = await executar_com_timeout(
            supabase.table(TABLE)
            .select("emergency_stop_active, emergency_stop_reason, emergency_stop_at")
            .limit(1)
            .execute
        )
    except (Exception, asyncio.CancelledError) as e:
        logger.error(f"[compliance] Erro ao ler status do emergency stop: {e}")
        status.update({"active": True, "reason": "status unreadable (fail-safe)"})
        return status

    if response.data:
        row = response.data[0]
        status["active"] = status["active"] or bool(row.get("emergency_stop_active"))
        status["reason"] = row.get("emergency_stop_reason")
        status["since"] = row.get("emergency_stop_at")

    return status


async def _atualizar(valores: dict) -> None:
    try:
        atual = supabase.table(TABLE).select("id").limit(1).execute()
        if not atual.data:
            raise DatabaseError("business_profile não encontrado")
        supabase.table(TABLE).update(valores).eq("id", atual.data[0]["id"]).execute()
    except DatabaseError:
        raise
    except Exception as e:
        raise DatabaseError("Falha ao atualizar emergency stop", original_error=e)


async def ativar_emergency_stop(motivo: str, usuario: Optional[str] = None) -> dict:
    """
    Ativa o emergency stop (bloqueia todo outbound).

    Args:
        motivo: Motivo da ativação
        usuario: Quem ativou

    Raises:
        DatabaseError: Se não conseguiu persistir
    """
    usuario = usuario or "system"
    await _atualizar({
        "emergency_stop_active": True,
        "emergency_stop_reason": motivo,
        "emergency_stop_at": iso_utc(),
    })

    logger.critical(f"[compliance] EMERGENCY STOP ATIVADO por {usuario}: {motivo}")

    await write_audit(AuditEntry(
        actor_type=ActorType.USER,
        actor_id=usuario,
        action_type="emergency_stop_activated",
        entity_type="business_profile",
        entity_id="emergency_stop",
        payload={"reason": motivo},
        override=True,
    ))
    safe_create_task(notificar_emergency_stop(True, motivo, usuario), name="notificar_emergency_stop")

    return await obter_status_emergency_stop()


async def desativar_emergency_stop(usuario: Optional[str] = None, motivo: str = "") -> dict:
    """
    Desativa o emergency stop.

    Raises:
        DatabaseError: Se não conseguiu persistir
    """
    usuario = usuario or "system"
    await _atualizar({
        "emergency_stop_active": False,
        "emergency_stop_reason": None,
        "emergency_stop_at": None,
    })

    logger.warning(f"[compliance] Emergency stop desativado por {usuario}")

    await write_audit(AuditEntry(
        actor_type=ActorType.USER,
        actor_id=usuario,
        action_type="emergency_stop_deactivated",
        entity_type="business_profile",
        entity_id="emergency_stop",
        payload={"reason": motivo},
        override=True,
    ))
    safe_create_task(notificar_emergency_stop(False, motivo, usuario), name="notificar_emergency_stop")

    return await obter_status_emergency_stop()
