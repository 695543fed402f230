"""
Audit trail do gate de compliance.

Registro durável e best-effort de toda decisão e resultado.
Gravação de auditoria NUNCA interrompe o caminho principal (decisão/envio).

As mesmas linhas alimentam as contagens de lockdown e rate limit
de ações automatizadas (actor + action_type + created_at).
"""
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from app.core.config import ComplianceConfig
from app.core.exceptions import DatabaseError
from app.core.timezone import agora_utc, iso_utc
from app.services.supabase import supabase, executar_com_timeout

from .types import AuditEntry

logger = logging.getLogger(__name__)

TABLE = "audit_log"


def _sanitizar_payload(payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Garante payload serializável em JSON (enums, datetimes, etc)."""
    if not payload:
        return {}
    return json.loads(json.dumps(payload, default=_serializar))


def _serializar(valor: Any) -> Any:
    if hasattr(valor, "value"):
        return valor.value
    if isinstance(valor, datetime):
        return valor.isoformat()
    return str(valor)


async def write_audit(entry: AuditEntry) -> None:
    """
    Registra entrada no audit trail.

    Falhas são logadas e engolidas.

    Args:
        entry: Entrada a registrar
    """
    try:
        registro = {
            "actor_type": entry.actor_type.value,
            "actor": entry.actor,
            "actor_module": entry.actor_module,
            "action_type": entry.action_type,
            "entity_type": entry.entity_type,
            "entity_id": entry.entity_id,
            "payload": _sanitizar_payload(entry.payload),
            "override": entry.override,
        }

        await executar_com_timeout(lambda: supabase.table(TABLE).insert(registro).execute())

        logger.debug(f"[audit] {entry.action_type} em {entry.entity_type}:{entry.entity_id} por {entry.actor}")

    except Exception as e:
        logger.error(
            f"[audit] FALHA ao registrar: {entry.action_type} - {e}",
            extra={"action_type": entry.action_type, "entity_id": entry.entity_id},
        )


async def contar_eventos(
    desde: datetime,
    actor: Optional[str] = None,
    action_type: Optional[str] = None,
    entity_type: Optional[str] = None,
) -> int:
    """
    Conta entradas do audit trail desde um instante.

    Args:
        desde: Início da janela (inclusivo)
        actor: Filtrar por ator (None = qualquer)
        action_type: Filtrar por tipo de ação (None = qualquer)
        entity_type: Filtrar por tipo de entidade (None = qualquer)

    Raises:
        DatabaseError: Se a contagem falhar (chamador decide a política)
    """
    query = (
        supabase.table(TABLE)
        .select("id", count="exact")
        .gte("created_at", iso_utc(desde))
    )
    if actor:
        query = query.eq("actor", actor)
    if action_type:
        query = query.eq("action_type", action_type)
    if entity_type:
        query = query.eq("entity_type", entity_type)

    try:
        response = await executar_com_timeout(query.execute)
    except Exception as e:
        raise DatabaseError("Falha ao contar audit trail", {"actor": actor, "action_type": action_type}, e)

    if response.count is not None:
        return response.count
    return len(response.data or [])


async def somar_payload(
    campo: str,
    desde: datetime,
    action_type: str,
    actor: Optional[str] = None,
) -> float:
    """
    Soma um campo numérico do payload (ex: amount de ad_spend).

    Raises:
        DatabaseError: Se a leitura falhar
    """
    query = (
        supabase.table(TABLE)
        .select("payload")
        .eq("action_type", action_type)
        .gte("created_at", iso_utc(desde))
    )
    if actor:
        query = query.eq("actor", actor)

    try:
        response = await executar_com_timeout(query.execute)
    except Exception as e:
        raise DatabaseError("Falha ao somar payload do audit trail", {"campo": campo}, e)

    total = 0.0
    for row in response.data or []:
        valor = (row.get("payload") or {}).get(campo)
        if isinstance(valor, (int, float)):
            total += valor
    return total


async def buscar_audit(
    actor: Optional[str] = None,
    action_type: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    horas: int = 24,
    limite: int = ComplianceConfig.AUDIT_QUERY_LIMIT,
) -> List[Dict]:
    """
    Busca registros no audit trail (mais recentes primeiro).

    Returns:
        Lista de registros (vazia em caso de erro)
    """
    try:
        inicio = iso_utc(agora_utc() - timedelta(hours=horas))

        query = supabase.table(TABLE).select("*").gte(
            "created_at", inicio
        ).order("created_at", desc=True).limit(limite)

        if actor:
            query = query.eq("actor", actor)
        if action_type:
            query = query.eq("action_type", action_type)
        if entity_type:
            query = query.eq("entity_type", entity_type)
        if entity_id:
            query = query.eq("entity_id", entity_id)

        result = query.execute()
        return result.data or []

    except Exception as e:
        logger.error(f"[audit] Erro ao buscar audit trail: {e}")
        return []
