"""
Health checks da API do gate.

Readiness reflete a capacidade de decidir: sem Supabase toda verificação
cai no fail-safe (bloqueio), então a instância não deve receber tráfego.
Sem Redis só o cache do catálogo de políticas é perdido.
"""
import logging

from fastapi import APIRouter, Response

from app.core.config import settings
from app.core.tasks import get_task_failure_counts
from app.core.timezone import iso_utc
from app.services.circuit_breaker import obter_status_circuits
from app.services.compliance import is_emergency_stop_active
from app.services.redis import verificar_conexao_redis
from app.services.supabase import executar_com_timeout, supabase

router = APIRouter()
logger = logging.getLogger(__name__)

SERVICE = "compliance-gate"


async def _banco_ok() -> bool:
    try:
        await executar_com_timeout(supabase.table("lockdown_rules").select("id").limit(1).execute)
    except Exception as e:
        logger.error(f"[health] Supabase indisponível: {e}")
        return False
    return True


@router.get("/health")
async def health_check():
    """Liveness: o processo responde."""
    return {
        "status": "healthy",
        "service": SERVICE,
        "environment": settings.ENVIRONMENT,
        "timestamp": iso_utc(),
    }


@router.get("/health/ready")
async def readiness_check(response: Response):
    database_ok = await _banco_ok()
    redis_ok = await verificar_conexao_redis()

    if not database_ok:
        response.status_code = 503
        status = "unhealthy"
    else:
        status = "ready" if redis_ok else "degraded"

    return {
        "status": status,
        "checks": {
            "database": "ok" if database_ok else "error",
            "redis": "ok" if redis_ok else "error",
        },
        # Sem banco o gate já se comporta como parado
        "emergency_stop_active": await is_emergency_stop_active() if database_ok else True,
        "background_failures": get_task_failure_counts(),
        "timestamp": iso_utc(),
    }


@router.get("/health/circuits")
async def circuit_status():
    return {"circuits": obter_status_circuits(), "timestamp": iso_utc()}
