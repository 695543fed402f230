"""
Jobs do gate de compliance.
"""

import logging

from fastapi import APIRouter

from app.services.compliance import executar_monitor, invalidar_cache_politica

from ._helpers import job_endpoint

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/monitor-lockdowns")
@job_endpoint("monitor-lockdowns")
async def job_monitor_lockdowns():
    """
    Varre as lockdown rules ativas e cria lockdowns automáticos.

    Schedule: * * * * * (a cada minuto)
    """
    resumo = await executar_monitor()

    if resumo["lockdowns_created"]:
        logger.warning(f"[lockdown] {resumo['lockdowns_created']} lockdown(s) criado(s) pelo monitor")

    return {"status": "ok", **resumo}


@router.post("/refresh-policy")
@job_endpoint("refresh-policy")
async def job_refresh_policy():
    """
    Invalida o cache da política (releitura do catálogo).

    Schedule: */15 * * * *
    """
    await invalidar_cache_politica()
    return {"status": "ok", "message": "Cache de política invalidado"}
