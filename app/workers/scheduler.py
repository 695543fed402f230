"""
Scheduler dos jobs do gate.

Cada minuto (UTC) avalia os crons e chama o endpoint /jobs/* correspondente.
Os jobs são idempotentes: rodar duas vezes no mesmo minuto não muda o estado.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import NamedTuple, Optional

import httpx

from app.core.config import settings
from app.core.timezone import agora_utc

logger = logging.getLogger(__name__)

TIMEOUT_JOB_SEGUNDOS = 120.0
ESPERA_APOS_ERRO_SEGUNDOS = 10


class CronExpr(NamedTuple):
    """minuto hora dia mês dia-da-semana (0 = domingo)."""

    minute: str
    hour: str
    day: str
    month: str
    weekday: str


@dataclass(frozen=True)
class JobAgendado:
    nome: str
    endpoint: str
    cron: str


JOBS = (
    # Expira lockdowns vencidos e ativa os disparados por métrica
    JobAgendado("monitor_lockdowns", "/jobs/monitor-lockdowns", "* * * * *"),
    # Recarrega o catálogo de políticas por canal
    JobAgendado("refresh_policy", "/jobs/refresh-policy", "*/15 * * * *"),
)


def parse_cron(expressao: str) -> CronExpr:
    campos = expressao.split()
    if len(campos) != len(CronExpr._fields):
        raise ValueError(f"Cron inválido: {expressao!r}")
    return CronExpr(*campos)


def matches_cron_field(campo: str, valor: int) -> bool:
    """
    Aceita *, */N, listas (1,3,5), intervalos (9-17) e valor exato.
    Listas podem combinar os demais formatos ("0-5,*/20").
    """
    if "," in campo:
        return any(matches_cron_field(parte, valor) for parte in campo.split(","))
    if campo == "*":
        return True
    if campo.startswith("*/"):
        return valor % int(campo[2:]) == 0
    if "-" in campo:
        inicio, fim = (int(p) for p in campo.split("-", 1))
        return inicio <= valor <= fim
    return int(campo) == valor


def should_run(expressao: str, agora: datetime) -> bool:
    try:
        cron = parse_cron(expressao)
    except ValueError as e:
        logger.error(f"[scheduler] {e}")
        return False

    # weekday() do Python: segunda=0; no cron: domingo=0
    valores = CronExpr(
        minute=agora.minute,
        hour=agora.hour,
        day=agora.day,
        month=agora.month,
        weekday=(agora.weekday() + 1) % 7,
    )
    return all(matches_cron_field(campo, valor) for campo, valor in zip(cron, valores))


def jobs_do_minuto(agora: datetime, jobs: tuple = JOBS) -> list[JobAgendado]:
    return [job for job in jobs if should_run(job.cron, agora)]


async def execute_job(job: JobAgendado, base_url: Optional[str] = None) -> bool:
    """
    POST no endpoint do job.

    Returns:
        True quando a API responde 200. Erro HTTP ou de rede é logado
        e devolve False; o próximo minuto tenta de novo.
    """
    url = f"{base_url or settings.API_BASE_URL}{job.endpoint}"

    try:
        async with httpx.AsyncClient(timeout=TIMEOUT_JOB_SEGUNDOS) as client:
            response = await client.post(url)
    except httpx.TimeoutException:
        logger.error(f"[scheduler] Timeout em {job.nome} ({url})")
        return False
    except httpx.HTTPError as e:
        logger.error(f"[scheduler] {job.nome} sem resposta: {e}")
        return False

    if response.status_code != 200:
        logger.error(f"[scheduler] {job.nome} respondeu {response.status_code}: {response.text[:200]}")
        return False

    logger.debug(f"[scheduler] {job.nome} ok")
    return True


async def scheduler_loop():
    logger.info(
        f"[scheduler] Iniciado com {len(JOBS)} jobs, API em {settings.API_BASE_URL}"
    )
    ultimo_minuto = None

    while True:
        try:
            agora = agora_utc().replace(second=0, microsecond=0)
            if agora != ultimo_minuto:
                ultimo_minuto = agora
                for job in jobs_do_minuto(agora):
                    await execute_job(job)
            await asyncio.sleep(1)
        except Exception as e:
            logger.error(f"[scheduler] Erro no loop: {e}", exc_info=True)
            await asyncio.sleep(ESPERA_APOS_ERRO_SEGUNDOS)
