"""
Tasks fire-and-forget.

Notificações (Slack) de lockdown e emergency stop rodam em background:
o gate não espera por elas e uma falha nelas nunca chega a quem decidiu.
"""
import asyncio
import logging
from collections import Counter
from typing import Any, Coroutine, Optional

logger = logging.getLogger(__name__)

_falhas: Counter = Counter()

# Referências fortes: o event loop só guarda referência fraca para tasks
_pendentes: set[asyncio.Task] = set()


async def _executar_isolado(coro: Coroutine, nome: str) -> Any:
    try:
        return await coro
    except asyncio.CancelledError:
        logger.debug(f"[tasks] {nome} cancelada")
        raise
    except Exception as e:
        _falhas[nome] += 1
        logger.error(
            f"[tasks] Falha em background task {nome}: {e}",
            exc_info=True,
            extra={
                "task_name": nome,
                "error_type": type(e).__name__,
                "total_failures": _falhas[nome],
            },
        )
        return None


def safe_create_task(coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
    """
    Agenda coroutine em background; exceção é logada e contada, nunca propagada.

    Uso:
        safe_create_task(notificar_lockdown(lockdown, regra), name="notificar_lockdown")
    """
    nome = name or getattr(coro, "__qualname__", "task")
    task = asyncio.create_task(_executar_isolado(coro, nome), name=nome)
    _pendentes.add(task)
    task.add_done_callback(_pendentes.discard)
    return task


async def aguardar_pendentes(timeout: float = 5.0) -> int:
    """
    Espera as tasks em andamento (shutdown da API).

    Returns:
        Quantas ficaram pendentes e foram canceladas
    """
    loop = asyncio.get_running_loop()
    tasks = {t for t in _pendentes if t.get_loop() is loop and not t.done()}
    if not tasks:
        return 0

    _, atrasadas = await asyncio.wait(tasks, timeout=timeout)
    for task in atrasadas:
        task.cancel()

    if atrasadas:
        logger.warning(f"[tasks] {len(atrasadas)} task(s) canceladas no shutdown")
    return len(atrasadas)


def get_task_failure_counts() -> dict[str, int]:
    """Falhas por nome de task desde o start (ou último reset)."""
    return dict(_falhas)


def reset_task_failure_counts():
    _falhas.clear()
