"""
Workers do gate.

    python -m app.workers scheduler   # loop dos jobs /jobs/*
    python -m app.workers monitor     # uma rodada do lockdown monitor, direto no banco
"""
import asyncio
import logging
import sys

from app.core.logging import setup_logging

logger = logging.getLogger(__name__)


async def _monitor_uma_vez():
    from app.services.compliance import executar_monitor

    resumo = await executar_monitor()
    logger.info(f"[workers] Lockdown monitor: {resumo}")


async def _scheduler():
    from app.workers.scheduler import scheduler_loop

    await scheduler_loop()


WORKERS = {
    "scheduler": _scheduler,
    "monitor": _monitor_uma_vez,
}


def main(argv=None) -> int:
    setup_logging()
    args = sys.argv[1:] if argv is None else argv

    worker = WORKERS.get(args[0]) if args else None
    if worker is None:
        logger.error(f"[workers] Uso: python -m app.workers {{{'|'.join(WORKERS)}}}")
        return 1

    asyncio.run(worker())
    return 0


if __name__ == "__main__":
    sys.exit(main())
