"""
Envelope comum dos endpoints /jobs/*.
"""

import functools
import logging
import time

from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


def job_endpoint(name: str):
    """
    Acrescenta `job` e `duration_ms` ao resumo devolvido pelo job.

    Exception no job responde 500 {"status": "error"}; o scheduler só
    loga, e a próxima rodada do cron é a retentativa.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> JSONResponse:
            inicio = time.monotonic()
            try:
                resumo = await func(*args, **kwargs)
            except Exception as e:
                logger.error(f"[jobs] {name} falhou: {e}", exc_info=True)
                return JSONResponse({"status": "error", "job": name, "message": str(e)}, status_code=500)

            duracao_ms = int((time.monotonic() - inicio) * 1000)
            return JSONResponse({**resumo, "job": name, "duration_ms": duracao_ms})

        return wrapper

    return decorator
