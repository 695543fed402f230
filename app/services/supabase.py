"""
Acesso ao Supabase.

O cliente supabase-py é síncrono: toda chamada do gate passa por
executar_com_timeout, que roda a query numa thread do executor sob o
circuit breaker do banco.
"""
import asyncio
import logging
from functools import lru_cache
from typing import Any, Callable, Optional

from supabase import Client, create_client

from app.core.config import settings
from app.core.exceptions import ConfigurationError
from app.services.circuit_breaker import circuit_supabase

logger = logging.getLogger(__name__)


@lru_cache()
def get_supabase_client() -> Client:
    """Cliente com service key (RLS não se aplica às tabelas do gate)."""
    faltando = [nome for nome in ("SUPABASE_URL", "SUPABASE_SERVICE_KEY") if not getattr(settings, nome)]
    if faltando:
        raise ConfigurationError(f"Variáveis obrigatórias ausentes: {', '.join(faltando)}")
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY)


supabase = get_supabase_client()


async def executar_com_timeout(func: Callable[[], Any], timeout: Optional[float] = None) -> Any:
    """
    Executa func() fora do event loop.

    Raises:
        CircuitOpenError: banco marcado como indisponível
        asyncio.TimeoutError: passou de timeout (padrão SAFETY_READ_TIMEOUT_SECONDS)
    """
    async def _em_thread():
        return await asyncio.get_running_loop().run_in_executor(None, func)

    return await circuit_supabase.executar(
        _em_thread,
        timeout=timeout or settings.SAFETY_READ_TIMEOUT_SECONDS,
    )
