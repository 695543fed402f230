"""
Circuit breaker para o banco de dados.

Toda leitura crítica do gate passa por aqui. Timeout, cancelamento ou
circuito aberto viram exceção, e o chamador converte em bloqueio: com o
Supabase fora, o gate nega tudo sem esperar o timeout de cada leitura.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from app.core.config import settings, ComplianceConfig
from app.core.timezone import iso_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"  # Uma chamada de teste liberada


class CircuitOpenError(Exception):
    """Chamada recusada sem tocar o banco (circuito aberto)."""

    def __init__(self, nome: str, retry_em_segundos: float = 0.0):
        self.nome = nome
        self.retry_em_segundos = retry_em_segundos
        super().__init__(f"Circuit {nome} aberto (nova tentativa em {retry_em_segundos:.0f}s)")


@dataclass
class CircuitBreaker:
    """
    Estados:
    - CLOSED: chamadas passam
    - OPEN: falhas consecutivas demais, chamadas recusadas
    - HALF_OPEN: passado o tempo de reset, a próxima chamada decide
    """
    nome: str
    falhas_para_abrir: int = 5
    timeout_segundos: float = 5.0
    tempo_reset_segundos: float = 30.0
    relogio: Callable[[], float] = time.monotonic

    estado: CircuitState = field(default=CircuitState.CLOSED)
    falhas_consecutivas: int = 0
    chamadas_recusadas: int = 0
    aberto_em: Optional[float] = None
    ultima_falha: Optional[str] = None
    ultimo_erro: Optional[str] = None

    def _segundos_para_retry(self) -> float:
        if self.aberto_em is None:
            return 0.0
        return max(0.0, self.tempo_reset_segundos - (self.relogio() - self.aberto_em))

    def _verificar_transicao_half_open(self):
        if self.estado == CircuitState.OPEN and self._segundos_para_retry() == 0:
            logger.info(f"[circuit] {self.nome}: OPEN -> HALF_OPEN")
            self.estado = CircuitState.HALF_OPEN

    def _abrir(self, motivo: str):
        self.estado = CircuitState.OPEN
        self.aberto_em = self.relogio()
        logger.error(f"[circuit] {self.nome}: -> OPEN ({motivo}); leituras de segurança vão bloquear")

    def _registrar_sucesso(self):
        self.falhas_consecutivas = 0
        if self.estado == CircuitState.HALF_OPEN:
            logger.info(f"[circuit] {self.nome}: HALF_OPEN -> CLOSED")
        self.estado = CircuitState.CLOSED
        self.aberto_em = None

    def _registrar_falha(self, erro: BaseException):
        self.falhas_consecutivas += 1
        self.ultima_falha = iso_utc()
        self.ultimo_erro = f"{type(erro).__name__}: {erro}"[:200]

        logger.warning(
            f"[circuit] {self.nome}: falha {self.falhas_consecutivas}/{self.falhas_para_abrir} "
            f"({self.ultimo_erro})"
        )

        if self.estado == CircuitState.HALF_OPEN:
            self._abrir("falhou na chamada de teste")
        elif self.falhas_consecutivas >= self.falhas_para_abrir:
            self._abrir(f"{self.falhas_consecutivas} falhas consecutivas")

    async def executar(
        self,
        func: Callable[[], Awaitable[T]],
        timeout: Optional[float] = None,
    ) -> T:
        """
        Executa func sob o circuito, com timeout.

        Raises:
            CircuitOpenError: circuito aberto (func não é chamada)
            asyncio.TimeoutError: estourou o timeout (conta como falha)
        """
        self._verificar_transicao_half_open()

        if self.estado == CircuitState.OPEN:
            self.chamadas_recusadas += 1
            raise CircuitOpenError(self.nome, self._segundos_para_retry())

        try:
            resultado = await asyncio.wait_for(func(), timeout=timeout or self.timeout_segundos)
        except (Exception, asyncio.CancelledError) as e:
            self._registrar_falha(e)
            raise

        self._registrar_sucesso()
        return resultado

    def status(self) -> dict:
        return {
            "nome": self.nome,
            "estado": self.estado.value,
            "falhas_consecutivas": self.falhas_consecutivas,
            "chamadas_recusadas": self.chamadas_recusadas,
            "retry_em_segundos": round(self._segundos_para_retry(), 1),
            "ultima_falha": self.ultima_falha,
            "ultimo_erro": self.ultimo_erro,
        }

    def reset(self):
        """Fecha o circuito e zera contadores."""
        self.estado = CircuitState.CLOSED
        self.falhas_consecutivas = 0
        self.chamadas_recusadas = 0
        self.aberto_em = None
        self.ultima_falha = None
        self.ultimo_erro = None


circuit_supabase = CircuitBreaker(
    nome="supabase",
    falhas_para_abrir=ComplianceConfig.SUPABASE_FALHAS_PARA_ABRIR,
    timeout_segundos=settings.SAFETY_READ_TIMEOUT_SECONDS,
    tempo_reset_segundos=ComplianceConfig.SUPABASE_TEMPO_RESET_SEGUNDOS,
)


def obter_status_circuits() -> dict:
    """Status de todos os circuits (para /health/circuits)."""
    return {
        "supabase": circuit_supabase.status(),
    }
