"""
Testes das tasks fire-and-forget.
"""
import asyncio
from unittest.mock import patch

import pytest

from app.core.tasks import (
    aguardar_pendentes,
    get_task_failure_counts,
    reset_task_failure_counts,
    safe_create_task,
)


@pytest.fixture(autouse=True)
def contadores_zerados():
    reset_task_failure_counts()
    yield
    reset_task_failure_counts()


async def _notificacao_ok():
    return True


async def _slack_fora():
    raise ConnectionError("Slack fora")


class TestSafeCreateTask:

    @pytest.mark.asyncio
    async def test_devolve_resultado(self):
        assert await safe_create_task(_notificacao_ok(), name="notificar_lockdown") is True
        assert get_task_failure_counts() == {}

    @pytest.mark.asyncio
    async def test_falha_nao_propaga_e_conta(self):
        """Notificação com erro não pode derrubar quem disparou."""
        resultados = [await safe_create_task(_slack_fora(), name="notificar_lockdown") for _ in range(2)]

        assert resultados == [None, None]
        assert get_task_failure_counts() == {"notificar_lockdown": 2}

    @pytest.mark.asyncio
    async def test_loga_com_contexto(self):
        with patch("app.core.tasks.logger") as mock_logger:
            await safe_create_task(_slack_fora(), name="notificar_emergency_stop")

        extra = mock_logger.error.call_args.kwargs["extra"]
        assert extra["task_name"] == "notificar_emergency_stop"
        assert extra["error_type"] == "ConnectionError"
        assert extra["total_failures"] == 1

    @pytest.mark.asyncio
    async def test_nome_padrao_e_o_da_coroutine(self):
        task = safe_create_task(_notificacao_ok())
        await task

        assert task.get_name().endswith("_notificacao_ok")

    @pytest.mark.asyncio
    async def test_cancelamento_propaga_sem_contar_falha(self):
        task = safe_create_task(asyncio.sleep(10), name="lenta")
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert get_task_failure_counts() == {}


class TestAguardarPendentes:

    @pytest.mark.asyncio
    async def test_sem_pendentes(self):
        assert await aguardar_pendentes() == 0

    @pytest.mark.asyncio
    async def test_espera_as_rapidas(self):
        task = safe_create_task(_notificacao_ok(), name="rapida")

        assert await aguardar_pendentes(timeout=1) == 0
        assert task.done()

    @pytest.mark.asyncio
    async def test_cancela_as_atrasadas(self):
        task = safe_create_task(asyncio.sleep(10), name="travada")

        assert await aguardar_pendentes(timeout=0.05) == 1

        with pytest.raises(asyncio.CancelledError):
            await task
