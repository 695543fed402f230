"""
Testes do emergency stop.
"""
import pytest
from unittest.mock import patch

from app.core.exceptions import DatabaseError
from app.services.compliance import emergency
from app.services.compliance.emergency import (
    ativar_emergency_stop,
    desativar_emergency_stop,
    is_emergency_stop_active,
    obter_status_emergency_stop,
)


class TestIsEmergencyStopActive:

    @pytest.mark.asyncio
    async def test_inativo(self, fake_db):
        assert await is_emergency_stop_active() is False

    @pytest.mark.asyncio
    async def test_ativo_no_banco(self, fake_db):
        fake_db.tabela("business_profile")[0]["emergency_stop_active"] = True

        assert await is_emergency_stop_active() is True

    @pytest.mark.asyncio
    async def test_forcado_por_settings_nao_consulta_banco(self, fake_db):
        fake_db.falhar_tudo()

        with patch.object(emergency.settings, "EMERGENCY_STOP_FORCED", True):
            assert await is_emergency_stop_active() is True

    @pytest.mark.asyncio
    async def test_erro_de_leitura_e_ativo(self, fake_db):
        """Fail-safe: RPC falhou = emergency stop ativo."""
        fake_db.falhar("rpc:is_emergency_stop_active")

        assert await is_emergency_stop_active() is True


class TestStatus:

    @pytest.mark.asyncio
    async def test_status_detalhado(self, fake_db):
        fake_db.tabela("business_profile")[0].update({
            "emergency_stop_active": True,
            "emergency_stop_reason": "incidente",
            "emergency_stop_at": "2026-03-10T10:00:00+00:00",
        })

        status = await obter_status_emergency_stop()

        assert status == {
            "active": True,
            "forced": False,
            "reason": "incidente",
            "since": "2026-03-10T10:00:00+00:00",
        }

    @pytest.mark.asyncio
    async def test_status_com_erro(self, fake_db):
        fake_db.falhar("business_profile")

        status = await obter_status_emergency_stop()

        assert status["active"] is True


class TestAtivacao:

    @pytest.mark.asyncio
    async def test_ativar_e_desativar(self, fake_db, sem_slack):
        status = await ativar_emergency_stop("vazamento de lista", "ana")

        assert status["active"] is True
        assert status["reason"] == "vazamento de lista"
        assert await is_emergency_stop_active() is True

        status = await desativar_emergency_stop("ana", "resolvido")

        assert status["active"] is False
        assert await is_emergency_stop_active() is False

    @pytest.mark.asyncio
    async def test_ativacao_auditada(self, fake_db):
        await ativar_emergency_stop("teste", "ana")

        entrada = fake_db.linhas("audit_log", action_type="emergency_stop_activated")[0]
        assert entrada["actor"] == "ana"
        assert entrada["override"] is True
        assert entrada["payload"] == {"reason": "teste"}

    @pytest.mark.asyncio
    async def test_sem_business_profile(self, fake_db):
        fake_db.tabelas["business_profile"] = []

        with pytest.raises(DatabaseError):
            await ativar_emergency_stop("teste")

    @pytest.mark.asyncio
    async def test_erro_de_escrita_vira_database_error(self, fake_db):
        fake_db.falhar("business_profile")

        with pytest.raises(DatabaseError):
            await ativar_emergency_stop("teste")
