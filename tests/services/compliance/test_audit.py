"""
Testes do audit trail.
"""
import pytest
from datetime import timedelta

from app.core.exceptions import DatabaseError
from app.core.timezone import agora_utc
from app.services.compliance.audit import buscar_audit, contar_eventos, somar_payload, write_audit
from app.services.compliance.types import ActorType, AuditEntry, ReasonCode


class TestWriteAudit:

    @pytest.mark.asyncio
    async def test_registra_com_ator_derivado(self, fake_db):
        await write_audit(AuditEntry(
            actor_type=ActorType.MODULE,
            actor_module="messaging",
            action_type="outbound_sent",
            entity_type="contact",
            entity_id="c-1",
            payload={"reason": ReasonCode.SUPPRESSED, "quando": agora_utc()},
        ))

        entrada = fake_db.linhas("audit_log")[0]
        assert entrada["actor"] == "messaging"
        assert entrada["actor_type"] == "module"
        assert entrada["payload"]["reason"] == "SUPPRESSED"
        assert isinstance(entrada["payload"]["quando"], str)

    @pytest.mark.asyncio
    async def test_actor_id_tem_precedencia(self, fake_db):
        await write_audit(AuditEntry(
            actor_type=ActorType.USER,
            actor_id="ana",
            actor_module="dashboard",
            action_type="lockdown_resolved",
            entity_type="security_lockdown",
            entity_id="l-1",
        ))

        assert fake_db.linhas("audit_log")[0]["actor"] == "ana"

    def test_sem_ator_e_system(self):
        entry = AuditEntry(actor_type=ActorType.SYSTEM, action_type="x", entity_type="y", entity_id="z")
        assert entry.actor == "system"

    @pytest.mark.asyncio
    async def test_falha_e_engolida(self, fake_db):
        fake_db.falhar("audit_log")

        await write_audit(AuditEntry(
            actor_type=ActorType.SYSTEM, action_type="x", entity_type="y", entity_id="z",
        ))

        assert fake_db.tabela("audit_log") == []


class TestConsultas:

    @pytest.mark.asyncio
    async def test_contar_eventos_filtra(self, fake_db):
        fake_db.seed_audit("scraper", "scrape", n=3, entity_type="url")
        fake_db.seed_audit("mailer", "outreach", n=2, entity_type="email")
        fake_db.seed_audit("scraper", "scrape", n=4, quando=agora_utc() - timedelta(hours=2))

        desde = agora_utc() - timedelta(minutes=10)

        assert await contar_eventos(desde) == 5
        assert await contar_eventos(desde, actor="scraper") == 3
        assert await contar_eventos(desde, action_type="outreach", entity_type="email") == 2

    @pytest.mark.asyncio
    async def test_contar_eventos_erro_propaga(self, fake_db):
        fake_db.falhar("audit_log")

        with pytest.raises(DatabaseError):
            await contar_eventos(agora_utc())

    @pytest.mark.asyncio
    async def test_somar_payload_ignora_nao_numericos(self, fake_db):
        fake_db.seed_audit("ads", "ad_spend", payload={"amount": 10.5})
        fake_db.seed_audit("ads", "ad_spend", payload={"amount": None})
        fake_db.seed_audit("ads", "ad_spend", payload={"amount": "abc"})

        total = await somar_payload("amount", agora_utc() - timedelta(hours=1), action_type="ad_spend")

        assert total == 10.5

    @pytest.mark.asyncio
    async def test_buscar_audit_mais_recentes_primeiro(self, fake_db):
        fake_db.seed_audit("a", "x", quando=agora_utc() - timedelta(hours=2))
        fake_db.seed_audit("b", "x", quando=agora_utc() - timedelta(hours=1))
        fake_db.seed_audit("c", "x", quando=agora_utc() - timedelta(hours=48))

        entradas = await buscar_audit(action_type="x", horas=24)

        assert [e["actor"] for e in entradas] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_buscar_audit_erro_retorna_vazio(self, fake_db):
        fake_db.falhar("audit_log")

        assert await buscar_audit() == []
