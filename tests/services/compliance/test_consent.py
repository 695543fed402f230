"""
Testes do ledger de consentimento e supressão.
"""
import pytest

from app.core.exceptions import ValidationError
from app.services.compliance.consent import (
    detectar_palavra_chave,
    has_valid_consent,
    is_contact_suppressed,
    is_do_not_contact,
    processar_palavra_chave,
    reativar_contato,
    registrar_consentimento,
    revogar_consentimento,
    suprimir_contato,
)
from app.services.compliance.types import Channel, ConsentType


class TestSupressao:
    """Supressão por canal e escopo "all"."""

    @pytest.mark.asyncio
    async def test_sem_supressao(self, fake_db):
        assert await is_contact_suppressed("c-1", Channel.SMS) is False

    @pytest.mark.asyncio
    async def test_supressao_no_canal(self, fake_db):
        fake_db.seed("contact_suppression", {"contact_id": "c-1", "channel": "sms"})

        assert await is_contact_suppressed("c-1", Channel.SMS) is True
        assert await is_contact_suppressed("c-1", Channel.EMAIL) is False

    @pytest.mark.asyncio
    async def test_supressao_all_cobre_todos_canais(self, fake_db):
        """Supressão "all" bloqueia sms, email e voz."""
        fake_db.seed("contact_suppression", {"contact_id": "c-1", "channel": "all"})

        for canal in Channel:
            assert await is_contact_suppressed("c-1", canal) is True

    @pytest.mark.asyncio
    async def test_supressao_reativada_nao_conta(self, fake_db):
        fake_db.seed("contact_suppression", {
            "contact_id": "c-1",
            "channel": "sms",
            "reactivated_at": "2026-01-01T00:00:00+00:00",
        })

        assert await is_contact_suppressed("c-1", Channel.SMS) is False

    @pytest.mark.asyncio
    async def test_erro_de_leitura_trata_como_suprimido(self, fake_db):
        """Fail-safe: erro na leitura = suprimido."""
        fake_db.falhar("contact_suppression")

        assert await is_contact_suppressed("c-1", Channel.SMS) is True

    @pytest.mark.asyncio
    async def test_canal_invalido_levanta_validation_error(self, fake_db):
        with pytest.raises(ValidationError):
            await is_contact_suppressed("c-1", "fax")

    @pytest.mark.asyncio
    async def test_suprimir_e_idempotente(self, fake_db):
        primeiro = await suprimir_contato("c-1", "sms", reason="pediu")
        segundo = await suprimir_contato("c-1", "sms", reason="de novo")

        assert primeiro["id"] == segundo["id"]
        assert len(fake_db.linhas("contact_suppression", contact_id="c-1")) == 1

    @pytest.mark.asyncio
    async def test_reativar_encerra_supressao(self, fake_db):
        await suprimir_contato("c-1", "all")

        reativados = await reativar_contato("c-1", "all")

        assert reativados == 1
        assert await is_contact_suppressed("c-1", Channel.EMAIL) is False

    @pytest.mark.asyncio
    async def test_suprimir_sem_contact_id(self, fake_db):
        with pytest.raises(ValidationError):
            await suprimir_contato("", "sms")


class TestConsentimento:
    """Consentimento válido = registro não revogado."""

    @pytest.mark.asyncio
    async def test_sem_registro(self, fake_db):
        assert await has_valid_consent("c-1", Channel.SMS) is False

    @pytest.mark.asyncio
    async def test_registro_valido(self, fake_db):
        await registrar_consentimento("c-1", Channel.SMS, ConsentType.OPT_IN, source="form")

        assert await has_valid_consent("c-1", Channel.SMS) is True
        assert await has_valid_consent("c-1", Channel.EMAIL) is False

    @pytest.mark.asyncio
    async def test_filtra_por_tipo(self, fake_db):
        await registrar_consentimento("c-1", Channel.VOICE, ConsentType.IMPLIED)

        assert await has_valid_consent("c-1", Channel.VOICE, ConsentType.IMPLIED) is True
        assert await has_valid_consent("c-1", Channel.VOICE, ConsentType.EXPRESS_WRITTEN) is False

    @pytest.mark.asyncio
    async def test_revogado_nunca_vale(self, fake_db):
        """Revogação invalida todos os registros anteriores do canal."""
        await registrar_consentimento("c-1", Channel.SMS, ConsentType.OPT_IN)
        await registrar_consentimento("c-1", Channel.SMS, ConsentType.EXPRESS_WRITTEN)

        revogados = await revogar_consentimento("c-1", Channel.SMS)

        assert revogados == 2
        assert await has_valid_consent("c-1", Channel.SMS) is False

    @pytest.mark.asyncio
    async def test_erro_de_leitura_trata_como_sem_consentimento(self, fake_db):
        """Fail-safe: erro na leitura = sem consentimento."""
        await registrar_consentimento("c-1", Channel.SMS, ConsentType.OPT_IN)
        fake_db.falhar("contact_consent")

        assert await has_valid_consent("c-1", Channel.SMS) is False


class TestDoNotContact:

    @pytest.mark.asyncio
    async def test_flag_ligada(self, fake_db):
        fake_db.seed("contacts", {"id": "c-1", "do_not_contact": True})
        fake_db.seed("contacts", {"id": "c-2", "do_not_contact": False})

        assert await is_do_not_contact("c-1") is True
        assert await is_do_not_contact("c-2") is False

    @pytest.mark.asyncio
    async def test_erro_trata_como_dnc(self, fake_db):
        fake_db.falhar("contacts")

        assert await is_do_not_contact("c-1") is True


class TestPalavraChave:
    """Respostas STOP/START de SMS."""

    @pytest.mark.parametrize("texto,acao", [
        ("STOP", "optout"),
        ("  stop! ", "optout"),
        ("Unsubscribe", "optout"),
        ("START", "optin"),
        ("yes", "optin"),
        ("quero saber mais", None),
        ("", None),
    ])
    def test_detectar(self, texto, acao):
        detectada, _ = detectar_palavra_chave(texto)
        assert detectada == acao

    @pytest.mark.asyncio
    async def test_stop_suprime_e_revoga(self, fake_db):
        await registrar_consentimento("c-1", Channel.SMS, ConsentType.OPT_IN)

        acao = await processar_palavra_chave("c-1", "STOP")

        assert acao == "optout"
        assert await is_contact_suppressed("c-1", Channel.SMS) is True
        assert await has_valid_consent("c-1", Channel.SMS) is False
        supressao = fake_db.linhas("contact_suppression", contact_id="c-1")[0]
        assert supressao["source"] == "sms_keyword"

    @pytest.mark.asyncio
    async def test_start_reativa(self, fake_db):
        await processar_palavra_chave("c-1", "STOP")

        acao = await processar_palavra_chave("c-1", "start")

        assert acao == "optin"
        assert await is_contact_suppressed("c-1", Channel.SMS) is False

    @pytest.mark.asyncio
    async def test_texto_comum_nao_faz_nada(self, fake_db):
        assert await processar_palavra_chave("c-1", "obrigado") is None
        assert fake_db.linhas("contact_suppression") == []
