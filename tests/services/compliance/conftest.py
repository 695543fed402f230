"""
Fixtures do gate de compliance.

O Supabase em memória (fake_db) vem do conftest raiz.
"""
import pytest

from app.core.timezone import iso_utc
from app.services.compliance import policy_store


@pytest.fixture
def politica():
    """Política padrão (caps de Settings: sms 3, email 1, voice 2, total 5)."""
    return policy_store.politica_padrao()


@pytest.fixture
def com_consentimento(fake_db):
    """
    Registra consentimento opt_in válido.

    Uso:
        com_consentimento("c-1", "sms", "voice")
    """
    def _registrar(contact_id: str, *canais: str):
        for canal in canais:
            fake_db.seed("contact_consent", {
                "contact_id": contact_id,
                "channel": canal,
                "consent_type": "opt_in",
                "granted_at": iso_utc(),
                "revoked_at": None,
            })

    return _registrar
