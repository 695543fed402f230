"""
Exceptions do gate de compliance.

As verificações do gate não levantam nada daqui para o chamador:
leitura de segurança que falha vira o resultado mais restritivo e
leitura não crítica (catálogo, horário comercial) vira o padrão.
Estas exceptions aparecem nas operações de gestão (API) e na
configuração.
"""
from typing import Optional


class ComplianceException(Exception):
    """Base. `details` vai no corpo da resposta da API."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        return f"{self.message} - {self.details}" if self.details else self.message


class ValidationError(ComplianceException):
    """Entrada rejeitada antes de tocar no banco (ids vazios, canal desconhecido)."""


class DatabaseError(ComplianceException):
    """Escrita de gestão no Supabase falhou."""


class SafetyCheckError(DatabaseError):
    """
    Leitura crítica falhou (supressão, consentimento, emergency stop).

    Quem captura converte no resultado mais restritivo.
    """


class NotFoundError(ComplianceException):

    def __init__(self, resource: str, identifier: Optional[str] = None):
        details = {"id": identifier} if identifier else {}
        super().__init__(f"{resource} nao encontrado", details)


class ConfigurationError(ComplianceException):
    """Configuração inválida (ex.: DEFAULT_TIMEZONE inexistente)."""
