"""
Exception handlers para FastAPI.

Só as rotas de gestão (consentimento, supressão, lockdowns, emergency stop)
chegam aqui: as verificações do gate nunca propagam erro de leitura,
devolvem bloqueio.
"""

import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.exceptions import (
    ComplianceException,
    DatabaseError,
    NotFoundError,
    ValidationError,
)
from app.services.circuit_breaker import CircuitOpenError

logger = logging.getLogger(__name__)

# Ordem importa: subclasses antes das bases
STATUS_POR_EXCEPTION = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (DatabaseError, 503),
)


def _corpo(error: str, message: str, details: dict) -> dict:
    return {"error": error, "message": message, "details": details}


async def compliance_exception_handler(request: Request, exc: ComplianceException) -> JSONResponse:
    """ComplianceException e subclasses; ConfigurationError e demais viram 500."""
    error_type = exc.__class__.__name__
    status_code = next((s for tipo, s in STATUS_POR_EXCEPTION if isinstance(exc, tipo)), 500)

    nivel = logging.ERROR if status_code >= 500 else logging.WARNING
    logger.log(
        nivel,
        f"[api] {error_type} em {request.url.path}: {exc.message}",
        extra={"error_type": error_type, "details": exc.details},
    )

    return JSONResponse(status_code=status_code, content=_corpo(error_type, exc.message, exc.details))


async def circuit_open_handler(request: Request, exc: CircuitOpenError) -> JSONResponse:
    """Banco indisponível em operação de gestão: 503 com Retry-After."""
    logger.warning(f"[api] Circuit aberto em {request.url.path}: {exc}")

    retry = max(1, int(exc.retry_em_segundos))
    return JSONResponse(
        status_code=503,
        content=_corpo("ServiceUnavailable", str(exc), {"circuit": exc.nome, "retry_em_segundos": retry}),
        headers={"Retry-After": str(retry)},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Exception não tratada: loga com traceback, não vaza a mensagem."""
    logger.exception(f"[api] Erro nao tratado em {request.url.path}: {exc}")

    return JSONResponse(
        status_code=500,
        content=_corpo("InternalServerError", "Erro interno do servidor", {}),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Registra os handlers no app (ver app/main.py)."""
    app.add_exception_handler(ComplianceException, compliance_exception_handler)
    app.add_exception_handler(CircuitOpenError, circuit_open_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
