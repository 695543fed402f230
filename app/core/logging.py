"""
Logging estruturado.

Produção: uma linha JSON por evento, com os campos de decisão do gate
(contact_id, channel, reason...) como chaves próprias para filtrar.
Desenvolvimento: texto colorido com os mesmos campos no fim da linha.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Optional

# Campos passados via extra= que viram chaves do log
CAMPOS_DE_DECISAO = ("contact_id", "channel", "reason", "agent", "rule", "idempotency_key")

LIBS_VERBOSAS = ("httpx", "httpcore", "hpack", "uvicorn.access", "asyncio", "postgrest")


def _campos(record: logging.LogRecord) -> dict[str, Any]:
    campos = {c: getattr(record, c) for c in CAMPOS_DE_DECISAO if getattr(record, c, None) is not None}
    campos.update(getattr(record, "extra_fields", None) or {})
    return campos


class JSONFormatter(logging.Formatter):
    """Formatter JSON para produção."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            **_campos(record),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Formatter colorido para desenvolvimento."""

    CORES = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        linha = super().format(record)
        cor = self.CORES.get(record.levelname, "")
        linha = linha.replace(record.levelname, f"{cor}{record.levelname}{self.RESET}", 1)

        campos = _campos(record)
        if campos:
            linha += " | " + " ".join(f"{k}={v}" for k, v in campos.items())
        return linha


def get_logger(name: str, **extra_fields: Any) -> logging.LoggerAdapter:
    """
    Logger com campos fixos em todas as linhas.

    Usage:
        logger = get_logger(__name__, component="compliance_api")
    """
    return logging.LoggerAdapter(logging.getLogger(name), {"extra_fields": extra_fields})


def setup_logging(environment: Optional[str] = None, level: Optional[str] = None):
    """
    Configura o root logger.

    Sem argumentos, lê ENVIRONMENT e LOG_LEVEL do ambiente.
    """
    environment = (environment or os.getenv("ENVIRONMENT", "development")).lower()
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    handler = logging.StreamHandler(sys.stdout)
    if environment == "production":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ColoredFormatter(
            fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    for lib in LIBS_VERBOSAS:
        logging.getLogger(lib).setLevel(logging.WARNING)
