"""
Datas e fusos do gate.

Banco, janelas deslizantes e buckets de idempotência: sempre UTC.
Horário legal de ligação: fuso do contato (DDD).
Horário comercial: fuso de business_hours em system_config.
"""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


TZ_UTC = timezone.utc

# Mesmo formato das chaves de business_hours.days
DIAS_SEMANA = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def agora_utc() -> datetime:
    return datetime.now(TZ_UTC)


def obter_zoneinfo(nome: str) -> Optional[ZoneInfo]:
    """ZoneInfo do nome IANA, ou None quando o nome não existe."""
    try:
        return ZoneInfo(nome)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def para_utc(dt: datetime) -> datetime:
    # naive = UTC (é o que o PostgREST devolve em colunas sem fuso)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=TZ_UTC)
    return dt.astimezone(TZ_UTC)


def para_fuso(dt: datetime, fuso: str) -> datetime:
    """
    Mesmo instante no fuso IANA pedido.

    Raises:
        ValueError: fuso inexistente
    """
    tz = obter_zoneinfo(fuso)
    if tz is None:
        raise ValueError(f"Fuso desconhecido: {fuso}")
    return para_utc(dt).astimezone(tz)


def dia_semana(dt: datetime) -> str:
    return DIAS_SEMANA[dt.weekday()]


def parse_iso(valor: str) -> datetime:
    """Timestamp do banco ("...Z" ou com offset) em UTC."""
    return para_utc(datetime.fromisoformat(valor.replace("Z", "+00:00")))


def iso_utc(dt: Optional[datetime] = None) -> str:
    """ISO 8601 em UTC, formato usado nos filtros gte/lt das queries."""
    return para_utc(dt or agora_utc()).isoformat()
