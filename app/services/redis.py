"""
Cache Redis do gate.

Guarda só o catálogo de políticas por canal. O Redis nunca participa de
uma decisão: erro de cache vira cache miss e a política sai do banco.
"""
import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.core.config import settings

logger = logging.getLogger(__name__)

redis_client = redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)


async def verificar_conexao_redis() -> bool:
    try:
        return bool(await redis_client.ping())
    except (RedisError, OSError) as e:
        logger.error(f"[redis] Sem conexão: {e}")
        return False


async def cache_get_json(key: str) -> Optional[Any]:
    """None em cache miss, erro de conexão ou JSON corrompido."""
    try:
        bruto = await redis_client.get(key)
    except (RedisError, OSError) as e:
        logger.warning(f"[redis] Leitura de {key} falhou: {e}")
        return None

    if bruto is None:
        return None
    try:
        return json.loads(bruto)
    except ValueError:
        logger.warning(f"[redis] Valor inválido em {key}, descartando")
        await cache_delete(key)
        return None


async def cache_set_json(key: str, value: Any, ttl: int = 300) -> bool:
    try:
        await redis_client.set(key, json.dumps(value, default=str), ex=ttl)
    except (RedisError, OSError) as e:
        logger.warning(f"[redis] Escrita de {key} falhou: {e}")
        return False
    return True


async def cache_delete(key: str) -> bool:
    try:
        await redis_client.delete(key)
    except (RedisError, OSError) as e:
        logger.warning(f"[redis] Remoção de {key} falhou: {e}")
        return False
    return True
