"""
Testes do cache Redis.
"""
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.services.redis import (
    cache_delete,
    cache_get_json,
    cache_set_json,
    verificar_conexao_redis,
)


@pytest.fixture
def redis_mock():
    with patch("app.services.redis.redis_client") as mock:
        mock.ping = AsyncMock(return_value=True)
        mock.get = AsyncMock(return_value=None)
        mock.set = AsyncMock(return_value=True)
        mock.delete = AsyncMock(return_value=1)
        yield mock


class TestConexao:

    @pytest.mark.asyncio
    async def test_ping_ok(self, redis_mock):
        assert await verificar_conexao_redis() is True

    @pytest.mark.asyncio
    async def test_ping_falha(self, redis_mock):
        redis_mock.ping.side_effect = RedisConnectionError("recusado")

        assert await verificar_conexao_redis() is False


class TestCacheJson:

    @pytest.mark.asyncio
    async def test_miss(self, redis_mock):
        assert await cache_get_json("compliance:policy_catalog") is None

    @pytest.mark.asyncio
    async def test_hit(self, redis_mock):
        redis_mock.get.return_value = '{"sms": {"cap": 3}}'

        assert await cache_get_json("compliance:policy_catalog") == {"sms": {"cap": 3}}

    @pytest.mark.asyncio
    async def test_json_corrompido_e_descartado(self, redis_mock):
        redis_mock.get.return_value = "{sms"

        assert await cache_get_json("compliance:policy_catalog") is None
        redis_mock.delete.assert_awaited_once_with("compliance:policy_catalog")

    @pytest.mark.asyncio
    async def test_erro_de_leitura_vira_miss(self, redis_mock):
        redis_mock.get.side_effect = RedisConnectionError("caiu")

        assert await cache_get_json("compliance:policy_catalog") is None

    @pytest.mark.asyncio
    async def test_grava_com_ttl(self, redis_mock):
        assert await cache_set_json("chave", {"a": 1}, ttl=60) is True
        redis_mock.set.assert_awaited_once_with("chave", '{"a": 1}', ex=60)

    @pytest.mark.asyncio
    async def test_erro_de_escrita(self, redis_mock):
        redis_mock.set.side_effect = RedisConnectionError("caiu")

        assert await cache_set_json("chave", {"a": 1}) is False

    @pytest.mark.asyncio
    async def test_delete_erro(self, redis_mock):
        redis_mock.delete.side_effect = RedisConnectionError("caiu")

        assert await cache_delete("chave") is False
