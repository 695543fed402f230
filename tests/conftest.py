"""
Configuração global de testes - Fixtures compartilhadas.

Este arquivo contém fixtures reutilizáveis em todos os testes do projeto.

Usage:
    Fixtures aqui definidas são automaticamente disponíveis em todos os testes.
    Para fixtures específicas de módulo, use conftest.py local.
"""

import os
import threading

# O cliente Supabase é criado no import de app.services.supabase:
# variáveis precisam existir antes de qualquer import de app.*
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault(
    "SUPABASE_SERVICE_KEY",
    "eyJhbGciOiJIUzI1NiJ9.eyJyb2xlIjoic2VydmljZV9yb2xlIn0.dGVzdA",
)
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SLACK_WEBHOOK_URL", "")

import pytest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4
from typing import Any, Callable, Dict, List, Optional

from postgrest.exceptions import APIError

from app.core.timezone import TZ_UTC, agora_utc, iso_utc, parse_iso
from app.services.compliance import policy_store


# =============================================================================
# MOCK FACTORIES - Funções para criar mocks configuráveis
# =============================================================================


def criar_mock_supabase(dados_retorno: list[dict[str, Any]] | None = None) -> MagicMock:
    """
    Cria mock do cliente Supabase com chain de métodos configurado.

    Args:
        dados_retorno: Lista de dicts que será retornada em .execute().data

    Returns:
        MagicMock configurado para suportar chain: .table().select().eq().execute()

    Example:
        mock = criar_mock_supabase([{"id": "123", "contact_id": "c-1"}])
        mock.table("contact_consent").select("*").execute().data  # retorna os dados
    """
    mock = MagicMock()
    for metodo in (
        "table", "select", "insert", "update", "upsert", "delete",
        "eq", "neq", "gt", "gte", "lt", "lte", "is_", "in_",
        "order", "limit", "single", "rpc",
    ):
        getattr(mock, metodo).return_value = mock

    # Configurar response
    response = MagicMock()
    response.data = dados_retorno if dados_retorno is not None else []
    response.count = len(response.data)
    mock.execute.return_value = response

    return mock


def criar_mock_supabase_com_erro(erro: Exception | None = None) -> MagicMock:
    """Mock do Supabase cujo .execute() sempre levanta erro."""
    mock = criar_mock_supabase()
    mock.execute.side_effect = erro or ConnectionError("supabase indisponível")
    return mock


def criar_mock_http_response(
    status_code: int = 200,
    json_data: dict[str, Any] | list[Any] | None = None,
    text: str = "",
) -> MagicMock:
    """
    Cria mock de resposta HTTP (httpx.Response).
    """
    mock = MagicMock()
    mock.status_code = status_code
    mock.json.return_value = json_data if json_data is not None else {}
    mock.text = text
    return mock


# =============================================================================
# FIXTURES GLOBAIS
# =============================================================================


@pytest.fixture(autouse=True)
def reset_circuit_supabase():
    """Circuit breaker é global: cada teste começa com ele fechado."""
    from app.services.circuit_breaker import circuit_supabase

    circuit_supabase.reset()
    yield
    circuit_supabase.reset()


@pytest.fixture
def mock_supabase_factory():
    """
    Factory para criar mocks de Supabase com dados específicos.

    Uso:
        def test_algo(mock_supabase_factory):
            mock = mock_supabase_factory([{"id": "123"}])
    """
    return criar_mock_supabase


@pytest.fixture
def mock_slack():
    """
    Mock do envio para Slack.

    Uso:
        def test_notificacao(mock_slack):
            ...
            mock_slack.assert_called_once()
    """
    with patch("app.services.slack.enviar_slack", new_callable=AsyncMock) as mock:
        mock.return_value = True
        yield mock


@pytest.fixture
def mock_httpx_client():
    """
    Mock do httpx.AsyncClient usado como context manager.

    Uso:
        def test_api_call(mock_httpx_client):
            mock_httpx_client.post.return_value = criar_mock_http_response(200)
    """
    with patch("httpx.AsyncClient") as mock_class:
        client = MagicMock()
        client.post = AsyncMock(return_value=criar_mock_http_response(200))
        mock_class.return_value.__aenter__ = AsyncMock(return_value=client)
        mock_class.return_value.__aexit__ = AsyncMock(return_value=False)
        yield client


@pytest.fixture
def utc():
    """
    Factory de datetimes UTC.

    Uso:
        def test_algo(utc):
            agora = utc(2026, 3, 10, 15, 0)
    """
    def _utc(*args) -> datetime:
        return datetime(*args, tzinfo=TZ_UTC)

    return _utc


# =============================================================================
# SUPABASE EM MEMÓRIA
# =============================================================================
# PostgREST em memória com o subconjunto de filtros usado pelo gate
# (eq, neq, in_, is_ null, gte/lte, order, limit) e as unique constraints
# que importam para idempotência:
# - outbound_touch_log.idempotency_key
# - security_lockdowns (rule_id, agent_type) com status active

MODULOS_COM_SUPABASE = (
    "app.services.compliance.consent",
    "app.services.compliance.touches",
    "app.services.compliance.audit",
    "app.services.compliance.lockdown",
    "app.services.compliance.emergency",
    "app.services.compliance.policy_store",
    "app.services.compliance.time_window",
    "app.api.routes.health",
)


def _comparavel(valor: Any) -> Any:
    """Timestamps ISO comparados como datetime; demais valores como vieram."""
    if isinstance(valor, str) and len(valor) >= 19 and valor[4] == "-" and "T" in valor:
        try:
            return parse_iso(valor)
        except ValueError:
            return valor
    return valor


class FakeResponse:
    def __init__(self, data: List[dict], count: Optional[int] = None):
        self.data = data
        self.count = count


class FakeQuery:
    """Query encadeável no estilo do postgrest-py."""

    def __init__(self, db: "FakeSupabase", tabela: str):
        self._db = db
        self._tabela = tabela
        self._operacao = "select"
        self._valores: Any = None
        self._filtros: List[Callable[[dict], bool]] = []
        self._ordem: Optional[tuple] = None
        self._limite: Optional[int] = None
        self._count = False
        self._single = False

    # Operações
    def select(self, *colunas, count: Optional[str] = None):
        self._operacao = "select"
        self._count = count is not None
        return self

    def insert(self, valores):
        self._operacao = "insert"
        self._valores = valores
        return self

    def update(self, valores: dict):
        self._operacao = "update"
        self._valores = valores
        return self

    def delete(self):
        self._operacao = "delete"
        return self

    # Filtros
    def eq(self, coluna: str, valor: Any):
        self._filtros.append(lambda row: row.get(coluna) == valor)
        return self

    def neq(self, coluna: str, valor: Any):
        self._filtros.append(lambda row: row.get(coluna) != valor)
        return self

    def in_(self, coluna: str, valores: list):
        self._filtros.append(lambda row: row.get(coluna) in list(valores))
        return self

    def is_(self, coluna: str, valor: str):
        if valor == "null":
            self._filtros.append(lambda row: row.get(coluna) is None)
        else:
            self._filtros.append(lambda row: row.get(coluna) is not None)
        return self

    def gte(self, coluna: str, valor: Any):
        self._filtros.append(
            lambda row: row.get(coluna) is not None and _comparavel(row[coluna]) >= _comparavel(valor)
        )
        return self

    def lte(self, coluna: str, valor: Any):
        self._filtros.append(
            lambda row: row.get(coluna) is not None and _comparavel(row[coluna]) <= _comparavel(valor)
        )
        return self

    def order(self, coluna: str, desc: bool = False):
        self._ordem = (coluna, desc)
        return self

    def limit(self, n: int):
        self._limite = n
        return self

    def single(self):
        self._single = True
        return self

    # Execução
    def _filtrar(self) -> List[dict]:
        return [row for row in self._db.tabela(self._tabela) if all(f(row) for f in self._filtros)]

    def execute(self) -> FakeResponse:
        self._db.verificar_falha(self._tabela)

        if self._operacao == "insert":
            linhas = self._valores if isinstance(self._valores, list) else [self._valores]
            return FakeResponse([self._db.inserir(self._tabela, dict(linha)) for linha in linhas])

        if self._operacao == "update":
            alvos = self._filtrar()
            for row in alvos:
                row.update(self._valores)
            return FakeResponse([dict(row) for row in alvos])

        if self._operacao == "delete":
            alvos = self._filtrar()
            self._db.tabelas[self._tabela] = [r for r in self._db.tabela(self._tabela) if r not in alvos]
            return FakeResponse([dict(row) for row in alvos])

        linhas = self._filtrar()
        total = len(linhas)
        if self._ordem:
            coluna, desc = self._ordem
            linhas = sorted(linhas, key=lambda r: (r.get(coluna) is None, _comparavel(r.get(coluna))), reverse=desc)
        if self._limite is not None:
            linhas = linhas[:self._limite]

        data = [dict(row) for row in linhas]
        if self._single:
            return FakeResponse(data[0] if data else None, total if self._count else None)
        return FakeResponse(data, total if self._count else None)


class FakeRpc:
    def __init__(self, db: "FakeSupabase", nome: str, params: dict):
        self._db = db
        self._nome = nome
        self._params = params

    def execute(self) -> FakeResponse:
        self._db.verificar_falha(f"rpc:{self._nome}")
        if self._nome == "is_emergency_stop_active":
            ativo = any(row.get("emergency_stop_active") for row in self._db.tabela("business_profile"))
            return FakeResponse(ativo)
        raise APIError({"code": "42883", "message": f"function {self._nome} does not exist"})


class FakeSupabase:
    """Cliente Supabase em memória."""

    def __init__(self):
        self.tabelas: Dict[str, List[dict]] = {}
        self._falhas: set = set()
        self._travados: set = set()
        self._liberado = threading.Event()

    def tabela(self, nome: str) -> List[dict]:
        return self.tabelas.setdefault(nome, [])

    def table(self, nome: str) -> FakeQuery:
        return FakeQuery(self, nome)

    def rpc(self, nome: str, params: Optional[dict] = None) -> FakeRpc:
        return FakeRpc(self, nome, params or {})

    # Injeção de falhas
    def falhar(self, *alvos: str):
        """Faz execute() levantar erro para as tabelas (ou "rpc:<nome>")."""
        self._falhas.update(alvos)

    def falhar_tudo(self):
        self._falhas.add("*")

    def restaurar(self):
        self._falhas.clear()

    def travar(self, *alvos: str):
        """execute() fica preso na thread do executor até liberar() (leitura pendurada)."""
        self._travados.update(alvos)

    def liberar(self):
        self._travados.clear()
        self._liberado.set()

    def verificar_falha(self, alvo: str):
        if alvo in self._travados:
            self._liberado.wait(timeout=5)
        if "*" in self._falhas or alvo in self._falhas:
            raise ConnectionError(f"supabase indisponível ({alvo})")

    # Escrita com constraints
    def inserir(self, tabela: str, linha: dict) -> dict:
        linha.setdefault("id", str(uuid4()))
        linha.setdefault("created_at", iso_utc())
        rows = self.tabela(tabela)

        if tabela == "outbound_touch_log":
            chave = linha.get("idempotency_key")
            if any(r.get("idempotency_key") == chave for r in rows):
                raise APIError({
                    "code": "23505",
                    "message": "duplicate key value violates unique constraint \"outbound_touch_log_idempotency_key_key\"",
                })

        if tabela == "security_lockdowns" and linha.get("rule_id") and linha.get("status") == "active":
            if any(
                r.get("rule_id") == linha["rule_id"]
                and r.get("agent_type") == linha.get("agent_type")
                and r.get("status") == "active"
                for r in rows
            ):
                raise APIError({"code": "23505", "message": "duplicate key value violates unique constraint"})

        rows.append(linha)
        return dict(linha)

    # Helpers de cenário
    def seed(self, tabela: str, *linhas: dict) -> List[dict]:
        return [self.inserir(tabela, dict(linha)) for linha in linhas]

    def seed_touch_sent(self, contact_id: str, channel: str, horas_atras: float = 0, n: int = 1):
        """Touches 'sent' já existentes (idempotency key única por linha)."""
        quando = agora_utc() - timedelta(hours=horas_atras)
        for _ in range(n):
            self.inserir("outbound_touch_log", {
                "contact_id": contact_id,
                "channel": channel,
                "status": "sent",
                "idempotency_key": f"seed:{uuid4()}",
                "created_at": iso_utc(quando),
            })

    def seed_audit(self, actor: str, action_type: str, n: int = 1, entity_type: str = "agent",
                   quando: Optional[datetime] = None, payload: Optional[dict] = None):
        quando = quando or agora_utc()
        for _ in range(n):
            self.inserir("audit_log", {
                "actor_type": "module",
                "actor": actor,
                "actor_module": actor,
                "action_type": action_type,
                "entity_type": entity_type,
                "entity_id": actor,
                "payload": payload or {},
                "override": False,
                "created_at": iso_utc(quando),
            })

    def linhas(self, tabela: str, **filtros) -> List[dict]:
        return [r for r in self.tabela(tabela) if all(r.get(k) == v for k, v in filtros.items())]


@pytest.fixture
def fake_db():
    """
    Supabase em memória injetado em todos os módulos do gate.

    Uso:
        async def test_algo(fake_db):
            fake_db.seed("contact_consent", {...})
    """
    db = FakeSupabase()
    db.seed("business_profile", {"emergency_stop_active": False})

    patches = [patch(f"{modulo}.supabase", db) for modulo in MODULOS_COM_SUPABASE]
    for p in patches:
        p.start()
    yield db
    db.liberar()
    for p in patches:
        p.stop()


@pytest.fixture(autouse=True)
def isolar_cache_politica():
    """Sem Redis nos testes: cache do catálogo sempre miss, cache em memória limpo."""
    policy_store._cache.clear()
    with patch.object(policy_store, "cache_get_json", new_callable=AsyncMock, return_value=None), \
         patch.object(policy_store, "cache_set_json", new_callable=AsyncMock, return_value=True), \
         patch.object(policy_store, "cache_delete", new_callable=AsyncMock, return_value=True):
        yield
    policy_store._cache.clear()


@pytest.fixture(autouse=True)
def sem_slack():
    """Notificações fire-and-forget não saem do processo."""
    with patch("app.services.compliance.lockdown.notificar_lockdown", new_callable=AsyncMock) as lockdown, \
         patch("app.services.compliance.emergency.notificar_emergency_stop", new_callable=AsyncMock) as emergency:
        yield {"lockdown": lockdown, "emergency": emergency}



@pytest.fixture
def client(fake_db):
    """
    TestClient da API com o Supabase em memória.

    Uso:
        def test_endpoint(client, fake_db):
            response = client.post("/compliance/check-contact", json={...})
    """
    from fastapi.testclient import TestClient
    from app.main import app

    return TestClient(app, raise_server_exceptions=False)
