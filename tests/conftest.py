"""Test configuration and fixtures.

Provides mock database handles, an in-memory store that emulates the
version-number unique constraint, settings, and sample quote payloads.
"""

import asyncio
import contextlib
from collections import defaultdict
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import asyncpg
import pytest
from cryptography.fernet import Fernet
from pydantic import SecretStr

from quote_estimator.core.config import Settings, clear_settings_cache

PLATFORM_KEY = "sk-platform-test-key-0000000000"
TENANT_KEY = "sk-tenant-test-key-11111111111"


@pytest.fixture(autouse=True)
def reset_settings_cache() -> None:
    """Reset cached settings between tests."""
    clear_settings_cache()


@pytest.fixture
def fernet_key() -> str:
    """Fresh Fernet key for tenant secrets."""
    return Fernet.generate_key().decode()


@pytest.fixture
def settings(fernet_key: str) -> Settings:
    """Settings with both credential tiers available."""
    return Settings(
        database_url="postgresql://localhost:5432/quotes_test",
        openai_api_key=SecretStr(PLATFORM_KEY),
        encryption_key=SecretStr(fernet_key),
    )


@pytest.fixture
def mock_db() -> MagicMock:
    """Create mock database connection for testing."""
    db = MagicMock()
    db.fetchval = AsyncMock(return_value=None)
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value=None)
    return db


def route_queries(routes: dict[str, Any]) -> Callable[..., Any]:
    """Build a side effect returning the value whose marker appears in the query."""

    async def _side_effect(query: str, *args: Any) -> Any:
        for marker, value in routes.items():
            if marker in query:
                return value
        return None

    return _side_effect


class FakeConnection:
    """Connection bound to one FakeStore transaction."""

    def __init__(self, store: "FakeStore") -> None:
        self._store = store
        self.claimed: list[tuple[UUID, int]] = []
        self.inserted: list[dict[str, Any]] = []
        self.projection: dict[UUID, dict[str, Any]] = {}

    async def fetchrow(self, query: str, *args: Any) -> dict[str, Any] | None:
        if "INSERT INTO quote_versions" in query:
            return await self._store.insert_version(self, *args)
        return await self._store.fetchrow(query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        if "UPDATE quotes" in query:
            quote_id, tenant_id, output, version = args
            self.projection[quote_id] = {
                "tenant_id": tenant_id,
                "output": output,
                "current_version": version,
            }
            return "UPDATE 1"
        return await self._store.execute(query, *args)


class FakeStore:
    """In-memory store with the quote_versions unique constraint.

    The next version number is computed from committed rows, then the task
    yields before claiming it, so concurrent writers genuinely race and the
    loser sees ``asyncpg.UniqueViolationError``.
    """

    def __init__(self) -> None:
        self.rows: dict[str, Any] = {}
        self.note_rows: list[dict[str, Any]] = []
        self.tenant_key_enc: str | None = None
        self.versions: dict[UUID, list[dict[str, Any]]] = defaultdict(list)
        self.projections: dict[UUID, dict[str, Any]] = {}
        self.transactions_started = 0
        self._claimed: set[tuple[UUID, int]] = set()

    async def fetchrow(self, query: str, *args: Any) -> Any:
        for marker, row in self.rows.items():
            if marker in query:
                return row
        return None

    async def fetch(self, query: str, *args: Any) -> list[Any]:
        if "FROM quote_notes" in query:
            return list(self.note_rows)[: args[2]]
        if "FROM quote_versions" in query:
            return sorted(self.versions[args[1]], key=lambda row: row["version"])
        return []

    async def fetchval(self, query: str, *args: Any) -> Any:
        if "FROM tenant_secrets" in query:
            return self.tenant_key_enc
        return None

    async def execute(self, query: str, *args: Any) -> str:
        return "OK"

    async def insert_version(
        self, conn: FakeConnection, tenant_id: UUID, quote_id: UUID, *args: Any
    ) -> dict[str, Any]:
        committed = [row["version"] for row in self.versions[quote_id]]
        next_version = max(committed, default=0) + 1
        await asyncio.sleep(0)
        key = (quote_id, next_version)
        if key in self._claimed:
            raise asyncpg.UniqueViolationError(
                "duplicate key value violates unique constraint "
                '"uq_quote_versions_quote_id_version"'
            )
        self._claimed.add(key)
        conn.claimed.append(key)

        ai_mode, source, created_by, reason, output, meta = args
        row = {
            "id": uuid4(),
            "tenant_id": tenant_id,
            "quote_id": quote_id,
            "version": next_version,
            "ai_mode": ai_mode,
            "source": source,
            "created_by": created_by,
            "reason": reason,
            "output": output,
            "meta": meta,
            "created_at": datetime.now(timezone.utc),
        }
        conn.inserted.append(row)
        return {"id": row["id"], "version": next_version}

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncIterator[FakeConnection]:
        self.transactions_started += 1
        conn = FakeConnection(self)
        try:
            yield conn
        except BaseException:
            for key in conn.claimed:
                self._claimed.discard(key)
            raise
        for row in conn.inserted:
            self.versions[row["quote_id"]].append(row)
        for quote_id, projection in conn.projection.items():
            current = self.projections.get(quote_id, {}).get("current_version")
            if current is None or current < projection["current_version"]:
                self.projections[quote_id] = projection


@pytest.fixture
def fake_store() -> FakeStore:
    """In-memory store for version writer and pipeline tests."""
    return FakeStore()


@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def quote_id() -> UUID:
    return uuid4()


@pytest.fixture
def platform_config_row() -> dict[str, Any]:
    """Platform LLM configuration row as stored."""
    return {
        "version": 4,
        "models": {
            "estimatorModel": "gpt-4o-mini",
            "qaModel": "gpt-4o-mini",
            "renderModel": "gpt-image-1",
        },
        "prompts": {
            "extraSystemPreamble": "You are producing an estimate for legitimate service work.",
            "quoteEstimatorSystem": "You are an expert estimator for service work.",
            "qaQuestionGeneratorSystem": "You generate short clarification questions.",
        },
        "guardrails": {
            "blockedTopics": ["credit card", "password"],
            "maxQaQuestions": 3,
            "maxOutputTokens": 1200,
            "mode": "balanced",
            "piiHandling": "redact",
        },
        "updated_at": datetime(2025, 6, 1, tzinfo=timezone.utc),
    }


@pytest.fixture
def quote_input() -> dict[str, Any]:
    """Submission payload with pricing enabled in range mode."""
    return {
        "images": [
            {"url": "https://img.example.com/a.jpg", "shotType": "wide"},
            {"url": "https://img.example.com/b.png", "shotType": "closeup"},
        ],
        "customer_context": {
            "notes": "Torn seat on the driver side.",
            "category": "auto",
            "service_type": "upholstery",
        },
        "industryKeySnapshot": "auto",
        "pricing_policy_snapshot": {
            "ai_mode": "range",
            "pricing_enabled": True,
            "pricing_model": "flat_per_job",
        },
        "pricing_config_snapshot": {"model": "flat_per_job", "flatRateDefault": 400},
        "pricing_rules_snapshot": {"minJob": 150, "typicalLow": 300, "typicalHigh": 900},
    }


@pytest.fixture
def quote_row(
    tenant_id: UUID, quote_id: UUID, quote_input: dict[str, Any]
) -> dict[str, Any]:
    """Quote row as returned by the store."""
    return {
        "id": quote_id,
        "tenant_id": tenant_id,
        "input": quote_input,
        "qa": {"questions": ["How old is the seat?"], "answers": ["5 years"]},
        "output": {},
        "current_version": None,
        "created_at": datetime(2025, 6, 2, tzinfo=timezone.utc),
    }


def make_completion(content: str | None, refusal: str | None = None) -> Any:
    """Chat completion shaped like the OpenAI SDK response."""
    message = SimpleNamespace(content=content, refusal=refusal)
    return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason="stop")])


def make_openai_client(completion: Any = None, error: Exception | None = None) -> MagicMock:
    """Mock AsyncOpenAI client whose create call returns or raises."""
    client = MagicMock()
    if error is not None:
        client.chat.completions.create = AsyncMock(side_effect=error)
    else:
        client.chat.completions.create = AsyncMock(return_value=completion)
    return client


@pytest.fixture
def query_router() -> Callable[[dict[str, Any]], Callable[..., Any]]:
    """Factory for query-routing side effects."""
    return route_queries


@pytest.fixture
def completion_factory() -> Callable[..., Any]:
    """Factory for fake chat completions."""
    return make_completion


@pytest.fixture
def openai_client_factory() -> Callable[..., MagicMock]:
    """Factory for mock AsyncOpenAI clients."""
    return make_openai_client
