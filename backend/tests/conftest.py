"""Shared test fixtures for the pipeline backend test suite."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncGenerator, Callable
from typing import Any

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from docpipe.core.config import settings
from docpipe.core.database import Base, get_db
from docpipe.core.security import get_caller_id
from docpipe.main import app
from docpipe.modules.pipeline.gateway.capabilities import (
    ApiDialect,
    CapabilityRegistry,
    ModelCapability,
)
from docpipe.modules.pipeline.rate_limiter import InMemoryCounterStore, RateLimiter
from docpipe.modules.pipeline.router import get_http_client
from docpipe.modules.pipeline.seed import seed_pipeline_config

OPENAI_KEY = "sk-test-openai-key"
GATEWAY_KEY = "gw-test-gateway-key"

CALLER_ID = "auth0|test-user"


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------

CHAT_NO_TEMPERATURE = ModelCapability(
    family_id="gpt-5-mini",
    api_dialect=ApiDialect.CHAT_COMPLETIONS,
    endpoint="https://api.openai.com/v1/chat/completions",
    supports_temperature=False,
    supports_seed=True,
    reasoning_effort_levels=("minimal", "low", "medium", "high"),
    max_tokens_param_name="max_completion_tokens",
)

CHAT_WITH_TEMPERATURE = ModelCapability(
    family_id="gemini-2.5-flash",
    api_dialect=ApiDialect.CHAT_COMPLETIONS,
    endpoint="https://ai.gateway.lovable.dev/v1/chat/completions",
    supports_temperature=True,
    supports_seed=False,
    max_tokens_param_name="max_tokens",
)

RESPONSES = ModelCapability(
    family_id="gpt-5",
    api_dialect=ApiDialect.RESPONSES,
    endpoint="https://api.openai.com/v1/responses",
    supports_temperature=False,
    supports_seed=False,
    reasoning_effort_levels=("minimal", "low", "medium", "high"),
    max_tokens_param_name="max_output_tokens",
)


@pytest.fixture
def registry() -> CapabilityRegistry:
    return CapabilityRegistry([CHAT_NO_TEMPERATURE, CHAT_WITH_TEMPERATURE, RESPONSES])


@pytest.fixture(autouse=True)
def provider_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    """Every test sees fake provider credentials, never real ones."""
    monkeypatch.setattr(settings, "openai_api_key", OPENAI_KEY)
    monkeypatch.setattr(settings, "gateway_api_key", GATEWAY_KEY)


# ---------------------------------------------------------------------------
# Database: in-memory SQLite per test
# ---------------------------------------------------------------------------


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seeded_session(db_session: AsyncSession) -> AsyncSession:
    """Session with the default capabilities, agents, prompts and dev bindings."""
    await seed_pipeline_config(db_session, ["dev"])
    await db_session.commit()
    return db_session


# ---------------------------------------------------------------------------
# Fake AI provider
# ---------------------------------------------------------------------------


class FakeProvider:
    """Answers provider POSTs with a forced-tool call, in whichever dialect was used.

    `outputs` maps tool name -> arguments (dict, or a raw string for malformed JSON).
    `statuses` maps tool name -> HTTP status to fail with instead.
    `delays` maps tool name -> seconds to stall before answering.
    """

    def __init__(self) -> None:
        self.outputs: dict[str, Any] = {}
        self.statuses: dict[str, int] = {}
        self.delays: dict[str, float] = {}
        self.requests: list[dict[str, Any]] = []
        self.headers: list[httpx.Headers] = []

    @staticmethod
    def forced_tool(body: dict[str, Any]) -> str:
        choice = body.get("tool_choice") or {}
        return choice.get("name") or (choice.get("function") or {}).get("name", "")

    async def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        self.headers.append(request.headers)
        tool = self.forced_tool(body)

        if tool in self.delays:
            await asyncio.sleep(self.delays[tool])

        if tool in self.statuses:
            return httpx.Response(self.statuses[tool], text=f"upstream failure for {tool}")

        arguments = self.outputs.get(tool, {})
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)

        if request.url.path.endswith("/responses"):
            return httpx.Response(
                200,
                json={
                    "id": f"resp_{len(self.requests)}",
                    "output": [
                        {"type": "reasoning", "summary": []},
                        {
                            "type": "function_call",
                            "name": tool,
                            "arguments": arguments,
                            "call_id": f"call_{len(self.requests)}",
                        },
                    ],
                    "usage": {"input_tokens": 120, "output_tokens": 40},
                },
            )
        return httpx.Response(
            200,
            json={
                "id": f"chatcmpl_{len(self.requests)}",
                "choices": [
                    {
                        "message": {
                            "role": "assistant",
                            "content": None,
                            "tool_calls": [
                                {
                                    "id": f"call_{len(self.requests)}",
                                    "type": "function",
                                    "function": {"name": tool, "arguments": arguments},
                                }
                            ],
                        }
                    }
                ],
                "usage": {"prompt_tokens": 100, "completion_tokens": 30},
            },
        )

    def tools_called(self) -> list[str]:
        return [self.forced_tool(b) for b in self.requests]


EXTRACTION = {
    "entities": [
        {"name": "Acme Corp", "entity_type": "company", "aliases": ["Acme"]},
        {"name": "Jane Doe", "entity_type": "person"},
    ],
    "facts": [
        {
            "statement": "Jane Doe is CEO of Acme Corp",
            "evidence": "Jane Doe, CEO of Acme Corp",
            "evidence_span": {"start": 0, "end": 26},
            "confidence": 0.9,
            "entity_name": "Acme Corp",
        }
    ],
}

NORMALIZATION = {
    "normalized_entities": [
        {
            "original_name": "Acme",
            "canonical_name": "Acme Corporation",
            "entity_type": "company",
            "derived": {"website": "https://acme.example", "identifiers": {"org_nr": "556000-0000"}},
        },
        {"original_name": "Jane Doe", "canonical_name": "Jane Doe", "entity_type": "person"},
    ],
    "normalized_facts": [
        {
            "original_statement": "Jane Doe is CEO of Acme Corp",
            "normalized_statement": "Jane Doe is the CEO of Acme Corporation",
            "confidence_numeric": 0.9,
            "derived": {
                "triple": {"subject": "Acme Corporation", "predicate": "has_ceo", "object": "Jane Doe"},
                "evidence": {"text": "Jane Doe, CEO of Acme Corp", "span": {"start": 0, "end": 26}},
            },
        }
    ],
    "unknown_values": [],
}

VALIDATION_OK = {"is_valid": True, "contradictions": [], "missing_citations": [], "schema_errors": []}

ARBITRATION_ALLOW = {"decision": "ALLOW", "reasons": ["No policy violations"]}


@pytest.fixture
def fake_provider() -> FakeProvider:
    provider = FakeProvider()
    provider.outputs = {
        "extract_entities": EXTRACTION,
        "normalize_data": NORMALIZATION,
        "validate_facts": VALIDATION_OK,
        "apply_policies": ARBITRATION_ALLOW,
    }
    return provider


@pytest.fixture
async def provider_client(fake_provider: FakeProvider) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_provider.handler)) as client:
        yield client


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@pytest.fixture
def rate_limiter() -> RateLimiter:
    return RateLimiter(InMemoryCounterStore(), window_seconds=60, max_requests=20)


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    seeded_session: AsyncSession,
    provider_client: httpx.AsyncClient,
    rate_limiter: RateLimiter,
) -> AsyncGenerator[AsyncClient, None]:
    """Authenticated async HTTP client over the ASGI app, SQLite DB and fake provider."""

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_caller_id] = lambda: CALLER_ID
    app.dependency_overrides[get_http_client] = lambda: provider_client
    previous_limiter = app.state.rate_limiter
    app.state.rate_limiter = rate_limiter

    transport = ASGITransport(app=app)  # type: ignore[arg-type]
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.state.rate_limiter = previous_limiter
    app.dependency_overrides.clear()


@pytest.fixture
def anonymous_client() -> Callable[[], AsyncClient]:
    """Client with no dependency overrides (real bearer auth)."""

    def _make() -> AsyncClient:
        return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")  # type: ignore[arg-type]

    return _make
