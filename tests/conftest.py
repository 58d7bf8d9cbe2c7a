"""Shared fixtures: an in-memory Supabase double and stubbed LLM streams.

``FakeSupabase`` implements the query-builder calls the services make
(``table().select().eq()...execute()`` and ``rpc().execute()``) over plain
lists of dicts, including the ``apply_user_credits`` procedure's
reject-if-negative rule.
"""

import itertools
import os
from collections import defaultdict
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

# Set required environment variables BEFORE importing app modules
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")

from src.credits.ledger import CreditLedger
from src.llm.stage_runner import StageRunner
from src.pipeline.config import PipelineConfig
from src.pipeline.orchestrator import RequestOrchestrator
from src.pipeline.storage_service import SummaryStore
from src.streaming.transport import StreamDecoder
from src.transcripts.schemas import TranscriptBundle, TranscriptSegment

# ============================================================================
# In-memory Supabase
# ============================================================================


class FakeResponse:
    def __init__(self, data: Any):
        self.data = data


class FakeQuery:
    """Chainable query over one in-memory table."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload: Any = None
        self.filters: list[Callable[[dict[str, Any]], bool]] = []
        self.order_by: tuple[str, bool] | None = None
        self.row_limit: int | None = None

    def select(self, columns: str = "*") -> "FakeQuery":
        self.op = "select"
        return self

    def insert(self, data: Any) -> "FakeQuery":
        self.op = "insert"
        self.payload = data
        return self

    def update(self, data: dict[str, Any]) -> "FakeQuery":
        self.op = "update"
        self.payload = data
        return self

    def delete(self) -> "FakeQuery":
        self.op = "delete"
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda row: row.get(column) != value)
        return self

    def lt(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(
            lambda row: row.get(column) is not None and str(row.get(column)) < str(value)
        )
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self.order_by = (column, desc)
        return self

    def limit(self, count: int) -> "FakeQuery":
        self.row_limit = count
        return self

    def _matches(self, row: dict[str, Any]) -> bool:
        return all(check(row) for check in self.filters)

    def execute(self) -> FakeResponse:
        if (self.table, self.op) in self.db.fail_on:
            raise RuntimeError(f"{self.op} on {self.table} failed")

        rows = self.db.tables[self.table]
        if self.op == "insert":
            new_rows = self.payload if isinstance(self.payload, list) else [self.payload]
            rows.extend(dict(row) for row in new_rows)
            return FakeResponse([dict(row) for row in new_rows])

        if self.op == "update":
            updated = []
            for row in rows:
                if self._matches(row):
                    row.update(self.payload)
                    updated.append(dict(row))
            return FakeResponse(updated)

        if self.op == "delete":
            removed = [row for row in rows if self._matches(row)]
            self.db.tables[self.table] = [row for row in rows if not self._matches(row)]
            return FakeResponse([dict(row) for row in removed])

        result = [dict(row) for row in rows if self._matches(row)]
        if self.order_by:
            column, desc = self.order_by
            result.sort(key=lambda row: str(row.get(column)), reverse=desc)
        if self.row_limit is not None:
            result = result[: self.row_limit]
        return FakeResponse(result)


class FakeRPC:
    def __init__(self, db: "FakeSupabase", name: str, params: dict[str, Any]):
        self.db = db
        self.name = name
        self.params = params

    def execute(self) -> FakeResponse:
        self.db.rpc_calls.append((self.name, dict(self.params)))
        if ("rpc", self.name) in self.db.fail_on:
            raise RuntimeError(f"rpc {self.name} failed")
        if self.name != "apply_user_credits":
            raise RuntimeError(f"unknown rpc {self.name}")

        user_id = self.params["user_id_param"]
        amount = Decimal(str(self.params["credit_amount"]))
        profile = self.db.profile(user_id)
        if profile is None:
            return FakeResponse(False)

        new_balance = profile["credits"] + amount
        if new_balance < 0:
            return FakeResponse(False)

        profile["credits"] = new_balance
        self.db.tables["credit_transactions"].append(
            {
                "id": next(self.db.ids),
                "user_id": user_id,
                "amount": float(amount),
                "transaction_type": self.params["transaction_type_param"],
                "description": self.params["description_param"],
                "reference_id": self.params["reference_id_param"],
                "created_at": datetime.now(UTC).isoformat(),
            }
        )
        return FakeResponse(True)


class FakeSupabase:
    """In-memory stand-in for the Supabase client."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.fail_on: set[tuple[str, str]] = set()
        self.rpc_calls: list[tuple[str, dict[str, Any]]] = []
        self.ids = itertools.count(1)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: dict[str, Any]) -> FakeRPC:
        return FakeRPC(self, name, params)

    def add_profile(
        self, user_id: str, credits: Decimal | int | str, language: str | None = None
    ) -> None:
        self.tables["profiles"].append(
            {
                "user_id": user_id,
                "credits": Decimal(str(credits)),
                "response_language_preference": language,
            }
        )

    def profile(self, user_id: str) -> dict[str, Any] | None:
        for row in self.tables["profiles"]:
            if row["user_id"] == user_id:
                return row
        return None

    def balance(self, user_id: str) -> Decimal:
        profile = self.profile(user_id)
        assert profile is not None
        return profile["credits"]

    def transactions(self, kind: str | None = None) -> list[dict[str, Any]]:
        rows = self.tables["credit_transactions"]
        return [row for row in rows if kind is None or row["transaction_type"] == kind]


# ============================================================================
# LLM stream doubles
# ============================================================================


def completion_chunk(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


def token_stream(deltas: list[str | None], fail_after: int | None = None):
    """Async iterator of completion chunks, optionally breaking mid-stream."""

    async def stream():
        for index, delta in enumerate(deltas):
            if fail_after is not None and index == fail_after:
                raise httpx.ReadError("connection reset by provider")
            yield completion_chunk(delta)

    return stream()


def make_llm_client(*streams: Any) -> MagicMock:
    """AsyncOpenAI double whose successive stream calls return ``streams``."""
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=list(streams))
    return client


def decode_all(chunks: list[bytes]) -> list[Any]:
    decoder = StreamDecoder()
    events = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
    events.extend(decoder.flush())
    return events


async def collect(stream) -> list[bytes]:
    return [chunk async for chunk in stream]


def make_bundle(segment_count: int = 50, title: str = "Test Video") -> TranscriptBundle:
    return TranscriptBundle(
        source_url="https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        video_id="dQw4w9WgXcQ",
        title=title,
        thumbnail_url="https://img.youtube.com/vi/dQw4w9WgXcQ/maxresdefault.jpg",
        text=" ".join(f"line {i}" for i in range(segment_count)),
        segments=[
            TranscriptSegment(text=f"line {i}", start_seconds=float(i))
            for i in range(segment_count)
        ],
    )


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig(
        supabase_url="https://test.supabase.co",
        supabase_key="test-service-key",
        apify_api_key="apify-test-token",
        supadata_api_key="",
        poll_interval_seconds=0,
        max_poll_attempts=3,
        llm_base_url="https://llm.test/v1",
        llm_api_key="test-llm-key",
        analysis_model="test-analysis",
        vision_model="test-vision",
        chat_model="test-chat",
        max_transcript_chars=10000,
        summary_credits=Decimal("1"),
        intelligent_credits=Decimal("5"),
        extract_credits=Decimal("4"),
        podcast_chat_credits=Decimal("0.5"),
        intelligent_chat_credits=Decimal("0"),
        stale_after_minutes=10,
    )


@pytest.fixture
def ledger(fake_supabase: FakeSupabase) -> CreditLedger:
    return CreditLedger(fake_supabase)


@pytest.fixture
def store(fake_supabase: FakeSupabase) -> SummaryStore:
    return SummaryStore(fake_supabase)


@pytest.fixture
def transcripts() -> MagicMock:
    service = MagicMock()
    service.fetch_transcript = AsyncMock(return_value=make_bundle())
    return service


@pytest.fixture
def build(config, ledger, store, transcripts):
    """Factory: orchestrator whose LLM returns the given token streams."""

    def _build(*streams: Any, agents: Any = None) -> RequestOrchestrator:
        return RequestOrchestrator(
            config=config,
            ledger=ledger,
            store=store,
            transcripts=transcripts,
            runner=StageRunner(make_llm_client(*streams)),
            agents=agents,
        )

    return _build


@pytest.fixture
def stream_of():
    """``stream_of(["a", "b"], fail_after=1)`` builds a provider token stream."""
    return token_stream


@pytest.fixture
def llm_client_for():
    return make_llm_client


@pytest.fixture
def decode():
    return decode_all


@pytest.fixture
def drain():
    return collect


@pytest.fixture
def bundle_for():
    return make_bundle


@pytest.fixture
def supabase_factory():
    """The FakeSupabase class, for tests that need a fresh store per example."""
    return FakeSupabase
