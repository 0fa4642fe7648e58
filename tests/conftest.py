"""Shared test fixtures for litestar-sla test suite."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from litestar_sla.config import SLAConfig
from litestar_sla.core.definition import StepDefinition, WorkflowDefinition
from litestar_sla.db.models import WorkflowDefinitionModel
from litestar_sla.engine.dispatch import StepPolicyDispatcher
from litestar_sla.engine.evaluator import SLAEvaluator
from litestar_sla.engine.reports import ActionLogService, ReportingAggregator
from litestar_sla.engine.store import WorkflowDefinitionStore
from litestar_sla.engine.tracker import RecordTracker
from litestar_sla.exceptions import ExternalCallFailureError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from litestar_sla.core.policy import CallbackConfig

# Monday 09:00 UTC
T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class MockEventBus:
    """Mock event bus for testing."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def emit(self, event_type: str, **kwargs: Any) -> None:
        self.events.append((event_type, kwargs))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


class StubCallbackClient:
    """Stand-in for CallbackClient that records calls instead of sending them.

    Attributes:
        calls: ``(kind, url, body)`` per call, in order.
        approval_payload: Returned by ``request_approval``.
        fail_urls: URLs that raise ExternalCallFailureError.
        error: Raised by every call when set.
        before_reply: Awaited with the URL before replying, to interleave other writers.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.approval_payload: dict[str, Any] = {"approved_by": "approvals-service", "ticket": "A-1"}
        self.fail_urls: set[str] = set()
        self.error: BaseException | None = None
        self.before_reply: Callable[[str], Awaitable[None]] | None = None
        self.closed = False

    async def _reply(self, kind: str, url: str, body: dict[str, Any]) -> None:
        self.calls.append((kind, url, body))
        if self.before_reply is not None:
            await self.before_reply(url)
        if self.error is not None:
            raise self.error
        if url in self.fail_urls:
            raise ExternalCallFailureError(url, "non-2xx response", status_code=503)

    async def notify(self, config: CallbackConfig, url: str, body: dict[str, Any]) -> int:
        await self._reply("notify", url, body)
        return 200

    async def request_approval(self, config: CallbackConfig, url: str, body: dict[str, Any]) -> dict[str, Any]:
        await self._reply("approve", url, body)
        return dict(self.approval_payload)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
async def db_engine() -> AsyncIterator[AsyncEngine]:
    """Create async SQLite in-memory engine with every SLA table."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(WorkflowDefinitionModel.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create session factory."""
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def mock_event_bus() -> MockEventBus:
    return MockEventBus()


@pytest.fixture
def stub_client() -> StubCallbackClient:
    return StubCallbackClient()


@pytest.fixture
def sla_config() -> SLAConfig:
    """Default configuration: grace window of one SLA period, three notifications."""
    return SLAConfig()


@pytest.fixture
def tracker(
    session_maker: async_sessionmaker[AsyncSession],
    stub_client: StubCallbackClient,
    sla_config: SLAConfig,
    clock: FrozenClock,
    mock_event_bus: MockEventBus,
) -> RecordTracker:
    dispatcher = StepPolicyDispatcher(client=stub_client, event_bus=mock_event_bus)  # type: ignore[arg-type]
    return RecordTracker(
        session_maker,
        dispatcher=dispatcher,
        config=sla_config,
        clock=clock,
        event_bus=mock_event_bus,
    )


@pytest.fixture
def store(session_maker: async_sessionmaker[AsyncSession]) -> WorkflowDefinitionStore:
    return WorkflowDefinitionStore(session_maker)


@pytest.fixture
def evaluator(tracker: RecordTracker) -> SLAEvaluator:
    return SLAEvaluator(tracker)


@pytest.fixture
def reports(session_maker: async_sessionmaker[AsyncSession], clock: FrozenClock) -> ReportingAggregator:
    return ReportingAggregator(session_maker, clock=clock)


@pytest.fixture
def action_logs(session_maker: async_sessionmaker[AsyncSession]) -> ActionLogService:
    return ActionLogService(session_maker)


def make_definition(
    *steps: StepDefinition,
    flow_name: str = "po_approval",
    model: str = "purchase.order",
    **kwargs: Any,
) -> WorkflowDefinition:
    """Build a definition; defaults to a 4h notify step followed by an 8h auto-approve step."""
    if not steps:
        steps = (
            StepDefinition(order=1, code="review", name="Review", sla_hours=4),
            StepDefinition(order=2, code="sign", name="Sign", sla_hours=8, violation_action="auto_approve"),  # type: ignore[arg-type]
        )
    return WorkflowDefinition(flow_name=flow_name, model=model, steps=list(steps), **kwargs)


@pytest.fixture
async def two_step_definition(store: WorkflowDefinitionStore) -> WorkflowDefinitionModel:
    """Published 4h notify / 8h auto-approve definition with internal handling."""
    return await store.publish(make_definition())


# Pytest configuration
def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers.

    Args:
        config: Pytest config object
    """
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
