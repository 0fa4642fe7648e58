"""Tests for the SLA evaluator."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from conftest import T0, FrozenClock, StubCallbackClient, make_definition
from sqlalchemy.exc import OperationalError

from litestar_sla.config import SLAConfig
from litestar_sla.core.definition import StepDefinition
from litestar_sla.core.types import ActionKind, RecordStatus
from litestar_sla.db.repositories import SLARecordRepository
from litestar_sla.engine.evaluator import SLAEvaluator
from litestar_sla.engine.store import WorkflowDefinitionStore
from litestar_sla.engine.tracker import RecordTracker
from litestar_sla.exceptions import StoreUnavailableError


@pytest.mark.integration
class TestRunCycle:
    """Tests for SLAEvaluator.run_cycle."""

    async def test_nothing_due(self, evaluator: SLAEvaluator, tracker: RecordTracker, two_step_definition) -> None:
        await tracker.create_record(two_step_definition.id, "purchase.order", "PO-1")
        result = await evaluator.run_cycle()
        assert result.due == 0
        assert result.violated == []

    async def test_one_failure_does_not_stop_the_batch(
        self,
        evaluator: SLAEvaluator,
        tracker: RecordTracker,
        store: WorkflowDefinitionStore,
        stub_client: StubCallbackClient,
        clock: FrozenClock,
    ) -> None:
        definition = await store.publish(
            make_definition(
                StepDefinition(order=1, code="review", name="Review", sla_hours=1),
                notify_callback={"url": "https://hooks.test/{businessRecordId}"},
            )
        )
        failing = await tracker.create_record(definition.id, "purchase.order", "PO-1")
        clock.advance(minutes=1)
        healthy = await tracker.create_record(definition.id, "purchase.order", "PO-2")
        stub_client.fail_urls.add("https://hooks.test/PO-1")
        clock.set(T0 + timedelta(hours=2))

        result = await evaluator.run_cycle()

        assert result.due == 2
        assert result.failed == [failing.id]
        assert result.violated == [healthy.id]
        # the failed record is retried on the next cycle
        stub_client.fail_urls.clear()
        retry = await evaluator.run_cycle()
        assert retry.violated == [failing.id]

    async def test_unexpected_errors_are_logged_per_record(
        self,
        evaluator: SLAEvaluator,
        tracker: RecordTracker,
        store: WorkflowDefinitionStore,
        stub_client: StubCallbackClient,
        clock: FrozenClock,
    ) -> None:
        definition = await store.publish(
            make_definition(
                StepDefinition(order=1, code="review", name="Review", sla_hours=1),
                notify_callback={"url": "https://hooks.test"},
            )
        )
        record = await tracker.create_record(definition.id, "purchase.order", "PO-1")
        stub_client.error = RuntimeError("boom")
        clock.set(T0 + timedelta(hours=2))

        result = await evaluator.run_cycle()

        assert result.errors == [record.id]
        _, _, logs = await tracker.get_record_history(record.id)
        assert [(log.kind, log.success) for log in logs] == [(ActionKind.EVALUATION_ERROR, False)]
        assert logs[0].detail == "RuntimeError: boom"

    async def test_batch_size(
        self,
        tracker: RecordTracker,
        two_step_definition,
        clock: FrozenClock,
    ) -> None:
        for index in range(3):
            await tracker.create_record(two_step_definition.id, "purchase.order", f"PO-{index}")
        clock.set(T0 + timedelta(hours=5))

        result = await SLAEvaluator(tracker, batch_size=2).run_cycle()

        assert result.due == 2
        assert len(result.violated) == 2

    async def test_refreshes_remaining_hours(
        self,
        evaluator: SLAEvaluator,
        tracker: RecordTracker,
        two_step_definition,
        clock: FrozenClock,
    ) -> None:
        record = await tracker.create_record(two_step_definition.id, "purchase.order", "PO-1")
        clock.set(T0 + timedelta(hours=3))

        result = await evaluator.run_cycle()

        assert result.refreshed == 1
        assert (await tracker.get_record(record.id)).remaining_hours == Decimal("1.00")

    async def test_store_unavailable_aborts_cycle(
        self,
        evaluator: SLAEvaluator,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        async def broken(self, now, limit=None):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(SLARecordRepository, "find_due", broken)

        with pytest.raises(StoreUnavailableError):
            await evaluator.run_cycle()

    async def test_escalated_records_are_not_selected(
        self,
        session_maker,
        store: WorkflowDefinitionStore,
        clock: FrozenClock,
    ) -> None:
        tracker = RecordTracker(session_maker, config=SLAConfig(max_notifications=1), clock=clock)
        definition = await store.publish(make_definition())
        record = await tracker.create_record(definition.id, "purchase.order", "PO-1")
        clock.set(T0 + timedelta(hours=4))
        evaluator = SLAEvaluator(tracker)

        await evaluator.run_cycle()
        assert (await tracker.get_record(record.id)).status == RecordStatus.ESCALATED

        clock.set(T0 + timedelta(days=2))
        assert (await evaluator.run_cycle()).due == 0


@pytest.mark.integration
class TestBackgroundLoop:
    """Tests for SLAEvaluator.start / stop."""

    @pytest.fixture
    def sla_config(self) -> SLAConfig:
        return SLAConfig(evaluation_interval=timedelta(milliseconds=10))

    async def test_start_and_stop(self, evaluator: SLAEvaluator, monkeypatch: pytest.MonkeyPatch) -> None:
        cycles = 0
        original = evaluator.run_cycle

        async def counting():
            nonlocal cycles
            cycles += 1
            return await original()

        monkeypatch.setattr(evaluator, "run_cycle", counting)

        await evaluator.start()
        assert evaluator.is_running
        await evaluator.start()  # no second task
        await asyncio.sleep(0.1)
        await evaluator.stop(timeout=5)

        assert not evaluator.is_running
        assert cycles >= 2

    async def test_loop_survives_store_outage(self, evaluator: SLAEvaluator, monkeypatch: pytest.MonkeyPatch) -> None:
        calls = 0

        async def unavailable():
            nonlocal calls
            calls += 1
            raise StoreUnavailableError("down")

        monkeypatch.setattr(evaluator, "run_cycle", unavailable)

        await evaluator.start()
        await asyncio.sleep(0.1)
        await evaluator.stop(timeout=5)

        assert calls >= 2

    async def test_stop_without_start(self, evaluator: SLAEvaluator) -> None:
        await evaluator.stop()
        assert not evaluator.is_running
