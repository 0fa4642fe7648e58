"""Periodic SLA evaluation.

The evaluator selects every pending record whose deadline has passed and
violates each one independently. A failure on one record is logged and never
stops the batch; only an unreadable store aborts a cycle.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from litestar_sla.db.repositories import SLARecordRepository
from litestar_sla.exceptions import (
    ConcurrentModificationError,
    ExternalCallFailureError,
    PreconditionFailedError,
    StoreUnavailableError,
)

if TYPE_CHECKING:
    from litestar_sla.config import SLAConfig
    from litestar_sla.engine.tracker import RecordTracker

__all__ = ["CycleResult", "SLAEvaluator"]

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    """Summary of one evaluation cycle.

    Attributes:
        started_at: When the cycle started.
        due: Number of due records selected.
        violated: Records whose violation action succeeded.
        failed: Records whose callback failed; retried next cycle.
        conflicts: Records that changed while being violated.
        skipped: Records no longer due by the time they were processed.
        errors: Records that raised unexpectedly.
        refreshed: Records whose remaining hours were recomputed.
        interrupted: Whether the cycle stopped early for shutdown.
    """

    started_at: datetime
    due: int = 0
    violated: list[UUID] = field(default_factory=list)
    failed: list[UUID] = field(default_factory=list)
    conflicts: list[UUID] = field(default_factory=list)
    skipped: list[UUID] = field(default_factory=list)
    errors: list[UUID] = field(default_factory=list)
    refreshed: int = 0
    interrupted: bool = False


class SLAEvaluator:
    """Scans for overdue records and fires their violation policies.

    Use :meth:`run_cycle` for a single pass, or :meth:`start` / :meth:`stop`
    to run passes every ``config.evaluation_interval``.

    Args:
        tracker: The record tracker that performs the violations.
        config: Configuration; defaults to the tracker's.
        batch_size: Optional cap on records processed per cycle.
    """

    def __init__(self, tracker: RecordTracker, config: SLAConfig | None = None, batch_size: int | None = None) -> None:
        self.tracker = tracker
        self.config = config or tracker.config
        self.batch_size = batch_size
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _select_due(self, now: datetime) -> list[UUID]:
        try:
            async with self.tracker.session_maker() as session:
                records = await SLARecordRepository(session=session).find_due(now, limit=self.batch_size)
                return [record.id for record in records]
        except SQLAlchemyError as exc:
            logger.critical("SLA evaluation aborted, record store unavailable: %s", exc)
            raise StoreUnavailableError(str(exc)) from exc

    async def run_cycle(self) -> CycleResult:
        """Run one evaluation pass.

        Returns:
            What happened to each due record.

        Raises:
            StoreUnavailableError: If due records cannot be read at all.
        """
        now = self.tracker.clock()
        result = CycleResult(started_at=now)
        due = await self._select_due(now)
        result.due = len(due)

        for record_id in due:
            if self._stopping.is_set():
                result.interrupted = True
                break
            try:
                await self.tracker.violate(record_id)
            except ExternalCallFailureError as exc:
                logger.warning("Violation of record %s failed, retrying next cycle: %s", record_id, exc)
                result.failed.append(record_id)
            except ConcurrentModificationError:
                logger.info("Record %s changed during evaluation, skipping", record_id)
                result.conflicts.append(record_id)
            except PreconditionFailedError:
                result.skipped.append(record_id)
            except Exception as exc:
                logger.exception("Unexpected error evaluating record %s", record_id)
                result.errors.append(record_id)
                try:
                    await self.tracker.log_evaluation_error(record_id, exc)
                except SQLAlchemyError:
                    logger.exception("Could not log evaluation error for record %s", record_id)
            else:
                result.violated.append(record_id)

        if not result.interrupted:
            try:
                result.refreshed = await self.tracker.refresh_remaining(now)
            except SQLAlchemyError:
                logger.exception("Could not refresh remaining hours")

        logger.info(
            "SLA cycle: %s due, %s violated, %s failed, %s conflicts, %s errors",
            result.due,
            len(result.violated),
            len(result.failed),
            len(result.conflicts),
            len(result.errors),
        )
        return result

    async def start(self) -> None:
        """Start evaluating on a fixed interval in a background task."""
        if self.is_running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="sla-evaluator")
        logger.info("SLA evaluator started (interval %s)", self.config.evaluation_interval)

    async def stop(self, timeout: float | None = None) -> None:
        """Stop the background task.

        The record being evaluated is finished; no further records are started.

        Args:
            timeout: Seconds to wait before cancelling outright. None waits indefinitely.
        """
        if self._task is None:
            return
        self._stopping.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("SLA evaluator did not stop within %ss, cancelling", timeout)
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        finally:
            self._task = None
        logger.info("SLA evaluator stopped")

    async def _run(self) -> None:
        interval = self.config.evaluation_interval.total_seconds()
        while not self._stopping.is_set():
            try:
                await self.run_cycle()
            except StoreUnavailableError:
                # already logged at CRITICAL; try again next interval
                pass
            except Exception:
                logger.exception("SLA evaluation cycle crashed")
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
