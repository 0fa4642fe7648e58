"""Record tracker: the SLA state machine.

A record is ``pending`` on one step of its definition until it is approved
past the last step (``completed``) or its notifications run out
(``escalated``). Two writers mutate records: manual :meth:`RecordTracker.advance`
calls and the evaluator's :meth:`RecordTracker.violate`. Every read-modify-write
runs in its own short transaction under a per-record lock and is guarded by the
record's ``revision`` column, so writers in other processes are caught at flush
time. No lock or transaction is held across a callback; the state change that
follows a callback is re-validated against the revision read before the call.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from litestar_sla.config import SLAConfig
from litestar_sla.core.calendar import quantize_hours
from litestar_sla.core.policy import NotifyPolicy, resolve_policy
from litestar_sla.core.types import ActionKind, RecordStatus
from litestar_sla.db.models import (
    RecordAssigneeModel,
    SLAActionLogModel,
    SLARecordModel,
    StepTransitionModel,
)
from litestar_sla.db.repositories import (
    SLAActionLogRepository,
    SLARecordRepository,
    StepTransitionRepository,
    WorkflowDefinitionRepository,
)
from litestar_sla.engine.dispatch import DispatchOutcome, StepPolicyDispatcher, ViolationContext
from litestar_sla.exceptions import (
    ConcurrentModificationError,
    DefinitionNotFoundError,
    DuplicateRecordError,
    ExternalCallFailureError,
    InvalidStateTransitionError,
    PreconditionFailedError,
    RecordNotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from litestar_sla.core.policy import StepPolicy
    from litestar_sla.db.models import WorkflowStepModel

__all__ = ["RecordTracker", "ViolationResult", "utc_now"]

logger = logging.getLogger(__name__)

_ZERO = Decimal("0.00")
_HOUR = timedelta(hours=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ViolationResult:
    """What a ``violate`` call did.

    Attributes:
        record_id: The violated record.
        kind: The action that fired.
        status: The record's status afterwards.
        next_due_at: The record's deadline afterwards.
        violation_count: Violations fired on the step so far.
    """

    record_id: UUID
    kind: ActionKind
    status: RecordStatus
    next_due_at: datetime | None
    violation_count: int


@dataclass
class _Snapshot:
    revision: int
    previous_due_at: datetime
    policy: StepPolicy
    context: ViolationContext


class RecordTracker:
    """Creates, advances and violates tracked records.

    Args:
        session_maker: Factory for the short transactions each operation runs in.
        dispatcher: Executes violation policies.
        config: SLA configuration.
        clock: Returns the current time as an aware datetime.
        event_bus: Optional event bus for ``sla.*`` events.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        dispatcher: StepPolicyDispatcher | None = None,
        config: SLAConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
        event_bus: Any | None = None,
    ) -> None:
        self.session_maker = session_maker
        self.dispatcher = dispatcher or StepPolicyDispatcher(event_bus=event_bus)
        self.config = config or SLAConfig()
        self.clock = clock
        self.event_bus = event_bus
        self._locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = weakref.WeakValueDictionary()

    @property
    def calendar(self) -> Any:
        return self.config.calendar

    def _lock_for(self, record_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(record_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[record_id] = lock
        return lock

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self.session_maker(expire_on_commit=False) as session:
            yield session

    async def _emit(self, event: str, **payload: Any) -> None:
        if self.event_bus:
            await self.event_bus.emit(event, **payload)

    async def _load(self, session: AsyncSession, record_id: UUID) -> SLARecordModel:
        record = await SLARecordRepository(session=session).get_one_or_none(id=record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    async def get_record(self, record_id: UUID) -> SLARecordModel:
        """Load a record with its definition, current step and assignees.

        Raises:
            RecordNotFoundError: If no such record exists.
        """
        async with self._session() as session:
            return await self._load(session, record_id)

    async def get_record_history(
        self,
        record_id: UUID,
    ) -> tuple[SLARecordModel, Sequence[StepTransitionModel], Sequence[SLAActionLogModel]]:
        """Load a record with its step transitions and action log entries, oldest first.

        Raises:
            RecordNotFoundError: If no such record exists.
        """
        async with self._session() as session:
            record = await self._load(session, record_id)
            transitions = await StepTransitionRepository(session=session).find_by_record(record_id)
            logs = await SLAActionLogRepository(session=session).find_by_record(record_id)
        return record, transitions, logs

    async def list_records(
        self,
        *,
        definition_id: UUID | None = None,
        model: str | None = None,
        status: RecordStatus | None = None,
        user_id: str | None = None,
        search: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[SLARecordModel], int]:
        async with self._session() as session:
            return await SLARecordRepository(session=session).find_records(
                definition_id=definition_id,
                model=model,
                status=status,
                user_id=user_id,
                search=search,
                limit=limit,
                offset=offset,
            )

    async def create_record(
        self,
        definition_id: UUID,
        model: str,
        business_record_id: str,
        activity_id: str | None = None,
        *,
        assignees: Sequence[dict[str, Any]] | None = None,
        step_code: str | None = None,
    ) -> SLARecordModel:
        """Start tracking a business record.

        Args:
            definition_id: The definition to track the record against.
            model: Business model name; must match the definition's model.
            business_record_id: ID of the business entity.
            activity_id: Optional originating activity.
            assignees: Users responsible for approving, as ``{id, name, login}``.
            step_code: Optional step to start on instead of the first.

        Returns:
            The created record with its first deadline set.

        Raises:
            ValidationError: If the request is malformed.
            DefinitionNotFoundError: If the definition does not exist.
            DuplicateRecordError: If the business record is already tracked.
            ConcurrentModificationError: If the definition kept changing while the record was created.
        """
        errors: list[str] = []
        if not isinstance(model, str) or not model.strip():
            errors.append("model is required")
        if business_record_id is None or not str(business_record_id).strip():
            errors.append("businessRecordId is required")
        people: list[dict[str, Any]] = []
        for raw in assignees or []:
            if not isinstance(raw, dict) or raw.get("id") in (None, ""):
                errors.append("each assignee needs an 'id'")
                continue
            people.append({"user_id": str(raw["id"]), "name": raw.get("name"), "login": raw.get("login")})
        if len({person["user_id"] for person in people}) != len(people):
            errors.append("assignees must be unique")
        if errors:
            raise ValidationError(errors)
        business_record_id = str(business_record_id)

        record_id = uuid4()
        for attempt in (1, 2):
            try:
                return await self._create_once(
                    record_id, definition_id, model, business_record_id, activity_id, people, step_code
                )
            except IntegrityError as exc:
                async with self._session() as session:
                    existing = await SLARecordRepository(session=session).find_by_business_record(
                        model, definition_id, business_record_id
                    )
                if existing is not None:
                    raise DuplicateRecordError(model, definition_id, business_record_id) from exc
                # the definition's steps were replaced after they were read
                logger.warning(
                    "Definition %s changed while tracking %s#%s (attempt %s)",
                    definition_id,
                    model,
                    business_record_id,
                    attempt,
                )
        raise ConcurrentModificationError(record_id)

    async def _create_once(
        self,
        record_id: UUID,
        definition_id: UUID,
        model: str,
        business_record_id: str,
        activity_id: str | None,
        people: list[dict[str, Any]],
        step_code: str | None,
    ) -> SLARecordModel:
        now = self.clock()
        async with self._session() as session:
            definition = await WorkflowDefinitionRepository(session=session).get_locked(definition_id, shared=True)
            if definition is None:
                raise DefinitionNotFoundError(definition_id)
            if not definition.is_active:
                raise ValidationError(f"definition '{definition_id}' is not active")
            if definition.model != model:
                raise ValidationError(f"definition '{definition_id}' tracks '{definition.model}', not '{model}'")
            if not definition.steps:
                raise ValidationError(f"definition '{definition_id}' has no steps")

            first_step = definition.step_by_code(step_code) if step_code else definition.steps[0]
            if first_step is None:
                raise ValidationError(f"unknown step code '{step_code}'")

            repo = SLARecordRepository(session=session)
            if await repo.find_by_business_record(model, definition_id, business_record_id):
                raise DuplicateRecordError(model, definition_id, business_record_id)

            record = SLARecordModel(
                id=record_id,
                definition=definition,
                current_step=first_step,
                model=model,
                business_record_id=business_record_id,
                activity_id=activity_id,
                status=RecordStatus.PENDING,
                remaining_hours=quantize_hours(first_step.sla_hours),
                next_due_at=self.calendar.add_hours(now, first_step.sla_hours),
                step_entered_at=now,
                started_at=now,
                violation_count=0,
                assignees=[RecordAssigneeModel(**person) for person in people],
            )
            session.add(record)
            session.add(self._transition(record_id, first_step, now))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise

        logger.info(
            "Tracking %s#%s on step %s, due %s",
            model,
            business_record_id,
            first_step.code,
            record.next_due_at.isoformat(),
        )
        await self._emit("sla.record.created", record_id=record_id, step_code=first_step.code)
        return record

    @staticmethod
    def _transition(record_id: UUID, step: WorkflowStepModel, now: datetime) -> StepTransitionModel:
        return StepTransitionModel(record_id=record_id, step_id=step.id, step_code=step.code, entered_at=now)

    async def advance(
        self,
        record_id: UUID,
        approver_payload: dict[str, Any],
        *,
        expected_revision: int | None = None,
    ) -> SLARecordModel:
        """Approve the record's current step.

        Moves the record to the next step, or to ``completed`` from the last
        step. A lost race is retried once before surfacing.

        Args:
            record_id: The record to advance.
            approver_payload: Approval data; must be a non-empty mapping.
            expected_revision: Optional revision the caller last saw. A mismatch
                fails immediately without retrying.

        Returns:
            The updated record.

        Raises:
            ValidationError: If the payload is missing or malformed.
            RecordNotFoundError: If the record does not exist.
            InvalidStateTransitionError: If the record is completed or escalated.
            ConcurrentModificationError: If the record kept changing underneath.
        """
        if not isinstance(approver_payload, dict) or not approver_payload:
            raise ValidationError("approverPayload must be a non-empty object")

        for attempt in (1, 2):
            try:
                return await self._advance_once(record_id, approver_payload, expected_revision)
            except StaleDataError:
                logger.warning("Lost race advancing record %s (attempt %s)", record_id, attempt)
        raise ConcurrentModificationError(record_id, expected_revision)

    async def _advance_once(
        self,
        record_id: UUID,
        approver_payload: dict[str, Any],
        expected_revision: int | None,
    ) -> SLARecordModel:
        async with self._lock_for(record_id), self._session() as session:
            record = await self._load(session, record_id)
            if record.is_terminal:
                raise InvalidStateTransitionError(record_id, str(record.status), "advance")
            if expected_revision is not None and record.revision != expected_revision:
                raise ConcurrentModificationError(record_id, expected_revision)
            left = record.current_step.code
            await self._apply_advance(session, record, approver_payload, self.clock(), automatic=False)
            try:
                await session.commit()
            except StaleDataError:
                await session.rollback()
                raise

        await self._after_advance(record, left, automatic=False)
        return record

    async def _apply_advance(
        self,
        session: AsyncSession,
        record: SLARecordModel,
        payload: dict[str, Any],
        now: datetime,
        *,
        automatic: bool,
    ) -> None:
        current = await StepTransitionRepository(session=session).find_open(record.id)
        if current is not None:
            current.approved_at = now
            current.automatic = automatic
            current.approval_payload = payload

        record.approved_at = now
        record.approval_payload = payload
        next_step = record.definition.step_after(record.current_step)
        if next_step is None:
            record.status = RecordStatus.COMPLETED
            record.next_due_at = None
            record.remaining_hours = _ZERO
            return

        record.current_step = next_step
        record.step_entered_at = now
        record.violation_count = 0
        record.remaining_hours = quantize_hours(next_step.sla_hours)
        record.next_due_at = self.calendar.add_hours(now, next_step.sla_hours)
        session.add(self._transition(record.id, next_step, now))

    async def _after_advance(self, record: SLARecordModel, left: str, *, automatic: bool) -> None:
        if record.status == RecordStatus.COMPLETED:
            logger.info("Record %s completed (last step %s, automatic=%s)", record.id, left, automatic)
            await self._emit("sla.record.completed", record_id=record.id, automatic=automatic)
        else:
            logger.info(
                "Record %s advanced %s -> %s (automatic=%s), due %s",
                record.id,
                left,
                record.current_step.code,
                automatic,
                record.next_due_at,
            )
        await self._emit(
            "sla.record.advanced",
            record_id=record.id,
            from_step=left,
            to_step=None if record.status == RecordStatus.COMPLETED else record.current_step.code,
            automatic=automatic,
        )

    async def violate(self, record_id: UUID) -> ViolationResult:
        """Apply the current step's violation policy to an overdue record.

        Args:
            record_id: The overdue record.

        Returns:
            What the violation did.

        Raises:
            RecordNotFoundError: If the record does not exist.
            PreconditionFailedError: If the record is not pending or not yet due.
            ExternalCallFailureError: If the callback failed. The failure is
                already in the action log and the record is left due.
            ConcurrentModificationError: If the record changed during the callback.
        """
        now = self.clock()
        async with self._lock_for(record_id), self._session() as session:
            record = await self._load(session, record_id)
            self._check_due(record, now)
            policy = self._policy(record)
            if isinstance(policy, NotifyPolicy):
                snapshot = await self._claim_notification(session, record, policy, now)
            else:
                snapshot = _Snapshot(
                    revision=record.revision,
                    previous_due_at=record.next_due_at,  # type: ignore[arg-type]
                    policy=policy,
                    context=self._context(record, now, record.violation_count + 1),
                )

        try:
            outcome = await self.dispatcher.dispatch(snapshot.policy, snapshot.context)
        except ExternalCallFailureError as exc:
            await self._record_failure(snapshot, exc)
            raise

        if isinstance(snapshot.policy, NotifyPolicy):
            return await self._finish_notification(snapshot, outcome)
        return await self._finish_auto_approval(snapshot, outcome)

    @staticmethod
    def _check_due(record: SLARecordModel, now: datetime) -> None:
        if record.status != RecordStatus.PENDING or record.next_due_at is None or record.next_due_at > now:
            raise PreconditionFailedError(record.id, record.next_due_at)

    @staticmethod
    def _policy(record: SLARecordModel) -> StepPolicy:
        step = record.current_step
        definition = record.definition
        return resolve_policy(
            step.violation_action,
            step.callback,
            definition.notify_callback,
            definition.auto_approve_callback,
            grace_hours=step.grace_hours,
            max_notifications=step.max_notifications,
        )

    def _context(self, record: SLARecordModel, now: datetime, violation_count: int) -> ViolationContext:
        step = record.current_step
        return ViolationContext(
            record_id=record.id,
            business_record_id=record.business_record_id,
            model=record.model,
            workflow_id=record.definition_id,
            workflow_name=record.definition.flow_name,
            step_id=step.id,
            step_code=step.code,
            step_name=step.name,
            sla_hours=step.sla_hours,
            overdue_by=self.calendar.hours_between(record.next_due_at, now),
            violation_count=violation_count,
            now=now,
        )

    async def _claim_notification(
        self,
        session: AsyncSession,
        record: SLARecordModel,
        policy: NotifyPolicy,
        now: datetime,
    ) -> _Snapshot:
        """Push the deadline out by the grace window before notifying.

        Claiming first makes a second evaluation inside the grace window a
        precondition failure instead of a second notification.
        """
        previous_due_at = record.next_due_at
        context = self._context(record, now, record.violation_count + 1)
        grace = self.config.grace_window(record.current_step.sla_hours, policy.grace_hours)
        record.violation_count += 1
        record.remaining_hours = _ZERO
        record.next_due_at = self.calendar.add_hours(now, grace / _HOUR)
        try:
            await session.commit()
        except StaleDataError as exc:
            await session.rollback()
            raise ConcurrentModificationError(record.id) from exc
        return _Snapshot(
            revision=record.revision,
            previous_due_at=previous_due_at,  # type: ignore[arg-type]
            policy=policy,
            context=context,
        )

    def _log_entry(
        self,
        snapshot: _Snapshot,
        kind: ActionKind,
        *,
        success: bool,
        detail: str,
        payload: dict[str, Any] | None = None,
    ) -> SLAActionLogModel:
        context = snapshot.context
        return SLAActionLogModel(
            record_id=context.record_id,
            step_id=context.step_id,
            step_code=context.step_code,
            kind=kind,
            occurred_at=self.clock(),
            success=success,
            detail=detail,
            violation_count=context.violation_count,
            payload=payload,
        )

    async def _record_failure(self, snapshot: _Snapshot, exc: ExternalCallFailureError) -> None:
        """Log a failed callback and leave the record due for the next cycle."""
        notify = isinstance(snapshot.policy, NotifyPolicy)
        kind = ActionKind.VIOLATION_NOTIFY if notify else ActionKind.VIOLATION_AUTO_APPROVE
        record_id = snapshot.context.record_id
        logger.warning("Violation action for record %s failed: %s", record_id, exc)
        async with self._lock_for(record_id), self._session() as session:
            if notify:
                record = await self._load(session, record_id)
                if record.revision == snapshot.revision:
                    record.next_due_at = snapshot.previous_due_at
                    record.violation_count -= 1
            session.add(
                self._log_entry(
                    snapshot,
                    kind,
                    success=False,
                    detail=f"ExternalCallFailure: {exc}",
                    payload={"url": exc.url, "status_code": exc.status_code},
                ),
            )
            await session.commit()

    async def _finish_notification(self, snapshot: _Snapshot, outcome: DispatchOutcome) -> ViolationResult:
        record_id = snapshot.context.record_id
        policy = snapshot.policy
        limit = self.config.notification_limit(policy.max_notifications)  # type: ignore[union-attr]
        async with self._lock_for(record_id), self._session() as session:
            record = await self._load(session, record_id)
            escalate = (
                limit is not None
                and record.revision == snapshot.revision
                and record.status == RecordStatus.PENDING
                and record.violation_count >= limit
            )
            if escalate:
                record.status = RecordStatus.ESCALATED
                record.next_due_at = None
            session.add(
                self._log_entry(snapshot, outcome.kind, success=True, detail=outcome.detail, payload=outcome.request),
            )
            try:
                await session.commit()
            except StaleDataError:
                # the entry itself must survive a lost escalation race
                await session.rollback()
                session.add(
                    self._log_entry(
                        snapshot,
                        outcome.kind,
                        success=True,
                        detail=outcome.detail,
                        payload=outcome.request,
                    ),
                )
                await session.commit()
                escalate = False
                record = await self._load(session, record_id)

        logger.info("Notified on record %s step %s (%s)", record_id, snapshot.context.step_code, outcome.detail)
        await self._emit(
            "sla.violation.notified",
            record_id=record_id,
            step_code=snapshot.context.step_code,
            violation_count=snapshot.context.violation_count,
        )
        if escalate:
            logger.warning("Record %s escalated after %s notifications", record_id, record.violation_count)
            await self._emit("sla.record.escalated", record_id=record_id, step_code=snapshot.context.step_code)
        return ViolationResult(
            record_id=record_id,
            kind=outcome.kind,
            status=record.status,
            next_due_at=record.next_due_at,
            violation_count=record.violation_count,
        )

    async def _finish_auto_approval(self, snapshot: _Snapshot, outcome: DispatchOutcome) -> ViolationResult:
        record_id = snapshot.context.record_id
        async with self._lock_for(record_id), self._session() as session:
            record = await self._load(session, record_id)
            if record.revision != snapshot.revision:
                logger.warning("Record %s changed during auto-approval; discarding the approval", record_id)
                raise ConcurrentModificationError(record_id, snapshot.revision)
            left = record.current_step.code
            await self._apply_advance(
                session,
                record,
                outcome.approval_payload or {},
                self.clock(),
                automatic=True,
            )
            session.add(
                self._log_entry(snapshot, outcome.kind, success=True, detail=outcome.detail, payload=outcome.request),
            )
            try:
                await session.commit()
            except StaleDataError as exc:
                await session.rollback()
                raise ConcurrentModificationError(record_id, snapshot.revision) from exc

        await self._emit("sla.violation.auto_approved", record_id=record_id, step_code=left)
        await self._after_advance(record, left, automatic=True)
        return ViolationResult(
            record_id=record_id,
            kind=outcome.kind,
            status=record.status,
            next_due_at=record.next_due_at,
            violation_count=snapshot.context.violation_count,
        )

    async def log_evaluation_error(self, record_id: UUID, exc: BaseException) -> None:
        """Record an unexpected per-record evaluation failure."""
        async with self._session() as session:
            record = await SLARecordRepository(session=session).get_one_or_none(id=record_id)
            session.add(
                SLAActionLogModel(
                    record_id=record_id,
                    step_id=record.current_step_id if record else None,
                    step_code=record.current_step.code if record else None,
                    kind=ActionKind.EVALUATION_ERROR,
                    occurred_at=self.clock(),
                    success=False,
                    detail=f"{type(exc).__name__}: {exc}",
                    violation_count=record.violation_count if record else 0,
                ),
            )
            await session.commit()

    async def refresh_remaining(self, now: datetime | None = None) -> int:
        """Recompute ``remaining_hours`` for pending records that are not yet due.

        Values only ever decrease, and the write does not bump the record
        revision, so it never races an advance or a violation.

        Returns:
            Number of records updated.
        """
        now = now or self.clock()
        updated = 0
        async with self._session() as session:
            repo = SLARecordRepository(session=session)
            for record in await repo.find_watched(now):
                elapsed = self.calendar.hours_between(record.step_entered_at, now)
                remaining = max(_ZERO, quantize_hours(Decimal(record.current_step.sla_hours) - elapsed))
                if remaining < record.remaining_hours and await repo.set_remaining_hours(
                    record.id,
                    record.revision,
                    remaining,
                ):
                    updated += 1
            await session.commit()
        return updated
