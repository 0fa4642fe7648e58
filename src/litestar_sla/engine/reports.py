"""Action log reads and SLA reporting.

The reporting aggregator only reads: it combines records started inside a
trailing window with their action log entries into per-user compliance
statistics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from litestar_sla.core.calendar import quantize_hours
from litestar_sla.core.types import ActionKind, RecordStatus
from litestar_sla.db.repositories import SLAActionLogRepository, SLARecordRepository
from litestar_sla.engine.tracker import utc_now
from litestar_sla.exceptions import ValidationError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from litestar_sla.db.models import SLAActionLogModel, SLARecordModel

__all__ = [
    "ALL_USERS",
    "ActionLogService",
    "DashboardSummary",
    "ReportingAggregator",
    "SLAReport",
    "UserSLAStats",
]

ALL_USERS = "all"
UNASSIGNED = "unassigned"
MAX_PAGE_SIZE = 100
_HOUR = timedelta(hours=1)


@dataclass
class UserSLAStats:
    """SLA compliance of one user's records.

    Attributes:
        user_id: The user, ``"unassigned"`` for records nobody is assigned to,
            or ``"all"`` for the totals row.
        name: Display name, if known.
        login: Login name, if known.
        total: Records started in the window.
        completed: Records completed.
        violated: Records with at least one violation entry.
        pending: Records still pending.
        escalated: Records escalated.
        success_rate: ``completed / total``, 0 when there are no records.
        avg_completion_hours: Mean of ``approved_at - started_at`` over completed records.
        violation_events: Violations across all the user's records. Failed attempts
            retried for the same overrun count once.
    """

    user_id: str
    name: str | None = None
    login: str | None = None
    total: int = 0
    completed: int = 0
    violated: int = 0
    pending: int = 0
    escalated: int = 0
    success_rate: float = 0.0
    avg_completion_hours: float = 0.0
    violation_events: int = 0
    _completion_hours: list[Decimal] = field(default_factory=list, repr=False)

    def add(self, record: SLARecordModel, violation_events: int) -> None:
        self.total += 1
        status = RecordStatus(record.status)
        if status == RecordStatus.COMPLETED:
            self.completed += 1
            if record.approved_at is not None:
                self._completion_hours.append(Decimal(str((record.approved_at - record.started_at) / _HOUR)))
        elif status == RecordStatus.ESCALATED:
            self.escalated += 1
        else:
            self.pending += 1
        if violation_events:
            self.violated += 1
            self.violation_events += violation_events

    def finalize(self) -> UserSLAStats:
        self.success_rate = round(self.completed / self.total, 4) if self.total else 0.0
        if self._completion_hours:
            mean = sum(self._completion_hours, Decimal(0)) / len(self._completion_hours)
            self.avg_completion_hours = float(quantize_hours(mean))
        else:
            self.avg_completion_hours = 0.0
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "login": self.login,
            "total": self.total,
            "completed": self.completed,
            "violated": self.violated,
            "pending": self.pending,
            "escalated": self.escalated,
            "success_rate": self.success_rate,
            "avg_completion_hours": self.avg_completion_hours,
            "violation_events": self.violation_events,
        }


@dataclass
class SLAReport:
    """Per-user SLA statistics over a trailing window.

    Attributes:
        user_id: The requested user, or ``"all"``.
        window_days: Length of the window.
        since: Start of the window.
        generated_at: When the report was computed.
        users: One row per user, ordered by user ID.
        totals: Statistics over every record in the window, counted once each.
    """

    user_id: str
    window_days: int
    since: datetime
    generated_at: datetime
    users: list[UserSLAStats]
    totals: UserSLAStats


@dataclass
class DashboardSummary:
    """Current record counts plus action totals over a window."""

    pending: int
    overdue: int
    completed: int
    escalated: int
    violation_events: int
    failed_actions: int
    window_days: int


class ReportingAggregator:
    """Computes SLA compliance statistics.

    Args:
        session_maker: Factory for read-only sessions.
        clock: Returns the current time.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.session_maker = session_maker
        self.clock = clock

    @staticmethod
    def _validate_window(window_days: int) -> None:
        if isinstance(window_days, bool) or not isinstance(window_days, int) or window_days < 1:
            raise ValidationError("windowDays must be a positive integer")

    async def sla_report(self, user_id: str = ALL_USERS, window_days: int = 30) -> SLAReport:
        """Compute per-user SLA statistics.

        Args:
            user_id: A user ID, or ``"all"`` for every user.
            window_days: Only records started within this many days count.

        Returns:
            The report.

        Raises:
            ValidationError: If ``window_days`` is not a positive integer.
        """
        self._validate_window(window_days)
        now = self.clock()
        since = now - timedelta(days=window_days)
        single_user = user_id if user_id and user_id != ALL_USERS else None

        async with self.session_maker() as session:
            records = await SLARecordRepository(session=session).records_started_since(since, single_user)
            events = await SLAActionLogRepository(session=session).violation_counts([r.id for r in records])

        rows: dict[str, UserSLAStats] = {}
        totals = UserSLAStats(user_id=user_id or ALL_USERS)
        for record in records:
            record_events = events.get(record.id, 0)
            totals.add(record, record_events)
            assignees = [a for a in record.assignees if single_user is None or a.user_id == single_user]
            if not assignees:
                if single_user is None:
                    rows.setdefault(UNASSIGNED, UserSLAStats(user_id=UNASSIGNED)).add(record, record_events)
                continue
            for assignee in assignees:
                row = rows.setdefault(
                    assignee.user_id,
                    UserSLAStats(user_id=assignee.user_id, name=assignee.name, login=assignee.login),
                )
                row.add(record, record_events)

        if single_user is not None and single_user not in rows:
            rows[single_user] = UserSLAStats(user_id=single_user)

        return SLAReport(
            user_id=user_id or ALL_USERS,
            window_days=window_days,
            since=since,
            generated_at=now,
            users=[rows[key].finalize() for key in sorted(rows)],
            totals=totals.finalize(),
        )

    async def summary(self, window_days: int = 30) -> DashboardSummary:
        """Record counts by status plus violation and failure totals over a window."""
        self._validate_window(window_days)
        now = self.clock()
        since = now - timedelta(days=window_days)
        async with self.session_maker() as session:
            records = SLARecordRepository(session=session)
            logs = SLAActionLogRepository(session=session)
            counts = await records.count_by_status()
            overdue = await records.count_overdue(now)
            violations = await logs.count_violations(since)
            _, failed = await logs.find_logs(success=False, since=since, limit=1)
        return DashboardSummary(
            pending=counts[RecordStatus.PENDING],
            overdue=overdue,
            completed=counts[RecordStatus.COMPLETED],
            escalated=counts[RecordStatus.ESCALATED],
            violation_events=violations,
            failed_actions=failed,
            window_days=window_days,
        )

    async def export_report(self, user_id: str = ALL_USERS, window_days: int = 30) -> str:
        """Render :meth:`sla_report` as a plain-text table."""
        report = await self.sla_report(user_id, window_days)
        header = ("User", "Total", "Completed", "Violated", "Pending", "Escalated", "Success %", "Avg hours")
        lines = [
            "SLA REPORT",
            f"Generated: {report.generated_at.isoformat()}",
            f"Window: last {report.window_days} days (since {report.since.isoformat()})",
            f"User: {report.user_id}",
            "",
            "{:<24}{:>8}{:>11}{:>10}{:>9}{:>11}{:>11}{:>11}".format(*header),
        ]
        for row in [*report.users, report.totals]:
            label = row.login or row.name or row.user_id
            if row is report.totals:
                lines.append("-" * 95)
                label = "TOTAL"
            lines.append(
                f"{label[:23]:<24}{row.total:>8}{row.completed:>11}{row.violated:>10}{row.pending:>9}"
                f"{row.escalated:>11}{row.success_rate * 100:>10.1f}%{row.avg_completion_hours:>11.2f}",
            )
        return "\n".join(lines) + "\n"


class ActionLogService:
    """Filtered, paginated reads of the action log.

    Args:
        session_maker: Factory for read-only sessions.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker

    async def list_logs(
        self,
        *,
        user_id: str | None = None,
        record_id: UUID | None = None,
        kind: ActionKind | None = None,
        success: bool | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        search: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[Sequence[SLAActionLogModel], int]:
        """List action log entries, newest first.

        Args:
            user_id: Only entries for records assigned to this user.
            record_id: Only entries for this record.
            kind: Only entries of this kind.
            success: Only successful or only failed entries.
            since: Only entries at or after this instant.
            until: Only entries at or before this instant.
            search: Substring match on the detail or business record ID.
            page: 1-based page number.
            page_size: Entries per page, at most 100.

        Returns:
            Tuple of (entries, total_count).

        Raises:
            ValidationError: If the page or date range is invalid.
        """
        if page < 1:
            raise ValidationError("page must be >= 1")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(f"pageSize must be between 1 and {MAX_PAGE_SIZE}")
        if since and until and since > until:
            raise ValidationError("'since' must not be after 'until'")
        async with self.session_maker() as session:
            return await SLAActionLogRepository(session=session).find_logs(
                user_id=user_id,
                record_id=record_id,
                kind=kind,
                success=success,
                since=since,
                until=until,
                search=search,
                limit=page_size,
                offset=(page - 1) * page_size,
            )
