"""Runtime configuration for SLA tracking."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from litestar_sla.core.calendar import BusinessHoursCalendar, Calendar, WallClockCalendar

if TYPE_CHECKING:
    from collections.abc import Mapping

__all__ = ["SLAConfig"]


@dataclass
class SLAConfig:
    """Configuration for the record tracker and the SLA evaluator.

    Attributes:
        evaluation_interval: Time between evaluator cycles.
        notify_grace_hours: Grace window after a notify firing. When None, a
            step without its own ``grace_hours`` waits one full SLA period.
        max_notifications: Notify firings on one step before the record is
            escalated. None disables escalation.
        callback_timeout: Timeout in seconds for notify and auto-approve calls.
        calendar: Maps SLA hours onto timestamps.
    """

    evaluation_interval: timedelta = field(default_factory=lambda: timedelta(minutes=5))
    notify_grace_hours: int | None = None
    max_notifications: int | None = 3
    callback_timeout: float = 10.0
    calendar: Calendar = field(default_factory=WallClockCalendar)

    def __post_init__(self) -> None:
        if self.evaluation_interval <= timedelta(0):
            msg = "evaluation_interval must be positive"
            raise ValueError(msg)
        if self.callback_timeout <= 0:
            msg = "callback_timeout must be positive"
            raise ValueError(msg)
        if self.max_notifications is not None and self.max_notifications < 1:
            msg = "max_notifications must be at least 1"
            raise ValueError(msg)

    def grace_window(self, sla_hours: int, step_grace_hours: int | None = None) -> timedelta:
        """Return the grace window applied after a notify firing.

        Precedence is the step's own grace window, then ``notify_grace_hours``,
        then the step's SLA. A non-positive result falls back to
        ``evaluation_interval`` so a zero-hour step cannot fire every tick.
        """
        hours = next((h for h in (step_grace_hours, self.notify_grace_hours, sla_hours) if h is not None), 0)
        if hours <= 0:
            return self.evaluation_interval
        return timedelta(hours=hours)

    def notification_limit(self, step_max_notifications: int | None = None) -> int | None:
        return step_max_notifications if step_max_notifications is not None else self.max_notifications

    @classmethod
    def from_env(cls, prefix: str = "SLA_", environ: Mapping[str, str] | None = None) -> SLAConfig:
        """Build a config from environment variables.

        Recognised variables (with the default prefix): ``SLA_EVALUATION_INTERVAL_SECONDS``,
        ``SLA_NOTIFY_GRACE_HOURS``, ``SLA_MAX_NOTIFICATIONS`` (``0`` disables
        escalation), ``SLA_CALLBACK_TIMEOUT`` and ``SLA_BUSINESS_HOURS`` as
        ``"offset,start,end[,saturday_end]"``.

        Args:
            prefix: Variable name prefix.
            environ: Mapping to read instead of ``os.environ``.

        Returns:
            The config with defaults for anything unset.
        """
        env = os.environ if environ is None else environ
        config = cls()
        if (value := env.get(f"{prefix}EVALUATION_INTERVAL_SECONDS")) is not None:
            config.evaluation_interval = timedelta(seconds=float(value))
        if (value := env.get(f"{prefix}NOTIFY_GRACE_HOURS")) is not None:
            config.notify_grace_hours = int(value)
        if (value := env.get(f"{prefix}MAX_NOTIFICATIONS")) is not None:
            config.max_notifications = int(value) or None
        if (value := env.get(f"{prefix}CALLBACK_TIMEOUT")) is not None:
            config.callback_timeout = float(value)
        if value := env.get(f"{prefix}BUSINESS_HOURS"):
            parts = [int(part) for part in value.split(",")]
            config.calendar = BusinessHoursCalendar(*parts)
        config.__post_init__()
        return config
