"""Workflow definition domain objects.

These dataclasses describe a workflow before it is persisted: an ordered list
of steps, each with an SLA in whole hours and a violation policy. They are
validated once, on publish, and never edited in place after a record attaches.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from litestar_sla.core.policy import CallbackConfig, StepPolicy, resolve_policy
from litestar_sla.core.types import ViolationAction
from litestar_sla.exceptions import ValidationError

__all__ = ["StepDefinition", "WorkflowDefinition"]


@dataclass
class StepDefinition:
    """One stage of a workflow.

    Attributes:
        order: 1-based position within the definition.
        code: Business code, unique within the definition.
        name: Display name.
        sla_hours: Allotted time in whole hours.
        violation_action: What happens when the SLA is overrun.
        callback: Optional step-level callback configuration.
        grace_hours: Optional grace window between notify firings.
        max_notifications: Optional number of notify firings before escalation.
    """

    order: int
    code: str
    name: str
    sla_hours: int
    violation_action: ViolationAction = ViolationAction.NOTIFY
    callback: dict[str, Any] | None = None
    grace_hours: int | None = None
    max_notifications: int | None = None

    def validate(self) -> list[str]:
        """Return the problems with this step, if any."""
        errors: list[str] = []
        label = f"step '{self.code or self.order}'"
        if not self.code or not str(self.code).strip():
            errors.append(f"{label}: code is required")
        if not self.name or not str(self.name).strip():
            errors.append(f"{label}: name is required")
        if isinstance(self.sla_hours, bool) or not isinstance(self.sla_hours, int) or self.sla_hours < 0:
            errors.append(f"{label}: sla_hours must be an integer >= 0")
        try:
            self.violation_action = ViolationAction(self.violation_action)
        except ValueError:
            errors.append(f"{label}: unknown violation action '{self.violation_action}'")
        if self.grace_hours is not None and (not isinstance(self.grace_hours, int) or self.grace_hours < 0):
            errors.append(f"{label}: grace_hours must be an integer >= 0")
        if self.max_notifications is not None and (
            not isinstance(self.max_notifications, int) or self.max_notifications < 1
        ):
            errors.append(f"{label}: max_notifications must be an integer >= 1")
        try:
            CallbackConfig.from_dict(self.callback)
        except ValidationError as exc:
            errors.extend(f"{label}: {message}" for message in exc.errors)
        return errors


@dataclass
class WorkflowDefinition:
    """An ordered set of steps tracked against one business model.

    Attributes:
        flow_name: Name shared by every version of the flow.
        model: Business model the flow tracks (e.g. ``"purchase.order"``).
        steps: The steps, in any order; ``order`` decides sequencing.
        description: Optional description.
        notify_callback: Workflow-level default callback for notify steps.
        auto_approve_callback: Workflow-level default callback for auto-approve steps.
    """

    flow_name: str
    model: str
    steps: list[StepDefinition] = field(default_factory=list)
    description: str | None = None
    notify_callback: dict[str, Any] | None = None
    auto_approve_callback: dict[str, Any] | None = None

    def validate(self) -> None:
        """Check the definition is publishable.

        Raises:
            ValidationError: If step orders are not unique and contiguous from 1,
                step codes repeat, or any step or callback is malformed.
        """
        errors: list[str] = []
        if not self.flow_name or not self.flow_name.strip():
            errors.append("flow_name is required")
        if not self.model or not self.model.strip():
            errors.append("model is required")
        if not self.steps:
            errors.append("a definition needs at least one step")

        orders = [step.order for step in self.steps]
        if any(isinstance(order, bool) or not isinstance(order, int) for order in orders):
            errors.append("step orders must be integers")
        elif sorted(orders) != list(range(1, len(orders) + 1)):
            errors.append(f"step orders must be unique and contiguous from 1, got {sorted(orders)}")

        seen: set[str] = set()
        for step in self.steps:
            if step.code in seen:
                errors.append(f"duplicate step code '{step.code}'")
            seen.add(step.code)
            errors.extend(step.validate())

        for label, callback in (
            ("notify_callback", self.notify_callback),
            ("auto_approve_callback", self.auto_approve_callback),
        ):
            try:
                CallbackConfig.from_dict(callback)
            except ValidationError as exc:
                errors.extend(f"{label}: {message}" for message in exc.errors)

        if errors:
            raise ValidationError(errors)

    @property
    def ordered_steps(self) -> list[StepDefinition]:
        return sorted(self.steps, key=lambda step: step.order)

    def policy_for(self, step: StepDefinition) -> StepPolicy:
        """Resolve the effective violation policy for one of this definition's steps."""
        return resolve_policy(
            step.violation_action,
            step.callback,
            self.notify_callback,
            self.auto_approve_callback,
            grace_hours=step.grace_hours,
            max_notifications=step.max_notifications,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowDefinition:
        """Build a definition from its JSON form (camelCase or snake_case keys)."""
        steps = [
            StepDefinition(
                order=raw.get("order"),
                code=raw.get("code"),
                name=raw.get("name"),
                sla_hours=raw.get("sla_hours", raw.get("slaHours")),
                violation_action=raw.get("violation_action", raw.get("violationAction", ViolationAction.NOTIFY)),
                callback=raw.get("callback"),
                grace_hours=raw.get("grace_hours", raw.get("graceHours")),
                max_notifications=raw.get("max_notifications", raw.get("maxNotifications")),
            )
            for raw in data.get("steps") or []
        ]
        return cls(
            flow_name=data.get("flow_name", data.get("flowName", "")),
            model=data.get("model", ""),
            steps=steps,
            description=data.get("description"),
            notify_callback=data.get("notify_callback", data.get("notifyCallback")),
            auto_approve_callback=data.get("auto_approve_callback", data.get("autoApproveCallback")),
        )
