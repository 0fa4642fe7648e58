"""Step policy dispatch.

Turns a resolved :data:`~litestar_sla.core.policy.StepPolicy` and the facts
about an overdue record into the outbound call (or internal default) for the
violation action.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from litestar_sla.core.policy import AutoApprovePolicy, NotifyPolicy, render_template
from litestar_sla.core.types import ActionKind, ViolationAction

if TYPE_CHECKING:
    from litestar_sla.core.policy import CallbackConfig, StepPolicy
    from litestar_sla.engine.callbacks import CallbackClient

__all__ = ["DispatchOutcome", "StepPolicyDispatcher", "ViolationContext"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ViolationContext:
    """Facts about an overdue record, captured before the external call.

    Attributes:
        record_id: The record's ID.
        business_record_id: ID of the business entity.
        model: Business model name.
        workflow_id: The definition's ID.
        workflow_name: The definition's flow name.
        step_id: The overdue step's ID.
        step_code: The overdue step's code.
        step_name: The overdue step's display name.
        sla_hours: The overdue step's SLA.
        overdue_by: Hours past the deadline, two decimals.
        violation_count: Violation count including this firing.
        now: The evaluation instant.
    """

    record_id: UUID
    business_record_id: str
    model: str
    workflow_id: UUID
    workflow_name: str
    step_id: UUID
    step_code: str
    step_name: str
    sla_hours: int
    overdue_by: Decimal
    violation_count: int
    now: datetime

    def variables(self, approval_type: ViolationAction) -> dict[str, Any]:
        """Template variables available to callback URLs and bodies."""
        return {
            "recordId": str(self.record_id),
            "businessRecordId": self.business_record_id,
            "model": self.model,
            "workflowId": str(self.workflow_id),
            "workflowName": self.workflow_name,
            "stepId": str(self.step_id),
            "stepCode": self.step_code,
            "stepName": self.step_name,
            "slaHours": self.sla_hours,
            "overdueBy": float(self.overdue_by),
            "violationCount": self.violation_count,
            "timestamp": self.now.isoformat(),
            "approvalType": str(approval_type),
        }


@dataclass
class DispatchOutcome:
    """Result of a successful violation action.

    Attributes:
        kind: The action log kind to record.
        detail: Human readable outcome.
        approval_payload: Synthetic approval payload (auto-approve only).
        request: Description of the outbound request, if one was made.
    """

    kind: ActionKind
    detail: str
    approval_payload: dict[str, Any] | None = None
    request: dict[str, Any] = field(default_factory=dict)


class StepPolicyDispatcher:
    """Executes violation policies.

    Args:
        client: Client for callback endpoints. Required only when a policy
            carries a callback configuration.
        event_bus: Optional event bus; receives ``sla.notify.internal`` for
            notifications without a callback.
    """

    def __init__(self, client: CallbackClient | None = None, event_bus: Any | None = None) -> None:
        self.client = client
        self.event_bus = event_bus

    async def dispatch(self, policy: StepPolicy, context: ViolationContext) -> DispatchOutcome:
        """Run the action for ``policy``.

        Args:
            policy: The step's resolved violation policy.
            context: Facts about the overdue record.

        Returns:
            The outcome of a successful action.

        Raises:
            ExternalCallFailureError: If a configured callback fails.
        """
        match policy:
            case NotifyPolicy(callback=None):
                return await self._notify_internal(context)
            case NotifyPolicy(callback=callback):
                return await self._notify_callback(callback, context)
            case AutoApprovePolicy(callback=None):
                return self._auto_approve_internal(context)
            case AutoApprovePolicy(callback=callback):
                return await self._auto_approve_callback(callback, context)
        msg = f"Unknown policy {policy!r}"
        raise TypeError(msg)

    def _require_client(self) -> CallbackClient:
        if self.client is None:
            msg = "A CallbackClient is required for steps with callback configuration"
            raise RuntimeError(msg)
        return self.client

    @staticmethod
    def _render(
        callback: CallbackConfig,
        default_body: dict[str, Any],
        variables: dict[str, Any],
    ) -> tuple[str, dict[str, Any]]:
        url = str(render_template(callback.url, variables))
        body = render_template(callback.body, variables) if callback.body is not None else default_body
        return url, body

    async def _notify_internal(self, context: ViolationContext) -> DispatchOutcome:
        logger.warning(
            "SLA violated: record %s (%s#%s) step %s overdue by %sh",
            context.record_id,
            context.model,
            context.business_record_id,
            context.step_code,
            context.overdue_by,
        )
        if self.event_bus:
            await self.event_bus.emit(
                "sla.notify.internal",
                record_id=context.record_id,
                step_code=context.step_code,
                overdue_by=context.overdue_by,
            )
        return DispatchOutcome(kind=ActionKind.VIOLATION_NOTIFY, detail="internal notification")

    async def _notify_callback(self, callback: CallbackConfig, context: ViolationContext) -> DispatchOutcome:
        default_body = {
            "recordId": str(context.record_id),
            "stepCode": context.step_code,
            "slaHours": context.sla_hours,
            "overdueBy": float(context.overdue_by),
        }
        url, body = self._render(callback, default_body, context.variables(ViolationAction.NOTIFY))
        status_code = await self._require_client().notify(callback, url, body)
        return DispatchOutcome(
            kind=ActionKind.VIOLATION_NOTIFY,
            detail=f"notified {url} (HTTP {status_code})",
            request={"url": url, "method": callback.method, "body": body, "status_code": status_code},
        )

    @staticmethod
    def _auto_approve_internal(context: ViolationContext) -> DispatchOutcome:
        payload = {
            "approved_by": "system",
            "automatic": True,
            "reason": "sla_violation",
            "step_code": context.step_code,
            "approved_at": context.now.isoformat(),
        }
        return DispatchOutcome(
            kind=ActionKind.VIOLATION_AUTO_APPROVE,
            detail="auto-approved by system",
            approval_payload=payload,
        )

    async def _auto_approve_callback(self, callback: CallbackConfig, context: ViolationContext) -> DispatchOutcome:
        default_body = {"recordId": str(context.record_id), "stepCode": context.step_code}
        url, body = self._render(callback, default_body, context.variables(ViolationAction.AUTO_APPROVE))
        payload = await self._require_client().request_approval(callback, url, body)
        return DispatchOutcome(
            kind=ActionKind.VIOLATION_AUTO_APPROVE,
            detail=f"auto-approved via {url}",
            approval_payload=payload,
            request={"url": url, "method": callback.method, "body": body},
        )
