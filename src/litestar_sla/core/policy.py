"""Violation policies and callback configuration.

A step's violation policy is a tagged union keyed by ``kind``: either a
:class:`NotifyPolicy` or an :class:`AutoApprovePolicy`, each optionally
carrying a :class:`CallbackConfig`. Dispatch is a single match on the tag.

Callback configuration may be set on a step or on its workflow definition.
The step-level configuration always wins; the workflow-level value is a
default for steps that configure none.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Literal, Union

from litestar_sla.core.types import ViolationAction
from litestar_sla.exceptions import ValidationError

__all__ = [
    "AutoApprovePolicy",
    "CallbackConfig",
    "NotifyPolicy",
    "StepPolicy",
    "render_template",
    "resolve_policy",
]

_ALLOWED_METHODS = frozenset({"GET", "POST", "PUT", "PATCH"})
_PLACEHOLDER = re.compile(r"\{(\w+)\}")


@dataclass(frozen=True)
class CallbackConfig:
    """Outbound HTTP call made when a violation action fires.

    Attributes:
        url: Endpoint to call. May contain ``{placeholder}`` variables.
        method: HTTP method. Defaults to POST.
        headers: Extra request headers.
        body: Optional body template. String values anywhere inside it have
            their placeholders substituted. When omitted, the default body
            for the action is sent.
    """

    url: str
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    body: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CallbackConfig | None:
        """Build a config from its JSON form.

        Args:
            data: Mapping with ``url`` and optional ``method``, ``headers``, ``body``.

        Returns:
            The config, or None when ``data`` is empty.

        Raises:
            ValidationError: If the mapping is malformed.
        """
        if not data:
            return None
        url = data.get("url")
        if not isinstance(url, str) or not url.strip():
            raise ValidationError("callback 'url' must be a non-empty string")
        method = str(data.get("method") or "POST").upper()
        if method not in _ALLOWED_METHODS:
            raise ValidationError(f"callback method '{method}' is not supported")
        headers = data.get("headers") or {}
        if not isinstance(headers, dict):
            raise ValidationError("callback 'headers' must be an object")
        body = data.get("body")
        if body is not None and not isinstance(body, dict):
            raise ValidationError("callback 'body' must be an object")
        return cls(url=url, method=method, headers={str(k): str(v) for k, v in headers.items()}, body=body)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"url": self.url, "method": self.method}
        if self.headers:
            data["headers"] = dict(self.headers)
        if self.body is not None:
            data["body"] = self.body
        return data


@dataclass(frozen=True)
class NotifyPolicy:
    """Notify on violation and keep the record on its step.

    Attributes:
        callback: Endpoint to notify, or None for an internal notification.
        grace_hours: Step-specific grace window, overriding the configured default.
        max_notifications: Step-specific exhaustion limit, overriding the configured default.
    """

    callback: CallbackConfig | None = None
    grace_hours: int | None = None
    max_notifications: int | None = None
    kind: Literal[ViolationAction.NOTIFY] = ViolationAction.NOTIFY


@dataclass(frozen=True)
class AutoApprovePolicy:
    """Approve the step on the approver's behalf on violation.

    Attributes:
        callback: Endpoint that performs the approval and returns the payload,
            or None to approve with a system-generated payload.
    """

    callback: CallbackConfig | None = None
    kind: Literal[ViolationAction.AUTO_APPROVE] = ViolationAction.AUTO_APPROVE


StepPolicy = Union[NotifyPolicy, AutoApprovePolicy]


def resolve_policy(
    action: ViolationAction | str,
    step_callback: dict[str, Any] | None,
    workflow_notify_callback: dict[str, Any] | None = None,
    workflow_auto_approve_callback: dict[str, Any] | None = None,
    *,
    grace_hours: int | None = None,
    max_notifications: int | None = None,
) -> StepPolicy:
    """Resolve the effective policy for a step.

    Args:
        action: The step's violation action.
        step_callback: Callback configured on the step itself.
        workflow_notify_callback: Workflow-level default for notify steps.
        workflow_auto_approve_callback: Workflow-level default for auto-approve steps.
        grace_hours: Step-level grace window for notify steps.
        max_notifications: Step-level exhaustion limit for notify steps.

    Returns:
        The tagged policy with the winning callback configuration.
    """
    action = ViolationAction(action)
    if action is ViolationAction.NOTIFY:
        callback = CallbackConfig.from_dict(step_callback) or CallbackConfig.from_dict(workflow_notify_callback)
        return NotifyPolicy(callback=callback, grace_hours=grace_hours, max_notifications=max_notifications)
    callback = CallbackConfig.from_dict(step_callback) or CallbackConfig.from_dict(workflow_auto_approve_callback)
    return AutoApprovePolicy(callback=callback)


def render_template(value: Any, variables: dict[str, Any]) -> Any:
    """Substitute ``{name}`` placeholders in every string inside ``value``.

    Unknown placeholders are left untouched. A string that is exactly one
    placeholder is replaced by the variable's raw value so numbers stay numbers.

    Args:
        value: A string, list or mapping, nested arbitrarily.
        variables: Placeholder values.

    Returns:
        A new structure with placeholders substituted.
    """
    if isinstance(value, str):
        whole = _PLACEHOLDER.fullmatch(value)
        if whole and whole.group(1) in variables:
            return variables[whole.group(1)]
        return _PLACEHOLDER.sub(
            lambda m: str(variables[m.group(1)]) if m.group(1) in variables else m.group(0),
            value,
        )
    if isinstance(value, dict):
        return {key: render_template(item, variables) for key, item in value.items()}
    if isinstance(value, list):
        return [render_template(item, variables) for item in value]
    return value
