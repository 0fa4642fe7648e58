"""Tests for workflow definitions, violation policies and callback templates."""

from __future__ import annotations

import pytest

from litestar_sla.core.definition import StepDefinition, WorkflowDefinition
from litestar_sla.core.policy import (
    AutoApprovePolicy,
    CallbackConfig,
    NotifyPolicy,
    render_template,
    resolve_policy,
)
from litestar_sla.core.types import ActionKind, RecordStatus, ViolationAction
from litestar_sla.exceptions import ValidationError


def step(order: int, code: str, sla_hours: int = 4, **kwargs) -> StepDefinition:
    return StepDefinition(order=order, code=code, name=code.title(), sla_hours=sla_hours, **kwargs)


@pytest.mark.unit
class TestTypes:
    """Tests for the shared enums."""

    def test_values_are_lowercase(self) -> None:
        assert RecordStatus.PENDING == "pending"
        assert ViolationAction.AUTO_APPROVE == "auto_approve"
        assert ActionKind.VIOLATION_NOTIFY == "violation_notify"

    def test_terminal_statuses(self) -> None:
        assert not RecordStatus.PENDING.is_terminal
        assert RecordStatus.COMPLETED.is_terminal
        assert RecordStatus.ESCALATED.is_terminal

    def test_evaluation_errors_are_not_violations(self) -> None:
        assert ActionKind.VIOLATION_AUTO_APPROVE.is_violation
        assert not ActionKind.EVALUATION_ERROR.is_violation


@pytest.mark.unit
class TestWorkflowDefinitionValidation:
    """Tests for WorkflowDefinition.validate."""

    def test_valid_definition(self) -> None:
        definition = WorkflowDefinition("po", "purchase.order", [step(2, "sign"), step(1, "review")])
        definition.validate()
        assert [s.code for s in definition.ordered_steps] == ["review", "sign"]

    def test_requires_a_step(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            WorkflowDefinition("po", "purchase.order", []).validate()
        assert "a definition needs at least one step" in exc_info.value.errors

    @pytest.mark.parametrize("orders", [(1, 3), (0, 1), (1, 1), (2, 3)])
    def test_orders_must_be_contiguous_from_one(self, orders: tuple[int, int]) -> None:
        definition = WorkflowDefinition("po", "purchase.order", [step(orders[0], "a"), step(orders[1], "b")])
        with pytest.raises(ValidationError, match="contiguous"):
            definition.validate()

    def test_non_integer_order(self) -> None:
        definition = WorkflowDefinition("po", "purchase.order", [step(None, "a")])  # type: ignore[arg-type]
        with pytest.raises(ValidationError, match="integers"):
            definition.validate()

    def test_duplicate_codes(self) -> None:
        definition = WorkflowDefinition("po", "purchase.order", [step(1, "a"), step(2, "a")])
        with pytest.raises(ValidationError, match="duplicate step code 'a'"):
            definition.validate()

    def test_negative_sla(self) -> None:
        with pytest.raises(ValidationError, match="sla_hours"):
            WorkflowDefinition("po", "purchase.order", [step(1, "a", sla_hours=-1)]).validate()

    def test_zero_sla_is_allowed(self) -> None:
        WorkflowDefinition("po", "purchase.order", [step(1, "a", sla_hours=0)]).validate()

    def test_unknown_violation_action(self) -> None:
        definition = WorkflowDefinition("po", "purchase.order", [step(1, "a", violation_action="escalate")])
        with pytest.raises(ValidationError, match="unknown violation action"):
            definition.validate()

    def test_violation_action_is_coerced(self) -> None:
        definition = WorkflowDefinition("po", "purchase.order", [step(1, "a", violation_action="auto_approve")])
        definition.validate()
        assert definition.steps[0].violation_action is ViolationAction.AUTO_APPROVE

    def test_bad_callback_is_reported(self) -> None:
        definition = WorkflowDefinition(
            "po",
            "purchase.order",
            [step(1, "a", callback={"url": ""})],
            notify_callback={"url": "https://x.test", "method": "DELETE"},
        )
        with pytest.raises(ValidationError) as exc_info:
            definition.validate()
        assert len(exc_info.value.errors) == 2

    def test_collects_every_error(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            WorkflowDefinition("", "", [step(1, "a", sla_hours=-2, max_notifications=0)]).validate()
        assert len(exc_info.value.errors) == 4

    def test_from_dict_accepts_camel_case(self) -> None:
        definition = WorkflowDefinition.from_dict(
            {
                "flowName": "po",
                "model": "purchase.order",
                "autoApproveCallback": {"url": "https://approve.test"},
                "steps": [
                    {"order": 1, "code": "review", "name": "Review", "slaHours": 4, "graceHours": 1},
                    {"order": 2, "code": "sign", "name": "Sign", "slaHours": 8, "violationAction": "auto_approve"},
                ],
            }
        )
        definition.validate()
        assert definition.flow_name == "po"
        assert definition.steps[0].grace_hours == 1
        assert isinstance(definition.policy_for(definition.steps[1]), AutoApprovePolicy)
        assert definition.policy_for(definition.steps[1]).callback.url == "https://approve.test"  # type: ignore[union-attr]


@pytest.mark.unit
class TestCallbackConfig:
    """Tests for CallbackConfig parsing."""

    def test_empty_is_none(self) -> None:
        assert CallbackConfig.from_dict(None) is None
        assert CallbackConfig.from_dict({}) is None

    def test_defaults(self) -> None:
        config = CallbackConfig.from_dict({"url": "https://hooks.test/sla"})
        assert config == CallbackConfig(url="https://hooks.test/sla", method="POST")

    def test_method_is_normalized(self) -> None:
        assert CallbackConfig.from_dict({"url": "https://x.test", "method": "put"}).method == "PUT"  # type: ignore[union-attr]

    @pytest.mark.parametrize(
        "data",
        [
            {"url": None},
            {"url": "https://x.test", "method": "DELETE"},
            {"url": "https://x.test", "headers": ["x"]},
            {"url": "https://x.test", "body": "text"},
        ],
    )
    def test_rejects_malformed(self, data: dict) -> None:
        with pytest.raises(ValidationError):
            CallbackConfig.from_dict(data)

    def test_to_dict_round_trip(self) -> None:
        data = {"url": "https://x.test", "method": "PATCH", "headers": {"X-Key": "k"}, "body": {"id": "{recordId}"}}
        assert CallbackConfig.from_dict(data).to_dict() == data  # type: ignore[union-attr]


@pytest.mark.unit
class TestResolvePolicy:
    """Tests for step/workflow callback precedence."""

    def test_step_callback_wins(self) -> None:
        policy = resolve_policy(
            ViolationAction.NOTIFY,
            {"url": "https://step.test"},
            {"url": "https://workflow.test"},
        )
        assert isinstance(policy, NotifyPolicy)
        assert policy.callback.url == "https://step.test"  # type: ignore[union-attr]

    def test_workflow_callback_is_the_default(self) -> None:
        policy = resolve_policy("notify", None, {"url": "https://workflow.test"}, {"url": "https://approve.test"})
        assert policy.callback.url == "https://workflow.test"  # type: ignore[union-attr]

    def test_auto_approve_uses_its_own_default(self) -> None:
        policy = resolve_policy("auto_approve", None, {"url": "https://workflow.test"}, {"url": "https://approve.test"})
        assert isinstance(policy, AutoApprovePolicy)
        assert policy.callback.url == "https://approve.test"  # type: ignore[union-attr]

    def test_no_callback_means_internal(self) -> None:
        policy = resolve_policy("notify", None, grace_hours=2, max_notifications=5)
        assert policy == NotifyPolicy(callback=None, grace_hours=2, max_notifications=5)

    def test_policy_kind_tag(self) -> None:
        assert NotifyPolicy().kind is ViolationAction.NOTIFY
        assert AutoApprovePolicy().kind is ViolationAction.AUTO_APPROVE


@pytest.mark.unit
class TestRenderTemplate:
    """Tests for placeholder substitution."""

    variables = {"recordId": "r-1", "slaHours": 4, "overdueBy": 1.5}

    def test_substitutes_inside_strings(self) -> None:
        assert render_template("https://x.test/{recordId}/late", self.variables) == "https://x.test/r-1/late"

    def test_whole_placeholder_keeps_type(self) -> None:
        assert render_template("{slaHours}", self.variables) == 4

    def test_unknown_placeholders_are_kept(self) -> None:
        assert render_template("{missing} after {overdueBy}h", self.variables) == "{missing} after 1.5h"

    def test_nested_structures(self) -> None:
        body = {"record": "{recordId}", "meta": [{"hours": "{slaHours}"}, 7], "flag": True}
        assert render_template(body, self.variables) == {"record": "r-1", "meta": [{"hours": 4}, 7], "flag": True}
