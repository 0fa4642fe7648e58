"""Tests for the workflow definition store."""

from __future__ import annotations

from uuid import uuid4

import pytest
from conftest import make_definition

from litestar_sla.core.definition import StepDefinition
from litestar_sla.core.types import ViolationAction
from litestar_sla.db.repositories import WorkflowDefinitionRepository
from litestar_sla.engine.store import WorkflowDefinitionStore, to_domain
from litestar_sla.exceptions import DefinitionLockedError, DefinitionNotFoundError, ValidationError


@pytest.mark.integration
class TestWorkflowDefinitionStore:
    """Tests for publishing, versioning and editing definitions."""

    async def test_publish(self, store: WorkflowDefinitionStore) -> None:
        model = await store.publish(make_definition(description="PO approval"))

        assert model.version == 1
        assert model.is_active
        assert [step.code for step in model.steps] == ["review", "sign"]
        assert model.steps[1].violation_action == ViolationAction.AUTO_APPROVE

    async def test_publish_validates(self, store: WorkflowDefinitionStore) -> None:
        definition = make_definition(StepDefinition(order=2, code="a", name="A", sla_hours=1))
        with pytest.raises(ValidationError):
            await store.publish(definition)
        assert (await store.list_definitions())[1] == 0

    async def test_republish_creates_next_version(self, store: WorkflowDefinitionStore) -> None:
        first = await store.publish(make_definition())
        second = await store.publish(make_definition())

        assert second.version == 2
        assert (await store.get(first.id)).is_active is False
        assert (await store.get_active("po_approval")).id == second.id

    async def test_flows_are_versioned_independently(self, store: WorkflowDefinitionStore) -> None:
        await store.publish(make_definition())
        other = await store.publish(make_definition(flow_name="invoice", model="account.move"))
        assert other.version == 1

    async def test_get_missing(self, store: WorkflowDefinitionStore) -> None:
        with pytest.raises(DefinitionNotFoundError):
            await store.get(uuid4())
        with pytest.raises(DefinitionNotFoundError):
            await store.get_active("nope")

    async def test_list_definitions_filters(self, store: WorkflowDefinitionStore) -> None:
        await store.publish(make_definition())
        await store.publish(make_definition())
        await store.publish(make_definition(flow_name="invoice", model="account.move"))

        _, total = await store.list_definitions()
        assert total == 3
        active, active_total = await store.list_definitions(active_only=True)
        assert active_total == 2
        assert {d.flow_name for d in active} == {"po_approval", "invoice"}
        by_model, _ = await store.list_definitions(model="account.move")
        assert [d.flow_name for d in by_model] == ["invoice"]

    async def test_update_unused_definition(self, store: WorkflowDefinitionStore) -> None:
        model = await store.publish(make_definition())
        replacement = make_definition(
            StepDefinition(order=1, code="sign", name="Sign", sla_hours=2),
            StepDefinition(order=2, code="review", name="Review", sla_hours=6),
            StepDefinition(order=3, code="archive", name="Archive", sla_hours=1),
            description="reordered",
        )

        updated = await store.update(model.id, replacement)

        assert updated.version == 1
        assert updated.description == "reordered"
        assert [(s.order, s.code) for s in updated.steps] == [(1, "sign"), (2, "review"), (3, "archive")]
        assert [s.code for s in (await store.get(model.id)).steps] == ["sign", "review", "archive"]

    async def test_update_cannot_rename_flow(self, store: WorkflowDefinitionStore) -> None:
        model = await store.publish(make_definition())
        with pytest.raises(ValidationError, match="flow_name"):
            await store.update(model.id, make_definition(flow_name="other"))

    async def test_update_locked_once_records_exist(self, store: WorkflowDefinitionStore, tracker) -> None:
        model = await store.publish(make_definition())
        await tracker.create_record(model.id, "purchase.order", "PO-1")

        with pytest.raises(DefinitionLockedError) as exc_info:
            await store.update(model.id, make_definition())
        assert exc_info.value.record_count == 1

    async def test_update_locked_by_record_created_after_the_count(
        self,
        store: WorkflowDefinitionStore,
        tracker,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        model = await store.publish(make_definition())
        original = WorkflowDefinitionRepository.count_records
        calls = 0

        async def stale_count(self, definition_id):
            nonlocal calls
            calls += 1
            if calls == 1:
                await tracker.create_record(model.id, "purchase.order", "PO-1")
                return 0
            return await original(self, definition_id)

        monkeypatch.setattr(WorkflowDefinitionRepository, "count_records", stale_count)
        edited = make_definition(StepDefinition(order=1, code="triage", name="Triage", sla_hours=2))
        with pytest.raises(DefinitionLockedError) as exc_info:
            await store.update(model.id, edited)
        assert exc_info.value.record_count == 1
        assert [s.code for s in (await store.get(model.id)).steps] == ["review", "sign"]

    async def test_deactivate(self, store: WorkflowDefinitionStore) -> None:
        model = await store.publish(make_definition())
        assert (await store.deactivate(model.id)).is_active is False
        with pytest.raises(DefinitionNotFoundError):
            await store.get_active("po_approval")

    async def test_to_domain(self, store: WorkflowDefinitionStore) -> None:
        model = await store.publish(make_definition(notify_callback={"url": "https://hooks.test"}))
        definition = to_domain(model)
        definition.validate()
        assert definition.notify_callback == {"url": "https://hooks.test"}
        assert [s.sla_hours for s in definition.ordered_steps] == [4, 8]
