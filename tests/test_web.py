"""HTTP API tests.

Runs the SLAPlugin's REST endpoints against an async SQLite in-memory
database with the Litestar AsyncTestClient.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import pytest
from conftest import T0, FrozenClock, StubCallbackClient
from litestar import Litestar
from litestar.status_codes import (
    HTTP_200_OK,
    HTTP_201_CREATED,
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
)
from litestar.testing import AsyncTestClient

from litestar_sla import SLAPlugin, SLAPluginConfig
from litestar_sla.exceptions import (
    ConcurrentModificationError,
    DefinitionLockedError,
    DuplicateRecordError,
    ExternalCallFailureError,
    PreconditionFailedError,
    SLAError,
    StoreUnavailableError,
    ValidationError,
)
from litestar_sla.web import error_code_for

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from httpx import AsyncClient

DEFINITION = {
    "flowName": "po_approval",
    "model": "purchase.order",
    "description": "PO approval",
    "steps": [
        {"order": 1, "code": "review", "name": "Review", "slaHours": 4},
        {"order": 2, "code": "sign", "name": "Sign", "slaHours": 8, "violationAction": "auto_approve"},
    ],
}


@pytest.fixture
async def client(session_maker, clock: FrozenClock, stub_client: StubCallbackClient) -> AsyncIterator[AsyncClient]:
    plugin = SLAPlugin(
        config=SLAPluginConfig(
            session_maker=session_maker,
            callback_client=stub_client,  # type: ignore[arg-type]
            clock=clock,
            start_evaluator=False,
        )
    )
    app = Litestar(plugins=[plugin])
    async with AsyncTestClient(app=app) as test_client:
        yield test_client


async def publish(client: AsyncClient, body: dict[str, Any] | None = None) -> dict[str, Any]:
    response = await client.post("/sla/definitions", json=body or DEFINITION)
    assert response.status_code == HTTP_201_CREATED, response.text
    return response.json()


async def create(client: AsyncClient, definition_id: str, business_record_id: str = "PO-1", **extra: Any) -> dict:
    response = await client.post(
        "/sla/records",
        json={
            "workflowDefinitionId": definition_id,
            "model": "purchase.order",
            "businessRecordId": business_record_id,
            **extra,
        },
    )
    assert response.status_code == HTTP_201_CREATED, response.text
    return response.json()


@pytest.mark.integration
class TestDefinitionEndpoints:
    """Tests for /sla/definitions."""

    async def test_publish(self, client: AsyncClient) -> None:
        body = await publish(client)

        assert body["flowName"] == "po_approval"
        assert body["version"] == 1
        assert body["isActive"] is True
        assert [(s["code"], s["slaHours"], s["violationAction"]) for s in body["steps"]] == [
            ("review", 4, "notify"),
            ("sign", 8, "auto_approve"),
        ]

    async def test_publish_invalid(self, client: AsyncClient) -> None:
        bad = {**DEFINITION, "steps": [{"order": 2, "code": "review", "name": "Review", "slaHours": 4}]}
        response = await client.post("/sla/definitions", json=bad)

        assert response.status_code == HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "validation_error"
        assert response.json()["errors"]

    async def test_list_and_get(self, client: AsyncClient) -> None:
        first = await publish(client)
        second = await publish(client)

        response = await client.get("/sla/definitions", params={"flowName": "po_approval", "activeOnly": "true"})
        assert response.status_code == HTTP_200_OK
        assert [d["id"] for d in response.json()] == [second["id"]]

        response = await client.get(f"/sla/definitions/{first['id']}")
        assert response.json()["isActive"] is False

    async def test_get_unknown(self, client: AsyncClient) -> None:
        response = await client.get(f"/sla/definitions/{uuid4()}")
        assert response.status_code == HTTP_404_NOT_FOUND
        assert response.json()["error"] == "definition_not_found"

    async def test_update_locked(self, client: AsyncClient) -> None:
        definition = await publish(client)
        edited = {**DEFINITION, "description": "edited"}

        response = await client.patch(f"/sla/definitions/{definition['id']}", json=edited)
        assert response.status_code == HTTP_200_OK
        assert response.json()["description"] == "edited"

        await create(client, definition["id"])
        response = await client.patch(f"/sla/definitions/{definition['id']}", json=edited)
        assert response.status_code == HTTP_409_CONFLICT
        assert response.json()["error"] == "definition_locked"

    async def test_deactivate(self, client: AsyncClient) -> None:
        definition = await publish(client)
        response = await client.post(f"/sla/definitions/{definition['id']}/deactivate")
        assert response.status_code == HTTP_200_OK
        assert response.json()["isActive"] is False


@pytest.mark.integration
class TestRecordEndpoints:
    """Tests for /sla/records."""

    async def test_create(self, client: AsyncClient) -> None:
        definition = await publish(client)
        body = await create(client, definition["id"], assignees=[{"id": "u1", "name": "Ann Lee", "login": "ann"}])

        assert body["workflowDefinitionId"] == definition["id"]
        assert body["businessRecordId"] == "PO-1"
        assert body["status"] == "pending"
        assert body["currentStepCode"] == "review"
        assert body["remainingHours"] == 4.0
        assert body["violationCount"] == 0
        assert body["assignees"] == [{"id": "u1", "name": "Ann Lee", "login": "ann"}]
        assert body["nextDueAt"].startswith("2026-01-05T13:00:00")

    async def test_create_duplicate(self, client: AsyncClient) -> None:
        definition = await publish(client)
        await create(client, definition["id"])

        response = await client.post(
            "/sla/records",
            json={"workflowDefinitionId": definition["id"], "model": "purchase.order", "businessRecordId": "PO-1"},
        )
        assert response.status_code == HTTP_409_CONFLICT
        assert response.json()["error"] == "duplicate_record"

    async def test_create_for_unknown_definition(self, client: AsyncClient) -> None:
        response = await client.post(
            "/sla/records",
            json={"workflowDefinitionId": str(uuid4()), "model": "purchase.order", "businessRecordId": "PO-1"},
        )
        assert response.status_code == HTTP_404_NOT_FOUND

    async def test_advance(self, client: AsyncClient) -> None:
        definition = await publish(client)
        record = await create(client, definition["id"])

        response = await client.post(
            f"/sla/records/{record['id']}/advance",
            json={"approverPayload": {"approved_by": "ann"}, "expectedRevision": record["revision"]},
        )

        assert response.status_code == HTTP_200_OK
        body = response.json()
        assert body["currentStepCode"] == "sign"
        assert body["revision"] == record["revision"] + 1
        assert body["remainingHours"] == 8.0

    async def test_advance_empty_payload(self, client: AsyncClient) -> None:
        definition = await publish(client)
        record = await create(client, definition["id"])

        response = await client.post(f"/sla/records/{record['id']}/advance", json={"approverPayload": {}})
        assert response.status_code == HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "validation_error"

    async def test_advance_stale_revision(self, client: AsyncClient) -> None:
        definition = await publish(client)
        record = await create(client, definition["id"])

        response = await client.post(
            f"/sla/records/{record['id']}/advance",
            json={"approverPayload": {"approved_by": "ann"}, "expectedRevision": record["revision"] + 5},
        )
        assert response.status_code == HTTP_409_CONFLICT
        assert response.json() == {
            "error": "concurrent_modification",
            "message": response.json()["message"],
            "retry": True,
        }

    async def test_advance_completed(self, client: AsyncClient) -> None:
        definition = await publish(client)
        record = await create(client, definition["id"])
        for _ in range(2):
            await client.post(f"/sla/records/{record['id']}/advance", json={"approverPayload": {"ok": True}})

        response = await client.post(f"/sla/records/{record['id']}/advance", json={"approverPayload": {"ok": True}})
        assert response.status_code == HTTP_409_CONFLICT
        assert response.json()["error"] == "invalid_state_transition"

    async def test_get_record_history(self, client: AsyncClient) -> None:
        definition = await publish(client)
        record = await create(client, definition["id"])
        await client.post(f"/sla/records/{record['id']}/advance", json={"approverPayload": {"approved_by": "ann"}})

        response = await client.get(f"/sla/records/{record['id']}")

        assert response.status_code == HTTP_200_OK
        body = response.json()
        assert body["record"]["currentStepCode"] == "sign"
        assert [t["stepCode"] for t in body["transitions"]] == ["review", "sign"]
        assert body["transitions"][0]["approvalPayload"] == {"approved_by": "ann"}
        assert body["actionLogs"] == []

    async def test_get_unknown_record(self, client: AsyncClient) -> None:
        response = await client.get(f"/sla/records/{uuid4()}")
        assert response.status_code == HTTP_404_NOT_FOUND
        assert response.json()["error"] == "record_not_found"

    async def test_list_records(self, client: AsyncClient) -> None:
        definition = await publish(client)
        for index in range(3):
            await create(client, definition["id"], f"PO-{index}", assignees=[{"id": f"u{index}"}])

        response = await client.get("/sla/records", params={"status": "pending", "pageSize": 2})
        assert response.status_code == HTTP_200_OK
        body = response.json()
        assert body["total"] == 3
        assert body["pageSize"] == 2
        assert len(body["items"]) == 2

        response = await client.get("/sla/records", params={"userId": "u1"})
        assert [r["businessRecordId"] for r in response.json()["items"]] == ["PO-1"]

    async def test_list_records_page_size_limit(self, client: AsyncClient) -> None:
        response = await client.get("/sla/records", params={"pageSize": 500})
        assert response.status_code == HTTP_400_BAD_REQUEST


@pytest.mark.integration
class TestEvaluationEndpoints:
    """Tests for the evaluator, action log and report endpoints."""

    async def test_run_cycle_and_read_logs(self, client: AsyncClient, clock: FrozenClock) -> None:
        definition = await publish(client)
        record = await create(client, definition["id"], assignees=[{"id": "u1", "login": "ann"}])
        clock.set(T0 + timedelta(hours=5))

        response = await client.post("/sla/evaluator/run")
        assert response.status_code == HTTP_200_OK
        assert response.json()["due"] == 1
        assert response.json()["violated"] == [record["id"]]

        response = await client.get(
            "/sla/action-logs",
            params={"userId": "u1", "actionType": "violation_notify", "from": "2026-01-05T00:00:00"},
        )
        assert response.status_code == HTTP_200_OK
        body = response.json()
        assert body["total"] == 1
        assert body["items"][0]["recordId"] == record["id"]
        assert body["items"][0]["violationCount"] == 1
        assert body["items"][0]["success"] is True

    async def test_action_logs_reject_inverted_range(self, client: AsyncClient) -> None:
        response = await client.get(
            "/sla/action-logs",
            params={"from": "2026-01-06T00:00:00Z", "to": "2026-01-05T00:00:00Z"},
        )
        assert response.status_code == HTTP_400_BAD_REQUEST

    async def test_report(self, client: AsyncClient, clock: FrozenClock) -> None:
        definition = await publish(client)
        record = await create(client, definition["id"], assignees=[{"id": "u1", "login": "ann"}])
        clock.advance(hours=3)
        for _ in range(2):
            await client.post(f"/sla/records/{record['id']}/advance", json={"approverPayload": {"ok": True}})

        response = await client.get("/sla/reports/sla", params={"userId": "u1", "windowDays": 7})

        assert response.status_code == HTTP_200_OK
        body = response.json()
        assert body["windowDays"] == 7
        assert body["users"][0]["userId"] == "u1"
        assert body["users"][0]["successRate"] == 1.0
        assert body["users"][0]["avgCompletionHours"] == 3.0
        assert body["totals"]["completed"] == 1

    async def test_report_window_validation(self, client: AsyncClient) -> None:
        response = await client.get("/sla/reports/sla", params={"windowDays": 0})
        assert response.status_code == HTTP_400_BAD_REQUEST

    async def test_export(self, client: AsyncClient) -> None:
        response = await client.get("/sla/reports/sla/export", params={"userId": "u1"})

        assert response.status_code == HTTP_200_OK
        assert response.headers["content-type"].startswith("text/plain")
        assert response.headers["content-disposition"] == 'attachment; filename="sla-report-u1-30d.txt"'
        assert response.text.startswith("SLA REPORT")

    async def test_summary(self, client: AsyncClient, clock: FrozenClock) -> None:
        definition = await publish(client)
        await create(client, definition["id"])
        clock.advance(hours=5)

        response = await client.get("/sla/reports/summary")

        assert response.json() == {
            "pending": 1,
            "overdue": 1,
            "completed": 0,
            "escalated": 0,
            "violationEvents": 0,
            "failedActions": 0,
            "windowDays": 30,
        }


@pytest.mark.unit
class TestErrorCodes:
    """Tests for error_code_for."""

    @pytest.mark.parametrize(
        ("exc", "expected"),
        [
            (ValidationError("bad"), ("validation_error", 400)),
            (DuplicateRecordError("purchase.order", uuid4(), "PO-1"), ("duplicate_record", 409)),
            (DefinitionLockedError(uuid4(), 2), ("definition_locked", 409)),
            (PreconditionFailedError(uuid4(), None), ("precondition_failed", 409)),
            (ConcurrentModificationError(uuid4()), ("concurrent_modification", 409)),
            (ExternalCallFailureError("https://hooks.test", "timed out"), ("external_call_failure", 502)),
            (StoreUnavailableError("down"), ("store_unavailable", 503)),
            (SLAError("other"), ("sla_error", 500)),
        ],
    )
    def test_mapping(self, exc: SLAError, expected: tuple[str, int]) -> None:
        assert error_code_for(exc) == expected
