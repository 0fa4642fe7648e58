"""Minimal example of litestar-sla integration.

This example tracks purchase-order approvals against a two-step SLA
workflow: a 4 hour review that notifies when overrun, followed by an 8 hour
signature that is approved automatically when overrun.

Run with:
    cd examples/minimal
    litestar run

Or:
    uvicorn app:app --reload

Then:
    curl -X POST localhost:8000/purchase-orders/PO-1/submit
    curl localhost:8000/sla/records
    curl localhost:8000/sla/reports/summary
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from litestar import Litestar, get, post
from litestar.plugins.sqlalchemy import SQLAlchemyAsyncConfig, SQLAlchemyPlugin

from litestar_sla import (
    DefinitionNotFoundError,
    RecordTracker,
    SLAConfig,
    SLAPlugin,
    SLAPluginConfig,
    StepDefinition,
    ViolationAction,
    WorkflowDefinition,
    WorkflowDefinitionStore,
)
from litestar_sla.db import WorkflowDefinitionModel

logger = logging.getLogger("purchase_orders")

PURCHASE_ORDER_FLOW = WorkflowDefinition(
    flow_name="po_approval",
    model="purchase.order",
    description="Purchase order approval",
    steps=[
        StepDefinition(order=1, code="review", name="Manager review", sla_hours=4),
        StepDefinition(
            order=2,
            code="sign",
            name="Finance signature",
            sla_hours=8,
            violation_action=ViolationAction.AUTO_APPROVE,
        ),
    ],
)


class LoggingEventBus:
    """Writes every SLA event to the application log."""

    async def emit(self, event: str, **payload: Any) -> None:
        logger.info("%s %s", event, payload)


@post("/purchase-orders/{po_id:str}/submit")
async def submit_purchase_order(
    po_id: str,
    sla_store: WorkflowDefinitionStore,
    sla_tracker: RecordTracker,
) -> dict[str, Any]:
    """Start SLA tracking for a submitted purchase order."""
    definition = await sla_store.get_active(PURCHASE_ORDER_FLOW.flow_name)
    record = await sla_tracker.create_record(
        definition.id,
        "purchase.order",
        po_id,
        assignees=[{"id": "u1", "name": "Ann Lee", "login": "ann"}],
    )
    return {"record_id": str(record.id), "due": record.next_due_at.isoformat() if record.next_due_at else None}


@get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


sqlalchemy_config = SQLAlchemyAsyncConfig(
    connection_string="sqlite+aiosqlite:///./sla.db",
)

sla_plugin = SLAPlugin(
    config=SLAPluginConfig(
        session_maker=sqlalchemy_config.create_session_maker(),
        sla_config=SLAConfig(evaluation_interval=timedelta(seconds=30), max_notifications=5),
        event_bus=LoggingEventBus(),
    )
)


async def publish_flow() -> None:
    """Create the SLA tables and publish the purchase order flow on first start."""
    async with sqlalchemy_config.get_engine().begin() as conn:
        await conn.run_sync(WorkflowDefinitionModel.metadata.create_all)
    try:
        await sla_plugin.store.get_active(PURCHASE_ORDER_FLOW.flow_name)
    except DefinitionNotFoundError:
        definition = await sla_plugin.store.publish(PURCHASE_ORDER_FLOW)
        logger.info("Published %s v%s", definition.flow_name, definition.version)


app = Litestar(
    route_handlers=[submit_purchase_order, health_check],
    plugins=[SQLAlchemyPlugin(config=sqlalchemy_config), sla_plugin],
    on_startup=[publish_flow],
    debug=True,
)


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host="0.0.0.0", port=8000)
