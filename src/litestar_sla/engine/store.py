"""Workflow definition store.

Definitions are versioned per flow name. Publishing a flow again creates the
next version and retires the previous active one; a definition can be edited
in place only while no record references it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from litestar_sla.core.definition import StepDefinition, WorkflowDefinition
from litestar_sla.db.models import WorkflowDefinitionModel, WorkflowStepModel
from litestar_sla.db.repositories import WorkflowDefinitionRepository
from litestar_sla.exceptions import DefinitionLockedError, DefinitionNotFoundError, ValidationError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

__all__ = ["WorkflowDefinitionStore", "to_domain"]

logger = logging.getLogger(__name__)


def _step_models(definition: WorkflowDefinition) -> list[WorkflowStepModel]:
    return [
        WorkflowStepModel(
            order=step.order,
            code=step.code,
            name=step.name,
            sla_hours=step.sla_hours,
            violation_action=step.violation_action,
            callback=step.callback,
            grace_hours=step.grace_hours,
            max_notifications=step.max_notifications,
        )
        for step in definition.ordered_steps
    ]


def to_domain(model: WorkflowDefinitionModel) -> WorkflowDefinition:
    """Convert a persisted definition back to its domain form."""
    return WorkflowDefinition(
        flow_name=model.flow_name,
        model=model.model,
        description=model.description,
        notify_callback=model.notify_callback,
        auto_approve_callback=model.auto_approve_callback,
        steps=[
            StepDefinition(
                order=step.order,
                code=step.code,
                name=step.name,
                sla_hours=step.sla_hours,
                violation_action=step.violation_action,
                callback=step.callback,
                grace_hours=step.grace_hours,
                max_notifications=step.max_notifications,
            )
            for step in model.steps
        ],
    )


class WorkflowDefinitionStore:
    """Publishes and reads workflow definitions.

    Args:
        session_maker: Factory for the transactions each operation runs in.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker

    def _session(self) -> AsyncSession:
        return self.session_maker(expire_on_commit=False)

    async def publish(self, definition: WorkflowDefinition) -> WorkflowDefinitionModel:
        """Publish a definition as the next version of its flow.

        Args:
            definition: The definition to publish.

        Returns:
            The persisted definition, active, with its version number set.

        Raises:
            ValidationError: If the definition is malformed, or another version
                of the flow was published concurrently.
        """
        definition.validate()
        async with self._session() as session:
            repo = WorkflowDefinitionRepository(session=session)
            version = await repo.latest_version_number(definition.flow_name) + 1
            await repo.deactivate_flow(definition.flow_name)
            model = WorkflowDefinitionModel(
                flow_name=definition.flow_name,
                model=definition.model,
                version=version,
                description=definition.description,
                is_active=True,
                notify_callback=definition.notify_callback,
                auto_approve_callback=definition.auto_approve_callback,
                steps=_step_models(definition),
            )
            session.add(model)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                msg = f"version {version} of flow '{definition.flow_name}' was published concurrently"
                raise ValidationError(msg) from exc

        logger.info("Published flow %s version %s (%s steps)", model.flow_name, model.version, len(model.steps))
        return model

    async def get(self, definition_id: UUID) -> WorkflowDefinitionModel:
        """Get a definition by ID.

        Raises:
            DefinitionNotFoundError: If no such definition exists.
        """
        async with self._session() as session:
            model = await WorkflowDefinitionRepository(session=session).get_one_or_none(id=definition_id)
        if model is None:
            raise DefinitionNotFoundError(definition_id)
        return model

    async def get_active(self, flow_name: str) -> WorkflowDefinitionModel:
        """Get the active version of a flow.

        Raises:
            DefinitionNotFoundError: If the flow has no active version.
        """
        async with self._session() as session:
            model = await WorkflowDefinitionRepository(session=session).get_active(flow_name)
        if model is None:
            raise DefinitionNotFoundError(flow_name)
        return model

    async def list_definitions(
        self,
        *,
        model: str | None = None,
        flow_name: str | None = None,
        active_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[Sequence[WorkflowDefinitionModel], int]:
        async with self._session() as session:
            return await WorkflowDefinitionRepository(session=session).find_definitions(
                model=model,
                flow_name=flow_name,
                active_only=active_only,
                limit=limit,
                offset=offset,
            )

    async def update(self, definition_id: UUID, definition: WorkflowDefinition) -> WorkflowDefinitionModel:
        """Edit a definition that no record references yet.

        The flow name cannot change; publish a new flow instead.

        Raises:
            DefinitionNotFoundError: If no such definition exists.
            DefinitionLockedError: If any record references the definition.
            ValidationError: If the new content is malformed.
        """
        definition.validate()
        async with self._session() as session:
            repo = WorkflowDefinitionRepository(session=session)
            model = await repo.get_locked(definition_id)
            if model is None:
                raise DefinitionNotFoundError(definition_id)
            if definition.flow_name != model.flow_name:
                raise ValidationError("flow_name cannot be changed; publish a new flow instead")
            record_count = await repo.count_records(definition_id)
            if record_count:
                raise DefinitionLockedError(definition_id, record_count)

            model.model = definition.model
            model.description = definition.description
            model.notify_callback = definition.notify_callback
            model.auto_approve_callback = definition.auto_approve_callback
            # old steps must be gone before new ones reuse their order and code
            model.steps.clear()
            try:
                await session.flush()
                model.steps.extend(_step_models(definition))
                await session.commit()
            except IntegrityError as exc:
                # a record started on the old steps after the count
                await session.rollback()
                record_count = await repo.count_records(definition_id)
                raise DefinitionLockedError(definition_id, record_count) from exc
            await session.refresh(model, attribute_names=["steps"])

        logger.info("Updated flow %s version %s in place", model.flow_name, model.version)
        return model

    async def deactivate(self, definition_id: UUID) -> WorkflowDefinitionModel:
        """Stop new records from starting on a definition.

        Existing records keep running on it.

        Raises:
            DefinitionNotFoundError: If no such definition exists.
        """
        async with self._session() as session:
            model = await WorkflowDefinitionRepository(session=session).get_one_or_none(id=definition_id)
            if model is None:
                raise DefinitionNotFoundError(definition_id)
            model.is_active = False
            await session.commit()
        return model
