"""Litestar plugin for SLA tracking.

This module provides the SLAPlugin, which wires the definition store, record
tracker, evaluator and reporting services into a Litestar application.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar.di import Provide
from litestar.exceptions import ImproperlyConfiguredException
from litestar.plugins import InitPluginProtocol

from litestar_sla.config import SLAConfig
from litestar_sla.engine.callbacks import CallbackClient
from litestar_sla.engine.dispatch import StepPolicyDispatcher
from litestar_sla.engine.evaluator import SLAEvaluator
from litestar_sla.engine.reports import ActionLogService, ReportingAggregator
from litestar_sla.engine.store import WorkflowDefinitionStore
from litestar_sla.engine.tracker import RecordTracker, utc_now
from litestar_sla.exceptions import SLAError

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from litestar.config.app import AppConfig
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

__all__ = ["SLAPlugin", "SLAPluginConfig"]

logger = logging.getLogger(__name__)


@dataclass
class SLAPluginConfig:
    """Configuration for the SLAPlugin.

    Attributes:
        session_maker: Async session factory bound to the SLA tables. Required.
        sla_config: Tracker and evaluator settings. Defaults to ``SLAConfig()``.
        callback_client: Optional pre-configured CallbackClient. If not provided,
            one is created with ``sla_config.callback_timeout`` and closed on shutdown.
        event_bus: Optional object with an async ``emit(event, **payload)`` method
            that receives ``sla.*`` events.
        clock: Returns the current time as an aware datetime.
        start_evaluator: Whether to run the evaluator in the background while
            the app is up. Defaults to True.
        evaluator_batch_size: Optional cap on records processed per cycle.
        shutdown_timeout: Seconds to wait for an in-flight cycle on shutdown.
        dependency_key_tracker: DI key of the RecordTracker.
        dependency_key_store: DI key of the WorkflowDefinitionStore.
        dependency_key_reports: DI key of the ReportingAggregator.
        dependency_key_action_logs: DI key of the ActionLogService.
        dependency_key_evaluator: DI key of the SLAEvaluator.
        enable_api: Whether to enable the REST API endpoints. Defaults to True.
        api_path_prefix: URL path prefix for all SLA API endpoints. Defaults to "/sla".
        api_guards: List of Litestar guards to apply to all SLA API endpoints.
        api_tags: OpenAPI tags to apply to SLA API endpoints.
        include_api_in_schema: Whether to include API endpoints in OpenAPI schema.
    """

    session_maker: async_sessionmaker[AsyncSession] | None = None
    sla_config: SLAConfig = field(default_factory=SLAConfig)
    callback_client: CallbackClient | None = None
    event_bus: Any | None = None
    clock: Callable[[], datetime] = utc_now
    start_evaluator: bool = True
    evaluator_batch_size: int | None = None
    shutdown_timeout: float | None = 30.0
    dependency_key_tracker: str = "sla_tracker"
    dependency_key_store: str = "sla_store"
    dependency_key_reports: str = "sla_reports"
    dependency_key_action_logs: str = "sla_action_logs"
    dependency_key_evaluator: str = "sla_evaluator"
    enable_api: bool = True
    api_path_prefix: str = "/sla"
    api_guards: list[Any] = field(default_factory=list)
    api_tags: list[str] = field(default_factory=lambda: ["SLA"])
    include_api_in_schema: bool = True


class SLAPlugin(InitPluginProtocol):
    """Litestar plugin for SLA tracking.

    The plugin builds the SLA services, provides them through dependency
    injection, mounts the REST API and runs the evaluator for the lifetime of
    the application.

    Example:
        Basic usage::

            from litestar import Litestar
            from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

            from litestar_sla import SLAConfig, SLAPlugin, SLAPluginConfig

            engine = create_async_engine("postgresql+asyncpg://localhost/app")

            app = Litestar(
                plugins=[
                    SLAPlugin(
                        config=SLAPluginConfig(
                            session_maker=async_sessionmaker(engine),
                            sla_config=SLAConfig(max_notifications=5),
                        )
                    )
                ]
            )

        Starting a record from your own handler::

            from litestar import post

            from litestar_sla import RecordTracker


            @post("/invoices/{invoice_id:str}/submit")
            async def submit(invoice_id: str, sla_tracker: RecordTracker) -> dict:
                record = await sla_tracker.create_record(INVOICE_FLOW_ID, "invoice", invoice_id)
                return {"due": record.next_due_at.isoformat()}
    """

    __slots__ = ("_action_logs", "_client", "_config", "_evaluator", "_reports", "_store", "_tracker")

    def __init__(self, config: SLAPluginConfig | None = None) -> None:
        """Initialize the plugin.

        Args:
            config: Optional configuration for the plugin.
        """
        self._config = config or SLAPluginConfig()
        self._client: CallbackClient | None = None
        self._tracker: RecordTracker | None = None
        self._store: WorkflowDefinitionStore | None = None
        self._reports: ReportingAggregator | None = None
        self._action_logs: ActionLogService | None = None
        self._evaluator: SLAEvaluator | None = None

    @property
    def tracker(self) -> RecordTracker:
        """Get the record tracker.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._tracker is None:
            msg = "SLAPlugin has not been initialized. Access tracker after app startup."
            raise RuntimeError(msg)
        return self._tracker

    @property
    def store(self) -> WorkflowDefinitionStore:
        if self._store is None:
            msg = "SLAPlugin has not been initialized. Access store after app startup."
            raise RuntimeError(msg)
        return self._store

    @property
    def evaluator(self) -> SLAEvaluator:
        if self._evaluator is None:
            msg = "SLAPlugin has not been initialized. Access evaluator after app startup."
            raise RuntimeError(msg)
        return self._evaluator

    def _build_services(self) -> None:
        config = self._config
        if config.session_maker is None:
            msg = "SLAPluginConfig.session_maker is required"
            raise ImproperlyConfiguredException(msg)
        sla_config = config.sla_config
        self._client = config.callback_client or CallbackClient(timeout=sla_config.callback_timeout)
        dispatcher = StepPolicyDispatcher(client=self._client, event_bus=config.event_bus)
        self._tracker = RecordTracker(
            config.session_maker,
            dispatcher=dispatcher,
            config=sla_config,
            clock=config.clock,
            event_bus=config.event_bus,
        )
        self._store = WorkflowDefinitionStore(config.session_maker)
        self._reports = ReportingAggregator(config.session_maker, clock=config.clock)
        self._action_logs = ActionLogService(config.session_maker)
        self._evaluator = SLAEvaluator(self._tracker, batch_size=config.evaluator_batch_size)

    async def _on_startup(self) -> None:
        if self._config.start_evaluator:
            await self.evaluator.start()

    async def _on_shutdown(self) -> None:
        if self._evaluator is not None:
            await self._evaluator.stop(timeout=self._config.shutdown_timeout)
        # a client passed in by the caller is theirs to close
        if self._client is not None and self._config.callback_client is None:
            await self._client.aclose()

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Initialize the plugin when the Litestar app starts.

        This method:
        1. Builds the callback client, tracker, store, reporting services and evaluator
        2. Adds dependency providers to the app config
        3. Registers evaluator startup and shutdown hooks
        4. Optionally registers REST API controllers if enable_api=True

        Args:
            app_config: The Litestar application configuration.

        Returns:
            The modified application configuration.

        Raises:
            ImproperlyConfiguredException: If no session maker is configured.
        """
        self._build_services()
        config = self._config

        def provide_tracker() -> RecordTracker:
            return self._tracker  # type: ignore[return-value]

        def provide_store() -> WorkflowDefinitionStore:
            return self._store  # type: ignore[return-value]

        def provide_reports() -> ReportingAggregator:
            return self._reports  # type: ignore[return-value]

        def provide_action_logs() -> ActionLogService:
            return self._action_logs  # type: ignore[return-value]

        def provide_evaluator() -> SLAEvaluator:
            return self._evaluator  # type: ignore[return-value]

        app_config.dependencies[config.dependency_key_tracker] = Provide(provide_tracker, sync_to_thread=False)
        app_config.dependencies[config.dependency_key_store] = Provide(provide_store, sync_to_thread=False)
        app_config.dependencies[config.dependency_key_reports] = Provide(provide_reports, sync_to_thread=False)
        app_config.dependencies[config.dependency_key_action_logs] = Provide(
            provide_action_logs,
            sync_to_thread=False,
        )
        app_config.dependencies[config.dependency_key_evaluator] = Provide(provide_evaluator, sync_to_thread=False)

        app_config.on_startup.append(self._on_startup)
        app_config.on_shutdown.append(self._on_shutdown)

        if config.enable_api:
            from litestar import Router

            from litestar_sla.web.controllers import (
                ActionLogController,
                DefinitionController,
                EvaluatorController,
                RecordController,
                ReportController,
            )
            from litestar_sla.web.exceptions import sla_error_handler

            sla_router = Router(
                path=config.api_path_prefix,
                route_handlers=[
                    DefinitionController,
                    RecordController,
                    ActionLogController,
                    ReportController,
                    EvaluatorController,
                ],
                guards=config.api_guards,
                tags=config.api_tags,
                include_in_schema=config.include_api_in_schema,
            )
            app_config.route_handlers.append(sla_router)
            app_config.exception_handlers[SLAError] = sla_error_handler  # type: ignore[assignment]

        logger.debug("SLA plugin initialized (api=%s, evaluator=%s)", config.enable_api, config.start_evaluator)
        return app_config
