"""REST API for litestar-sla.

The API is mounted automatically by :class:`~litestar_sla.plugin.SLAPlugin`
when ``enable_api=True`` (the default). Bodies use camelCase field names.

Example:
    Mount the API under a versioned prefix behind a guard::

        from litestar_sla import SLAPlugin, SLAPluginConfig

        config = SLAPluginConfig(
            session_maker=session_maker,
            api_path_prefix="/api/v1/sla",
            api_guards=[require_auth_guard],
        )
"""

from __future__ import annotations

from litestar_sla.web.controllers import (
    ActionLogController,
    DefinitionController,
    EvaluatorController,
    RecordController,
    ReportController,
)
from litestar_sla.web.exceptions import error_code_for, sla_error_handler

__all__ = [
    "ActionLogController",
    "DefinitionController",
    "EvaluatorController",
    "RecordController",
    "ReportController",
    "error_code_for",
    "sla_error_handler",
]
