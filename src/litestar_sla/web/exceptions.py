"""Exception handling for SLA web endpoints.

This module maps the :class:`~litestar_sla.exceptions.SLAError` hierarchy
onto HTTP responses with a JSON error body.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from litestar import Response
from litestar.status_codes import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from litestar_sla.exceptions import (
    ConcurrentModificationError,
    DefinitionLockedError,
    DefinitionNotFoundError,
    DuplicateRecordError,
    ExternalCallFailureError,
    InvalidStateTransitionError,
    PreconditionFailedError,
    RecordNotFoundError,
    SLAError,
    StoreUnavailableError,
    ValidationError,
)

if TYPE_CHECKING:  # pragma: no cover
    from litestar import Request

__all__ = ["error_code_for", "sla_error_handler"]

# most specific first
_ERROR_MAP: tuple[tuple[type[SLAError], str, int], ...] = (
    (DuplicateRecordError, "duplicate_record", HTTP_409_CONFLICT),
    (ValidationError, "validation_error", HTTP_400_BAD_REQUEST),
    (DefinitionNotFoundError, "definition_not_found", HTTP_404_NOT_FOUND),
    (RecordNotFoundError, "record_not_found", HTTP_404_NOT_FOUND),
    (DefinitionLockedError, "definition_locked", HTTP_409_CONFLICT),
    (InvalidStateTransitionError, "invalid_state_transition", HTTP_409_CONFLICT),
    (PreconditionFailedError, "precondition_failed", HTTP_409_CONFLICT),
    (ConcurrentModificationError, "concurrent_modification", HTTP_409_CONFLICT),
    (ExternalCallFailureError, "external_call_failure", HTTP_502_BAD_GATEWAY),
    (StoreUnavailableError, "store_unavailable", HTTP_503_SERVICE_UNAVAILABLE),
)


def error_code_for(exc: SLAError) -> tuple[str, int]:
    """Return the ``(error code, HTTP status)`` pair for an SLA error."""
    for exc_type, code, status_code in _ERROR_MAP:
        if isinstance(exc, exc_type):
            return code, status_code
    return "sla_error", HTTP_500_INTERNAL_SERVER_ERROR


def sla_error_handler(_request: Request, exc: SLAError) -> Response:
    """Exception handler for every SLAError.

    Args:
        request: The Litestar request object.
        exc: The raised error.

    Returns:
        Response with ``error`` and ``message`` keys, plus ``errors`` for
        validation failures and a ``retry`` hint for lost races.
    """
    code, status_code = error_code_for(exc)
    content: dict[str, Any] = {"error": code, "message": str(exc)}
    if isinstance(exc, ValidationError):
        content["errors"] = exc.errors
    if isinstance(exc, ConcurrentModificationError):
        content["retry"] = True
    return Response(content=content, status_code=status_code, media_type="application/json")
