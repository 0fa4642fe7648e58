"""Exception hierarchy for litestar-sla."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

__all__ = (
    "ConcurrentModificationError",
    "DefinitionLockedError",
    "DefinitionNotFoundError",
    "DuplicateRecordError",
    "ExternalCallFailureError",
    "InvalidStateTransitionError",
    "PreconditionFailedError",
    "RecordNotFoundError",
    "SLAError",
    "StoreUnavailableError",
    "ValidationError",
)


class SLAError(Exception):
    """Base exception for all litestar-sla errors.

    All exceptions raised by litestar-sla inherit from this class so callers
    can catch every SLA-related failure with a single except clause.
    """


class ValidationError(SLAError):
    """Raised when a create, advance or define request is malformed.

    Validation happens before any persisted state is touched.

    Attributes:
        errors: List of human readable validation problems.
    """

    def __init__(self, errors: str | list[str]) -> None:
        """Initialize the exception with validation errors.

        Args:
            errors: A single message or a list of messages.
        """
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class DuplicateRecordError(ValidationError):
    """Raised when a record already exists for a (model, definition, business record) tuple."""

    def __init__(self, model: str, definition_id: UUID, business_record_id: str) -> None:
        self.model = model
        self.definition_id = definition_id
        self.business_record_id = business_record_id
        super().__init__(
            f"Record for {model}#{business_record_id} already tracked by definition '{definition_id}'",
        )


class DefinitionNotFoundError(SLAError):
    """Raised when a workflow definition is not found.

    Attributes:
        definition_id: The identifier that was looked up.
    """

    def __init__(self, definition_id: UUID | str) -> None:
        self.definition_id = definition_id
        super().__init__(f"Workflow definition '{definition_id}' not found")


class RecordNotFoundError(SLAError):
    """Raised when a tracked record is not found.

    Attributes:
        record_id: The identifier that was looked up.
    """

    def __init__(self, record_id: UUID | str) -> None:
        self.record_id = record_id
        super().__init__(f"Record '{record_id}' not found")


class DefinitionLockedError(SLAError):
    """Raised when editing a definition that records already reference.

    Definitions are versioned once in use; publish a new version instead.

    Attributes:
        definition_id: The referenced definition.
        record_count: Number of records attached to it.
    """

    def __init__(self, definition_id: UUID, record_count: int) -> None:
        self.definition_id = definition_id
        self.record_count = record_count
        super().__init__(
            f"Workflow definition '{definition_id}' is referenced by {record_count} record(s); "
            "publish a new version instead",
        )


class InvalidStateTransitionError(SLAError):
    """Raised when an action is attempted on a record in a terminal state.

    Attributes:
        record_id: The record the action targeted.
        status: The record's current status.
        action: The attempted action.
    """

    def __init__(self, record_id: UUID, status: str, action: str) -> None:
        """Initialize the exception with transition details.

        Args:
            record_id: The record the action targeted.
            status: The record's current status.
            action: The attempted action.
        """
        self.record_id = record_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} record '{record_id}' in status '{status}'")


class PreconditionFailedError(SLAError):
    """Raised when ``violate`` is invoked on a record that is not due.

    The evaluator only selects due records, so this surfacing means two
    writers disagreed about the record's deadline.

    Attributes:
        record_id: The record the violation targeted.
        next_due_at: The record's deadline at the time of the check.
    """

    def __init__(self, record_id: UUID, next_due_at: datetime | None) -> None:
        self.record_id = record_id
        self.next_due_at = next_due_at
        when = "not under SLA watch" if next_due_at is None else f"not due until {next_due_at.isoformat()}"
        super().__init__(f"Record '{record_id}' is {when}")


class ExternalCallFailureError(SLAError):
    """Raised when a notify or auto-approve endpoint fails.

    Covers timeouts, transport errors, non-2xx replies and unusable approval
    bodies. The failure is recorded and retried on the next evaluator cycle.

    Attributes:
        url: The endpoint that was called.
        reason: Short description of the failure.
        status_code: HTTP status of the reply, if one was received.
    """

    def __init__(self, url: str, reason: str, status_code: int | None = None) -> None:
        """Initialize the exception with call details.

        Args:
            url: The endpoint that was called.
            reason: Short description of the failure.
            status_code: HTTP status of the reply, if one was received.
        """
        self.url = url
        self.reason = reason
        self.status_code = status_code
        msg = f"Call to '{url}' failed: {reason}"
        if status_code is not None:
            msg += f" (HTTP {status_code})"
        super().__init__(msg)


class ConcurrentModificationError(SLAError):
    """Raised when a record changed underneath a read-modify-write.

    Attributes:
        record_id: The contested record.
        expected_revision: The revision the writer read.
    """

    def __init__(self, record_id: UUID, expected_revision: int | None = None) -> None:
        self.record_id = record_id
        self.expected_revision = expected_revision
        msg = f"Record '{record_id}' was modified concurrently"
        if expected_revision is not None:
            msg += f" (expected revision {expected_revision})"
        super().__init__(msg)


class StoreUnavailableError(SLAError):
    """Raised when the record store cannot be read or written at all.

    Aborts an evaluator cycle.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Record store unavailable: {reason}")
