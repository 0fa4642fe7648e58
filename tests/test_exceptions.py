"""Tests for exception hierarchy."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import pytest

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


@pytest.mark.unit
class TestExceptionHierarchy:
    """Every error is catchable as SLAError."""

    @pytest.mark.parametrize(
        "exc_type",
        [
            ValidationError,
            DuplicateRecordError,
            DefinitionNotFoundError,
            RecordNotFoundError,
            DefinitionLockedError,
            InvalidStateTransitionError,
            PreconditionFailedError,
            ExternalCallFailureError,
            ConcurrentModificationError,
            StoreUnavailableError,
        ],
    )
    def test_subclass_of_sla_error(self, exc_type: type[Exception]) -> None:
        assert issubclass(exc_type, SLAError)

    def test_duplicate_is_a_validation_error(self) -> None:
        assert issubclass(DuplicateRecordError, ValidationError)


@pytest.mark.unit
class TestExceptionMessages:
    """Tests for exception attributes and messages."""

    def test_validation_error_collects_messages(self) -> None:
        error = ValidationError(["model is required", "businessRecordId is required"])
        assert error.errors == ["model is required", "businessRecordId is required"]
        assert str(error) == "model is required; businessRecordId is required"

    def test_validation_error_single_message(self) -> None:
        assert ValidationError("bad").errors == ["bad"]

    def test_definition_locked(self) -> None:
        definition_id = uuid4()
        error = DefinitionLockedError(definition_id, 3)
        assert error.record_count == 3
        assert "3 record(s)" in str(error)

    def test_invalid_state_transition(self) -> None:
        record_id = uuid4()
        error = InvalidStateTransitionError(record_id, "completed", "advance")
        assert str(error) == f"Cannot advance record '{record_id}' in status 'completed'"

    def test_precondition_failed(self) -> None:
        record_id = uuid4()
        due = datetime(2026, 1, 5, 13, 0, tzinfo=timezone.utc)
        assert "not due until 2026-01-05T13:00:00+00:00" in str(PreconditionFailedError(record_id, due))
        assert "not under SLA watch" in str(PreconditionFailedError(record_id, None))

    def test_external_call_failure(self) -> None:
        error = ExternalCallFailureError("https://hooks.test", "non-2xx response", status_code=500)
        assert error.status_code == 500
        assert str(error) == "Call to 'https://hooks.test' failed: non-2xx response (HTTP 500)"

    def test_concurrent_modification(self) -> None:
        record_id = uuid4()
        assert str(ConcurrentModificationError(record_id)).endswith("modified concurrently")
        assert "expected revision 4" in str(ConcurrentModificationError(record_id, 4))

    def test_store_unavailable(self) -> None:
        assert str(StoreUnavailableError("database is locked")) == "Record store unavailable: database is locked"
