"""
Tests for the reservation error taxonomy
"""

import pytest

from services.reservations.error_models import (
    AdvisoryUnavailableError,
    ConfigurationError,
    ErrorCategory,
    ErrorSeverity,
    InvariantViolationError,
    PersistenceError,
    ReservationError,
    SessionCorruptedError,
)


class TestErrorModels:
    """Test error codes, classification and serialization"""

    @pytest.mark.parametrize("error,code,category,severity", [
        (ConfigurationError("bad"), "CONFIGURATION_INVALID", ErrorCategory.CONFIGURATION, ErrorSeverity.HIGH),
        (AdvisoryUnavailableError("down"), "ADVISORY_UNAVAILABLE", ErrorCategory.EXTERNAL_SERVICE, ErrorSeverity.LOW),
        (InvariantViolationError("broken"), "CAPACITY_INVARIANT_VIOLATED", ErrorCategory.CAPACITY, ErrorSeverity.CRITICAL),
        (PersistenceError("disk full"), "PERSISTENCE_FAILED", ErrorCategory.DATABASE, ErrorSeverity.HIGH),
    ])
    def test_classification(self, error, code, category, severity):
        assert isinstance(error, ReservationError)
        assert error.code == code
        assert error.category == category
        assert error.severity == severity
        assert error.details == {}

    def test_session_corrupted_carries_session(self):
        error = SessionCorruptedError("s-1", "bad json")

        assert error.session_id == "s-1"
        assert error.details == {"session_id": "s-1", "reason": "bad json"}
        assert str(error) == "Session s-1 is corrupted: bad json"

    def test_to_error_detail(self):
        error = InvariantViolationError("Bucket overbooked", details={"booked": 12, "capacity": 10})

        detail = error.to_error_detail()

        assert detail.code == "CAPACITY_INVARIANT_VIOLATED"
        assert detail.message == "Bucket overbooked"
        assert detail.correlation_id == error.correlation_id
        assert detail.details == {"booked": 12, "capacity": 10}
        assert detail.service == "reservations"

    def test_correlation_id_can_be_supplied(self):
        error = ReservationError(
            "boom", code="X", category=ErrorCategory.SESSION, correlation_id="corr-1"
        )
        assert error.to_error_detail().correlation_id == "corr-1"
