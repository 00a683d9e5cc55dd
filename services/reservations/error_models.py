"""
Standardized error models and exceptions for the reservation service.

Extraction misses and allocation conflicts are expected outcomes and are not
represented here; these exceptions cover genuine failures only.
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, Field
import uuid


class ErrorSeverity(str, Enum):
    """Error severity levels for alerting and routing"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """Error categories for classification"""
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    EXTERNAL_SERVICE = "external_service"
    SESSION = "session"
    CAPACITY = "capacity"
    DATABASE = "database"


class ErrorDetail(BaseModel):
    """Detailed error information"""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    correlation_id: str = Field(..., description="Unique correlation ID for tracing")
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    category: ErrorCategory
    severity: ErrorSeverity
    details: Optional[Dict[str, Any]] = None
    service: str = Field("reservations", description="Service that generated the error")


class ReservationError(Exception):
    """Base exception for all reservation service errors"""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        details: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.correlation_id = correlation_id or str(uuid.uuid4())

    def to_error_detail(self) -> ErrorDetail:
        """Convert exception to ErrorDetail model"""
        return ErrorDetail(
            code=self.code,
            message=self.message,
            correlation_id=self.correlation_id,
            category=self.category,
            severity=self.severity,
            details=self.details,
        )


class ConfigurationError(ReservationError):
    """Invalid or inconsistent configuration"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            code="CONFIGURATION_INVALID",
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.HIGH,
            details=details
        )


class AdvisoryUnavailableError(ReservationError):
    """Weather advisory collaborator failed or is not configured"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            code="ADVISORY_UNAVAILABLE",
            category=ErrorCategory.EXTERNAL_SERVICE,
            severity=ErrorSeverity.LOW,
            details=details
        )


class SessionCorruptedError(ReservationError):
    """Stored session could not be decoded"""

    def __init__(self, session_id: str, reason: str):
        super().__init__(
            message=f"Session {session_id} is corrupted: {reason}",
            code="SESSION_CORRUPTED",
            category=ErrorCategory.SESSION,
            severity=ErrorSeverity.MEDIUM,
            details={"session_id": session_id, "reason": reason}
        )
        self.session_id = session_id


class InvariantViolationError(ReservationError):
    """Bucket accounting broke an invariant (booked < 0 or booked > capacity)"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            code="CAPACITY_INVARIANT_VIOLATED",
            category=ErrorCategory.CAPACITY,
            severity=ErrorSeverity.CRITICAL,
            details=details
        )


class PersistenceError(ReservationError):
    """Reservation could not be persisted"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            code="PERSISTENCE_FAILED",
            category=ErrorCategory.DATABASE,
            severity=ErrorSeverity.HIGH,
            details=details
        )
