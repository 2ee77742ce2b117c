"""
Error taxonomy for Prachar Engine.

Every error that can reach a caller maps onto one of a small set of codes:

    VALIDATION_ERROR  - caller-fixable input problem, never retried
    SERVICE_ERROR     - generation endpoint or storage failure
    GENERATION_ERROR  - empty, malformed or policy-violating model output
    SYSTEM_ERROR      - anything unexpected
    TIMEOUT_ERROR     - a component missed the shared generation deadline
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SERVICE_ERROR = "SERVICE_ERROR"
    GENERATION_ERROR = "GENERATION_ERROR"
    SYSTEM_ERROR = "SYSTEM_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"


class EngineError(Exception):
    """Base exception for engine errors."""

    code: ErrorCode = ErrorCode.SYSTEM_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        self.timestamp = timestamp or datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the public error response shape."""
        body = {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(EngineError):
    """Raised when a generation request is rejected before any side effect."""

    code = ErrorCode.VALIDATION_ERROR


class ServiceError(EngineError):
    """
    Raised by an external service (generation endpoint or storage).

    `retryable` tells the retry policy whether another attempt can help:
    rate limits, timeouts and unavailability are retryable; authentication,
    invalid input and content-policy rejections are not.
    """

    code = ErrorCode.SERVICE_ERROR

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        service_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)
        self.retryable = retryable
        self.service_code = service_code


class StorageError(ServiceError):
    """Raised when the object store rejects or fails a write."""
    pass


class GenerationFailure(EngineError):
    """Raised when an endpoint returns content that cannot be used."""

    code = ErrorCode.GENERATION_ERROR


class PersistenceError(EngineError):
    """Raised when the metadata store fails to record a project."""

    code = ErrorCode.SERVICE_ERROR


class InvalidTransitionError(EngineError):
    """Raised on an illegal project state transition (programming error)."""

    code = ErrorCode.SYSTEM_ERROR
