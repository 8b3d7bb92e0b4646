"""
Custom exception hierarchy for centralized error handling.
All exceptions map to appropriate HTTP status codes.
"""
from typing import Any, Dict, Optional


class AppException(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API response format."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
            }
        }


class ValidationError(AppException):
    """Invalid input data."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=400,
            error_code="VALIDATION_ERROR",
            details=details,
        )


class DataUnavailableError(AppException):
    """Candidate or profile data could not be fetched in time."""

    def __init__(self, source: str, reason: str = "Unknown") -> None:
        super().__init__(
            message=f"Data unavailable from {source}: {reason}",
            status_code=503,
            error_code="DATA_UNAVAILABLE",
            details={"source": source, "reason": reason},
        )


class ScoreComputationError(AppException):
    """A candidate produced a malformed feature or a non-finite score."""

    def __init__(self, item_id: str, reason: str = "Unknown") -> None:
        super().__init__(
            message=f"Score computation failed for {item_id}: {reason}",
            status_code=500,
            error_code="COMPUTE_FAILURE",
            details={"item_id": item_id, "reason": reason},
        )


class CacheError(AppException):
    """Cache operation failed."""

    def __init__(self, operation: str, reason: str = "Unknown") -> None:
        super().__init__(
            message=f"Cache {operation} failed: {reason}",
            status_code=500,
            error_code="CACHE_ERROR",
            details={"operation": operation, "reason": reason},
        )


class CircuitBreakerOpenError(AppException):
    """Circuit breaker is open - service calls blocked."""

    def __init__(self, service_name: str) -> None:
        super().__init__(
            message=f"Circuit breaker open for: {service_name}",
            status_code=503,
            error_code="CIRCUIT_BREAKER_OPEN",
            details={"service": service_name},
        )
