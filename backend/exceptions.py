"""
LMS Exception Hierarchy
Provides structured error handling across the application
"""
from typing import Optional, Dict, Any


class LMSException(Exception):
    """
    Base exception for all LMS backend errors.

    All custom exceptions should inherit from this class.
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details
            }
        }


# ============================================================================
# Upstream / Coordination Exceptions
# ============================================================================

class ServiceUnavailableError(LMSException):
    """Raised when a circuit is open and the upstream call is skipped"""

    status_code = 503

    def __init__(
        self,
        context: str,
        key: str,
        retry_after: Optional[int] = None,
        message: str = "Service temporarily unavailable, please retry shortly"
    ):
        super().__init__(
            message=message,
            code="SERVICE_UNAVAILABLE",
            details={
                "context": context,
                "key": key,
                "retry_after_seconds": retry_after,
            }
        )
        self.retry_after = retry_after


class ExternalServiceError(LMSException):
    """Raised when a Supabase query or RPC fails"""

    status_code = 502

    def __init__(
        self,
        operation: str,
        reason: str,
        message: str = "Upstream data service error"
    ):
        super().__init__(
            message=message,
            code="EXTERNAL_SERVICE_ERROR",
            details={"operation": operation, "reason": reason}
        )
        self.operation = operation


class ResourceNotFoundError(LMSException):
    """Raised when a course, task, submission or profile does not exist"""

    status_code = 404

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            message=f"{resource_type.capitalize()} not found: {resource_id}",
            code="RESOURCE_NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id}
        )
