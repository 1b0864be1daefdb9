"""Error handling module for the OpenZT manager.

This module defines error codes, exception classes, and response models.

Error Response Format:
{
    "error": {
        "code": "INSTANCE_NOT_FOUND",
        "message": "Instance not found"
    }
}

Usage:
    from openzt_manager.core.errors import NotFoundError

    raise NotFoundError(f"Instance {instance_id} not found")
"""

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes for the manager API."""

    INVALID_CONFIG = "INVALID_CONFIG"
    INSTANCE_NOT_FOUND = "INSTANCE_NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    PORTS_EXHAUSTED = "PORTS_EXHAUSTED"
    RUNTIME_UNAVAILABLE = "RUNTIME_UNAVAILABLE"
    CONTAINER_NOT_FOUND = "CONTAINER_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    RUNTIME_ERROR = "RUNTIME_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorDetail(BaseModel):
    """Error detail containing code and message."""

    code: str
    message: str


class ErrorResponse(BaseModel):
    """Error response format."""

    error: ErrorDetail


class ManagerError(Exception):
    """Base exception for the manager.

    All manager-specific exceptions inherit from this class.
    This enables centralized exception handling in FastAPI.

    Attributes:
        code: The error code from ErrorCode enum.
        message: Human-readable error message.
        status_code: HTTP status code to return.
    """

    def __init__(self, code: ErrorCode, message: str, status_code: int) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to ErrorResponse model."""
        return ErrorResponse(
            error=ErrorDetail(code=self.code.value, message=self.message)
        )


class InvalidConfigError(ManagerError):
    """400 Bad Request - Malformed creation payload or instance config."""

    def __init__(self, message: str = "Invalid instance configuration") -> None:
        super().__init__(ErrorCode.INVALID_CONFIG, message, 400)


class NotFoundError(ManagerError):
    """404 Not Found - Unknown instance id."""

    def __init__(self, message: str = "Instance not found") -> None:
        super().__init__(ErrorCode.INSTANCE_NOT_FOUND, message, 404)


class InvalidTransitionError(ManagerError):
    """409 Conflict - Transition not allowed by the instance state machine."""

    def __init__(self, message: str = "Invalid state transition") -> None:
        super().__init__(ErrorCode.INVALID_STATE, message, 409)


class CapacityExceededError(ManagerError):
    """503 Service Unavailable - max_instances reached."""

    def __init__(self, message: str = "Maximum instances reached") -> None:
        super().__init__(ErrorCode.CAPACITY_EXCEEDED, message, 503)


class ExhaustedRangeError(ManagerError):
    """503 Service Unavailable - No free port left in a range."""

    def __init__(self, range_name: str, message: str | None = None) -> None:
        self.range_name = range_name
        super().__init__(
            ErrorCode.PORTS_EXHAUSTED,
            message or f"No {range_name} ports available",
            503,
        )


# =============================================================================
# Control-plane (container runtime) errors
# =============================================================================


class ControlPlaneError(ManagerError):
    """502 Bad Gateway - Base class for container runtime failures."""

    def __init__(
        self,
        message: str = "Container runtime error",
        code: ErrorCode = ErrorCode.RUNTIME_ERROR,
        status_code: int = 502,
    ) -> None:
        super().__init__(code, message, status_code)


class RuntimeUnavailableError(ControlPlaneError):
    """503 Service Unavailable - Container runtime cannot be reached."""

    def __init__(self, message: str = "Container runtime unavailable") -> None:
        super().__init__(message, ErrorCode.RUNTIME_UNAVAILABLE, 503)


class ContainerNotFoundError(ControlPlaneError):
    """404 Not Found - Container does not exist in the runtime."""

    def __init__(self, message: str = "Container not found") -> None:
        super().__init__(message, ErrorCode.CONTAINER_NOT_FOUND, 404)


class ResourceConflictError(ControlPlaneError):
    """409 Conflict - Runtime refused the request (name or port in use)."""

    def __init__(self, message: str = "Container runtime resource conflict") -> None:
        super().__init__(message, ErrorCode.RESOURCE_CONFLICT, 409)


class RuntimeOperationError(ControlPlaneError):
    """502 Bad Gateway - Any other runtime failure, with the runtime's detail."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Container runtime error: {detail}")


class InternalError(ManagerError):
    """500 Internal Server Error - Unexpected error."""

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(ErrorCode.INTERNAL_ERROR, message, 500)
