"""Error handling module for skyport.

This module defines error codes, exception classes, and response models.

Error Response Format:
{
    "error": {
        "code": "INSTANCE_NOT_FOUND",
        "message": "Instance not found",
        "details": null
    }
}

Usage:
    from skyport.core.errors import InstanceNotFoundError, ForbiddenError

    # Raise with default message
    raise InstanceNotFoundError()

    # Raise with custom message
    raise ForbiddenError("Unauthorized access to this instance")
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes."""

    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    INSTANCE_SUSPENDED = "INSTANCE_SUSPENDED"
    INSTANCE_NOT_FOUND = "INSTANCE_NOT_FOUND"
    NODE_NOT_FOUND = "NODE_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    NODE_HAS_INSTANCES = "NODE_HAS_INSTANCES"
    NODE_UNREACHABLE = "NODE_UNREACHABLE"
    RECONCILIATION_TIMEOUT = "RECONCILIATION_TIMEOUT"


class ErrorDetail(BaseModel):
    """Error detail containing code, message and optional upstream details."""

    code: str
    message: str
    details: Any = None


class ErrorResponse(BaseModel):
    """Error response format."""

    error: ErrorDetail


class SkyportError(Exception):
    """Base exception for skyport.

    All skyport specific exceptions should inherit from this class.
    This enables centralized exception handling in FastAPI.

    Attributes:
        code: The error code from ErrorCode enum
        message: Human-readable error message
        status_code: HTTP status code to return
        details: Optional structured details (e.g. upstream node error body)
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int,
        details: Any = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to ErrorResponse model."""
        return ErrorResponse(
            error=ErrorDetail(
                code=self.code.value, message=self.message, details=self.details
            )
        )


class UnauthorizedError(SkyportError):
    """401 Unauthorized - Authentication required."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(ErrorCode.UNAUTHORIZED, message, 401)


class ForbiddenError(SkyportError):
    """403 Forbidden - Permission denied."""

    def __init__(self, message: str = "Unauthorized access to this instance") -> None:
        super().__init__(ErrorCode.FORBIDDEN, message, 403)


class InstanceSuspendedError(SkyportError):
    """423 Locked - Instance is under administrative hold."""

    def __init__(self, message: str = "Instance is suspended") -> None:
        super().__init__(ErrorCode.INSTANCE_SUSPENDED, message, 423)


class InstanceNotFoundError(SkyportError):
    """404 Not Found - Instance not found."""

    def __init__(self, message: str = "Instance not found") -> None:
        super().__init__(ErrorCode.INSTANCE_NOT_FOUND, message, 404)


class NodeNotFoundError(SkyportError):
    """404 Not Found - Node not found."""

    def __init__(self, message: str = "Node not found") -> None:
        super().__init__(ErrorCode.NODE_NOT_FOUND, message, 404)


class UserNotFoundError(SkyportError):
    """404 Not Found - User not found."""

    def __init__(self, message: str = "User not found") -> None:
        super().__init__(ErrorCode.USER_NOT_FOUND, message, 404)


class ParameterError(SkyportError):
    """400 Bad Request - Missing or invalid parameters.

    Raised before any call to a node agent is made.
    """

    def __init__(self, message: str = "Missing parameters", details: Any = None) -> None:
        super().__init__(ErrorCode.INVALID_PARAMETERS, message, 400, details)


class NodeHasInstancesError(SkyportError):
    """409 Conflict - Node still hosts instances."""

    def __init__(self, message: str = "There are instances on the node") -> None:
        super().__init__(ErrorCode.NODE_HAS_INSTANCES, message, 409)


class NodeUnreachableError(SkyportError):
    """502 Bad Gateway - Node agent timed out, refused, or answered non-2xx.

    ``details`` carries the upstream error body when the node supplied one.
    """

    def __init__(
        self, message: str = "Connection to node failed", details: Any = None
    ) -> None:
        super().__init__(ErrorCode.NODE_UNREACHABLE, message, 502, details)


class ReconciliationTimeoutError(SkyportError):
    """504 - Instance never reached READY within the poll ceiling.

    Background only: logged by the poller, never returned to a caller.
    """

    def __init__(self, instance_id: str, attempts: int) -> None:
        self.instance_id = instance_id
        self.attempts = attempts
        super().__init__(
            ErrorCode.RECONCILIATION_TIMEOUT,
            f"Instance {instance_id} failed to become ready after {attempts} attempts",
            504,
        )
