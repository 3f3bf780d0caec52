"""
Application exception hierarchy.

Services raise these; ``rivvi.main`` maps each to an HTTP status and a
``{"detail": {"code", "message", "details"}}`` body.
"""

from typing import Any


class AppException(Exception):
    """Base exception for application errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str = "APP_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize application exception.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFoundError(AppException):
    """Raised when an entity does not exist or is outside the caller's organization."""

    status_code = 404

    def __init__(
        self,
        message: str = "Resource not found",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, "NOT_FOUND", details)


class BadRequestError(AppException):
    """Raised when business validation fails (distinct from pydantic validation)."""

    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, "BAD_REQUEST", details)


class ConflictError(AppException):
    status_code = 409

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, "CONFLICT", details)


class UnauthorizedError(AppException):
    """Raised when the caller is not authenticated."""

    status_code = 401

    def __init__(
        self,
        message: str = "You must be logged in to perform this action",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, "UNAUTHORIZED", details)


class ForbiddenError(AppException):
    """Raised when the caller lacks the organization or role required."""

    status_code = 403

    def __init__(
        self,
        message: str = "You do not have permission to perform this action",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, "FORBIDDEN", details)


class InvalidStatusTransitionError(BadRequestError):
    """Raised when a run cannot move from its current status."""

    def __init__(self, current_status: Any, action: str, allowed: set[Any]) -> None:
        def _val(x: Any) -> str:
            return getattr(x, "value", str(x))

        allowed_list = sorted(_val(s) for s in allowed)
        super().__init__(
            f"Cannot {action} a run with status '{_val(current_status)}'",
            {"current_status": _val(current_status), "allowed_statuses": allowed_list},
        )
        self.code = "INVALID_STATUS_TRANSITION"
