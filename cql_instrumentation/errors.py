"""
CQL Instrumentation - Core Error Types

Defines the exception hierarchy for the instrumentation package.
All exceptions inherit from InstrumentationError for consistent handling.

Errors raised by the wrapped database call are never converted into these
types; they propagate to the caller unchanged.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes attached to structured error details."""

    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"
    ENV_FILE_UNREADABLE = "ENV_FILE_UNREADABLE"

    HOOK_TARGET_MISSING = "HOOK_TARGET_MISSING"
    HOOK_NOT_CALLABLE = "HOOK_NOT_CALLABLE"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class InstrumentationError(Exception):
    """Base exception for all instrumentation errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.error_code = error_code

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error": self.__class__.__name__,
            "error_code": self.error_code.value,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(InstrumentationError):
    """Raised when configuration is invalid or cannot be loaded."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode = ErrorCode.INVALID_CONFIGURATION,
    ):
        super().__init__(message, details, error_code)


class HookTargetError(InstrumentationError):
    """Raised when a hook's owner or attribute cannot be resolved."""

    def __init__(
        self,
        module: str,
        attribute: str,
        reason: str,
        error_code: ErrorCode = ErrorCode.HOOK_TARGET_MISSING,
    ):
        message = f"Cannot instrument {module}:{attribute}: {reason}"
        super().__init__(
            message,
            {"module": module, "attribute": attribute, "reason": reason},
            error_code,
        )
        self.module = module
        self.attribute = attribute

