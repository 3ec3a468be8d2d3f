"""
Structured error types for usage-spine.

Every failure the push engine can hit is raised as a typed
:class:`UsageSpineError` carrying a category, a retry flag, a stable
machine-readable ``code`` and a structured :class:`ErrorContext`.  The
push session controller decides *fatal vs. per-batch* purely from the
type, never from message text.

Manifesto:
    - **Typed Error Hierarchy:** Different error types for different domains
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry metadata for logging and reporting
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                     UsageSpineError                              │
        │        (code, category, retryable, retry_after, context)         │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  TransientError      ProtocolError       AuthError               │
        │  (retryable=True)    (PROTOCOL)          (AUTH)                  │
        │       │                                       │                  │
        │  NetworkError                          CredentialMissingError    │
        │  TimeoutError                          AuthenticationError       │
        │  RateLimitError                                                  │
        │  ServerError                                                     │
        │                                                                  │
        │  ConfigError         ValidationError     DatabaseError           │
        │  (CONFIG)            (VALIDATION)        (DATABASE)              │
        │       │                                       │                  │
        │                                        ReconciliationError       │
        └─────────────────────────────────────────────────────────────────┘

    Session impact:
        - CredentialMissingError, AuthenticationError, DatabaseError: fatal
        - NetworkError, TimeoutError: whole batch failed, session stops early
        - other transport errors: whole batch failed, session continues

Tags:
    error-handling, exception-hierarchy, retry-logic, push, usage-spine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and reporting."""

    # Infrastructure errors (usually transient)
    NETWORK = "NETWORK"           # Connection, timeout, DNS
    SERVER = "SERVER"             # 5xx from the remote service
    DATABASE = "DATABASE"         # Local store failures

    # Contract errors
    PROTOCOL = "PROTOCOL"         # Unexpected / unparseable response body
    VALIDATION = "VALIDATION"     # Bad local input

    # Configuration errors (never retryable)
    CONFIG = "CONFIG"             # Missing config, invalid settings
    AUTH = "AUTH"                 # Missing, expired or revoked credential

    # Internal errors
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only non-``None`` fields are emitted by :meth:`to_dict`, so the
    context can be passed straight into a structlog event.

    Attributes:
        operation: Logical operation (``"health_check"``, ``"push_batch"``, ...)
        batch_number: 1-based batch index within the push session
        url: URL that was being accessed
        http_status: HTTP status code if applicable
        server_code: Error code reported by the server (``AUTH_002``, ...)
        metadata: Additional key-value pairs
    """

    operation: str | None = None
    batch_number: int | None = None
    url: str | None = None
    http_status: int | None = None
    server_code: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["operation", "batch_number", "url", "http_status", "server_code"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class UsageSpineError(Exception):
    """
    Base exception for all usage-spine errors.

    Subclasses set ``default_code``, ``default_category`` and
    ``default_retryable`` to give each domain sensible defaults.

    Examples:
        >>> error = UsageSpineError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False

        >>> error = NetworkError("Connection refused").with_context(
        ...     operation="push_batch", batch_number=3
        ... )
        >>> error.context.batch_number
        3
    """

    default_code: str = "INTERNAL"
    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> UsageSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise NetworkError("Failed").with_context(
                operation="push_batch",
                url="https://api.example.com/api/v1/cli/upsync"
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, code={self.code})"


# =============================================================================
# TRANSIENT ERRORS (Usually Retryable)
# =============================================================================


class TransientError(UsageSpineError):
    """
    Temporary error that may succeed on a later attempt.

    Within a push session a transient error fails the *whole batch*: every
    message in it gets its retry count bumped and stays eligible for the
    next session.
    """

    default_code = "TRANSIENT"
    default_category = ErrorCategory.NETWORK
    default_retryable = True


class NetworkError(TransientError):
    """Endpoint unreachable: connection refused, DNS failure, dropped socket."""

    default_code = "NETWORK_UNREACHABLE"


class TimeoutError(TransientError):
    """Request exceeded the transport timeout."""

    default_code = "NETWORK_TIMEOUT"


class RateLimitError(TransientError):
    """Server answered 429."""

    default_code = "RATE_LIMITED"

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: int | None = 60,
        **kwargs: Any,
    ):
        super().__init__(message, retry_after=retry_after, **kwargs)


class ServerError(TransientError):
    """Server answered with a 5xx status."""

    default_code = "SERVER_ERROR"
    default_category = ErrorCategory.SERVER


# =============================================================================
# PROTOCOL ERRORS
# =============================================================================


class ProtocolError(UsageSpineError):
    """Response could not be interpreted (no structured body, legacy shape)."""

    default_code = "PROTOCOL_ERROR"
    default_category = ErrorCategory.PROTOCOL
    default_retryable = True


# =============================================================================
# AUTH ERRORS (never retried automatically)
# =============================================================================


class AuthError(UsageSpineError):
    """Base for authentication and credential errors."""

    default_code = "AUTH_ERROR"
    default_category = ErrorCategory.AUTH
    default_retryable = False


class CredentialMissingError(AuthError):
    """No usable credential is available locally."""

    default_code = "NO_CREDENTIAL"


class AuthenticationError(AuthError):
    """The server rejected the credential (expired, revoked or invalid)."""

    default_code = "AUTH_EXPIRED"


# =============================================================================
# CONFIG / VALIDATION ERRORS
# =============================================================================


class ConfigError(UsageSpineError):
    """Configuration error."""

    default_code = "CONFIG_ERROR"
    default_category = ErrorCategory.CONFIG
    default_retryable = False


class ValidationError(UsageSpineError):
    """Local input failed validation."""

    default_code = "VALIDATION_FAILED"
    default_category = ErrorCategory.VALIDATION
    default_retryable = False


# =============================================================================
# STORAGE ERRORS (session-fatal)
# =============================================================================


class DatabaseError(UsageSpineError):
    """Local store could not be read or written."""

    default_code = "STORAGE_ERROR"
    default_category = ErrorCategory.DATABASE
    default_retryable = False


class ReconciliationError(DatabaseError):
    """A batch outcome could not be applied to the sync status table."""

    pass


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_connectivity_error(error: Exception) -> bool:
    """True when the remote endpoint looks unreachable from here.

    A push session stops at the first connectivity error instead of
    hammering an endpoint it cannot reach.
    """
    return isinstance(error, (NetworkError, TimeoutError))


def is_fatal(error: Exception) -> bool:
    """True when the push session must abort (auth loss, storage failure)."""
    return isinstance(error, (AuthError, DatabaseError))


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "UsageSpineError",
    "TransientError",
    "NetworkError",
    "TimeoutError",
    "RateLimitError",
    "ServerError",
    "ProtocolError",
    "AuthError",
    "CredentialMissingError",
    "AuthenticationError",
    "ConfigError",
    "ValidationError",
    "DatabaseError",
    "ReconciliationError",
    "is_connectivity_error",
    "is_fatal",
]
