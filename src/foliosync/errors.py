"""Exception taxonomy and stable error codes."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from foliosync.models.security import SecurityFinding
    from foliosync.models.validation import ValidationIssue


class ErrorCode(str, Enum):
    """Stable identifiers surfaced in ledgers and tool results."""

    # Structural validation
    INVALID_VERSION_FORMAT = "INVALID_VERSION_FORMAT"
    INVALID_SLUG = "INVALID_SLUG"
    INVALID_TYPE = "INVALID_TYPE"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    PARSE_ERROR = "PARSE_ERROR"
    # Content safety and privacy
    SECURITY_REJECTED = "SECURITY_REJECTED"
    SECRET_DETECTED = "SECRET_DETECTED"
    LOCAL_ONLY = "LOCAL_ONLY"
    EXCLUDED = "EXCLUDED"
    # Remote backend
    AUTH_FAILED = "AUTH_FAILED"
    RATE_LIMITED = "RATE_LIMITED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    REMOTE_VALIDATION_FAILED = "REMOTE_VALIDATION_FAILED"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    SERVER_ERROR = "SERVER_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    PARTIAL_LISTING = "PARTIAL_LISTING"
    CONSENT_REQUIRED = "CONSENT_REQUIRED"
    # Configuration and flow control
    SYNC_DISABLED = "SYNC_DISABLED"
    BULK_DISABLED = "BULK_DISABLED"
    REMOTE_NOT_CONFIGURED = "REMOTE_NOT_CONFIGURED"
    CONFIRMATION_REQUIRED = "CONFIRMATION_REQUIRED"
    UP_TO_DATE = "UP_TO_DATE"
    LOCAL_EXISTS = "LOCAL_EXISTS"
    CANCELLED = "CANCELLED"
    AMBIGUOUS_MATCH = "AMBIGUOUS_MATCH"
    INVALID_REQUEST = "INVALID_REQUEST"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class FolioError(Exception):
    """Base class for every error raised by foliosync."""

    default_code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class ElementValidationError(FolioError):
    """Structural problem with an element; fixable by editing it locally."""

    default_code = ErrorCode.MISSING_REQUIRED_FIELD

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        issues: list[ValidationIssue] | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.issues = list(issues or [])


class SecurityRejected(FolioError):
    """Content hit a critical security pattern and was refused."""

    default_code = ErrorCode.SECURITY_REJECTED

    def __init__(
        self,
        message: str,
        *,
        findings: list[SecurityFinding] | None = None,
        code: ErrorCode | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.findings = list(findings or [])


class NotFoundError(FolioError):
    """Element or remote path does not exist."""

    default_code = ErrorCode.NOT_FOUND


class AmbiguousMatchError(NotFoundError):
    """A fuzzy lookup matched more than one element."""

    default_code = ErrorCode.AMBIGUOUS_MATCH

    def __init__(self, message: str, *, candidates: list[str]) -> None:
        super().__init__(message)
        self.candidates = sorted(candidates)


class ConfigurationError(FolioError):
    """Missing or contradictory configuration (e.g. no remote repository)."""

    default_code = ErrorCode.REMOTE_NOT_CONFIGURED


class RemoteError(FolioError):
    """Typed failure from the remote backend.

    ``retryable`` tells callers whether the same request may succeed later;
    the client has already exhausted its own retry budget when this escapes.
    """

    default_code = ErrorCode.SERVER_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        retryable: bool = False,
        status: int | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.retryable = retryable
        self.status = status

    def __repr__(self) -> str:
        return (
            f"RemoteError(code={self.code.value!r}, retryable={self.retryable}, "
            f"status={self.status}, message={self.message!r})"
        )


class RemoteNotFound(RemoteError, NotFoundError):
    """Remote path or repository does not exist."""

    default_code = ErrorCode.NOT_FOUND

    def __init__(self, message: str, *, status: int | None = 404) -> None:
        super().__init__(message, code=ErrorCode.NOT_FOUND, retryable=False, status=status)


class CollectionUnavailableError(FolioError):
    """The collection index could not be fetched and nothing is cached."""

    default_code = ErrorCode.NETWORK_ERROR
