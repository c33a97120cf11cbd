"""Exception hierarchy for the vote guard package.

Capability and environment faults (model loading, unsupported platform)
raise. Expected outcomes of user interaction (bad frame quality, duplicate
vote, cancelled ceremony) are returned as structured results instead.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class VoteGuardError(Exception):
    """Base class for all vote guard errors."""


# ============================================================
# Face engine
# ============================================================

class ModelLoadError(VoteGuardError):
    """Face model assets are unreachable, corrupt or took too long to load."""


class ModelsNotReadyError(VoteGuardError):
    """An engine method was called before initialize() succeeded."""


class NoFaceDetectedError(VoteGuardError):
    """The detector found zero faces in the frame."""


# ============================================================
# Camera (closed variant produced at the platform boundary)
# ============================================================

class CameraError(VoteGuardError):
    """Base class for camera acquisition failures."""

    retryable = True


class CameraPermissionDenied(CameraError):
    """The OS denied access to the camera device."""


class CameraInUse(CameraError):
    """The camera exists but another application holds it."""


class CameraNotFound(CameraError):
    """No camera device is present."""


class CameraUnknownError(CameraError):
    """Any other camera failure, carrying the platform message."""


# ============================================================
# Session
# ============================================================

class SessionStateError(VoteGuardError):
    """An operation was invoked in a state that does not allow it."""


# ============================================================
# Backend API
# ============================================================

class ErrorType(Enum):
    """Classification of backend API failures."""
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    CLIENT_ERROR = "CLIENT_ERROR"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    BIOMETRIC_ERROR = "BIOMETRIC_ERROR"
    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


RETRYABLE_ERROR_TYPES = frozenset({
    ErrorType.NETWORK_ERROR,
    ErrorType.TIMEOUT_ERROR,
    ErrorType.SERVICE_UNAVAILABLE,
    ErrorType.RATE_LIMIT_ERROR,
})


def _classify_status(status: int) -> ErrorType:
    if status == 400:
        return ErrorType.VALIDATION_ERROR
    if status == 401:
        return ErrorType.AUTHENTICATION_ERROR
    if status == 403:
        return ErrorType.AUTHORIZATION_ERROR
    if status == 428:
        return ErrorType.BIOMETRIC_ERROR
    if status == 429:
        return ErrorType.RATE_LIMIT_ERROR
    if 400 <= status < 500:
        return ErrorType.CLIENT_ERROR
    if status == 503:
        return ErrorType.SERVICE_UNAVAILABLE
    return ErrorType.SERVER_ERROR


class ApiError(VoteGuardError):
    """Failure talking to the voting backend."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType,
        status_code: int = 0,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.status_code = status_code
        self.code = code
        self.details = details or {}
        self.retryable = retryable
        self.timestamp = datetime.now(timezone.utc).isoformat()

    @classmethod
    def network(cls, reason: str) -> "ApiError":
        """Build the error used when no HTTP response was received."""
        return cls(
            "Network connection failed",
            ErrorType.NETWORK_ERROR,
            code="NETWORK_ERROR",
            details={"originalError": reason},
            retryable=True,
        )

    @classmethod
    def timeout(cls, reason: str) -> "ApiError":
        """Build the error used when the request timed out."""
        return cls(
            "Request timed out",
            ErrorType.TIMEOUT_ERROR,
            code="TIMEOUT_ERROR",
            details={"originalError": reason},
            retryable=True,
        )

    @classmethod
    def from_response(cls, status: int, body: Any) -> "ApiError":
        """Build an error from an HTTP status and decoded JSON body.

        The backend reports failures as ``{"error": {"code", "message",
        "details", "retryable", "userAction", ...}}``.
        """
        error_data = {}
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            error_data = body["error"]

        error_type = _classify_status(status)
        details = dict(error_data.get("details") or {})
        for key in ("errorId", "userAction", "fallbackInfo", "retryAfter"):
            if error_data.get(key) is not None:
                details[key] = error_data[key]

        return cls(
            error_data.get("message") or f"Request failed with status {status}",
            error_type,
            status_code=status,
            code=error_data.get("code") or "UNKNOWN_ERROR",
            details=details,
            retryable=bool(error_data.get("retryable", error_type in RETRYABLE_ERROR_TYPES)),
        )

    @property
    def should_retry(self) -> bool:
        """True when the retry policy may repeat this request."""
        return self.retryable and self.error_type in RETRYABLE_ERROR_TYPES

    def __repr__(self) -> str:
        return (
            f"ApiError(code={self.code!r}, type={self.error_type.value}, "
            f"status={self.status_code})"
        )


class AuthenticationError(ApiError):
    """The session is unauthenticated and token refresh failed."""


class VoteSubmissionError(VoteGuardError):
    """A vote could not be recorded; ``message`` is user-facing."""

    def __init__(self, message: str, code: str, api_error: Optional[ApiError] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.api_error = api_error
