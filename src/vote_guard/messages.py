"""User-facing messages.

Every failure mode maps to one actionable sentence. Callers look messages
up here instead of formatting their own so the wording stays consistent
between the facial and WebAuthn paths.
"""

from typing import Iterable

from .errors import (
    ApiError,
    CameraError,
    CameraInUse,
    CameraNotFound,
    CameraPermissionDenied,
    ErrorType,
)

# Camera
CAMERA_PERMISSION_DENIED = "Unable to access camera. Please allow camera access and try again."
CAMERA_IN_USE = "Unable to access camera. Camera is being used by another application."
CAMERA_NOT_FOUND = "Unable to access camera. No camera found. Please connect a camera and try again."
CAMERA_UNKNOWN = "Unable to access camera. Please check camera permissions and try again."

# Models
MODELS_LOADING = "Face detection models are still loading. Please wait a moment and try again."
MODEL_LOAD_FAILED = "Failed to initialize biometric verification. Please refresh and try again."

# Capture
NO_FACE = "No face detected in the image. Please ensure your face is clearly visible and try again."
VERIFICATION_FAILED = "Biometric verification failed. Please try again."

# WebAuthn
WEBAUTHN_NOT_SUPPORTED = "WebAuthn is not supported on this device"
PLATFORM_NOT_AVAILABLE = (
    "Platform authenticator (Face ID, Windows Hello, etc.) is not available"
)
BIOMETRIC_NOT_AVAILABLE = "Biometric authentication is not available on this device"
REGISTRATION_CANCELLED = (
    "Biometric registration was cancelled, timed out, or not allowed. "
    "Please try again and complete the biometric scan when prompted."
)
AUTHENTICATION_CANCELLED = (
    "Biometric authentication was cancelled, timed out, or not allowed. "
    "Please try again and complete the biometric verification when prompted."
)
CREDENTIAL_EXISTS = "A credential with this ID already exists. Please try authenticating instead."
NO_CREDENTIALS = "You need to register your biometric credentials first"
SECURITY_ERROR = "Security error: Please ensure you're using HTTPS or localhost"
CEREMONY_ABORTED = "The biometric ceremony was aborted. Please try again."
CEREMONY_UNKNOWN = "An unexpected error occurred during biometric verification"

# Votes
VOTE_ERRORS = {
    "DUPLICATE_VOTE": "You have already voted for this award category.",
    "VOTING_NOT_STARTED": "Voting for this award has not started yet.",
    "VOTING_ENDED": "Voting for this award has ended.",
    "VOTING_NOT_ACTIVE": "Voting for this award is not currently active.",
    "AWARD_NOT_FOUND": "This award could not be found. Please refresh and try again.",
    "NOMINEE_NOT_FOUND": "This nominee could not be found. Please refresh and try again.",
    "BIOMETRIC_VERIFICATION_FAILED": (
        "Biometric verification is required. Please complete verification to continue."
    ),
}
VOTE_FAILED = "Failed to submit vote. Please try again."


def camera_error_message(error: CameraError) -> str:
    """Return the sentence for a camera failure."""
    if isinstance(error, CameraPermissionDenied):
        return CAMERA_PERMISSION_DENIED
    if isinstance(error, CameraInUse):
        return CAMERA_IN_USE
    if isinstance(error, CameraNotFound):
        return CAMERA_NOT_FOUND
    return CAMERA_UNKNOWN


def poor_quality_message(issues: Iterable[str]) -> str:
    """Return the sentence for a capture rejected by the quality gate."""
    listed = ", ".join(issues) or "improve face positioning"
    return f"Poor image quality: {listed}. Please adjust your position and lighting."


def duplicate_vote_message(confidence: float) -> str:
    """Return the sentence for a detected duplicate voter.

    The confidence is shown as a whole-number percentage.
    """
    percent = round(confidence * 100)
    return (
        "This person has already voted. Previous vote detected with "
        f"{percent}% confidence."
    )


def vote_error_message(code: str) -> str:
    """Return the sentence for a backend vote error code."""
    return VOTE_ERRORS.get(code, VOTE_FAILED)


def get_error_message(error: ApiError) -> str:
    """Return a user-friendly message for an API error."""
    user_action = error.details.get("userAction")
    if user_action:
        return user_action

    if error.error_type == ErrorType.NETWORK_ERROR:
        return "Network connection failed. Please check your internet connection and try again."
    if error.error_type == ErrorType.TIMEOUT_ERROR:
        return "Request timed out. Please try again."
    if error.error_type == ErrorType.AUTHENTICATION_ERROR:
        return "Please sign in to continue."
    if error.error_type == ErrorType.AUTHORIZATION_ERROR:
        return "You do not have permission to perform this action."
    if error.error_type == ErrorType.VALIDATION_ERROR:
        return "Please check your input and try again."
    if error.error_type == ErrorType.BIOMETRIC_ERROR:
        return VOTE_ERRORS["BIOMETRIC_VERIFICATION_FAILED"]
    if error.error_type == ErrorType.RATE_LIMIT_ERROR:
        retry_after = error.details.get("retryAfter", 60)
        return f"Too many requests. Please wait {retry_after} seconds before trying again."
    if error.error_type == ErrorType.SERVICE_UNAVAILABLE:
        return "Service is temporarily unavailable. Please try again later."
    return error.message or "An unexpected error occurred. Please try again."
