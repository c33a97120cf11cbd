"""WebAuthn registration and authentication against the voting backend.

Every public method returns a ``VerificationOutcome``; ceremony and
backend failures never escape as exceptions. Ceremonies block until the
platform UI finishes (or hits its own timeout) and cannot be cancelled
programmatically, so async callers should run them in a worker thread.
"""

import logging
import platform
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .. import messages
from ..biometrics.types import VerificationOutcome
from ..errors import ApiError
from .authenticator import CeremonyError, CeremonyErrorKind, PlatformAuthenticator

if TYPE_CHECKING:
    from ..api.client import ApiClient

logger = logging.getLogger(__name__)

ACTION_AUTHENTICATE = "authenticate"
ACTION_REGISTER = "register"

# Backend codes after which registering a credential is the way forward
_REGISTER_FIRST_CODES = (
    "NO_CREDENTIALS",
    "AUTHENTICATION_OPTIONS_ERROR",
    "AUTHENTICATION_VERIFICATION_ERROR",
)

_REGISTRATION_ERRORS = {
    CeremonyErrorKind.NOT_ALLOWED: ("NOT_ALLOWED_ERROR", messages.REGISTRATION_CANCELLED),
    CeremonyErrorKind.NOT_SUPPORTED: ("WEBAUTHN_NOT_SUPPORTED", messages.WEBAUTHN_NOT_SUPPORTED),
    CeremonyErrorKind.INVALID_STATE: ("CREDENTIAL_EXISTS", messages.CREDENTIAL_EXISTS),
    CeremonyErrorKind.SECURITY: ("SECURITY_ERROR", messages.SECURITY_ERROR),
    CeremonyErrorKind.ABORTED: ("ABORTED", messages.CEREMONY_ABORTED),
}

_AUTHENTICATION_ERRORS = {
    CeremonyErrorKind.NOT_ALLOWED: ("AUTHENTICATION_CANCELLED", messages.AUTHENTICATION_CANCELLED),
    CeremonyErrorKind.NOT_SUPPORTED: ("WEBAUTHN_NOT_SUPPORTED", messages.WEBAUTHN_NOT_SUPPORTED),
    CeremonyErrorKind.SECURITY: ("SECURITY_ERROR", messages.SECURITY_ERROR),
    CeremonyErrorKind.ABORTED: ("ABORTED", messages.CEREMONY_ABORTED),
}


def _next_action(code: str) -> Optional[str]:
    if code == "CREDENTIAL_EXISTS":
        return ACTION_AUTHENTICATE
    if code in _REGISTER_FIRST_CODES:
        return ACTION_REGISTER
    return None


def _ceremony_failure(error: CeremonyError, table: Dict) -> VerificationOutcome:
    code, message = table.get(error.kind, ("UNKNOWN_ERROR", messages.CEREMONY_UNKNOWN))
    return VerificationOutcome.failure(message, code, next_action=_next_action(code))


def _backend_failure(error: ApiError, default_code: str, default_message: str) -> VerificationOutcome:
    code = error.code if error.code and error.code != "UNKNOWN_ERROR" else default_code
    message = error.message or default_message
    return VerificationOutcome.failure(message, code, next_action=_next_action(code))


@dataclass
class CompatibilityReport:
    """What this device supports and what to do if it does not."""
    is_supported: bool
    platform_info: str
    recommendations: List[str] = field(default_factory=list)
    fallback_options: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isSupported": self.is_supported,
            "platformInfo": self.platform_info,
            "recommendations": list(self.recommendations),
            "fallbackOptions": list(self.fallback_options),
        }


class WebAuthnBridge:
    """Platform-authenticator ceremonies with backend option/verify round trips."""

    def __init__(self, api_client: "ApiClient", authenticator: PlatformAuthenticator):
        self.api = api_client
        self.authenticator = authenticator

    def is_webauthn_supported(self) -> bool:
        try:
            return self.authenticator.is_supported()
        except Exception as e:
            logger.error(f"Error checking WebAuthn support: {e}")
            return False

    def is_platform_authenticator_available(self) -> bool:
        if not self.is_webauthn_supported():
            return False
        try:
            return self.authenticator.is_available()
        except Exception as e:
            logger.error(f"Error checking platform authenticator availability: {e}")
            return False

    def register(self) -> VerificationOutcome:
        """Register a platform credential for the signed-in user."""
        if not self.is_webauthn_supported():
            return VerificationOutcome.failure(messages.WEBAUTHN_NOT_SUPPORTED, "WEBAUTHN_NOT_SUPPORTED")
        if not self.is_platform_authenticator_available():
            return VerificationOutcome.failure(
                messages.PLATFORM_NOT_AVAILABLE, "PLATFORM_AUTHENTICATOR_NOT_AVAILABLE"
            )

        try:
            options = self.api.webauthn_register_options()
        except ApiError as e:
            return _backend_failure(e, "REGISTRATION_OPTIONS_ERROR", "Failed to get registration options")

        try:
            credential = self.authenticator.create_credential(options)
        except CeremonyError as e:
            logger.warning(f"WebAuthn registration error: {e.kind.value}: {e.message}")
            return _ceremony_failure(e, _REGISTRATION_ERRORS)

        try:
            verification = self.api.webauthn_register_verify(credential)
        except ApiError as e:
            return _backend_failure(e, "REGISTRATION_VERIFICATION_ERROR", "Registration verification failed")

        logger.info(f"WebAuthn registration verified={verification.verified}")
        return VerificationOutcome(
            success=verification.verified,
            message=verification.message or "WebAuthn credential registered successfully",
        )

    def authenticate(self) -> VerificationOutcome:
        """Authenticate with an existing platform credential."""
        if not self.is_webauthn_supported():
            return VerificationOutcome.failure(messages.WEBAUTHN_NOT_SUPPORTED, "WEBAUTHN_NOT_SUPPORTED")

        try:
            options = self.api.webauthn_authenticate_options()
        except ApiError as e:
            return _backend_failure(e, "AUTHENTICATION_OPTIONS_ERROR", "Failed to get authentication options")

        try:
            assertion = self.authenticator.get_assertion(options)
        except CeremonyError as e:
            logger.warning(f"WebAuthn authentication error: {e.kind.value}: {e.message}")
            return _ceremony_failure(e, _AUTHENTICATION_ERRORS)

        try:
            verification = self.api.webauthn_authenticate_verify(assertion)
        except ApiError as e:
            return _backend_failure(e, "AUTHENTICATION_VERIFICATION_ERROR", "Authentication verification failed")

        logger.info(f"WebAuthn authentication verified={verification.verified}")
        return VerificationOutcome(
            success=verification.verified,
            message=verification.message or "WebAuthn authentication successful",
        )

    def verify_for_voting(self) -> VerificationOutcome:
        """Availability check followed by authentication, for the vote flow."""
        if not self.is_platform_authenticator_available():
            return VerificationOutcome.failure(messages.BIOMETRIC_NOT_AVAILABLE, "BIOMETRIC_NOT_AVAILABLE")

        outcome = self.authenticate()
        if not outcome.success:
            return outcome
        return VerificationOutcome.ok("Biometric verification successful", payload={"method": "webauthn"})

    def compatibility(self) -> CompatibilityReport:
        """Describe platform support and fallbacks for the user."""
        supported = self.is_webauthn_supported()
        system = platform.system() or "Unknown platform"
        platform_info = f"{system} {platform.release()}".strip()

        recommendations = []
        if not supported:
            if system == "Windows":
                recommendations.append("Update to Windows 10 version 1903 or later for Windows Hello support")
            recommendations.append("Use a device with a supported platform authenticator")
            recommendations.append(
                "Ensure your device has biometric capabilities (Face ID, Windows Hello, etc.)"
            )

        return CompatibilityReport(
            is_supported=supported,
            platform_info=platform_info,
            recommendations=recommendations,
            fallback_options=[] if supported else [
                "Use a different device with biometric capabilities",
                "Contact system administrator for alternative authentication methods",
            ],
        )
