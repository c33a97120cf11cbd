"""WebAuthn platform-authenticator fallback for biometric verification."""

from .authenticator import (
    CeremonyError,
    CeremonyErrorKind,
    PlatformAuthenticator,
    Fido2PlatformAuthenticator,
)
from .bridge import WebAuthnBridge, CompatibilityReport

__all__ = [
    "CeremonyError", "CeremonyErrorKind", "PlatformAuthenticator",
    "Fido2PlatformAuthenticator", "WebAuthnBridge", "CompatibilityReport",
]
