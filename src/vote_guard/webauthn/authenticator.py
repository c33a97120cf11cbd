"""Platform authenticator adapters.

The bridge talks to a ``PlatformAuthenticator``; the concrete adapter here
drives Windows Hello through the ``fido2`` Windows client. Options come in
and credentials go out in the JSON shape the backend's WebAuthn library
expects (base64url byte fields, camelCase keys).
"""

import logging
import sys
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional

from ..constants import ApiConfig, get_api_config
from ..errors import VoteGuardError

logger = logging.getLogger(__name__)


class CeremonyErrorKind(Enum):
    """Closed set of ceremony failures, named after the DOMException names."""
    NOT_ALLOWED = "NotAllowedError"
    NOT_SUPPORTED = "NotSupportedError"
    INVALID_STATE = "InvalidStateError"
    SECURITY = "SecurityError"
    ABORTED = "AbortError"
    UNKNOWN = "UnknownError"


class CeremonyError(VoteGuardError):
    """A platform ceremony failed (cancelled, unsupported, excluded credential...)."""

    def __init__(self, kind: CeremonyErrorKind, message: str = ""):
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value


class PlatformAuthenticator(ABC):
    """A user-verifying platform authenticator (Windows Hello, Touch ID...)."""

    @abstractmethod
    def is_supported(self) -> bool:
        """True if this platform exposes WebAuthn ceremonies at all."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """True if a user-verifying platform authenticator is present."""
        pass

    @abstractmethod
    def create_credential(self, options: Dict[str, Any]) -> Dict[str, Any]:
        """Run a registration ceremony.

        Args:
            options: PublicKeyCredentialCreationOptions as JSON

        Returns:
            RegistrationResponse JSON for the backend

        Raises:
            CeremonyError: Ceremony failed or was cancelled
        """
        pass

    @abstractmethod
    def get_assertion(self, options: Dict[str, Any]) -> Dict[str, Any]:
        """Run an authentication ceremony.

        Raises:
            CeremonyError: Ceremony failed or was cancelled
        """
        pass


def _unwrap_options(options: Dict[str, Any]) -> Dict[str, Any]:
    # Some servers wrap options as {"publicKey": {...}}
    return options.get("publicKey", options)


class Fido2PlatformAuthenticator(PlatformAuthenticator):
    """Windows Hello via ``fido2.client.windows.WindowsClient``.

    The Windows WebAuthn API owns the ceremony UI and its timeout; a
    running ceremony cannot be cancelled from here.
    """

    def __init__(self, origin: Optional[str] = None, config: Optional[ApiConfig] = None):
        """Initialize the adapter.

        Args:
            origin: Relying-party origin (uses config if None)
            config: API constants (uses global config if None)
        """
        self.config = config or get_api_config()
        self.origin = origin or self.config.origin
        self._client = None

    def _windows_client_class(self):
        if sys.platform != "win32":
            return None
        try:
            from fido2.client.windows import WindowsClient
        except ImportError as e:
            logger.warning(f"fido2 Windows client unavailable: {e}")
            return None
        return WindowsClient

    def is_supported(self) -> bool:
        return self._windows_client_class() is not None

    def is_available(self) -> bool:
        client_cls = self._windows_client_class()
        if client_cls is None:
            return False
        try:
            return bool(client_cls.is_available())
        except OSError as e:
            logger.error(f"Error checking platform authenticator availability: {e}")
            return False

    def _get_client(self):
        if self._client is None:
            client_cls = self._windows_client_class()
            if client_cls is None:
                raise CeremonyError(CeremonyErrorKind.NOT_SUPPORTED, "WebAuthn is not supported on this platform")
            self._client = client_cls(self.origin)
        return self._client

    @staticmethod
    def _map_client_error(error: Exception) -> CeremonyError:
        from fido2.client import ClientError

        if not isinstance(error, ClientError):
            return CeremonyError(CeremonyErrorKind.UNKNOWN, str(error))

        code = error.code
        if code == ClientError.ERR.TIMEOUT:
            kind = CeremonyErrorKind.NOT_ALLOWED
        elif code == ClientError.ERR.DEVICE_INELIGIBLE:
            kind = CeremonyErrorKind.INVALID_STATE
        elif code == ClientError.ERR.CONFIGURATION_UNSUPPORTED:
            kind = CeremonyErrorKind.NOT_SUPPORTED
        elif code == ClientError.ERR.BAD_REQUEST:
            kind = CeremonyErrorKind.SECURITY
        elif "cancel" in str(error.cause).lower():
            kind = CeremonyErrorKind.NOT_ALLOWED
        else:
            kind = CeremonyErrorKind.UNKNOWN
        return CeremonyError(kind, str(error))

    def create_credential(self, options: Dict[str, Any]) -> Dict[str, Any]:
        from fido2.client import ClientError
        from fido2.utils import websafe_encode
        from fido2.webauthn import PublicKeyCredentialCreationOptions

        client = self._get_client()
        try:
            creation = PublicKeyCredentialCreationOptions.from_dict(_unwrap_options(options))
        except (KeyError, TypeError, ValueError) as e:
            raise CeremonyError(CeremonyErrorKind.NOT_SUPPORTED, f"Invalid registration options: {e}") from e

        try:
            response = client.make_credential(creation)
        except (ClientError, OSError) as e:
            raise self._map_client_error(e) from e

        credential_id = websafe_encode(
            response.attestation_object.auth_data.credential_data.credential_id
        )
        return {
            "id": credential_id,
            "rawId": credential_id,
            "type": "public-key",
            "response": {
                "clientDataJSON": websafe_encode(bytes(response.client_data)),
                "attestationObject": websafe_encode(bytes(response.attestation_object)),
            },
            "clientExtensionResults": dict(response.extension_results or {}),
        }

    def get_assertion(self, options: Dict[str, Any]) -> Dict[str, Any]:
        from fido2.client import ClientError
        from fido2.utils import websafe_encode
        from fido2.webauthn import PublicKeyCredentialRequestOptions

        client = self._get_client()
        try:
            request = PublicKeyCredentialRequestOptions.from_dict(_unwrap_options(options))
        except (KeyError, TypeError, ValueError) as e:
            raise CeremonyError(CeremonyErrorKind.NOT_SUPPORTED, f"Invalid authentication options: {e}") from e

        try:
            response = client.get_assertion(request).get_response(0)
        except (ClientError, OSError) as e:
            raise self._map_client_error(e) from e

        credential_id = websafe_encode(response.credential_id)
        return {
            "id": credential_id,
            "rawId": credential_id,
            "type": "public-key",
            "response": {
                "clientDataJSON": websafe_encode(bytes(response.client_data)),
                "authenticatorData": websafe_encode(bytes(response.authenticator_data)),
                "signature": websafe_encode(response.signature),
                "userHandle": websafe_encode(response.user_handle) if response.user_handle else None,
            },
            "clientExtensionResults": dict(response.extension_results or {}),
        }
