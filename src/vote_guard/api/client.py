"""HTTP client for the voting backend."""

import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar

import requests

from ..biometrics.types import DuplicateCheckResult, FaceSignature
from ..constants import ApiConfig, RetryConfig, get_api_config, get_retry_config
from ..errors import ApiError, AuthenticationError
from .schemas import (
    CeremonyVerification,
    CurrentUser,
    DuplicateCheckRequest,
    DuplicateCheckResponse,
    FaceSignaturePayload,
    StoreBiometricRequest,
    VoteHistoryResponse,
    VoteRecord,
    VoteRequest,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

REFRESH_PATH = "/auth/refresh"


class ApiClient:
    """JSON client for the voting REST API.

    Authenticates with a bearer token plus session cookies. A 401 triggers
    one token refresh; if that fails the call raises AuthenticationError,
    which is the "unauthenticated" signal for callers.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        access_token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        config: Optional[ApiConfig] = None,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the client.

        Args:
            base_url: API root, e.g. https://example.org/api (uses config if None)
            access_token: Bearer token for the Authorization header
            session: requests session (a new one if None)
            config: API constants (uses global config if None)
            retry_config: Retry policy (uses global config if None)
            sleep: Sleep function used between retries
        """
        self.config = config or get_api_config()
        self.retry_config = retry_config or get_retry_config()
        self.base_url = (base_url or self.config.base_url).rstrip("/")
        self.access_token = access_token
        self.session = session or requests.Session()
        self._sleep = sleep

    # -----------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        if extra:
            headers.update(extra)
        return headers

    def _send(
        self,
        method: str,
        path: str,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        url = f"{self.base_url}{path}"
        start = time.monotonic()
        try:
            response = self.session.request(
                method,
                url,
                json=json_body,
                headers=self._headers(headers),
                timeout=self.config.timeout,
            )
        except requests.Timeout as e:
            raise ApiError.timeout(str(e)) from e
        except requests.RequestException as e:
            raise ApiError.network(str(e)) from e

        duration_ms = (time.monotonic() - start) * 1000
        logger.debug(f"{method} {path} - {response.status_code} ({duration_ms:.0f}ms)")
        return response

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    def refresh_token(self) -> bool:
        """Exchange the refresh cookie for a new access token."""
        try:
            response = self._send("POST", REFRESH_PATH, json_body={})
        except ApiError as e:
            logger.error(f"Token refresh failed: {e}")
            return False

        body = self._decode(response)
        token = body.get("accessToken") if response.ok and isinstance(body, dict) else None
        if not token:
            logger.error(f"Token refresh failed with status {response.status_code}")
            return False

        self.access_token = token
        logger.info("Access token refreshed")
        return True

    def request(
        self,
        method: str,
        path: str,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Raises:
            AuthenticationError: 401 and the token could not be refreshed
            ApiError: Any other failed request
        """
        response = self._send(method, path, json_body, headers)

        if response.status_code == 401 and path != REFRESH_PATH:
            logger.info("Access token expired, attempting to refresh...")
            if self.refresh_token():
                response = self._send(method, path, json_body, headers)

        body = self._decode(response)
        if response.ok:
            return body

        error = ApiError.from_response(response.status_code, body)
        logger.warning(f"{method} {path} failed: {error!r} {error.message}")
        if response.status_code == 401:
            raise AuthenticationError(
                error.message, error.error_type, error.status_code,
                error.code, error.details, False,
            )
        raise error

    def with_retry(self, request_fn: Callable[[], T]) -> T:
        """Run a request, retrying retryable failures with exponential backoff."""
        cfg = self.retry_config
        attempt = 0
        while True:
            try:
                return request_fn()
            except ApiError as e:
                if not e.should_retry or attempt >= cfg.max_retries:
                    raise
                delay = cfg.retry_delay * (2 ** attempt)
                delay += random.random() * cfg.jitter_ratio * delay
                attempt += 1
                logger.info(
                    f"Retrying request in {delay:.1f}s (attempt {attempt}/{cfg.max_retries})"
                )
                self._sleep(delay)

    # -----------------------------------------------------------------
    # Auth
    # -----------------------------------------------------------------

    def get_current_user(self) -> CurrentUser:
        body = self.request("GET", "/auth/me")
        user = body.get("user", body) if isinstance(body, dict) else {}
        return CurrentUser.model_validate(user)

    # -----------------------------------------------------------------
    # Biometric registry
    # -----------------------------------------------------------------

    def check_biometric_duplicate(
        self,
        signature: FaceSignature,
        award_id: str,
    ) -> DuplicateCheckResult:
        payload = DuplicateCheckRequest(
            face_signature=FaceSignaturePayload.from_signature(signature),
            award_id=award_id,
        )
        body = self.request("POST", "/votes/check-biometric-duplicate", payload.to_wire())
        return DuplicateCheckResponse.model_validate(body or {}).to_result()

    def store_biometric_data(
        self,
        signature: FaceSignature,
        award_id: str,
        user_id: str,
    ) -> Any:
        payload = StoreBiometricRequest(
            face_signature=FaceSignaturePayload.from_signature(signature),
            award_id=award_id,
            user_id=user_id,
        )
        return self.request("POST", "/votes/store-biometric-data", payload.to_wire())

    # -----------------------------------------------------------------
    # Votes
    # -----------------------------------------------------------------

    def submit_vote(
        self,
        award_id: str,
        nominee_id: str,
        idempotency_key: str,
        biometric_verified: bool = False,
    ) -> Any:
        """POST /votes; the idempotency key makes repeats of one submission harmless."""
        headers = {"Idempotency-Key": idempotency_key}
        if biometric_verified:
            headers["Biometric-Verified"] = "true"
        payload = VoteRequest(award_id=award_id, nominee_id=nominee_id)
        return self.request("POST", "/votes", payload.to_wire(), headers=headers)

    def get_vote_history(self) -> List[VoteRecord]:
        body = self.request("GET", "/votes/my-history")
        return VoteHistoryResponse.model_validate(body or {}).votes

    # -----------------------------------------------------------------
    # WebAuthn
    # -----------------------------------------------------------------

    def webauthn_register_options(self) -> Dict[str, Any]:
        return self.request("POST", "/webauthn/register/options", {})

    def webauthn_register_verify(self, credential: Dict[str, Any]) -> CeremonyVerification:
        body = self.request("POST", "/webauthn/register/verify", credential)
        return CeremonyVerification.model_validate(body or {})

    def webauthn_authenticate_options(self) -> Dict[str, Any]:
        return self.request("POST", "/webauthn/authenticate/options", {})

    def webauthn_authenticate_verify(self, credential: Dict[str, Any]) -> CeremonyVerification:
        body = self.request("POST", "/webauthn/authenticate/verify", credential)
        return CeremonyVerification.model_validate(body or {})
