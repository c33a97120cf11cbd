"""Biometric verification strategies for the vote flow.

The vote submitter only sees ``BiometricVerifier.verify()``. Which
strategy runs (facial capture, platform authenticator, or none) is a
configuration choice made once in ``build_verifier``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from . import messages
from .biometrics.camera import CameraSource, OpenCVCamera
from .biometrics.engine import FaceEmbeddingEngine
from .biometrics.matching import DuplicateMatchResolver
from .biometrics.session import CaptureSession, SessionRegistry
from .biometrics.types import QualityAssessment, VerificationOutcome
from .constants import (
    SessionConfig,
    get_config,
    get_session_config,
    get_verification_strategy,
)
from .webauthn import Fido2PlatformAuthenticator, PlatformAuthenticator, WebAuthnBridge

logger = logging.getLogger(__name__)


class BiometricVerifier(ABC):
    """Proves the voter is a live, not-yet-voted person before a vote."""

    name = "base"

    @abstractmethod
    async def verify(self, scope_id: str, subject_id: str) -> VerificationOutcome:
        """Run verification for one vote.

        Args:
            scope_id: Award the vote is for
            subject_id: Current user id

        Returns:
            Outcome; ``success`` gates the vote submission
        """
        pass


class FacialVerifier(BiometricVerifier):
    """Face capture with duplicate-vote detection."""

    name = "facial"

    def __init__(
        self,
        engine: FaceEmbeddingEngine,
        resolver: DuplicateMatchResolver,
        camera_factory: Callable[[], CameraSource] = OpenCVCamera,
        config: Optional[SessionConfig] = None,
        registry: Optional[SessionRegistry] = None,
    ):
        self.engine = engine
        self.resolver = resolver
        self.camera_factory = camera_factory
        self.config = config or get_session_config()
        self.registry = registry if registry is not None else SessionRegistry()

    def open_session(self, scope_id: str, subject_id: str, **callbacks) -> CaptureSession:
        """Create the live capture session for an interactive UI.

        Any previously open session is closed first.
        """
        return CaptureSession(
            engine=self.engine,
            resolver=self.resolver,
            camera=self.camera_factory(),
            scope_id=scope_id,
            subject_id=subject_id,
            config=self.config,
            registry=self.registry,
            **callbacks,
        )

    async def verify(self, scope_id: str, subject_id: str) -> VerificationOutcome:
        """Unattended capture: wait for a good frame, then capture and verify."""
        good_frame = asyncio.Event()

        def on_quality(assessment: QualityAssessment) -> None:
            if assessment.is_good_quality:
                good_frame.set()

        async with self.open_session(scope_id, subject_id, on_quality=on_quality) as session:
            if not await session.initialize():
                return _session_failure(session)
            if not await session.start_camera():
                return _session_failure(session)

            try:
                await asyncio.wait_for(good_frame.wait(), self.config.capture_timeout)
            except asyncio.TimeoutError:
                issues = session.latest_quality.issues if session.latest_quality else ()
                logger.warning(f"No good-quality frame within {self.config.capture_timeout}s")
                return VerificationOutcome.failure(messages.poor_quality_message(issues), "POOR_QUALITY")

            result = await session.capture_and_verify()
            if result is None:
                return _session_failure(session)

        return VerificationOutcome.ok("Biometric verification successful", payload=result.to_dict())


def _session_failure(session: CaptureSession) -> VerificationOutcome:
    code = session.failure_reason.name if session.failure_reason else "VERIFICATION_FAILED"
    return VerificationOutcome.failure(session.error_message or messages.VERIFICATION_FAILED, code)


class WebAuthnVerifier(BiometricVerifier):
    """Platform authenticator (Windows Hello) ceremony."""

    name = "webauthn"

    def __init__(self, bridge: WebAuthnBridge):
        self.bridge = bridge

    async def verify(self, scope_id: str, subject_id: str) -> VerificationOutcome:
        # Ceremonies block on the platform UI
        return await asyncio.to_thread(self.bridge.verify_for_voting)


class NoVerifier(BiometricVerifier):
    """Verification disabled; every vote passes straight through."""

    name = "none"

    async def verify(self, scope_id: str, subject_id: str) -> VerificationOutcome:
        return VerificationOutcome.ok("Biometric verification not required")


def build_verifier(
    api_client=None,
    strategy: Optional[str] = None,
    engine: Optional[FaceEmbeddingEngine] = None,
    resolver: Optional[DuplicateMatchResolver] = None,
    camera_factory: Callable[[], CameraSource] = OpenCVCamera,
    authenticator: Optional[PlatformAuthenticator] = None,
) -> BiometricVerifier:
    """Create the configured verifier.

    Args:
        api_client: Backend client used by the facial and WebAuthn strategies
        strategy: "facial", "webauthn" or "none" (uses config if None)
        engine: Face engine to share (a new one if None)
        resolver: Duplicate resolver to share (built on ``api_client`` if None)
        camera_factory: Creates a camera per capture session
        authenticator: Platform authenticator (fido2 Windows client if None)
    """
    strategy = strategy or get_verification_strategy(get_config().raw)
    logger.info(f"Using '{strategy}' biometric verification")

    if strategy == "none":
        return NoVerifier()

    if strategy == "webauthn":
        if api_client is None:
            raise ValueError("WebAuthn verification requires an API client")
        return WebAuthnVerifier(WebAuthnBridge(api_client, authenticator or Fido2PlatformAuthenticator()))

    if strategy != "facial":
        raise ValueError(f"Unknown verification strategy: {strategy}")

    return FacialVerifier(
        engine=engine or FaceEmbeddingEngine(),
        resolver=resolver or DuplicateMatchResolver(registry=api_client),
        camera_factory=camera_factory,
    )
