"""Capture session state machine for facial verification.

One session covers one verification attempt for one award::

    idle -> initializing -> idle -> capturing -> processing -> success
                 |                      ^             |
                 v                      |   retry     v
               failed ------------------+---------- failed

cancel() returns any state to idle. The session runs on a single asyncio
event loop; model loading, inference, camera reads and registry calls run
in worker threads so the loop (and cancel()) stays responsive.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Optional, Tuple

from ..constants import SessionConfig, get_session_config
from ..errors import (
    CameraError,
    CameraInUse,
    CameraNotFound,
    CameraPermissionDenied,
    ModelLoadError,
    ModelsNotReadyError,
    NoFaceDetectedError,
    SessionStateError,
)
from .. import messages
from .camera import CameraSource
from .engine import FaceEmbeddingEngine
from .matching import DuplicateMatchResolver, biometric_hash
from .quality import FaceQualityEvaluator, frame_has_dimensions
from .types import (
    FailureReason,
    FaceDetectionResult,
    QualityAssessment,
    SessionState,
    VerificationResult,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def _camera_failure_reason(error: CameraError) -> FailureReason:
    if isinstance(error, CameraPermissionDenied):
        return FailureReason.CAMERA_PERMISSION_DENIED
    if isinstance(error, CameraInUse):
        return FailureReason.CAMERA_IN_USE
    if isinstance(error, CameraNotFound):
        return FailureReason.CAMERA_NOT_FOUND
    return FailureReason.CAMERA_ERROR


def _consume_exception(future: "asyncio.Future") -> None:
    # Results of discarded inferences are dropped on purpose.
    if not future.cancelled():
        future.exception()


class SessionRegistry:
    """Keeps at most one capture session live at a time."""

    def __init__(self):
        self._active: Optional["CaptureSession"] = None

    @property
    def active(self) -> Optional["CaptureSession"]:
        return self._active

    def activate(self, session: "CaptureSession") -> None:
        if self._active is not None and self._active is not session:
            logger.info("Closing previous capture session")
            self._active.close()
        self._active = session

    def release(self, session: "CaptureSession") -> None:
        if self._active is session:
            self._active = None


class CaptureSession:
    """Drives camera, quality polling and capture-and-verify for one award."""

    def __init__(
        self,
        engine: FaceEmbeddingEngine,
        resolver: DuplicateMatchResolver,
        camera: CameraSource,
        scope_id: str,
        subject_id: str,
        evaluator: Optional[FaceQualityEvaluator] = None,
        config: Optional[SessionConfig] = None,
        registry: Optional[SessionRegistry] = None,
        on_state_change: Optional[Callable[[SessionState], None]] = None,
        on_quality: Optional[Callable[[QualityAssessment], None]] = None,
        on_success: Optional[Callable[[VerificationResult], None]] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        """Initialize the session.

        Args:
            engine: Shared face-embedding engine
            resolver: Duplicate-match resolver
            camera: Camera to acquire
            scope_id: Award the vote is for
            subject_id: Current user id, stored with the descriptor
            evaluator: Quality evaluator (built on ``engine`` if None)
            config: Session timings (uses global config if None)
            registry: Registry enforcing a single live session
            on_state_change: Called with every new state
            on_quality: Called with every published quality assessment
            on_success: Called once with the verification result
            sleep: Coroutine used between polling ticks
        """
        self.engine = engine
        self.resolver = resolver
        self.camera = camera
        self.scope_id = scope_id
        self.subject_id = subject_id
        self.evaluator = evaluator or FaceQualityEvaluator(engine)
        self.config = config or get_session_config()
        self.registry = registry

        self._on_state_change = on_state_change
        self._on_quality = on_quality
        self._on_success = on_success
        self._sleep = sleep

        self.state = SessionState.IDLE
        self.latest_quality: Optional[QualityAssessment] = None
        self.error_message: Optional[str] = None
        self.failure_reason: Optional[FailureReason] = None
        self.result: Optional[VerificationResult] = None
        self.initialization_progress = 0

        self._generation = 0
        self._poll_task: Optional[asyncio.Task] = None
        self._init_task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Future] = None
        self._closed = False

        if registry is not None:
            registry.activate(self)

    # -----------------------------------------------------------------
    # State helpers
    # -----------------------------------------------------------------

    def _set_state(self, state: SessionState) -> None:
        if state is self.state:
            return
        logger.debug(f"Session {self.scope_id}: {self.state.value} -> {state.value}")
        self.state = state
        if self._on_state_change:
            try:
                self._on_state_change(state)
            except Exception as e:
                logger.error(f"State change callback error: {e}")

    def _fail(self, reason: FailureReason, message: str) -> None:
        logger.warning(f"Verification failed ({reason.value}): {message}")
        self.failure_reason = reason
        self.error_message = message
        self._set_state(SessionState.FAILED)

    def _publish_quality(self, assessment: QualityAssessment) -> None:
        self.latest_quality = assessment
        if self._on_quality:
            try:
                self._on_quality(assessment)
            except Exception as e:
                logger.error(f"Quality callback error: {e}")

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and not self._closed

    def _require(self, *states: SessionState) -> None:
        if self._closed:
            raise SessionStateError("Capture session is closed")
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise SessionStateError(f"Operation requires state {allowed}, session is {self.state.value}")

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    @property
    def can_retry(self) -> bool:
        """False after a duplicate: the same identity must not vote again."""
        return (
            self.state is SessionState.FAILED
            and self.failure_reason is not None
            and self.failure_reason.retryable
        )

    # -----------------------------------------------------------------
    # Inference serialization
    # -----------------------------------------------------------------

    async def _run_inference(self, fn: Callable, *args):
        """Run blocking model work in a thread, one call at a time.

        The worker future is shielded: cancelling the awaiting coroutine
        leaves the thread running, and the next call waits for it before
        touching the models again.
        """
        previous = self._inflight
        if previous is not None and not previous.done():
            await asyncio.wait({previous})

        future = asyncio.ensure_future(asyncio.to_thread(fn, *args))
        future.add_done_callback(_consume_exception)
        self._inflight = future
        return await asyncio.shield(future)

    def _read_and_assess(self) -> QualityAssessment:
        return self.evaluator.assess(self.camera.read())

    def _read_and_extract(self) -> Tuple[float, FaceDetectionResult]:
        frame = self.camera.read()
        if not self.engine.is_ready:
            raise ModelsNotReadyError("Face models not loaded yet")
        if not frame_has_dimensions(frame):
            raise NoFaceDetectedError("Video feed has no frame yet")
        height, width = frame.shape[:2]
        frame_area = float(height * width)
        return frame_area, self.engine.extract_descriptor(frame)

    # -----------------------------------------------------------------
    # Initialization
    # -----------------------------------------------------------------

    async def initialize(self, progress: Optional[Callable[[int], None]] = None) -> bool:
        """Load the face models, reporting progress while waiting.

        Returns:
            True when the engine is ready and the session is back in idle
        """
        self._require(SessionState.IDLE, SessionState.FAILED)
        generation = self._generation
        self.error_message = None
        self.failure_reason = None
        self._set_state(SessionState.INITIALIZING)

        def report(value: int) -> None:
            self.initialization_progress = value
            if progress:
                try:
                    progress(value)
                except Exception as e:
                    logger.error(f"Progress callback error: {e}")

        report(0)
        load = asyncio.ensure_future(
            asyncio.wait_for(asyncio.to_thread(self.engine.initialize), self.config.model_load_timeout)
        )
        self._init_task = load
        try:
            while not load.done():
                await asyncio.wait({load}, timeout=self.config.progress_interval)
                if not load.done() and self.initialization_progress < 90:
                    report(self.initialization_progress + 10)
            load.result()
        except asyncio.CancelledError:
            if self._is_current(generation):
                raise
            return False
        except (ModelLoadError, asyncio.TimeoutError) as e:
            if not self._is_current(generation):
                return False
            logger.error(f"Biometric initialization error: {e}")
            self._fail(FailureReason.MODEL_LOAD_ERROR, messages.MODEL_LOAD_FAILED)
            return False
        finally:
            self._init_task = None

        if not self._is_current(generation):
            return False

        report(100)
        logger.info("Biometric service initialized successfully")
        self._set_state(SessionState.IDLE)
        return True

    # -----------------------------------------------------------------
    # Camera and polling
    # -----------------------------------------------------------------

    async def start_camera(self) -> bool:
        """Acquire the camera and start quality polling.

        Returns:
            True when the session is capturing
        """
        self._require(SessionState.IDLE)
        generation = self._generation
        self.error_message = None
        self.failure_reason = None

        try:
            await asyncio.to_thread(self.camera.open)
        except CameraError as e:
            if not self._is_current(generation):
                return False
            logger.error(f"Camera access error: {e!r}")
            self._fail(_camera_failure_reason(e), messages.camera_error_message(e))
            return False

        if not self._is_current(generation):
            # Cancelled while the permission prompt / device open was pending
            self.camera.stop()
            return False

        self._set_state(SessionState.CAPTURING)
        self._start_polling()
        return True

    async def quality_updates(self) -> AsyncIterator[QualityAssessment]:
        """Yield one quality assessment per polling tick.

        Ticks never overlap: the next one starts only after the previous
        inference returned and the poll interval elapsed. The stream ends
        when the session leaves the capturing state or is cancelled.
        """
        generation = self._generation
        while self._is_current(generation) and self.state is SessionState.CAPTURING:
            assessment = await self._run_inference(self._read_and_assess)
            if not self._is_current(generation):
                return
            yield assessment
            await self._sleep(self.config.poll_interval)

    async def _poll(self, generation: int) -> None:
        async for assessment in self.quality_updates():
            if not self._is_current(generation):
                break
            self._publish_quality(assessment)

    def _start_polling(self) -> None:
        if self.is_polling:
            return
        logger.debug("Starting real-time face detection")
        self._poll_task = asyncio.ensure_future(self._poll(self._generation))

    async def _stop_polling(self) -> None:
        task = self._poll_task
        self._poll_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # -----------------------------------------------------------------
    # Capture and verify
    # -----------------------------------------------------------------

    async def capture_and_verify(self) -> Optional[VerificationResult]:
        """Capture a final descriptor and run the duplicate-vote checks.

        Returns:
            The verification result on success, None on failure (see
            ``error_message``) or when the session was cancelled meanwhile
        """
        self._require(SessionState.CAPTURING)
        generation = self._generation

        await self._stop_polling()
        if not self._is_current(generation):
            return None
        self._set_state(SessionState.PROCESSING)
        logger.info("Starting face capture and verification...")

        try:
            frame_area, detection = await self._run_inference(self._read_and_extract)
            if not self._is_current(generation):
                return None

            quality = self.evaluator.grade(detection, frame_area)
            if not quality.is_good_quality:
                self._fail(FailureReason.POOR_QUALITY, messages.poor_quality_message(quality.issues))
                return None

            descriptor = detection.descriptor
            check = await asyncio.to_thread(
                self.resolver.check_duplicate, descriptor, self.scope_id, self.subject_id
            )
            if not self._is_current(generation):
                return None

            if check.is_duplicate:
                logger.warning(
                    f"Duplicate voter for {self.scope_id} ({check.source}, "
                    f"confidence {check.confidence:.2f})"
                )
                self._fail(
                    FailureReason.DUPLICATE_DETECTED,
                    messages.duplicate_vote_message(check.confidence),
                )
                return None

            logger.info("No duplicates found, storing biometric data...")
            await asyncio.to_thread(
                self.resolver.store_for_future_checks, descriptor, self.scope_id, self.subject_id
            )
            if not self._is_current(generation):
                return None

            result = VerificationResult(
                verified=True,
                timestamp=datetime.now(timezone.utc).isoformat(),
                biometric_hash=biometric_hash(descriptor),
                confidence=detection.confidence,
                face_quality=quality,
            )
        except NoFaceDetectedError:
            if self._is_current(generation):
                self._fail(FailureReason.NO_FACE, messages.NO_FACE)
            return None
        except ModelsNotReadyError:
            if self._is_current(generation):
                self._fail(FailureReason.MODELS_NOT_READY, messages.MODELS_LOADING)
            return None
        except Exception as e:
            logger.exception(f"Biometric verification failed: {e}")
            if self._is_current(generation):
                self._fail(FailureReason.UNKNOWN, messages.VERIFICATION_FAILED)
            return None

        self._succeed(result)
        return result

    def _succeed(self, result: VerificationResult) -> None:
        self.camera.stop()
        self.result = result
        self._set_state(SessionState.SUCCESS)
        logger.info("Biometric verification completed successfully")
        if self._on_success:
            try:
                self._on_success(result)
            except Exception as e:
                logger.error(f"Success callback error: {e}")

    # -----------------------------------------------------------------
    # Retry, cancel, teardown
    # -----------------------------------------------------------------

    def retry(self) -> bool:
        """Leave the failed state.

        Resumes polling when the camera is still open, otherwise returns to
        idle. Refused after a duplicate vote was detected.

        Returns:
            True if the session left the failed state
        """
        self._require(SessionState.FAILED)
        if not self.can_retry:
            logger.warning("Retry refused: duplicate vote detected for this identity")
            return False

        self.error_message = None
        self.failure_reason = None
        self.latest_quality = None
        if self.camera.is_active:
            self._set_state(SessionState.CAPTURING)
            self._start_polling()
        else:
            self._set_state(SessionState.IDLE)
        return True

    def cancel(self) -> None:
        """Stop the camera, stop polling and drop any in-flight result.

        Valid from any state. In-flight inference is not awaited; its
        result is discarded when it arrives.
        """
        self._generation += 1

        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        if self._init_task is not None:
            self._init_task.cancel()
            self._init_task = None

        self.camera.stop()
        self.latest_quality = None
        self.error_message = None
        self.failure_reason = None
        self._set_state(SessionState.IDLE)
        logger.info(f"Capture session for {self.scope_id} cancelled")

    def close(self) -> None:
        """Tear the session down; it cannot be reused afterwards."""
        if self._closed:
            return
        if self.state is SessionState.SUCCESS:
            # Camera already released; keep the result readable
            self._generation += 1
        else:
            self.cancel()
        self._closed = True
        if self.registry is not None:
            self.registry.release(self)

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
