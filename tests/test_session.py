"""Tests for the capture session state machine."""

import asyncio

import pytest

from conftest import BlockingDetector, FakeCamera, FakeDetector, FakeEmbedder, good_face


async def _wait_for(predicate, timeout=5.0):
    """Poll the event loop until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def _engine(detector):
    from vote_guard.biometrics.engine import FaceEmbeddingEngine
    return FaceEmbeddingEngine(detector=detector, embedder=FakeEmbedder())


class TestInitialization:
    """Test cases for initialize()."""

    def test_initialize_reports_progress(self, make_session, engine):
        """Test progress ends at 100 and the session returns to idle."""
        from vote_guard.biometrics.types import SessionState

        progress = []
        states = []
        session = make_session(on_state_change=states.append)

        ok = asyncio.run(session.initialize(progress.append))

        assert ok is True
        assert engine.is_ready
        assert progress[0] == 0 and progress[-1] == 100
        assert states == [SessionState.INITIALIZING, SessionState.IDLE]

    def test_model_load_error_fails_session(self, make_session):
        """Test a model load failure moves to failed with a message."""
        from vote_guard import messages
        from vote_guard.biometrics.types import FailureReason, SessionState
        from vote_guard.errors import ModelLoadError

        session = make_session(engine=_engine(FakeDetector(load_error=ModelLoadError("missing"))))

        assert asyncio.run(session.initialize()) is False
        assert session.state is SessionState.FAILED
        assert session.failure_reason is FailureReason.MODEL_LOAD_ERROR
        assert session.error_message == messages.MODEL_LOAD_FAILED

    def test_model_load_timeout(self, make_session):
        """Test a load exceeding the timeout fails the session."""
        import time

        from vote_guard.biometrics.types import FailureReason, SessionState
        from vote_guard.constants import SessionConfig

        class SlowDetector(FakeDetector):
            def load(self):
                time.sleep(0.5)

        session = make_session(
            engine=_engine(SlowDetector()),
            config=SessionConfig(model_load_timeout=0.05, progress_interval=0.01),
        )

        assert asyncio.run(session.initialize()) is False
        assert session.state is SessionState.FAILED
        assert session.failure_reason is FailureReason.MODEL_LOAD_ERROR

    def test_reinitialize_waits_for_running_load(self, make_session):
        """Test a retry after a load timeout joins the load still running."""
        import threading
        import time

        from vote_guard.biometrics.types import SessionState
        from vote_guard.constants import SessionConfig

        class SlowDetector(FakeDetector):
            def __init__(self):
                super().__init__()
                self.active = 0
                self.peak = 0
                self._count_lock = threading.Lock()

            def load(self):
                with self._count_lock:
                    self.active += 1
                    self.peak = max(self.peak, self.active)
                try:
                    time.sleep(0.5)
                    super().load()
                finally:
                    with self._count_lock:
                        self.active -= 1

        detector = SlowDetector()
        engine = _engine(detector)

        async def scenario():
            session = make_session(
                engine=engine,
                config=SessionConfig(model_load_timeout=0.1, progress_interval=0.01),
            )
            assert await session.initialize() is False
            assert session.state is SessionState.FAILED

            assert session.retry() is True
            assert session.state is SessionState.IDLE

            session.config = SessionConfig(model_load_timeout=2.0, progress_interval=0.01)
            ok = await session.initialize()
            return session, ok

        session, ok = asyncio.run(scenario())

        assert ok is True
        assert session.state is SessionState.IDLE
        assert engine.is_ready
        assert detector.peak == 1
        assert detector.load_calls == 1


class TestCamera:
    """Test cases for start_camera()."""

    @pytest.mark.parametrize("error_cls,message_name,reason_name", [
        ("CameraPermissionDenied", "CAMERA_PERMISSION_DENIED", "CAMERA_PERMISSION_DENIED"),
        ("CameraInUse", "CAMERA_IN_USE", "CAMERA_IN_USE"),
        ("CameraNotFound", "CAMERA_NOT_FOUND", "CAMERA_NOT_FOUND"),
        ("CameraUnknownError", "CAMERA_UNKNOWN", "CAMERA_ERROR"),
    ])
    def test_camera_errors_map_to_messages(self, make_session, error_cls, message_name, reason_name):
        """Test each camera failure gives its own message."""
        from vote_guard import errors, messages
        from vote_guard.biometrics.types import FailureReason, SessionState

        camera = FakeCamera(open_error=getattr(errors, error_cls)("platform says no"))
        session = make_session(camera=camera)

        assert asyncio.run(session.start_camera()) is False
        assert session.state is SessionState.FAILED
        assert session.error_message == getattr(messages, message_name)
        assert session.failure_reason is FailureReason[reason_name]
        assert session.can_retry is True

    def test_start_camera_requires_idle(self, make_session):
        """Test start_camera() is rejected once capturing."""
        from vote_guard.errors import SessionStateError

        async def scenario():
            session = make_session()
            await session.start_camera()
            try:
                with pytest.raises(SessionStateError):
                    await session.start_camera()
            finally:
                session.cancel()

        asyncio.run(scenario())


class TestPolling:
    """Test cases for quality polling."""

    def test_quality_updates_published(self, make_session, ready_engine):
        """Test polling publishes assessments to the listener."""
        from vote_guard.biometrics.types import SessionState

        received = []

        async def scenario():
            session = make_session(on_quality=received.append)
            await session.start_camera()
            assert session.state is SessionState.CAPTURING
            assert session.is_polling
            await _wait_for(lambda: len(received) >= 2)
            assert session.latest_quality is received[-1]
            session.cancel()

        asyncio.run(scenario())

        assert all(a.is_good_quality for a in received)
        assert received[0].confidence == pytest.approx(0.95)

    def test_cancel_stops_camera_and_polling(self, make_session, ready_engine, camera, detector):
        """Test no tick runs after cancel() and the camera is released."""
        from vote_guard.biometrics.types import SessionState

        async def scenario():
            session = make_session()
            await session.start_camera()
            await _wait_for(lambda: detector.detect_calls >= 1)

            session.cancel()
            await asyncio.sleep(0.05)
            calls_after_cancel = detector.detect_calls
            await asyncio.sleep(0.2)
            return session, calls_after_cancel

        session, calls_after_cancel = asyncio.run(scenario())

        assert detector.detect_calls == calls_after_cancel
        assert session.state is SessionState.IDLE
        assert session.is_polling is False
        assert session.latest_quality is None
        assert camera.is_active is False
        assert camera.stop_calls >= 1

    def test_stale_tick_result_is_discarded(self, make_session):
        """Test an inference finishing after cancel() is never published."""
        from vote_guard.biometrics.types import SessionState

        detector = BlockingDetector()
        engine = _engine(detector)
        engine.initialize()
        published = []

        async def scenario():
            session = make_session(engine=engine, on_quality=published.append)
            await session.start_camera()
            await asyncio.to_thread(detector.started.wait, 5)

            session.cancel()
            detector.release.set()
            await asyncio.sleep(0.1)
            return session

        session = asyncio.run(scenario())

        assert published == []
        assert session.latest_quality is None
        assert session.state is SessionState.IDLE


class TestCaptureAndVerify:
    """Test cases for capture_and_verify()."""

    def test_end_to_end_success(self, make_session, registry, camera):
        """Test two empty ticks, one good tick, then a successful capture."""
        from vote_guard.biometrics.quality import ISSUE_NO_FACE
        from vote_guard.biometrics.types import SessionState

        detector = FakeDetector(script=[[], [], [good_face()]])
        successes = []
        received = []

        async def scenario():
            good_frame = asyncio.Event()

            def on_quality(assessment):
                received.append(assessment)
                if assessment.is_good_quality:
                    good_frame.set()

            session = make_session(
                engine=_engine(detector),
                on_quality=on_quality,
                on_success=successes.append,
            )
            assert await session.initialize()
            assert await session.start_camera()
            await asyncio.wait_for(good_frame.wait(), 5)
            result = await session.capture_and_verify()
            return session, result

        session, result = asyncio.run(scenario())

        assert received[0].issues == (ISSUE_NO_FACE,)
        assert received[1].issues == (ISSUE_NO_FACE,)
        assert received[2].is_good_quality is True

        assert session.state is SessionState.SUCCESS
        assert result.verified is True
        assert result.confidence == pytest.approx(0.95)
        assert result.biometric_hash
        assert result.face_quality.is_good_quality is True
        assert successes == [result]

        assert len(registry.checks) == 1
        assert len(registry.stored) == 1
        assert registry.stored[0][1:] == ("award-1", "user-1")
        assert camera.is_active is False

    def test_duplicate_detected(self, make_session, resolver, camera):
        """Test a registry duplicate fails the session with the percentage."""
        from vote_guard.biometrics.types import (
            DuplicateCheckResult,
            DuplicateMatch,
            FailureReason,
            SessionState,
        )

        resolver.registry.result = DuplicateCheckResult(
            is_duplicate=True,
            confidence=0.92,
            matches=(DuplicateMatch("someone-else", 0.92, 0.08, 0),),
        )

        async def scenario():
            session = make_session()
            await session.initialize()
            await session.start_camera()
            result = await session.capture_and_verify()
            return session, result

        session, result = asyncio.run(scenario())

        assert result is None
        assert session.state is SessionState.FAILED
        assert session.failure_reason is FailureReason.DUPLICATE_DETECTED
        assert "already voted" in session.error_message
        assert "92" in session.error_message
        assert resolver.registry.stored == []

        # Integrity failures are terminal for this attempt
        assert session.can_retry is False
        assert session.retry() is False
        assert session.state is SessionState.FAILED

    def test_no_face_then_retry(self, make_session, camera):
        """Test a faceless capture fails and retry resumes capturing."""
        from vote_guard import messages
        from vote_guard.biometrics.types import FailureReason, SessionState

        async def scenario():
            session = make_session(engine=_engine(FakeDetector(script=[[]])))
            await session.initialize()
            await session.start_camera()
            await session.capture_and_verify()

            assert session.state is SessionState.FAILED
            assert session.failure_reason is FailureReason.NO_FACE
            assert session.error_message == messages.NO_FACE

            assert session.retry() is True
            assert session.state is SessionState.CAPTURING
            assert session.is_polling
            session.cancel()

        asyncio.run(scenario())

    def test_poor_quality_capture(self, make_session):
        """Test the quality gate is re-checked at capture time."""
        from vote_guard.biometrics.types import FailureReason

        async def scenario():
            session = make_session(engine=_engine(FakeDetector(script=[[good_face(confidence=0.6)]])))
            await session.initialize()
            await session.start_camera()
            await session.capture_and_verify()
            session_state = (session.failure_reason, session.error_message)
            session.cancel()
            return session_state

        reason, message = asyncio.run(scenario())

        assert reason is FailureReason.POOR_QUALITY
        assert message.startswith("Poor image quality:")

    def test_capture_requires_capturing(self, make_session):
        """Test capture_and_verify() is refused from idle."""
        from vote_guard.errors import SessionStateError

        with pytest.raises(SessionStateError):
            asyncio.run(make_session().capture_and_verify())

    def test_cancel_during_processing_discards_result(self, make_session, resolver):
        """Test cancel() while the duplicate check runs drops the outcome."""
        from vote_guard.biometrics.types import SessionState

        registry = resolver.registry
        registry.check_release.clear()

        async def scenario():
            session = make_session()
            await session.initialize()
            await session.start_camera()
            capture = asyncio.ensure_future(session.capture_and_verify())
            await asyncio.to_thread(registry.check_started.wait, 5)

            session.cancel()
            registry.check_release.set()
            result = await capture
            return session, result

        session, result = asyncio.run(scenario())

        assert result is None
        assert session.state is SessionState.IDLE
        assert registry.stored == []
        assert session.result is None

    def test_capture_waits_for_inflight_tick(self, make_session, registry):
        """Test capture starts its inference only after the running tick ends."""
        from vote_guard.biometrics.types import SessionState

        detector = BlockingDetector()
        engine = _engine(detector)
        engine.initialize()

        async def scenario():
            session = make_session(engine=engine)
            await session.start_camera()
            await asyncio.to_thread(detector.started.wait, 5)

            capture = asyncio.ensure_future(session.capture_and_verify())
            await asyncio.sleep(0.1)

            assert not capture.done()
            assert session.state is SessionState.PROCESSING
            assert detector.active == 1
            assert registry.checks == []

            detector.release.set()
            result = await capture
            return session, result

        session, result = asyncio.run(scenario())

        assert result is not None
        assert result.verified is True
        assert session.state is SessionState.SUCCESS
        assert detector.peak == 1
        assert detector.detect_calls == 2
        assert len(registry.checks) == 1


class TestSessionRegistry:
    """Test cases for SessionRegistry."""

    def test_only_one_live_session(self, make_session):
        """Test activating a new session closes the previous one."""
        from vote_guard.biometrics.session import SessionRegistry

        sessions = SessionRegistry()
        first_camera = FakeCamera()

        async def scenario():
            first = make_session(camera=first_camera, registry=sessions)
            await first.start_camera()
            second = make_session(camera=FakeCamera(), registry=sessions)
            return first, second

        first, second = asyncio.run(scenario())

        assert first.is_closed
        assert first_camera.is_active is False
        assert sessions.active is second

        second.close()
        assert sessions.active is None

    def test_async_context_manager_closes(self, make_session, camera):
        """Test leaving ``async with`` releases the camera."""
        async def scenario():
            async with make_session() as session:
                await session.start_camera()
                assert camera.is_active
            return session

        session = asyncio.run(scenario())

        assert session.is_closed
        assert camera.is_active is False
