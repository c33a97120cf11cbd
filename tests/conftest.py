"""Pytest configuration and fixtures."""

import asyncio
import sys
import threading
from pathlib import Path
from typing import List, Optional

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from vote_guard.biometrics.camera import CameraSource  # noqa: E402
from vote_guard.biometrics.detection import BaseFaceDetector, DetectedFace  # noqa: E402
from vote_guard.biometrics.embeddings import BaseEmbeddingBackend  # noqa: E402
from vote_guard.biometrics.types import DuplicateCheckResult  # noqa: E402
from vote_guard.constants import (  # noqa: E402
    ApiConfig,
    MatchingConfig,
    QualityConfig,
    RetryConfig,
    SessionConfig,
)

FRAME_SIZE = 100


# ============================================================
# Fakes
# ============================================================

class FakeDetector(BaseFaceDetector):
    """Detector returning scripted faces; the last script entry repeats."""

    def __init__(self, script: Optional[List[List[DetectedFace]]] = None, load_error=None):
        self.script = list(script) if script is not None else [[good_face()]]
        self.load_error = load_error
        self.load_calls = 0
        self.detect_calls = 0

    def load(self) -> None:
        self.load_calls += 1
        if self.load_error is not None:
            raise self.load_error

    def detect(self, image):
        self.detect_calls += 1
        if len(self.script) > 1:
            return self.script.pop(0)
        return self.script[0]


class BlockingDetector(FakeDetector):
    """Detector whose detect() blocks until released.

    ``peak`` records the most detect() calls seen running at once.
    """

    def __init__(self, script=None):
        super().__init__(script)
        self.started = threading.Event()
        self.release = threading.Event()
        self.active = 0
        self.peak = 0
        self._count_lock = threading.Lock()

    def detect(self, image):
        with self._count_lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            self.started.set()
            self.release.wait(5)
            return super().detect(image)
        finally:
            with self._count_lock:
                self.active -= 1


class FakeEmbedder(BaseEmbeddingBackend):
    """Embedder returning a fixed descriptor."""

    def __init__(self, embedding: Optional[np.ndarray] = None):
        self.embedding = embedding if embedding is not None else make_embedding(1)
        self.load_calls = 0

    @property
    def name(self) -> str:
        return "fake"

    @property
    def embedding_dim(self) -> int:
        return 128

    def load(self) -> None:
        self.load_calls += 1

    def extract(self, image, face):
        return self.embedding


class FakeCamera(CameraSource):
    """Camera yielding a constant black frame."""

    def __init__(self, open_error=None):
        self.frame = np.zeros((FRAME_SIZE, FRAME_SIZE, 3), dtype=np.uint8)
        self.open_error = open_error
        self.open_calls = 0
        self.stop_calls = 0
        self._active = False

    def open(self) -> None:
        self.open_calls += 1
        if self.open_error is not None:
            raise self.open_error
        self._active = True

    def read(self):
        return self.frame if self._active else None

    def stop(self) -> None:
        self.stop_calls += 1
        self._active = False

    @property
    def is_active(self) -> bool:
        return self._active


class FakeRegistry:
    """Stand-in for the backend biometric registry."""

    def __init__(self, result: Optional[DuplicateCheckResult] = None, check_error=None, store_error=None):
        self.result = result or DuplicateCheckResult(is_duplicate=False)
        self.check_error = check_error
        self.store_error = store_error
        self.checks = []
        self.stored = []
        self.check_started = threading.Event()
        self.check_release = threading.Event()
        self.check_release.set()

    def check_biometric_duplicate(self, signature, award_id):
        self.checks.append((signature, award_id))
        self.check_started.set()
        self.check_release.wait(5)
        if self.check_error is not None:
            raise self.check_error
        return self.result

    def store_biometric_data(self, signature, award_id, user_id):
        if self.store_error is not None:
            raise self.store_error
        self.stored.append((signature, award_id, user_id))
        return {"success": True}


# ============================================================
# Helpers
# ============================================================

def make_embedding(seed: int) -> np.ndarray:
    """A random descriptor; different seeds are far apart (distance > 1)."""
    rng = np.random.default_rng(seed)
    return rng.normal(0.0, 0.1, 128).astype(np.float32)


def good_face(confidence: float = 0.95) -> DetectedFace:
    """A face covering 16% of the fake frame."""
    return DetectedFace(x=30, y=30, width=40, height=40, confidence=confidence)


async def no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def sample_image():
    """Create a sample test image."""
    return np.random.randint(0, 255, (480, 640, 3), dtype=np.uint8)


@pytest.fixture
def descriptor():
    """A face descriptor."""
    from vote_guard.biometrics.types import FaceDescriptor
    return FaceDescriptor(make_embedding(1))


@pytest.fixture
def other_descriptor():
    """A descriptor of a different person."""
    from vote_guard.biometrics.types import FaceDescriptor
    return FaceDescriptor(make_embedding(2))


@pytest.fixture
def quality_config():
    return QualityConfig()


@pytest.fixture
def matching_config():
    return MatchingConfig()


@pytest.fixture
def session_config():
    """Fast session timings for tests."""
    return SessionConfig(poll_interval=1.0, model_load_timeout=2.0, progress_interval=0.01, capture_timeout=2.0)


@pytest.fixture
def api_config():
    return ApiConfig(base_url="http://test.local/api", timeout=5.0, origin="http://test.local")


@pytest.fixture
def retry_config():
    return RetryConfig(max_retries=3, retry_delay=1.0, jitter_ratio=0.1)


@pytest.fixture
def detector():
    return FakeDetector()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def engine(detector, embedder):
    """An uninitialized engine over fake models."""
    from vote_guard.biometrics.engine import FaceEmbeddingEngine
    return FaceEmbeddingEngine(detector=detector, embedder=embedder)


@pytest.fixture
def ready_engine(engine):
    engine.initialize()
    return engine


@pytest.fixture
def camera():
    return FakeCamera()


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def resolver(registry, matching_config):
    from vote_guard.biometrics.matching import DuplicateMatchResolver
    return DuplicateMatchResolver(registry=registry, config=matching_config)


@pytest.fixture
def make_session(engine, resolver, camera, quality_config, session_config):
    """Factory for capture sessions wired to the fakes."""
    from vote_guard.biometrics.quality import FaceQualityEvaluator
    from vote_guard.biometrics.session import CaptureSession

    def _make(**kwargs):
        session_engine = kwargs.pop("engine", engine)
        params = dict(
            engine=session_engine,
            resolver=resolver,
            camera=camera,
            scope_id="award-1",
            subject_id="user-1",
            evaluator=FaceQualityEvaluator(session_engine, quality_config),
            config=session_config,
            sleep=no_sleep,
        )
        params.update(kwargs)
        return CaptureSession(**params)

    return _make
