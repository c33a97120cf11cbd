"""Face-embedding engine combining detection and descriptor extraction."""

import logging
import threading
from typing import Optional

import numpy as np

from ..errors import ModelLoadError, ModelsNotReadyError, NoFaceDetectedError
from .detection import BaseFaceDetector, OpenCVDNNDetector
from .embeddings import BaseEmbeddingBackend, DlibEmbeddingBackend
from .models import (
    DETECTOR_CONFIG,
    DETECTOR_WEIGHTS,
    RECOGNITION_MODEL,
    SHAPE_PREDICTOR,
    ModelStore,
)
from .types import BoundingBox, FaceDescriptor, FaceDetectionResult

logger = logging.getLogger(__name__)


class FaceEmbeddingEngine:
    """Loads the face models once and produces one descriptor per frame.

    The engine is an explicitly constructed service; share one instance
    between the quality evaluator and the capture session. It never
    retries: a bad frame is retried by the polling layer.
    """

    def __init__(
        self,
        detector: Optional[BaseFaceDetector] = None,
        embedder: Optional[BaseEmbeddingBackend] = None,
        model_store: Optional[ModelStore] = None,
    ):
        """Initialize the engine.

        Args:
            detector: Face detector (OpenCV DNN from the model store if None)
            embedder: Embedding backend (dlib from the model store if None)
            model_store: Where default model assets live
        """
        self._detector = detector
        self._embedder = embedder
        self._model_store = model_store
        self._ready = False
        self._lock = threading.Lock()

    @property
    def is_ready(self) -> bool:
        """True once initialize() has succeeded."""
        return self._ready

    def initialize(self) -> None:
        """Load detection, landmark and recognition models.

        Safe to call repeatedly; calls after the first success are no-ops.
        A call made while another load is running waits for it and does
        not start a second load.

        Raises:
            ModelLoadError: Model assets are unreachable or cannot be parsed
        """
        if self._ready:
            return

        with self._lock:
            if self._ready:
                return

            logger.info("Loading face models...")
            if self._detector is None or self._embedder is None:
                store = self._model_store or ModelStore()
                store.ensure()
                if self._detector is None:
                    self._detector = OpenCVDNNDetector(
                        model_path=store.path_for(DETECTOR_WEIGHTS),
                        config_path=store.path_for(DETECTOR_CONFIG),
                        config=store.config,
                    )
                if self._embedder is None:
                    self._embedder = DlibEmbeddingBackend(
                        recognition_model_path=store.path_for(RECOGNITION_MODEL),
                        shape_predictor_path=store.path_for(SHAPE_PREDICTOR),
                    )

            try:
                self._detector.load()
                self._embedder.load()
            except ModelLoadError:
                raise
            except Exception as e:
                raise ModelLoadError(f"Failed to load face models: {e}") from e

            self._ready = True
        logger.info(f"Face models loaded ({self._embedder.name}, {self._embedder.embedding_dim}D)")

    def detect_face(self, frame: np.ndarray) -> Optional[FaceDetectionResult]:
        """Detect the most confident face and describe it.

        Returns:
            Detection result, or None when no face is visible
        """
        if not self._ready:
            raise ModelsNotReadyError("Face models not loaded yet; call initialize() first")

        faces = self._detector.detect(frame)
        if not faces:
            return None

        face = max(faces, key=lambda f: f.confidence)
        if len(faces) > 1:
            logger.debug(f"{len(faces)} faces in frame, using the most confident one")

        embedding = self._embedder.extract(frame, face)
        return FaceDetectionResult(
            descriptor=FaceDescriptor(embedding),
            bounding_box=BoundingBox(face.x, face.y, face.width, face.height),
            confidence=float(np.clip(face.confidence, 0.0, 1.0)),
        )

    def extract_descriptor(self, frame: np.ndarray) -> FaceDetectionResult:
        """Like detect_face() but raises NoFaceDetectedError on an empty frame."""
        result = self.detect_face(frame)
        if result is None:
            raise NoFaceDetectedError("No face detected in the image")
        return result
