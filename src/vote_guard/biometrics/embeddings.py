"""Face embedding backends.

Embedding backends turn a detected face into the 128-d descriptor used for
duplicate matching.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np

from ..errors import ModelLoadError
from .detection import DetectedFace

logger = logging.getLogger(__name__)


class BaseEmbeddingBackend(ABC):
    """Abstract base class for face embedding extraction."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the name of the embedding backend."""
        pass

    @property
    @abstractmethod
    def embedding_dim(self) -> int:
        """Return the dimensionality of the embedding vector."""
        pass

    @abstractmethod
    def load(self) -> None:
        """Load model weights. Raises ModelLoadError on failure."""
        pass

    @abstractmethod
    def extract(self, image: np.ndarray, face: DetectedFace) -> np.ndarray:
        """Extract the embedding of one face.

        Args:
            image: Full BGR frame
            face: Detected face inside the frame

        Returns:
            Embedding vector as numpy array
        """
        pass


class DlibEmbeddingBackend(BaseEmbeddingBackend):
    """Face embedding using dlib's ResNet face recognition model (128D).

    Landmarks from the 5-point shape predictor align the face chip before
    the descriptor is computed.
    """

    def __init__(
        self,
        recognition_model_path: Union[str, Path],
        shape_predictor_path: Union[str, Path],
    ):
        """Initialize dlib embedding backend.

        Args:
            recognition_model_path: Path to dlib_face_recognition_resnet_model_v1.dat
            shape_predictor_path: Path to shape_predictor_5_face_landmarks.dat
        """
        self.recognition_model_path = Path(recognition_model_path)
        self.shape_predictor_path = Path(shape_predictor_path)
        self._face_rec = None
        self._shape_predictor = None

    @property
    def name(self) -> str:
        return "dlib"

    @property
    def embedding_dim(self) -> int:
        return 128

    def load(self) -> None:
        """Load the recognition model and shape predictor."""
        if self._face_rec is not None:
            return

        try:
            import dlib
        except ImportError as e:
            raise ModelLoadError("dlib is required. Install with: pip install dlib") from e

        for path in (self.recognition_model_path, self.shape_predictor_path):
            if not path.exists():
                raise ModelLoadError(f"Face recognition asset missing: {path}")

        try:
            self._shape_predictor = dlib.shape_predictor(str(self.shape_predictor_path))
            self._face_rec = dlib.face_recognition_model_v1(str(self.recognition_model_path))
        except RuntimeError as e:
            raise ModelLoadError(f"Failed to load dlib model: {e}") from e

        logger.info(f"Loaded dlib face recognition model from {self.recognition_model_path}")

    def extract(self, image: np.ndarray, face: DetectedFace) -> np.ndarray:
        """Extract 128D embedding using dlib."""
        if self._face_rec is None:
            raise RuntimeError("Embedding backend not loaded")

        import dlib

        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        rect = dlib.rectangle(
            int(face.x), int(face.y),
            int(face.x + face.width), int(face.y + face.height),
        )
        shape = self._shape_predictor(rgb, rect)
        embedding = self._face_rec.compute_face_descriptor(rgb, shape)
        return np.array(embedding, dtype=np.float32)
