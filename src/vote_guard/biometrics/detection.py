"""Face detection backends."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

import cv2
import numpy as np

from ..constants import ModelConfig, get_model_config
from ..errors import ModelLoadError

logger = logging.getLogger(__name__)


@dataclass
class DetectedFace:
    """Represents a detected face with bounding box and confidence."""

    x: int
    y: int
    width: int
    height: int
    confidence: float = 1.0

    @property
    def bbox(self) -> Tuple[int, int, int, int]:
        """Return bounding box as (x, y, w, h)."""
        return (self.x, self.y, self.width, self.height)

    @property
    def area(self) -> int:
        """Return area of bounding box."""
        return self.width * self.height


class BaseFaceDetector(ABC):
    """Abstract base class for face detectors."""

    @abstractmethod
    def load(self) -> None:
        """Load model weights. Raises ModelLoadError on failure."""
        pass

    @abstractmethod
    def detect(self, image: np.ndarray) -> List[DetectedFace]:
        """Detect faces in an image.

        Args:
            image: BGR image as numpy array

        Returns:
            List of DetectedFace objects
        """
        pass


class OpenCVDNNDetector(BaseFaceDetector):
    """Face detector using the OpenCV DNN module with the res10 SSD model.

    Confidences are calibrated to [0, 1], which the quality gate relies on.
    """

    def __init__(
        self,
        model_path: Union[str, Path],
        config_path: Union[str, Path],
        config: Optional[ModelConfig] = None,
    ):
        """Initialize OpenCV DNN face detector.

        Args:
            model_path: Path to the .caffemodel weights
            config_path: Path to the deploy .prototxt
            config: Detector constants (uses global config if None)
        """
        self.model_path = Path(model_path)
        self.config_path = Path(config_path)
        self._config = config or get_model_config()
        self.net: Optional[cv2.dnn.Net] = None

    def load(self) -> None:
        """Load the DNN model."""
        if self.net is not None:
            return
        for path in (self.model_path, self.config_path):
            if not path.exists():
                raise ModelLoadError(f"Face detector asset missing: {path}")
        try:
            net = cv2.dnn.readNetFromCaffe(str(self.config_path), str(self.model_path))
        except cv2.error as e:
            raise ModelLoadError(f"Failed to parse face detector model: {e}") from e
        net.setPreferableBackend(cv2.dnn.DNN_BACKEND_OPENCV)
        net.setPreferableTarget(cv2.dnn.DNN_TARGET_CPU)
        self.net = net
        logger.info(f"Loaded OpenCV DNN face detector from {self.model_path}")

    def detect(self, image: np.ndarray) -> List[DetectedFace]:
        """Detect faces using OpenCV DNN with NMS."""
        if self.net is None:
            raise RuntimeError("Detector not loaded")

        h, w = image.shape[:2]
        blob = cv2.dnn.blobFromImage(
            image, 1.0, self._config.input_size,
            self._config.mean_values,
            swapRB=False, crop=False
        )
        self.net.setInput(blob)
        detections = self.net.forward()

        boxes = []
        confidences = []
        min_face_w, min_face_h = self._config.min_face_size

        for i in range(detections.shape[2]):
            confidence = float(detections[0, 0, i, 2])
            if confidence < self._config.detection_threshold:
                continue

            x1 = int(np.clip(detections[0, 0, i, 3], 0, 1) * w)
            y1 = int(np.clip(detections[0, 0, i, 4], 0, 1) * h)
            x2 = int(np.clip(detections[0, 0, i, 5], 0, 1) * w)
            y2 = int(np.clip(detections[0, 0, i, 6], 0, 1) * h)

            box_w = x2 - x1
            box_h = y2 - y1
            if box_w < min_face_w or box_h < min_face_h:
                continue

            boxes.append([x1, y1, box_w, box_h])
            confidences.append(confidence)

        detected = []
        if boxes:
            indices = cv2.dnn.NMSBoxes(
                boxes, confidences, self._config.detection_threshold, self._config.nms_threshold
            )
            for i in np.array(indices).flatten():
                x, y, width, height = boxes[int(i)]
                detected.append(DetectedFace(
                    x=x, y=y, width=width, height=height,
                    confidence=confidences[int(i)]
                ))

        return sorted(detected, key=lambda f: f.confidence, reverse=True)
