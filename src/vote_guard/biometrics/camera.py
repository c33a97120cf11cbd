"""Camera interface.

Camera failures are translated into the closed CameraError family here,
at the platform boundary, so the session never inspects platform error
strings itself.
"""

import logging
import os
import sys
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np

from ..constants import CameraConfig, get_camera_config
from ..errors import (
    CameraError,
    CameraInUse,
    CameraNotFound,
    CameraPermissionDenied,
    CameraUnknownError,
)

logger = logging.getLogger(__name__)


def classify_camera_failure(
    device: Union[int, str],
    reason: Optional[str] = None,
    opened: bool = False,
) -> CameraError:
    """Map a failed camera acquisition to a CameraError variant.

    Args:
        device: Device index or URL that failed
        reason: Platform error text, if any
        opened: True if the device opened but produced no frame

    Returns:
        The matching CameraError (not raised)
    """
    text = (reason or "").lower()
    if "permission" in text or "denied" in text or "not allowed" in text:
        return CameraPermissionDenied(reason)
    if "busy" in text or "in use" in text:
        return CameraInUse(reason)

    if isinstance(device, int) and sys.platform.startswith("linux"):
        node = Path(f"/dev/video{device}")
        if not node.exists():
            return CameraNotFound(f"{node} does not exist")
        if not os.access(node, os.R_OK | os.W_OK):
            return CameraPermissionDenied(f"No read/write access to {node}")
        return CameraInUse(reason or f"{node} could not be opened")

    if opened:
        return CameraInUse(reason or f"Camera {device} produced no frames")
    if isinstance(device, int):
        return CameraNotFound(reason or f"Camera {device} could not be opened")
    return CameraUnknownError(reason or f"Failed to open camera {device}")


class CameraSource(ABC):
    """A camera stream the capture session can open, read and stop."""

    @abstractmethod
    def open(self) -> None:
        """Acquire the device. Raises a CameraError variant on failure."""
        pass

    @abstractmethod
    def read(self) -> Optional[np.ndarray]:
        """Return the latest BGR frame, or None while the feed is negotiating."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Release the device. Safe to call repeatedly."""
        pass

    @property
    @abstractmethod
    def is_active(self) -> bool:
        """True while the device is held."""
        pass

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()


class OpenCVCamera(CameraSource):
    """Camera interface using OpenCV VideoCapture."""

    def __init__(self, config: Optional[CameraConfig] = None):
        """Initialize OpenCV camera.

        Args:
            config: Camera configuration (uses global config if None)
        """
        self.config = config or get_camera_config()
        self._capture: Optional[cv2.VideoCapture] = None
        self._lock = threading.Lock()

    def _device(self) -> Union[int, str]:
        device = self.config.device
        if isinstance(device, str) and device.isdigit():
            return int(device)
        return device

    def open(self) -> None:
        """Open camera for capture."""
        with self._lock:
            if self._capture is not None:
                return

            device = self._device()
            try:
                capture = cv2.VideoCapture(device)
            except cv2.error as e:
                raise classify_camera_failure(device, str(e)) from e

            if not capture.isOpened():
                capture.release()
                raise classify_camera_failure(device)

            capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.config.width)
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.config.height)
            capture.set(cv2.CAP_PROP_FPS, self.config.fps)
            capture.set(cv2.CAP_PROP_BUFFERSIZE, self.config.buffer_size)

            ok, _ = capture.read()
            if not ok:
                capture.release()
                raise classify_camera_failure(device, opened=True)

            self._capture = capture
            logger.info(f"Opened OpenCV camera: {device}")

    def read(self) -> Optional[np.ndarray]:
        """Capture a single frame."""
        with self._lock:
            if self._capture is None:
                return None
            ok, frame = self._capture.read()

        if not ok:
            logger.debug("Camera returned no frame")
            return None
        return frame

    def stop(self) -> None:
        """Stop the camera. Waits for an in-flight read to finish."""
        with self._lock:
            if self._capture is not None:
                self._capture.release()
                self._capture = None
                logger.info("Camera stopped")

    @property
    def is_active(self) -> bool:
        return self._capture is not None
