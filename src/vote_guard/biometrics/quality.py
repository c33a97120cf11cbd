"""Face quality evaluation for capture gating and UI feedback."""

import logging
from typing import Optional

import numpy as np

from ..constants import QualityConfig, get_quality_config
from ..errors import ModelsNotReadyError, NoFaceDetectedError
from .engine import FaceEmbeddingEngine
from .types import FaceDetectionResult, QualityAssessment

logger = logging.getLogger(__name__)

ISSUE_MODELS_LOADING = "models loading"
ISSUE_LOADING_VIDEO = "loading video feed"
ISSUE_NO_FACE = "no face detected"
ISSUE_LOW_CONFIDENCE = "low face detection confidence"
ISSUE_FACE_TOO_SMALL = "face too small in image"
ISSUE_FACE_TOO_LARGE = "face too large in image"


def frame_has_dimensions(frame: Optional[np.ndarray]) -> bool:
    """True when a frame carries usable pixels."""
    return frame is not None and frame.ndim >= 2 and frame.shape[0] > 0 and frame.shape[1] > 0


class FaceQualityEvaluator:
    """Turns one frame into a pass/fail verdict with human-readable issues.

    assess() is side-effect free and never raises, so it can run on every
    polling tick.
    """

    def __init__(self, engine: FaceEmbeddingEngine, config: Optional[QualityConfig] = None):
        self.engine = engine
        self.config = config or get_quality_config()

    def assess(self, frame: Optional[np.ndarray]) -> QualityAssessment:
        """Assess the face in a frame."""
        if not self.engine.is_ready:
            return QualityAssessment.unavailable(ISSUE_MODELS_LOADING)

        if not frame_has_dimensions(frame):
            return QualityAssessment.unavailable(ISSUE_LOADING_VIDEO)

        try:
            detection = self.engine.extract_descriptor(frame)
        except NoFaceDetectedError:
            return QualityAssessment.unavailable(ISSUE_NO_FACE)
        except ModelsNotReadyError:
            return QualityAssessment.unavailable(ISSUE_MODELS_LOADING)
        except Exception as e:
            logger.warning(f"Face quality verification error: {e}")
            return QualityAssessment.unavailable(f"face detection failed: {e}")

        frame_area = float(frame.shape[0] * frame.shape[1])
        return self.grade(detection, frame_area)

    def grade(self, detection: FaceDetectionResult, frame_area: float) -> QualityAssessment:
        """Apply the confidence and face-size rules to one detection.

        Good quality needs confidence strictly above ``min_confidence`` and a
        face/frame area ratio strictly between ``min_face_ratio`` and
        ``max_face_ratio``.
        """
        cfg = self.config
        confidence = detection.confidence
        issues = []
        good = confidence > cfg.min_confidence

        # Between the hard minimum and the gate the frame fails without an issue
        if confidence < cfg.hard_min_confidence:
            issues.append(ISSUE_LOW_CONFIDENCE)

        if frame_area > 0:
            ratio = detection.bounding_box.area / frame_area
            if ratio <= cfg.min_face_ratio:
                issues.append(ISSUE_FACE_TOO_SMALL)
                good = False
            elif ratio >= cfg.max_face_ratio:
                issues.append(ISSUE_FACE_TOO_LARGE)
                good = False

        return QualityAssessment(
            face_detected=True,
            confidence=confidence,
            is_good_quality=good,
            issues=tuple(issues),
        )
