"""Biometric data types."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

DESCRIPTOR_SIZE = 128
SIGNATURE_VERSION = "1.0"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class FaceDescriptor:
    """Fixed-length face embedding. Never carries pixel data."""

    values: np.ndarray

    def __post_init__(self):
        values = np.asarray(self.values, dtype=np.float32).flatten()
        if values.shape[0] != DESCRIPTOR_SIZE:
            raise ValueError(
                f"Face descriptor must have {DESCRIPTOR_SIZE} elements, got {values.shape[0]}"
            )
        values = values.copy()
        values.setflags(write=False)
        object.__setattr__(self, "values", values)

    def distance_to(self, other: "FaceDescriptor") -> float:
        """Euclidean distance to another descriptor (lower is more similar)."""
        return float(np.linalg.norm(self.values - other.values))

    def to_list(self) -> List[float]:
        return [float(v) for v in self.values]

    def __len__(self) -> int:
        return DESCRIPTOR_SIZE

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FaceDescriptor):
            return NotImplemented
        return bool(np.array_equal(self.values, other.values))

    def __hash__(self) -> int:
        return hash(self.values.tobytes())


@dataclass(frozen=True)
class BoundingBox:
    """Face bounding box in frame pixels."""

    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def bbox(self) -> Tuple[float, float, float, float]:
        """Return bounding box as (x, y, w, h)."""
        return (self.x, self.y, self.width, self.height)


@dataclass(frozen=True)
class FaceDetectionResult:
    """Per-frame detection of a single face."""

    descriptor: FaceDescriptor
    bounding_box: BoundingBox
    confidence: float


@dataclass(frozen=True)
class QualityAssessment:
    """Per-tick verdict on whether the visible face is fit for capture."""

    face_detected: bool
    confidence: float
    is_good_quality: bool
    issues: Tuple[str, ...] = ()

    @classmethod
    def unavailable(cls, issue: str) -> "QualityAssessment":
        """Assessment for a frame that could not be evaluated."""
        return cls(face_detected=False, confidence=0.0, is_good_quality=False, issues=(issue,))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "faceDetected": self.face_detected,
            "confidence": self.confidence,
            "isGoodQuality": self.is_good_quality,
            "issues": list(self.issues),
        }


@dataclass(frozen=True)
class FaceSignature:
    """Serializable form of a descriptor sent to the backend registry."""

    data: Tuple[float, ...]
    timestamp: int = field(default_factory=_now_ms)
    version: str = SIGNATURE_VERSION

    @classmethod
    def from_descriptor(
        cls,
        descriptor: FaceDescriptor,
        version: str = SIGNATURE_VERSION,
    ) -> "FaceSignature":
        return cls(data=tuple(descriptor.to_list()), version=version)

    def to_descriptor(self) -> FaceDescriptor:
        """Reconstruct the descriptor this signature was made from."""
        return FaceDescriptor(np.array(self.data, dtype=np.float32))

    def to_dict(self) -> Dict[str, Any]:
        return {"data": list(self.data), "timestamp": self.timestamp, "version": self.version}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> Optional["FaceSignature"]:
        """Parse a signature dict; returns None when ``data`` is missing."""
        if not payload or not payload.get("data"):
            return None
        return cls(
            data=tuple(float(v) for v in payload["data"]),
            timestamp=int(payload.get("timestamp") or _now_ms()),
            version=str(payload.get("version") or SIGNATURE_VERSION),
        )


@dataclass(frozen=True)
class DuplicateMatch:
    """A prior voter whose descriptor matched the presented face."""

    subject_id: str
    confidence: float
    distance: float
    timestamp: int


@dataclass(frozen=True)
class DuplicateCheckResult:
    """Outcome of a duplicate check; ``matches`` is ordered best first."""

    is_duplicate: bool
    confidence: float = 0.0
    matches: Tuple[DuplicateMatch, ...] = ()
    source: str = "remote"

    @classmethod
    def from_matches(cls, matches: Sequence[DuplicateMatch], source: str) -> "DuplicateCheckResult":
        ordered = tuple(sorted(matches, key=lambda m: m.distance))
        return cls(
            is_duplicate=bool(ordered),
            confidence=ordered[0].confidence if ordered else 0.0,
            matches=ordered,
            source=source,
        )


@dataclass(frozen=True)
class VerificationResult:
    """Payload handed to the vote-submission caller after a successful capture."""

    verified: bool
    timestamp: str
    biometric_hash: str
    confidence: float
    face_quality: Optional[QualityAssessment] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verified": self.verified,
            "timestamp": self.timestamp,
            "biometricHash": self.biometric_hash,
            "confidence": self.confidence,
            "faceQuality": self.face_quality.to_dict() if self.face_quality else None,
        }


@dataclass(frozen=True)
class VerificationOutcome:
    """Common ``{success, message}`` result of every verification strategy.

    ``next_action`` suggests the ceremony to offer instead ("authenticate"
    or "register") when the failure has a known remedy.
    """

    success: bool
    message: str
    error_code: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    next_action: Optional[str] = None

    @classmethod
    def ok(cls, message: str, payload: Optional[Dict[str, Any]] = None) -> "VerificationOutcome":
        return cls(success=True, message=message, payload=payload)

    @classmethod
    def failure(
        cls,
        message: str,
        error_code: str,
        next_action: Optional[str] = None,
    ) -> "VerificationOutcome":
        return cls(success=False, message=message, error_code=error_code, next_action=next_action)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.error_code:
            data["error"] = self.error_code
        if self.payload is not None:
            data["payload"] = self.payload
        if self.next_action:
            data["nextAction"] = self.next_action
        return data


class SessionState(Enum):
    """Capture session states."""
    IDLE = "idle"
    INITIALIZING = "initializing"
    CAPTURING = "capturing"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


class FailureReason(Enum):
    """Why a capture session ended in FAILED."""
    NO_FACE = "no_face"
    POOR_QUALITY = "poor_quality"
    DUPLICATE_DETECTED = "duplicate_detected"
    CAMERA_PERMISSION_DENIED = "camera_permission_denied"
    CAMERA_IN_USE = "camera_in_use"
    CAMERA_NOT_FOUND = "camera_not_found"
    CAMERA_ERROR = "camera_error"
    MODEL_LOAD_ERROR = "model_load_error"
    MODELS_NOT_READY = "models_not_ready"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        """Integrity failures must not be retried with the same identity."""
        return self is not FailureReason.DUPLICATE_DETECTED
