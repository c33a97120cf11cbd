"""Biometric package - face embeddings, quality gate, duplicate matching, capture session.

- detection.py / embeddings.py: OpenCV DNN face detector and dlib descriptors
- models.py: model asset locations and downloads
- engine.py: FaceEmbeddingEngine combining detector and embedder
- quality.py: live-frame quality assessment
- matching.py: duplicate-vote resolution against registry and local cache
- camera.py / session.py: camera adapter and the capture session state machine
"""

from .types import (
    DESCRIPTOR_SIZE,
    FaceDescriptor,
    BoundingBox,
    FaceDetectionResult,
    QualityAssessment,
    FaceSignature,
    DuplicateMatch,
    DuplicateCheckResult,
    VerificationResult,
    VerificationOutcome,
    SessionState,
    FailureReason,
)

from .detection import DetectedFace, BaseFaceDetector, OpenCVDNNDetector
from .embeddings import BaseEmbeddingBackend, DlibEmbeddingBackend
from .models import ModelAsset, ModelStore, MODEL_ASSETS
from .engine import FaceEmbeddingEngine
from .quality import FaceQualityEvaluator
from .matching import DescriptorCache, DuplicateMatchResolver, biometric_hash, euclidean_distance
from .camera import CameraSource, OpenCVCamera, classify_camera_failure
from .session import CaptureSession, SessionRegistry

__all__ = [
    # Types
    "DESCRIPTOR_SIZE", "FaceDescriptor", "BoundingBox", "FaceDetectionResult",
    "QualityAssessment", "FaceSignature", "DuplicateMatch", "DuplicateCheckResult",
    "VerificationResult", "VerificationOutcome", "SessionState", "FailureReason",
    # Engine
    "DetectedFace", "BaseFaceDetector", "OpenCVDNNDetector",
    "BaseEmbeddingBackend", "DlibEmbeddingBackend",
    "ModelAsset", "ModelStore", "MODEL_ASSETS", "FaceEmbeddingEngine",
    # Quality / matching
    "FaceQualityEvaluator", "DescriptorCache", "DuplicateMatchResolver",
    "biometric_hash", "euclidean_distance",
    # Session
    "CameraSource", "OpenCVCamera", "classify_camera_failure",
    "CaptureSession", "SessionRegistry",
]
