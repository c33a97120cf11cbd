"""Centralized constants and configuration loader.

This module provides access to configuration values and sensible defaults
for all thresholds and timings used by the biometric pipeline. Values are
loaded from config/config.yaml when available, otherwise defaults are used.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

logger = logging.getLogger(__name__)

# Path to the default configuration file
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "config.yaml"


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. Uses default if None.

    Returns:
        Configuration dictionary.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    try:
        if path.exists():
            with open(path, "r") as f:
                return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")

    return {}


def _get_nested(config: Dict, *keys: str, default: Any = None) -> Any:
    """Get nested config value with default fallback."""
    value = config
    for key in keys:
        if isinstance(value, dict):
            value = value.get(key)
        else:
            return default
        if value is None:
            return default
    return value


# ============================================================
# Face Quality Constants
# ============================================================

@dataclass
class QualityConfig:
    """Face quality gate constants."""
    # Detection confidence must be strictly above this to be good quality
    min_confidence: float = 0.7
    # Below this the frame is always rejected with an explicit issue
    hard_min_confidence: float = 0.5
    # Face area / frame area must lie strictly inside (min, max)
    min_face_ratio: float = 0.05
    max_face_ratio: float = 0.8

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "QualityConfig":
        """Create from config dictionary."""
        q = _get_nested(config, "quality") or {}

        return cls(
            min_confidence=q.get("min_confidence", 0.7),
            hard_min_confidence=q.get("hard_min_confidence", 0.5),
            min_face_ratio=q.get("min_face_ratio", 0.05),
            max_face_ratio=q.get("max_face_ratio", 0.8),
        )


# ============================================================
# Duplicate Matching Constants
# ============================================================

@dataclass
class MatchingConfig:
    """Duplicate matching constants."""
    # Euclidean distance below which two descriptors are the same person
    match_threshold: float = 0.6
    # Descriptor length produced by the recognition model
    descriptor_size: int = 128
    # FaceSignature wire format version
    signature_version: str = "1.0"

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "MatchingConfig":
        """Create from config dictionary."""
        m = _get_nested(config, "matching") or {}

        return cls(
            match_threshold=m.get("match_threshold", 0.6),
            descriptor_size=m.get("descriptor_size", 128),
            signature_version=str(m.get("signature_version", "1.0")),
        )


# ============================================================
# Capture Session Constants
# ============================================================

@dataclass
class SessionConfig:
    """Capture session timing constants."""
    # Seconds between quality polling ticks (never below 1s)
    poll_interval: float = 2.0
    # Upper bound on model loading before giving up
    model_load_timeout: float = 60.0
    # Interval for initialization progress reports
    progress_interval: float = 0.2
    # How long an unattended capture waits for a good-quality frame
    capture_timeout: float = 30.0

    def __post_init__(self):
        if self.poll_interval < 1.0:
            logger.warning(
                f"poll_interval {self.poll_interval}s is below 1s, clamping to 1s"
            )
            self.poll_interval = 1.0

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SessionConfig":
        """Create from config dictionary."""
        s = _get_nested(config, "session") or {}

        return cls(
            poll_interval=s.get("poll_interval", 2.0),
            model_load_timeout=s.get("model_load_timeout", 60.0),
            progress_interval=s.get("progress_interval", 0.2),
            capture_timeout=s.get("capture_timeout", 30.0),
        )


# ============================================================
# Camera Constants
# ============================================================

@dataclass
class CameraConfig:
    """Camera configuration."""
    device: Union[int, str] = 0
    width: int = 640
    height: int = 480
    fps: int = 30
    buffer_size: int = 1

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "CameraConfig":
        """Create from config dictionary."""
        cam = _get_nested(config, "camera") or {}
        resolution = cam.get("resolution", [640, 480])

        return cls(
            device=cam.get("device", 0),
            width=int(resolution[0]),
            height=int(resolution[1]),
            fps=cam.get("fps", 30),
            buffer_size=cam.get("buffer_size", 1),
        )


# ============================================================
# Model Asset Constants
# ============================================================

@dataclass
class ModelConfig:
    """Face model asset locations and detector constants."""
    # Directory holding downloaded model files
    model_dir: Path = Path.home() / ".vote_guard" / "models"
    # Download missing assets on initialize
    auto_download: bool = True
    # Per-file download timeout in seconds
    download_timeout: float = 30.0
    # SSD detector input size and mean values (BGR)
    input_size: Tuple[int, int] = (300, 300)
    mean_values: Tuple[float, float, float] = (104.0, 177.0, 123.0)
    # Detections below this confidence are discarded by the detector
    detection_threshold: float = 0.3
    # NMS threshold
    nms_threshold: float = 0.3
    # Minimum face size in pixels
    min_face_size: Tuple[int, int] = (30, 30)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ModelConfig":
        """Create from config dictionary."""
        models = _get_nested(config, "models") or {}

        model_dir = models.get("model_dir")
        input_size = models.get("input_size", [300, 300])
        mean_values = models.get("mean_values", [104.0, 177.0, 123.0])
        min_face_size = models.get("min_face_size", [30, 30])

        return cls(
            model_dir=Path(model_dir).expanduser() if model_dir else cls.model_dir,
            auto_download=models.get("auto_download", True),
            download_timeout=models.get("download_timeout", 30.0),
            input_size=tuple(input_size),
            mean_values=tuple(mean_values),
            detection_threshold=models.get("detection_threshold", 0.3),
            nms_threshold=models.get("nms_threshold", 0.3),
            min_face_size=tuple(min_face_size),
        )


# ============================================================
# Backend API Constants
# ============================================================

@dataclass
class RetryConfig:
    """Retry policy for retryable API errors."""
    max_retries: int = 3
    # Base delay in seconds, doubled on every attempt
    retry_delay: float = 1.0
    # Fraction of the delay added as random jitter
    jitter_ratio: float = 0.1

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RetryConfig":
        """Create from config dictionary."""
        r = _get_nested(config, "api", "retry") or {}

        return cls(
            max_retries=r.get("max_retries", 3),
            retry_delay=r.get("retry_delay", 1.0),
            jitter_ratio=r.get("jitter_ratio", 0.1),
        )


@dataclass
class ApiConfig:
    """Backend API constants."""
    base_url: str = "http://localhost:3001/api"
    # Request timeout in seconds
    timeout: float = 30.0
    # Relying-party origin presented to the platform authenticator
    origin: str = "http://localhost:3000"

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ApiConfig":
        """Create from config dictionary."""
        api = _get_nested(config, "api") or {}

        return cls(
            base_url=api.get("base_url", "http://localhost:3001/api"),
            timeout=api.get("timeout", 30.0),
            origin=api.get("origin", "http://localhost:3000"),
        )


# ============================================================
# Verification Strategy
# ============================================================

VERIFICATION_STRATEGIES = ("facial", "webauthn", "none")


def get_verification_strategy(config: Dict[str, Any]) -> str:
    """Return the configured verification strategy name."""
    strategy = _get_nested(config, "verification", "strategy", default="facial")
    if strategy not in VERIFICATION_STRATEGIES:
        logger.warning(f"Unknown verification strategy '{strategy}', using facial")
        return "facial"
    return strategy


# ============================================================
# Global Config Instance (lazy loaded)
# ============================================================

class Config:
    """Global configuration singleton."""

    _instance: Optional["Config"] = None
    _config: Dict[str, Any] = {}

    def __new__(cls) -> "Config":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load()
        return cls._instance

    def _load(self, config_path: Optional[Path] = None) -> None:
        """Load configuration from file."""
        self._config = load_config(config_path)
        self._quality: Optional[QualityConfig] = None
        self._matching: Optional[MatchingConfig] = None
        self._session: Optional[SessionConfig] = None
        self._camera: Optional[CameraConfig] = None
        self._models: Optional[ModelConfig] = None
        self._api: Optional[ApiConfig] = None
        self._retry: Optional[RetryConfig] = None

    def reload(self, config_path: Optional[Path] = None) -> None:
        """Reload configuration from file."""
        self._load(config_path)

    @property
    def raw(self) -> Dict[str, Any]:
        """Raw configuration dictionary."""
        return self._config

    @property
    def quality(self) -> QualityConfig:
        """Get face quality config."""
        if self._quality is None:
            self._quality = QualityConfig.from_config(self._config)
        return self._quality

    @property
    def matching(self) -> MatchingConfig:
        """Get duplicate matching config."""
        if self._matching is None:
            self._matching = MatchingConfig.from_config(self._config)
        return self._matching

    @property
    def session(self) -> SessionConfig:
        """Get capture session config."""
        if self._session is None:
            self._session = SessionConfig.from_config(self._config)
        return self._session

    @property
    def camera(self) -> CameraConfig:
        """Get camera config."""
        if self._camera is None:
            self._camera = CameraConfig.from_config(self._config)
        return self._camera

    @property
    def models(self) -> ModelConfig:
        """Get model asset config."""
        if self._models is None:
            self._models = ModelConfig.from_config(self._config)
        return self._models

    @property
    def api(self) -> ApiConfig:
        """Get backend API config."""
        if self._api is None:
            self._api = ApiConfig.from_config(self._config)
        return self._api

    @property
    def retry(self) -> RetryConfig:
        """Get API retry config."""
        if self._retry is None:
            self._retry = RetryConfig.from_config(self._config)
        return self._retry

    def get(self, *keys: str, default: Any = None) -> Any:
        """Get a config value by key path."""
        return _get_nested(self._config, *keys, default=default)


def get_config() -> Config:
    """Get the global configuration instance."""
    return Config()


# Convenience accessors
def get_quality_config() -> QualityConfig:
    """Get face quality configuration."""
    return get_config().quality


def get_matching_config() -> MatchingConfig:
    """Get duplicate matching configuration."""
    return get_config().matching


def get_session_config() -> SessionConfig:
    """Get capture session configuration."""
    return get_config().session


def get_camera_config() -> CameraConfig:
    """Get camera configuration."""
    return get_config().camera


def get_model_config() -> ModelConfig:
    """Get model asset configuration."""
    return get_config().models


def get_api_config() -> ApiConfig:
    """Get backend API configuration."""
    return get_config().api


def get_retry_config() -> RetryConfig:
    """Get API retry configuration."""
    return get_config().retry
