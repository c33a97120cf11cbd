"""Model asset store.

Resolves the face model files under the configured model directory and
downloads the ones that are missing.
"""

import bz2
import logging
import shutil
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from ..constants import ModelConfig, get_model_config
from ..errors import ModelLoadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelAsset:
    """A downloadable model file."""
    filename: str
    url: str
    compressed: bool = False


DETECTOR_WEIGHTS = ModelAsset(
    "res10_300x300_ssd_iter_140000.caffemodel",
    "https://raw.githubusercontent.com/opencv/opencv_3rdparty/"
    "dnn_samples_face_detector_20170830/res10_300x300_ssd_iter_140000.caffemodel",
)
DETECTOR_CONFIG = ModelAsset(
    "deploy.prototxt",
    "https://raw.githubusercontent.com/opencv/opencv/master/samples/dnn/face_detector/deploy.prototxt",
)
SHAPE_PREDICTOR = ModelAsset(
    "shape_predictor_5_face_landmarks.dat",
    "http://dlib.net/files/shape_predictor_5_face_landmarks.dat.bz2",
    compressed=True,
)
RECOGNITION_MODEL = ModelAsset(
    "dlib_face_recognition_resnet_model_v1.dat",
    "http://dlib.net/files/dlib_face_recognition_resnet_model_v1.dat.bz2",
    compressed=True,
)

MODEL_ASSETS: List[ModelAsset] = [
    DETECTOR_WEIGHTS,
    DETECTOR_CONFIG,
    SHAPE_PREDICTOR,
    RECOGNITION_MODEL,
]


class ModelStore:
    """Locates model assets, downloading missing ones on demand."""

    def __init__(self, config: Optional[ModelConfig] = None):
        self.config = config or get_model_config()
        self.model_dir = Path(self.config.model_dir)

    def path_for(self, asset: ModelAsset) -> Path:
        return self.model_dir / asset.filename

    def missing(self) -> List[ModelAsset]:
        """Return the assets not present on disk."""
        return [a for a in MODEL_ASSETS if not self.path_for(a).exists()]

    def ensure(self, download: Optional[bool] = None) -> Dict[str, Path]:
        """Make sure every asset is present.

        Args:
            download: Download missing assets (uses config default if None)

        Returns:
            Mapping of asset filename to local path

        Raises:
            ModelLoadError: An asset is missing and cannot be fetched
        """
        download = self.config.auto_download if download is None else download
        missing = self.missing()

        if missing and not download:
            names = ", ".join(a.filename for a in missing)
            raise ModelLoadError(
                f"Face recognition models not found in {self.model_dir}: {names}. "
                "Run 'vote-guard download-models' first."
            )

        for asset in missing:
            self.download(asset)

        return {a.filename: self.path_for(a) for a in MODEL_ASSETS}

    def download(self, asset: ModelAsset) -> Path:
        """Download one asset, decompressing bz2 archives."""
        self.model_dir.mkdir(parents=True, exist_ok=True)
        target = self.path_for(asset)
        partial = target.with_suffix(target.suffix + ".part")

        logger.info(f"Downloading {asset.filename} from {asset.url}")
        try:
            with urllib.request.urlopen(asset.url, timeout=self.config.download_timeout) as response:
                with open(partial, "wb") as f:
                    if asset.compressed:
                        f.write(bz2.decompress(response.read()))
                    else:
                        shutil.copyfileobj(response, f)
        except (urllib.error.URLError, OSError, ValueError) as e:
            partial.unlink(missing_ok=True)
            raise ModelLoadError(f"Failed to download model from {asset.url}: {e}") from e

        partial.replace(target)
        logger.info(f"Downloaded to {target}")
        return target
