"""
Embedding Provider Module
=========================

The local face pipeline: detection + alignment + embedding, with either
dlib's ResNet (default, via face_recognition) or YuNet + an ONNX model.
It turns an image into zero or more face descriptors.

The loaded model set is a process-wide singleton: models are fetched and
loaded once, then shared read-only by every search.

USAGE:
------
    from facefind.embedding import get_embedding_provider

    provider = get_embedding_provider()
    provider.load_models()                      # idempotent
    probe = provider.extract_single(selfie)     # None when no face
    faces = provider.extract_all(gallery_image) # one per detected face
"""

import logging
import threading
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
import requests

from .config import Config, MODELS_DIR
from .detector import FaceDetector
from .dlib_pipeline import DlibFacePipeline
from .embedder import FaceEmbedder
from .errors import ModelLoadError

logger = logging.getLogger(__name__)


def download_model(url: str, destination: Path, timeout: float = Config.MODEL_DOWNLOAD_TIMEOUT_SECONDS):
    """
    Download a model file, writing through a temporary file so a broken
    transfer never leaves a truncated model behind.
    """
    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = destination.with_suffix(destination.suffix + ".part")

    logger.info("Downloading %s -> %s", url, destination)
    with requests.get(url, stream=True, timeout=timeout) as response:
        response.raise_for_status()
        with open(partial, "wb") as f:
            for chunk in response.iter_content(chunk_size=1 << 16):
                f.write(chunk)
    partial.replace(destination)


class OnnxFacePipeline:
    """YuNet detection + 5-point alignment + ONNX embedder (SFace by default)."""

    def __init__(self, detector: FaceDetector, embedder: FaceEmbedder):
        self.detector = detector
        self.embedder = embedder

    def describe(self, image: np.ndarray) -> List[Tuple[float, np.ndarray]]:
        faces = self.detector.detect(image)
        aligned = [self.detector.align_face(image, face) for face in faces]
        descriptors = self.embedder.get_embeddings_batch(aligned)
        return [(face["confidence"], d) for face, d in zip(faces, descriptors)]


class EmbeddingProvider:
    """
    Face pipeline behind a load-once guard.

    ``load_models()`` must complete before any extraction; the extract
    methods call it themselves so callers cannot forget.

    Neither OpenCV's DNN detector nor dlib may be entered from two threads
    at once, so inference is serialized. Callers still fetch and decode
    images concurrently.

    Args:
        backend: "dlib" (ResNet via face_recognition) or "sface" (YuNet + ONNX)
    """

    def __init__(
        self,
        backend: str = Config.EMBEDDER_BACKEND,
        detector_path: Path = Config.YUNET_MODEL_PATH,
        embedder_path: Path = Config.EMBEDDER_MODEL_PATH,
        detector_url: Optional[str] = Config.YUNET_MODEL_URL,
        embedder_url: Optional[str] = Config.EMBEDDER_MODEL_URL,
    ):
        self.backend = backend
        self.detector_path = Path(detector_path)
        self.embedder_path = Path(embedder_path)
        self.detector_url = detector_url
        self.embedder_url = embedder_url

        self.pipeline = None
        self._lock = threading.Lock()
        self._inference_lock = threading.Lock()

    @property
    def models_loaded(self) -> bool:
        return self.pipeline is not None

    def _ensure_file(self, path: Path, url: Optional[str]):
        if path.exists():
            return
        if not url:
            raise FileNotFoundError(f"Model not found at {path} and no download URL configured")
        download_model(url, path)

    def _build_pipeline(self):
        if self.backend == "dlib":
            return DlibFacePipeline()
        if self.backend == "sface":
            self._ensure_file(self.detector_path, self.detector_url)
            self._ensure_file(self.embedder_path, self.embedder_url)
            return OnnxFacePipeline(FaceDetector(self.detector_path), FaceEmbedder(self.embedder_path))
        raise ValueError(f"Unknown embedder backend {self.backend!r}")

    def load_models(self):
        """
        Fetch (if needed) and load the detection and embedding models.

        Raises:
            ModelLoadError: if any model cannot be downloaded or opened
        """
        if self.models_loaded:
            return

        with self._lock:
            if self.models_loaded:
                return
            try:
                pipeline = self._build_pipeline()
            except Exception as e:
                logger.error("Failed to load face models: %s", e)
                raise ModelLoadError(f"Failed to load facial recognition models: {e}") from e

            self.pipeline = pipeline
            logger.info("Face models loaded: %s (%d dimensions)", self.backend, Config.EMBEDDING_DIM)

    def _describe(self, image: np.ndarray) -> List[Tuple[float, np.ndarray]]:
        self.load_models()
        with self._inference_lock:
            return self.pipeline.describe(image)

    def extract_single(self, image: np.ndarray) -> Optional[np.ndarray]:
        """
        Descriptor of the most confident face in ``image``.

        Returns:
            The descriptor, or None when no face is detected
        """
        faces = self._describe(image)
        if not faces:
            return None
        return max(faces, key=lambda f: f[0])[1]

    def extract_all(self, image: np.ndarray) -> List[np.ndarray]:
        """
        One descriptor per detected face (several people per photo).
        """
        return [descriptor for _, descriptor in self._describe(image)]


# Singleton instance for reuse
_provider_instance = None
_provider_lock = threading.Lock()


def get_embedding_provider() -> EmbeddingProvider:
    """Get or create the singleton embedding provider."""
    global _provider_instance
    if _provider_instance is None:
        with _provider_lock:
            if _provider_instance is None:
                MODELS_DIR.mkdir(parents=True, exist_ok=True)
                _provider_instance = EmbeddingProvider()
    return _provider_instance


def reset_embedding_provider():
    """Drop the singleton (tests and model swaps)."""
    global _provider_instance
    _provider_instance = None
