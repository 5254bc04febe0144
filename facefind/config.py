"""
FaceFind Configuration
======================

This module contains the static settings of the face-match search engine.

Which matching provider is active (local model vs. remote API) is NOT
decided here: that choice lives in the settings table and is resolved at
runtime by ``facefind.resolver``. Everything in this file is fixed for the
lifetime of the process and can only be changed through environment
variables before startup.

USAGE:
------
    from facefind.config import Config

    threshold = Config.MATCH_DISTANCE_THRESHOLD
    batch_size = Config.REMOTE_BATCH_SIZE

THRESHOLD:
----------
    MATCH_DISTANCE_THRESHOLD (0.45) is calibrated for dlib's ResNet, the
    default backend. If you switch FACE_EMBEDDER to "sface" or point
    FACE_EMBEDDER_URL at another network, recalibrate it and set
    FACE_MATCH_DISTANCE before starting the server.
"""

import os
from pathlib import Path

# =============================================================================
# PATH CONFIGURATION
# =============================================================================

BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("FACEFIND_DATA_DIR", str(BASE_DIR / "data")))
MODELS_DIR = Path(os.getenv("FACEFIND_MODELS_DIR", str(BASE_DIR / "facefind" / "models")))


class Config:
    """
    Central configuration for the face-match search engine.
    """

    # =========================================================================
    # PROVIDER SELECTION (runtime value lives in the settings table)
    # =========================================================================
    # Key under which the provider configuration is stored
    PROVIDER_SETTING_KEY = "facefind_ai_config"

    # Provider used until a configuration has been loaded
    DEFAULT_PROVIDER = "local"

    # =========================================================================
    # MATCHING
    # =========================================================================
    # Euclidean distance below which two descriptors are the same person.
    # Lower distance = more similar. Replaceable, never derived at runtime.
    MATCH_DISTANCE_THRESHOLD = float(os.getenv("FACE_MATCH_DISTANCE", "0.45"))

    # =========================================================================
    # LOCAL PROVIDER
    # =========================================================================
    # Candidates evaluated concurrently before yielding to the event loop
    LOCAL_BATCH_SIZE = int(os.getenv("FACE_LOCAL_BATCH_SIZE", "5"))

    # Pause between chunks so other coroutines get scheduled
    LOCAL_YIELD_SECONDS = 0.01

    # Timeout for downloading a single gallery image
    IMAGE_FETCH_TIMEOUT_SECONDS = float(os.getenv("FACE_IMAGE_TIMEOUT", "15"))

    # =========================================================================
    # REMOTE PROVIDER
    # =========================================================================
    # Gallery entries per POST request
    REMOTE_BATCH_SIZE = int(os.getenv("FACE_REMOTE_BATCH_SIZE", "50"))

    # Hard deadline for each batch request
    REMOTE_TIMEOUT_SECONDS = float(os.getenv("FACE_REMOTE_TIMEOUT", "30"))

    # =========================================================================
    # FACE DETECTION SETTINGS
    # =========================================================================
    # YuNet detector, from the OpenCV model zoo ("sface" backend)
    YUNET_MODEL_PATH = MODELS_DIR / "face_detection_yunet_2023mar.onnx"
    YUNET_MODEL_URL = os.getenv(
        "FACE_DETECTOR_URL",
        "https://github.com/opencv/opencv_zoo/raw/main/models/"
        "face_detection_yunet/face_detection_yunet_2023mar.onnx",
    )

    # Minimum confidence for face detection (0-1)
    DETECTION_CONFIDENCE_THRESHOLD = float(os.getenv("FACE_DETECTION_CONFIDENCE", "0.68"))

    # Minimum face size in pixels (gallery thumbnails are small)
    MIN_FACE_SIZE = int(os.getenv("FACE_MIN_SIZE", "20"))

    # Images are scaled down to this longest side before detection
    MAX_IMAGE_DIM = 1920

    # =========================================================================
    # EMBEDDER SETTINGS
    # =========================================================================
    # "dlib": ResNet via face_recognition (pip install facefind[dlib]);
    #         MATCH_DISTANCE_THRESHOLD 0.45 is calibrated for it.
    # "sface": YuNet + SFace ONNX from the OpenCV model zoo; descriptors are
    #          unit length, so set FACE_MATCH_DISTANCE (about 1.128).
    EMBEDDER_BACKEND = os.getenv("FACE_EMBEDDER", "dlib")
    EMBEDDING_DIM = 128

    # HOG upsampling passes; 1 finds faces down to about 40 px
    DLIB_UPSAMPLE = int(os.getenv("FACE_DLIB_UPSAMPLE", "1"))

    # SFace recognition model, used by the "sface" backend
    EMBEDDER_MODEL_PATH = MODELS_DIR / "face_recognition_sface_2021dec.onnx"
    EMBEDDER_MODEL_URL = os.getenv(
        "FACE_EMBEDDER_URL",
        "https://github.com/opencv/opencv_zoo/raw/main/models/"
        "face_recognition_sface/face_recognition_sface_2021dec.onnx",
    )
    EMBEDDER_INPUT_SIZE = (112, 112)

    # Timeout for downloading model files
    MODEL_DOWNLOAD_TIMEOUT_SECONDS = 120

    # =========================================================================
    # STORAGE
    # =========================================================================
    DATABASE_URL = os.getenv("FACEFIND_DATABASE_URL", f"sqlite:///{DATA_DIR / 'facefind.db'}")

    # =========================================================================
    # HTTP API
    # =========================================================================
    MAX_UPLOAD_MB = int(os.getenv("FACE_MAX_UPLOAD_MB", "10"))

    # Finished and running search tasks kept for polling
    TASK_CACHE_SIZE = 100

    CORS_ALLOW_ORIGINS = (
        os.getenv("CORS_ALLOW_ORIGINS", "").split(",") if os.getenv("CORS_ALLOW_ORIGINS") else []
    )

    LOG_LEVEL = os.getenv("FACEFIND_LOG_LEVEL", "INFO")


# =============================================================================
# HELPER FUNCTION TO PRINT CURRENT CONFIG
# =============================================================================

def print_config():
    """Print the current configuration for debugging."""
    print("=" * 60)
    print("FACEFIND CONFIGURATION")
    print("=" * 60)
    print(f"Embedder Backend: {Config.EMBEDDER_BACKEND} ({Config.EMBEDDING_DIM} dimensions)")
    print(f"Models Dir: {MODELS_DIR}")
    print(f"Match Distance Threshold: {Config.MATCH_DISTANCE_THRESHOLD}")
    print(f"Local Batch Size: {Config.LOCAL_BATCH_SIZE}")
    print(f"Remote Batch Size: {Config.REMOTE_BATCH_SIZE}")
    print(f"Remote Timeout: {Config.REMOTE_TIMEOUT_SECONDS}s")
    print(f"Database: {Config.DATABASE_URL}")
    print("=" * 60)


if __name__ == "__main__":
    print_config()
