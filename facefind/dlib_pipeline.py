"""
dlib Face Pipeline
==================

Detection and embedding with dlib through the ``face_recognition`` package:
HOG face detector, 5-point landmark alignment and the ResNet face
recognition network (128 dimensions).

Descriptors are NOT normalized. Euclidean distance between two photos of
the same person is typically below 0.6; the default match threshold of
0.45 is calibrated for this network.

USAGE:
------
    from facefind.dlib_pipeline import DlibFacePipeline

    pipeline = DlibFacePipeline()
    faces = pipeline.describe(bgr_image)   # [(score, descriptor), ...]
"""

from typing import List, Tuple

import cv2
import numpy as np

from .config import Config


class DlibFacePipeline:
    """
    dlib detector + ResNet embedder.

    HOG detections carry no confidence, so the face score is the box area:
    the biggest face wins when a selfie shows several people.

    Args:
        upsample: times the image is upsampled before detection (finds small faces)
        num_jitters: re-samples averaged per descriptor (slower, slightly more accurate)
        api: the ``face_recognition`` module (injectable for tests)
    """

    def __init__(
        self,
        upsample: int = Config.DLIB_UPSAMPLE,
        num_jitters: int = 1,
        api=None,
    ):
        if api is None:
            # Optional install: pip install facefind[dlib]
            import face_recognition as api

        self.api = api
        self.upsample = upsample
        self.num_jitters = num_jitters

    @staticmethod
    def _to_rgb(image: np.ndarray) -> np.ndarray:
        h, w = image.shape[:2]
        if max(h, w) > Config.MAX_IMAGE_DIM:
            scale = Config.MAX_IMAGE_DIM / max(h, w)
            image = cv2.resize(image, (int(w * scale), int(h * scale)))
        return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)

    def describe(self, image: np.ndarray) -> List[Tuple[float, np.ndarray]]:
        """
        Detect every face and compute its descriptor.

        Args:
            image: BGR image (as decoded by OpenCV)

        Returns:
            List of (score, descriptor), one per face large enough to keep
        """
        rgb = self._to_rgb(image)
        locations = self.api.face_locations(rgb, number_of_times_to_upsample=self.upsample, model="hog")

        # (top, right, bottom, left)
        locations = [
            loc for loc in locations
            if loc[1] - loc[3] >= Config.MIN_FACE_SIZE and loc[2] - loc[0] >= Config.MIN_FACE_SIZE
        ]
        if not locations:
            return []

        encodings = self.api.face_encodings(rgb, known_face_locations=locations, num_jitters=self.num_jitters)
        return [
            (float((right - left) * (bottom - top)), np.asarray(encoding, dtype=np.float32))
            for (top, right, bottom, left), encoding in zip(locations, encodings)
        ]
