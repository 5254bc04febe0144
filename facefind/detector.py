"""
Face Detector Module
====================

Face detection using YuNet (OpenCV's fast face detector) plus landmark-based
alignment for the embedder.

EDUCATIONAL NOTES:
------------------
Face detection finds bounding boxes around faces in an image. It does NOT
identify who the face belongs to - that's the job of the embedder.

YuNet outputs, per face:
- Bounding box: [x, y, width, height]
- 5 Facial landmarks: right eye, left eye, nose tip, right mouth corner, left mouth corner
- Confidence score: 0-1

The landmarks are used to align the face before embedding generation.

USAGE:
------
    from facefind.detector import FaceDetector

    detector = FaceDetector(Config.YUNET_MODEL_PATH)
    faces = detector.detect(image)
    # faces = [{"bbox": [x,y,w,h], "confidence": 0.99, "landmarks": [...]}]
"""

from pathlib import Path
from typing import Dict, List, Tuple

import cv2
import numpy as np

from .config import Config

# Reference landmark positions for a 112x112 aligned face
_REFERENCE_LANDMARKS_112 = np.array([
    [38.2946, 51.6963],  # Right eye
    [73.5318, 51.5014],  # Left eye
    [56.0252, 71.7366],  # Nose tip
    [41.5493, 92.3655],  # Right mouth corner
    [70.7299, 92.2041],  # Left mouth corner
], dtype=np.float32)


class FaceDetector:
    """
    Face detector using YuNet (OpenCV DNN).

    Detects multiple faces per image; tiny and low-confidence detections
    are dropped.
    """

    def __init__(self, model_path: Path):
        """
        Load the YuNet model.

        Raises:
            FileNotFoundError: if the model file does not exist
            cv2.error: if OpenCV cannot parse the model
        """
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(f"YuNet model not found at {self.model_path}")

        self.input_size = (640, 480)
        self.detector = cv2.FaceDetectorYN.create(
            str(self.model_path),
            "",  # No config file needed for ONNX
            self.input_size,
            Config.DETECTION_CONFIDENCE_THRESHOLD,
            0.3,  # NMS threshold
            5000,  # Top K before NMS
        )

    def _detect_raw(self, image: np.ndarray) -> List[Dict]:
        height, width = image.shape[:2]
        self.detector.setInputSize((width, height))

        # Returns: N x 15 array
        # Columns: x, y, w, h, 5 landmark (x, y) pairs, score
        _, faces = self.detector.detect(image)
        if faces is None:
            return []

        results = []
        for face in faces:
            x, y, w, h = face[:4].astype(int)
            if w < Config.MIN_FACE_SIZE or h < Config.MIN_FACE_SIZE:
                continue

            confidence = float(face[14])
            if confidence < Config.DETECTION_CONFIDENCE_THRESHOLD:
                continue

            results.append({
                "bbox": [int(x), int(y), int(w), int(h)],
                "confidence": confidence,
                "landmarks": face[4:14].reshape(5, 2).tolist(),
            })
        return results

    def detect(self, image: np.ndarray) -> List[Dict]:
        """
        Detect faces in an image.

        Very large images are scaled down first (YuNet works best under
        ~2MP) and the coordinates are mapped back to the original size.

        Args:
            image: OpenCV image (BGR format, numpy array)

        Returns:
            List of detected faces, each with bbox, confidence and landmarks
        """
        if image is None or image.size == 0:
            return []

        h, w = image.shape[:2]
        if max(h, w) <= Config.MAX_IMAGE_DIM:
            return self._detect_raw(image)

        scale = Config.MAX_IMAGE_DIM / max(h, w)
        scaled = cv2.resize(image, (int(w * scale), int(h * scale)), interpolation=cv2.INTER_AREA)
        faces = self._detect_raw(scaled)
        for face in faces:
            face["bbox"] = [int(v / scale) for v in face["bbox"]]
            face["landmarks"] = [[x / scale, y / scale] for x, y in face["landmarks"]]
        return faces

    def crop_face(self, image: np.ndarray, face: Dict, padding: float = 0.2) -> np.ndarray:
        """Crop a face from the image with padding around the bbox."""
        x, y, w, h = face["bbox"]
        pad_w = int(w * padding)
        pad_h = int(h * padding)

        x1 = max(0, x - pad_w)
        y1 = max(0, y - pad_h)
        x2 = min(image.shape[1], x + w + pad_w)
        y2 = min(image.shape[0], y + h + pad_h)
        return image[y1:y2, x1:x2]

    def align_face(
        self,
        image: np.ndarray,
        face: Dict,
        output_size: Tuple[int, int] = Config.EMBEDDER_INPUT_SIZE
    ) -> np.ndarray:
        """
        Align and crop a face using its landmarks.

        Alignment makes the face upright and centered, which the embedder
        needs for stable descriptors.

        Args:
            image: Full image
            face: Face dict with landmarks
            output_size: Size of the aligned face

        Returns:
            Aligned face image of ``output_size``
        """
        src_pts = np.array(face["landmarks"], dtype=np.float32)
        dst_pts = _REFERENCE_LANDMARKS_112 * (output_size[0] / 112.0)

        tform = cv2.estimateAffinePartial2D(src_pts, dst_pts)[0]
        if tform is None:
            # Fallback to simple crop if alignment fails
            return cv2.resize(self.crop_face(image, face), output_size)

        return cv2.warpAffine(image, tform, output_size, borderMode=cv2.BORDER_REPLICATE)
