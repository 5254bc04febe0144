"""
Face Embedder Module (ONNX Runtime)
===================================

Generates face descriptors from aligned face crops using an ONNX
face-recognition model (SFace by default, 128 dimensions).

The descriptor is L2-normalized, so the Euclidean distance between two
descriptors lies in [0, 2].

USAGE:
------
    from facefind.embedder import FaceEmbedder

    embedder = FaceEmbedder(Config.EMBEDDER_MODEL_PATH)
    descriptor = embedder.get_embedding(aligned_face)
"""

from pathlib import Path
from typing import List

import cv2
import numpy as np
import onnxruntime as ort

from .config import Config


class FaceEmbedder:
    """
    Face embedder backed by an ONNX Runtime inference session.

    Expects 112x112 aligned BGR crops (see ``FaceDetector.align_face``).
    """

    INPUT_SIZE = Config.EMBEDDER_INPUT_SIZE

    def __init__(self, model_path: Path):
        """
        Create the inference session.

        Raises:
            FileNotFoundError: if the model file does not exist
        """
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(f"Embedder model not found at {self.model_path}")

        self.session = ort.InferenceSession(str(self.model_path), providers=["CPUExecutionProvider"])
        self.input_name = self.session.get_inputs()[0].name
        self.output_name = self.session.get_outputs()[0].name

    def preprocess(self, face_image: np.ndarray) -> np.ndarray:
        """
        Preprocess an aligned face for the model.

        Steps:
        1. Resize to model input size (112x112)
        2. BGR -> RGB
        3. HWC -> NCHW float32
        """
        if face_image.shape[:2] != self.INPUT_SIZE:
            face_image = cv2.resize(face_image, self.INPUT_SIZE)
        face_image = cv2.cvtColor(face_image, cv2.COLOR_BGR2RGB)
        return np.transpose(face_image, (2, 0, 1))[np.newaxis].astype(np.float32)

    def get_embedding(self, face_image: np.ndarray) -> np.ndarray:
        """
        Generate a normalized descriptor for one aligned face.
        """
        outputs = self.session.run([self.output_name], {self.input_name: self.preprocess(face_image)})
        embedding = outputs[0][0].astype(np.float32)
        return embedding / np.linalg.norm(embedding)

    def get_embeddings_batch(self, face_images: List[np.ndarray]) -> List[np.ndarray]:
        """
        Generate descriptors for several faces.

        SFace is exported with a fixed batch dimension of 1, so faces are
        run one at a time.
        """
        return [self.get_embedding(face) for face in face_images]
