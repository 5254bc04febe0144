import asyncio
import threading
import time

import numpy as np
import pytest
import requests

from facefind import embedding as embedding_module
from facefind.config import Config
from facefind.dlib_pipeline import DlibFacePipeline
from facefind.domain import CandidatePhoto
from facefind.embedding import EmbeddingProvider, OnnxFacePipeline
from facefind.errors import ModelLoadError
from facefind.local import LocalMatchProvider
from facefind.providers import ProgressReporter


class StubDetector:
    def __init__(self, faces):
        self.faces = faces

    def detect(self, image):
        return self.faces

    def align_face(self, image, face):
        return face["tag"]


class StubEmbedder:
    def get_embedding(self, aligned):
        return np.array([float(aligned)], dtype=np.float32)

    def get_embeddings_batch(self, aligned):
        return [self.get_embedding(a) for a in aligned]


class ConcurrencyCountingDetector(StubDetector):
    """Records how many threads are inside detect() at the same time."""

    def __init__(self, faces):
        super().__init__(faces)
        self.active = 0
        self.peak = 0
        self.calls = 0
        self._guard = threading.Lock()

    def detect(self, image):
        with self._guard:
            self.active += 1
            self.calls += 1
            self.peak = max(self.peak, self.active)
        time.sleep(0.02)
        with self._guard:
            self.active -= 1
        return self.faces


def _loaded_provider(tmp_path, faces, detector=None):
    provider = EmbeddingProvider("sface", tmp_path / "det.onnx", tmp_path / "emb.onnx", None, None)
    provider.pipeline = OnnxFacePipeline(detector or StubDetector(faces), StubEmbedder())
    return provider


def test_missing_model_without_url(tmp_path):
    provider = EmbeddingProvider("sface", tmp_path / "det.onnx", tmp_path / "emb.onnx", None, None)
    with pytest.raises(ModelLoadError):
        provider.load_models()
    assert not provider.models_loaded


def test_download_failure(tmp_path, monkeypatch):
    def failing_download(url, destination, timeout=None):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(embedding_module, "download_model", failing_download)
    provider = EmbeddingProvider(
        "sface", tmp_path / "det.onnx", tmp_path / "emb.onnx", "https://models/det", "https://models/emb"
    )

    with pytest.raises(ModelLoadError) as info:
        provider.load_models()
    assert "offline" in str(info.value)


def test_unknown_backend():
    with pytest.raises(ModelLoadError):
        EmbeddingProvider("mystery").load_models()


def test_dlib_backend_load_failure(monkeypatch):
    def broken_pipeline():
        raise ImportError("No module named 'face_recognition'")

    monkeypatch.setattr(embedding_module, "DlibFacePipeline", broken_pipeline)

    with pytest.raises(ModelLoadError) as info:
        EmbeddingProvider("dlib").load_models()
    assert "face_recognition" in str(info.value)


def test_load_is_idempotent_once_loaded(tmp_path, monkeypatch):
    provider = _loaded_provider(tmp_path, [])
    monkeypatch.setattr(provider, "_build_pipeline", lambda: pytest.fail("should not reload"))
    provider.load_models()


def test_extract_single_uses_most_confident_face(tmp_path):
    provider = _loaded_provider(tmp_path, [
        {"confidence": 0.7, "tag": 1},
        {"confidence": 0.95, "tag": 2},
        {"confidence": 0.8, "tag": 3},
    ])
    assert provider.extract_single("image").tolist() == [2.0]


def test_extract_single_without_face(tmp_path):
    assert _loaded_provider(tmp_path, []).extract_single("image") is None


def test_extract_all(tmp_path):
    provider = _loaded_provider(tmp_path, [{"confidence": 0.9, "tag": 1}, {"confidence": 0.9, "tag": 4}])
    assert [d.tolist() for d in provider.extract_all("image")] == [[1.0], [4.0]]
    assert _loaded_provider(tmp_path, []).extract_all("image") == []


def test_local_chunk_runs_detector_one_at_a_time(tmp_path):
    detector = ConcurrencyCountingDetector([{"confidence": 0.9, "tag": 0}])
    provider = _loaded_provider(tmp_path, [], detector=detector)
    candidates = [CandidatePhoto(f"p{i}", f"photo{i}") for i in range(5)]

    loading = {"active": 0, "peak": 0}
    guard = threading.Lock()

    def slow_loader(source):
        with guard:
            loading["active"] += 1
            loading["peak"] = max(loading["peak"], loading["active"])
        time.sleep(0.05)
        with guard:
            loading["active"] -= 1
        return source

    local = LocalMatchProvider(embedding_provider=provider, image_loader=slow_loader, batch_size=5, yield_seconds=0)
    local.probe_descriptor = np.array([0.0], dtype=np.float32)

    matches = asyncio.run(local.match(candidates, ProgressReporter(None, len(candidates))))

    assert [m.candidate_id for m in matches] == ["p0", "p1", "p2", "p3", "p4"]
    assert detector.calls == 5
    assert detector.peak == 1
    assert loading["peak"] > 1


class FakeFaceRecognition:
    """Stands in for the face_recognition module."""

    def __init__(self, locations):
        self.locations = locations
        self.seen_shapes = []
        self.seen_pixel = None

    def face_locations(self, image, number_of_times_to_upsample=1, model="hog"):
        self.seen_shapes.append(image.shape)
        self.seen_pixel = image[0, 0].tolist()
        return list(self.locations)

    def face_encodings(self, image, known_face_locations=None, num_jitters=1):
        return [np.full(128, float(i), dtype=np.float64) for i, _ in enumerate(known_face_locations)]


def test_dlib_pipeline_scores_by_face_size():
    # (top, right, bottom, left)
    api = FakeFaceRecognition([(0, 50, 50, 0), (10, 130, 110, 30), (0, 10, 10, 0)])
    image = np.zeros((200, 200, 3), dtype=np.uint8)
    image[0, 0] = (255, 0, 0)  # blue in BGR

    faces = DlibFacePipeline(api=api).describe(image)

    assert [score for score, _ in faces] == [2500.0, 10000.0]  # the 10px face is dropped
    assert faces[0][1].dtype == np.float32
    assert faces[0][1].shape == (128,)
    assert api.seen_pixel == [0, 0, 255]


def test_dlib_pipeline_downscales_large_images():
    api = FakeFaceRecognition([])
    image = np.zeros((100, Config.MAX_IMAGE_DIM * 2, 3), dtype=np.uint8)

    assert DlibFacePipeline(api=api).describe(image) == []
    assert max(api.seen_shapes[0][:2]) == Config.MAX_IMAGE_DIM


def test_most_confident_face_with_dlib_scores():
    api = FakeFaceRecognition([(0, 50, 50, 0), (10, 130, 110, 30)])
    provider = EmbeddingProvider("dlib")
    provider.pipeline = DlibFacePipeline(api=api)

    descriptor = provider.extract_single(np.zeros((200, 200, 3), dtype=np.uint8))

    assert descriptor.tolist() == [1.0] * 128
