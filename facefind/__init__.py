"""
FaceFind
========

Face-match search for event photo galleries: a visitor submits a selfie and
gets back the gallery photos that contain their face.

COMPONENTS:
-----------
- config: Static settings (thresholds, batch sizes, model locations)
- resolver: Cached provider configuration from the settings table
- embedding: Local face pipeline (dlib ResNet, or YuNet + ONNX via detector / embedder)
- comparator: Euclidean distance and the match threshold
- local / remote: The two match providers
- search: The orchestrator and its state machine
- api / app: FastAPI surface

USAGE:
------
    from facefind import SearchOrchestrator, ProviderConfigResolver

    orchestrator = SearchOrchestrator(ProviderConfigResolver(settings_store))
    matches = await orchestrator.search(selfie_bytes, candidates)
"""

from .config import Config, print_config
from .domain import CandidatePhoto, MatchResult, ProgressEvent, SearchState
from .errors import FaceFindError, NoFaceDetectedError
from .resolver import ProviderConfig, ProviderConfigResolver
from .search import SearchOrchestrator

__version__ = "1.0.0"
__all__ = [
    "CandidatePhoto",
    "Config",
    "FaceFindError",
    "MatchResult",
    "NoFaceDetectedError",
    "ProgressEvent",
    "ProviderConfig",
    "ProviderConfigResolver",
    "SearchOrchestrator",
    "SearchState",
    "print_config",
]
