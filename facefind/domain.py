"""
Shared data types for the search engine.

These are plain containers passed between the stores, the providers and the
orchestrator. Face descriptors themselves are bare ``numpy`` arrays.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

import numpy as np

# A face embedding produced by the local embedder
Descriptor = np.ndarray

# Raw image bytes, or a data URL / http(s) URL / file path
ImageSource = Union[bytes, str]


@dataclass(frozen=True)
class CandidatePhoto:
    """A gallery photo being tested against the probe."""

    id: str
    locator: str


@dataclass(frozen=True)
class MatchResult:
    """A candidate judged to contain the probe face."""

    candidate_id: str
    score: Optional[float] = None


@dataclass(frozen=True)
class ProgressEvent:
    """Observational progress update emitted during a search."""

    processed: int
    total: int
    message: str


class SearchState(str, Enum):
    """Lifecycle of a single search call."""

    IDLE = "idle"
    PREPARING = "preparing"
    MATCHING = "matching"
    COMPLETE = "complete"
    NO_FACE_DETECTED = "no_face_detected"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SearchState.COMPLETE, SearchState.NO_FACE_DETECTED, SearchState.FAILED)


ProgressCallback = Callable[[ProgressEvent], None]
StateCallback = Callable[[SearchState], None]
