"""
Descriptor Comparator
=====================

Decides whether two face descriptors belong to the same person.

EDUCATIONAL NOTES:
------------------
We use plain Euclidean (L2) distance between descriptors:
- 0.0 means identical descriptors
- Lower distance = more similar faces

A pair is a match when the distance is strictly below the threshold.
The default threshold (0.45) lives in ``Config.MATCH_DISTANCE_THRESHOLD``;
it was calibrated for a specific embedding model and must be re-tuned
if the model changes.

USAGE:
------
    from facefind.comparator import distance, is_match

    d = distance(probe, candidate)
    same_person = is_match(probe, candidate)
"""

from typing import Iterable, Optional

import numpy as np

from .config import Config


def distance(a: np.ndarray, b: np.ndarray) -> float:
    """
    Euclidean distance between two descriptors.

    Raises:
        ValueError: if the descriptors have different lengths
            (they were not produced by the same model)
    """
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.shape != b.shape:
        raise ValueError(f"Descriptor length mismatch: {a.shape[0]} vs {b.shape[0]}")
    return float(np.linalg.norm(a - b))


def is_match(a: np.ndarray, b: np.ndarray, threshold: Optional[float] = None) -> bool:
    """True when ``distance(a, b)`` is below the match threshold."""
    if threshold is None:
        threshold = Config.MATCH_DISTANCE_THRESHOLD
    return distance(a, b) < threshold


def best_distance(probe: np.ndarray, descriptors: Iterable[np.ndarray]) -> Optional[float]:
    """Smallest distance from ``probe`` to any of ``descriptors`` (None if empty)."""
    best = None
    for descriptor in descriptors:
        d = distance(probe, descriptor)
        if best is None or d < best:
            best = d
    return best
