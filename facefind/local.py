"""
Local Match Provider
====================

Matches on this machine: the selfie and every gallery photo go through the
embedding provider, and a photo matches when ANY face in it is closer to
the selfie face than the distance threshold.

SCHEDULING:
-----------
Candidates are evaluated in small chunks (default 5). Within a chunk all
photos are evaluated concurrently; the chunk is a join point, then the
provider sleeps briefly so the event loop can serve other requests.
Image fetching, decoding and inference run in the default executor.

A photo that cannot be fetched or decoded is simply not a match: one
broken gallery image never fails the whole search.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Sequence

import numpy as np

from .comparator import best_distance
from .config import Config
from .domain import CandidatePhoto, ImageSource, MatchResult
from .embedding import EmbeddingProvider, get_embedding_provider
from .errors import NoFaceDetectedError, UnknownSearchError
from .images import load_image
from .providers import MatchProvider, ProgressReporter, check_cancelled, run_blocking

logger = logging.getLogger(__name__)


class LocalMatchProvider(MatchProvider):
    """On-device embedding comparison."""

    name = "local"

    def __init__(
        self,
        embedding_provider: Optional[EmbeddingProvider] = None,
        image_loader: Callable[[ImageSource], np.ndarray] = load_image,
        batch_size: int = Config.LOCAL_BATCH_SIZE,
        threshold: Optional[float] = None,
        yield_seconds: float = Config.LOCAL_YIELD_SECONDS,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.embedding_provider = embedding_provider or get_embedding_provider()
        self.image_loader = image_loader
        self.batch_size = batch_size
        self.threshold = Config.MATCH_DISTANCE_THRESHOLD if threshold is None else threshold
        self.yield_seconds = yield_seconds
        self.probe_descriptor: Optional[np.ndarray] = None

    async def prepare(self, probe: ImageSource, progress: ProgressReporter):
        progress.report(0, "Loading models...")
        await run_blocking(self.embedding_provider.load_models)

        progress.report(0, "Analyzing your selfie...")
        try:
            probe_image = await run_blocking(self.image_loader, probe)
        except Exception as e:
            raise UnknownSearchError(f"Could not read the selfie image: {e}") from e

        descriptor = await run_blocking(self.embedding_provider.extract_single, probe_image)
        if descriptor is None:
            raise NoFaceDetectedError()
        self.probe_descriptor = descriptor

    async def _evaluate(self, candidate: CandidatePhoto) -> Optional[MatchResult]:
        try:
            image = await run_blocking(self.image_loader, candidate.locator)
            descriptors = await run_blocking(self.embedding_provider.extract_all, image)
            closest = best_distance(self.probe_descriptor, descriptors)
        except Exception as e:
            logger.debug("Skipping candidate %s: %s", candidate.id, e)
            return None

        if closest is not None and closest < self.threshold:
            return MatchResult(candidate.id, closest)
        return None

    async def match(
        self,
        candidates: Sequence[CandidatePhoto],
        progress: ProgressReporter,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[MatchResult]:
        if self.probe_descriptor is None:
            raise RuntimeError("prepare() must succeed before match()")

        total = len(candidates)
        progress.report(0, "Comparing photos...")

        matches: List[MatchResult] = []
        for start in range(0, total, self.batch_size):
            check_cancelled(cancel_event)
            chunk = candidates[start:start + self.batch_size]

            results = await asyncio.gather(*(self._evaluate(c) for c in chunk))
            matches.extend(r for r in results if r is not None)

            progress.report(min(start + self.batch_size, total), "Comparing photos...")
            await asyncio.sleep(self.yield_seconds)

        return matches
