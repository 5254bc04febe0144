"""
Match Provider Interface
========================

A match provider is one strategy for deciding which candidates contain the
probe face. There are exactly two:

- ``LocalMatchProvider`` (facefind.local): on-device embeddings + distance
- ``RemoteMatchProvider`` (facefind.remote): an external matching API

A provider instance serves ONE search. The orchestrator calls:

    await provider.prepare(probe, progress)        # PREPARING state
    await provider.match(candidates, progress)     # MATCHING state

so that the two phases map onto the search state machine.
"""

import asyncio
import functools
import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Sequence, TypeVar

from .domain import CandidatePhoto, ImageSource, MatchResult, ProgressCallback, ProgressEvent
from .errors import SearchCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_blocking(func: Callable[..., T], *args, **kwargs) -> T:
    """Run blocking work in the default executor (an await point)."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


def check_cancelled(cancel_event: Optional[asyncio.Event]):
    if cancel_event is not None and cancel_event.is_set():
        raise SearchCancelledError()


class ProgressReporter:
    """
    Wraps the caller's progress callback.

    ``processed`` never goes backwards and never exceeds ``total``.
    A failing callback is logged and ignored: progress is observational.
    """

    def __init__(self, callback: Optional[ProgressCallback], total: int):
        self.callback = callback
        self.total = total
        self.processed = 0
        self.calls = 0

    def report(self, processed: int, message: str):
        self.processed = max(self.processed, min(processed, self.total))
        self.calls += 1
        if self.callback is None:
            return
        try:
            self.callback(ProgressEvent(self.processed, self.total, message))
        except Exception:
            logger.exception("Progress callback failed")


class MatchProvider(ABC):
    """One matching strategy, used for a single search."""

    name: str

    @abstractmethod
    async def prepare(self, probe: ImageSource, progress: ProgressReporter):
        """Validate and pre-process the probe before any candidate is evaluated."""

    @abstractmethod
    async def match(
        self,
        candidates: Sequence[CandidatePhoto],
        progress: ProgressReporter,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[MatchResult]:
        """Return the candidates judged to contain the probe face."""
