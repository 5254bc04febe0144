"""
Search Orchestrator
===================

Entry point of the face-match search engine.

Given a selfie (the probe) and the gallery photos of an event (the
candidates), it picks the matching provider from the cached configuration,
drives it through its two phases and returns the photos that contain the
probe face.

STATE MACHINE:
--------------
    IDLE -> PREPARING -> MATCHING -> COMPLETE
                 |           |
                 |           +----> FAILED
                 +--> NO_FACE_DETECTED
                 +--> FAILED

- PREPARING: configuration is resolved, then the provider prepares the probe
  (local: load models + extract the selfie descriptor; remote: transport
  security check + encode the selfie).
- MATCHING: candidates are evaluated in chunks / batches.
- COMPLETE: result = matched candidates, de-duplicated, in input order.

A selfie without a detectable face ends in NO_FACE_DETECTED, which is a
different outcome from a search that completes with zero matches.

USAGE:
------
    from facefind.search import SearchOrchestrator

    orchestrator = SearchOrchestrator(resolver)
    matches = await orchestrator.search(
        selfie_bytes,
        photo_store.list_candidates(event_id),
        on_progress=lambda e: print(e.processed, e.total, e.message),
    )
"""

import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional

from .domain import (
    CandidatePhoto,
    ImageSource,
    MatchResult,
    ProgressCallback,
    SearchState,
    StateCallback,
)
from .errors import FaceFindError, NoFaceDetectedError, UnknownSearchError
from .local import LocalMatchProvider
from .providers import MatchProvider, ProgressReporter, run_blocking
from .remote import RemoteMatchProvider
from .resolver import ProviderConfig, ProviderConfigResolver

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ProviderConfig, bool], MatchProvider]

_TRANSITIONS = {
    SearchState.IDLE: {SearchState.PREPARING},
    SearchState.PREPARING: {SearchState.MATCHING, SearchState.NO_FACE_DETECTED, SearchState.FAILED},
    SearchState.MATCHING: {SearchState.COMPLETE, SearchState.FAILED},
}


class SearchRun:
    """State of one search call; never shared between calls."""

    def __init__(self, on_state: Optional[StateCallback] = None):
        self.state = SearchState.IDLE
        self.on_state = on_state

    def enter(self, state: SearchState):
        if state not in _TRANSITIONS.get(self.state, set()):
            raise RuntimeError(f"Invalid search transition {self.state.value} -> {state.value}")
        self.state = state
        if self.on_state is not None:
            try:
                self.on_state(state)
            except Exception:
                logger.exception("State callback failed")


def default_provider_factory(config: ProviderConfig, secure_context: bool) -> MatchProvider:
    """Build the provider for one search from the active configuration."""
    if config.uses_remote:
        return RemoteMatchProvider(
            endpoint=config.remote_endpoint,
            api_key=config.remote_key,
            secure_context=secure_context,
        )
    if config.provider == "remote":
        logger.warning("Remote provider selected but no endpoint configured, using local matching")
    return LocalMatchProvider()


def finalize_matches(candidates: Iterable[CandidatePhoto], matches: Iterable[MatchResult]) -> List[MatchResult]:
    """
    Restrict matches to known candidates, one entry per candidate,
    in the order the candidates were given.
    """
    scores: Dict[str, Optional[float]] = {}
    for match in matches:
        scores.setdefault(match.candidate_id, match.score)

    results = []
    seen = set()
    for candidate in candidates:
        if candidate.id in scores and candidate.id not in seen:
            seen.add(candidate.id)
            results.append(MatchResult(candidate.id, scores[candidate.id]))
    return results


class SearchOrchestrator:
    """
    Runs searches against the configured provider.

    Safe to share between concurrent searches: the only shared state is
    the resolver's cached configuration and the embedding model singleton.
    """

    def __init__(
        self,
        resolver: ProviderConfigResolver,
        provider_factory: ProviderFactory = default_provider_factory,
    ):
        self.resolver = resolver
        self.provider_factory = provider_factory

    async def search(
        self,
        probe: ImageSource,
        candidates: Iterable[CandidatePhoto],
        on_progress: Optional[ProgressCallback] = None,
        secure_context: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
        on_state: Optional[StateCallback] = None,
    ) -> List[MatchResult]:
        """
        Find the candidates that contain the probe face.

        Args:
            probe: selfie bytes or locator
            candidates: gallery photos to test
            on_progress: called with ProgressEvent at every step
            secure_context: the caller was served over a secure transport
            cancel_event: set it to stop the search at the next chunk/batch
            on_state: called on every state transition

        Returns:
            Matched candidates, in input order (possibly empty)

        Raises:
            NoFaceDetectedError: no face in the probe (local provider)
            FaceFindError: any other terminal failure, see facefind.errors
        """
        candidates = list(candidates)
        run = SearchRun(on_state)
        progress = ProgressReporter(on_progress, len(candidates))

        run.enter(SearchState.PREPARING)
        try:
            config = await run_blocking(self.resolver.load)
            provider = self.provider_factory(config, secure_context)
            logger.info("Searching %d photos with the %s provider", len(candidates), provider.name)

            await provider.prepare(probe, progress)
            run.enter(SearchState.MATCHING)
            matches = await provider.match(candidates, progress, cancel_event)
        except NoFaceDetectedError:
            logger.info("No face detected in the probe image")
            run.enter(SearchState.NO_FACE_DETECTED)
            raise
        except FaceFindError as e:
            logger.warning("Search failed (%s): %s", e.kind, e)
            run.enter(SearchState.FAILED)
            raise
        except Exception as e:
            logger.exception("Search failed unexpectedly")
            run.enter(SearchState.FAILED)
            raise UnknownSearchError(str(e)) from e

        results = finalize_matches(candidates, matches)
        run.enter(SearchState.COMPLETE)
        logger.info("Search complete: %d of %d photos matched", len(results), len(candidates))
        return results
