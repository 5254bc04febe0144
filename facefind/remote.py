"""
Remote Match Provider
=====================

Delegates matching to an external API (e.g. an ArcFace server).

WIRE CONTRACT:
--------------
    POST <endpoint>
    Authorization: Bearer <key or empty>
    Content-Type: application/json

    {"probe": "<base64 image>", "gallery": [{"id": "...", "url": "..."}, ...]}

    200 -> {"matches": [{"id": "...", "score": 0.93}, ...]}

Any id listed in ``matches`` is a positive match for that batch.

Batches (default 50 photos) are sent one after the other, each with its own
hard deadline. The first failing batch aborts the search; nothing is retried.

FAILURES:
---------
- secure page + http:// endpoint -> SecurityPolicyViolationError (no request sent)
- no response in time             -> RemoteTimeoutError
- endpoint unreachable            -> ConnectionFailureError
- HTTP 422                        -> ValidationRejectedError (raw body attached)
- any other non-2xx               -> RemoteHttpError(status)
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Sequence

import requests

from .config import Config
from .domain import CandidatePhoto, ImageSource, MatchResult
from .errors import (
    ConnectionFailureError,
    RemoteHttpError,
    RemoteTimeoutError,
    SecurityPolicyViolationError,
    UnknownSearchError,
    ValidationRejectedError,
)
from .images import to_base64
from .providers import MatchProvider, ProgressReporter, check_cancelled, run_blocking

logger = logging.getLogger(__name__)


def check_transport_security(endpoint: str, secure_context: bool):
    """
    Refuse to call an http:// endpoint from a page served over https://.

    Raises:
        SecurityPolicyViolationError: on mixed transport
    """
    if secure_context and endpoint.strip().lower().startswith("http:"):
        raise SecurityPolicyViolationError(endpoint)


def parse_matches(body, batch_ids: Sequence[str]) -> Dict[str, Optional[float]]:
    """
    Extract ``{id: score}`` from a response body, keeping only ids that were
    part of the batch.
    """
    if not isinstance(body, dict) or not isinstance(body.get("matches"), list):
        return {}

    allowed = set(batch_ids)
    found: Dict[str, Optional[float]] = {}
    for item in body["matches"]:
        if not isinstance(item, dict) or item.get("id") is None:
            continue
        photo_id = str(item["id"])
        if photo_id not in allowed or photo_id in found:
            continue
        score = item.get("score")
        found[photo_id] = float(score) if isinstance(score, (int, float)) and not isinstance(score, bool) else None
    return found


class RemoteMatchProvider(MatchProvider):
    """External matching API, called in sequential batches."""

    name = "remote"

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        secure_context: bool = False,
        batch_size: int = Config.REMOTE_BATCH_SIZE,
        timeout: float = Config.REMOTE_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
        probe_encoder: Callable[[ImageSource], str] = to_base64,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.endpoint = endpoint
        self.api_key = api_key or ""
        self.secure_context = secure_context
        self.batch_size = batch_size
        self.timeout = timeout
        self.session = session
        self.probe_encoder = probe_encoder
        self.probe_base64: Optional[str] = None

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    async def prepare(self, probe: ImageSource, progress: ProgressReporter):
        check_transport_security(self.endpoint, self.secure_context)

        progress.report(0, "Preparing upload to the matching API...")
        try:
            self.probe_base64 = await run_blocking(self.probe_encoder, probe)
        except Exception as e:
            raise UnknownSearchError(f"Could not read the selfie image: {e}") from e

    def _send(self, session: requests.Session, payload: Dict) -> requests.Response:
        return session.post(self.endpoint, json=payload, headers=self.headers, timeout=self.timeout)

    async def _post_batch(self, session: requests.Session, batch: Sequence[CandidatePhoto]):
        payload = {
            "probe": self.probe_base64,
            "gallery": [{"id": c.id, "url": c.locator} for c in batch],
        }

        try:
            response = await asyncio.wait_for(run_blocking(self._send, session, payload), timeout=self.timeout)
        except (asyncio.TimeoutError, requests.Timeout) as e:
            raise RemoteTimeoutError(self.timeout) from e
        except requests.ConnectionError as e:
            raise ConnectionFailureError(f"Could not connect to {self.endpoint}: {e}") from e
        except requests.RequestException as e:
            raise ConnectionFailureError(f"Request to {self.endpoint} failed: {e}") from e

        if response.status_code == 422:
            logger.error("Matching API validation error: %s", response.text)
            raise ValidationRejectedError(response.text)
        if not 200 <= response.status_code < 300:
            raise RemoteHttpError(response.status_code, response.reason or "", response.text)

        try:
            return response.json()
        except ValueError as e:
            raise UnknownSearchError("Matching API returned a response that is not JSON") from e

    async def match(
        self,
        candidates: Sequence[CandidatePhoto],
        progress: ProgressReporter,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[MatchResult]:
        if self.probe_base64 is None:
            raise RuntimeError("prepare() must succeed before match()")

        valid = [c for c in candidates if c.id and c.locator]
        matched: Dict[str, Optional[float]] = {}

        session = self.session or requests.Session()
        try:
            for start in range(0, len(valid), self.batch_size):
                check_cancelled(cancel_event)
                batch = valid[start:start + self.batch_size]
                progress.report(start, f"Analyzing batch {start // self.batch_size + 1}...")

                body = await self._post_batch(session, batch)
                for photo_id, score in parse_matches(body, [c.id for c in batch]).items():
                    matched.setdefault(photo_id, score)
        finally:
            if self.session is None:
                session.close()

        progress.report(len(valid), "Finishing...")
        return [MatchResult(c.id, matched[c.id]) for c in valid if c.id in matched]
