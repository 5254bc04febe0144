"""
Face Search API Routes
======================

FastAPI routes exposing the search engine to the gallery UI.

ENDPOINTS:
----------
POST   /api/face/search          - Upload a selfie for an event, start a search
GET    /api/face/status/{id}     - Progress / result of a search task
DELETE /api/face/search/{id}     - Cancel a running search
GET    /api/face/config          - Active matching provider (key masked)
PUT    /api/face/config          - Save the matching provider, reload the cache

A search runs as an asyncio task on the server loop; the client polls
/status every second or so and renders ``processed / total`` as a progress
bar until the status is terminal.
"""

import asyncio
import logging
import threading
import uuid
from collections import OrderedDict
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from pydantic import BaseModel

from .config import Config
from .database import PhotoStore, SettingsStore
from .domain import CandidatePhoto, ImageSource, MatchResult, ProgressEvent, SearchState
from .errors import FaceFindError
from .providers import run_blocking
from .resolver import ProviderConfig, ProviderConfigResolver
from .search import SearchOrchestrator

logger = logging.getLogger(__name__)


# =============================================================================
# TASK TRACKING
# =============================================================================

class SearchTask:
    """Progress and outcome of one search, as seen by the polling client."""

    def __init__(self, task_id: str, total: int):
        self.task_id = task_id
        self.status = SearchState.IDLE
        self.processed = 0
        self.total = total
        self.message = "Queued"
        self.matches: Optional[List[MatchResult]] = None
        self.error_kind: Optional[str] = None
        self.cancel_event = asyncio.Event()
        self.runner: Optional[asyncio.Task] = None

    def on_progress(self, event: ProgressEvent):
        self.processed = event.processed
        self.total = event.total
        self.message = event.message

    def on_state(self, state: SearchState):
        self.status = state


class TaskCache:
    """
    Bounded mapping of task id -> SearchTask.

    The oldest task is dropped once ``max_size`` is exceeded, so abandoned
    searches never accumulate.
    """

    def __init__(self, max_size: int = Config.TASK_CACHE_SIZE):
        self.max_size = max_size
        self._tasks: "OrderedDict[str, SearchTask]" = OrderedDict()

    def add(self, task: SearchTask):
        self._tasks[task.task_id] = task
        self._tasks.move_to_end(task.task_id)
        while len(self._tasks) > self.max_size:
            self._tasks.popitem(last=False)

    def get(self, task_id: str) -> Optional[SearchTask]:
        return self._tasks.get(task_id)

    def __len__(self):
        return len(self._tasks)


task_results = TaskCache()


async def run_search_task(
    task: SearchTask,
    orchestrator: SearchOrchestrator,
    probe: ImageSource,
    candidates: List[CandidatePhoto],
    secure_context: bool,
):
    """Drive one search and record its outcome on ``task``."""
    try:
        matches = await orchestrator.search(
            probe,
            candidates,
            on_progress=task.on_progress,
            secure_context=secure_context,
            cancel_event=task.cancel_event,
            on_state=task.on_state,
        )
    except FaceFindError as e:
        task.error_kind = e.kind
        task.message = e.user_message
        return

    task.matches = matches
    task.message = f"Found {len(matches)} matching photos"


# =============================================================================
# SHARED INSTANCES
# =============================================================================

_settings_store: Optional[SettingsStore] = None
_photo_store: Optional[PhotoStore] = None
_resolver: Optional[ProviderConfigResolver] = None
_orchestrator: Optional[SearchOrchestrator] = None
_lock = threading.Lock()


def get_settings_store() -> SettingsStore:
    global _settings_store
    if _settings_store is None:
        _settings_store = SettingsStore()
    return _settings_store


def get_photo_store() -> PhotoStore:
    global _photo_store
    if _photo_store is None:
        _photo_store = PhotoStore()
    return _photo_store


def get_resolver() -> ProviderConfigResolver:
    """Process-wide provider configuration cache."""
    global _resolver
    if _resolver is None:
        with _lock:
            if _resolver is None:
                _resolver = ProviderConfigResolver(get_settings_store())
    return _resolver


def get_orchestrator() -> SearchOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        with _lock:
            if _orchestrator is None:
                _orchestrator = SearchOrchestrator(get_resolver())
    return _orchestrator


# =============================================================================
# MODELS
# =============================================================================

class MatchItem(BaseModel):
    id: str
    score: Optional[float] = None


class SearchResponse(BaseModel):
    """Response of the search and status endpoints."""
    task_id: str
    status: str
    message: str
    processed: int = 0
    total: int = 0
    total_matches: Optional[int] = None
    matches: Optional[List[MatchItem]] = None
    error_kind: Optional[str] = None


class ProviderConfigRequest(BaseModel):
    provider: Literal["local", "remote"]
    remote_endpoint: Optional[str] = None
    remote_key: Optional[str] = None


class ProviderConfigResponse(BaseModel):
    provider: str
    remote_endpoint: Optional[str] = None
    has_remote_key: bool = False
    loaded: bool = False


def _task_response(task: SearchTask) -> SearchResponse:
    response = SearchResponse(
        task_id=task.task_id,
        status=task.status.value,
        message=task.message,
        processed=task.processed,
        total=task.total,
        error_kind=task.error_kind,
    )
    if task.matches is not None:
        response.total_matches = len(task.matches)
        response.matches = [MatchItem(id=m.candidate_id, score=m.score) for m in task.matches]
    return response


def _config_response(resolver: ProviderConfigResolver) -> ProviderConfigResponse:
    config = resolver.current()
    return ProviderConfigResponse(
        provider=config.provider,
        remote_endpoint=config.remote_endpoint,
        has_remote_key=bool(config.remote_key),
        loaded=resolver.is_loaded,
    )


def is_secure_request(request: Request) -> bool:
    """True when the client reached us over HTTPS (directly or via a proxy)."""
    forwarded = request.headers.get("x-forwarded-proto", "").split(",")[0].strip().lower()
    return request.url.scheme == "https" or forwarded == "https"


# =============================================================================
# API ROUTES
# =============================================================================

router = APIRouter(prefix="/api/face", tags=["face-search"])


@router.post("/search", response_model=SearchResponse)
async def start_search(
    request: Request,
    file: UploadFile = File(...),
    event_id: str = Form(...),
    orchestrator: SearchOrchestrator = Depends(get_orchestrator),
    photo_store: PhotoStore = Depends(get_photo_store),
):
    """
    Start searching an event's gallery for the face in the uploaded selfie.

    Returns a task id immediately; poll /status/{task_id} for progress.
    """
    if not (file.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="File must be an image")

    image_bytes = await file.read()
    if not image_bytes:
        raise HTTPException(status_code=400, detail="Empty image")
    if len(image_bytes) > Config.MAX_UPLOAD_MB * 1024 * 1024:
        raise HTTPException(status_code=400, detail=f"Image too large (max {Config.MAX_UPLOAD_MB}MB)")

    try:
        candidates = await run_blocking(photo_store.list_candidates, event_id)
    except Exception as e:
        logger.exception("Failed to list photos for event %s", event_id)
        raise HTTPException(status_code=500, detail=f"Could not load the event photos: {e}")

    task = SearchTask(str(uuid.uuid4()), total=len(candidates))
    task_results.add(task)
    task.runner = asyncio.create_task(
        run_search_task(task, orchestrator, image_bytes, candidates, is_secure_request(request))
    )

    return _task_response(task)


@router.get("/status/{task_id}", response_model=SearchResponse)
async def get_search_status(task_id: str):
    """Current state, progress and (once complete) matches of a search."""
    task = task_results.get(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return _task_response(task)


@router.delete("/search/{task_id}", response_model=SearchResponse)
async def cancel_search(task_id: str):
    """Ask a running search to stop at its next chunk/batch boundary."""
    task = task_results.get(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    task.cancel_event.set()
    return _task_response(task)


@router.get("/config", response_model=ProviderConfigResponse)
async def get_provider_config(resolver: ProviderConfigResolver = Depends(get_resolver)):
    await run_blocking(resolver.load)
    return _config_response(resolver)


@router.put("/config", response_model=ProviderConfigResponse)
async def save_provider_config(
    body: ProviderConfigRequest,
    resolver: ProviderConfigResolver = Depends(get_resolver),
    store: SettingsStore = Depends(get_settings_store),
):
    """Persist the matching provider and refresh the cached configuration."""
    config = ProviderConfig(
        provider=body.provider,
        remote_endpoint=body.remote_endpoint,
        remote_key=body.remote_key,
    )
    if config.provider == "remote" and not config.remote_endpoint:
        raise HTTPException(status_code=400, detail="The remote provider needs an endpoint URL")

    try:
        await run_blocking(store.save_setting, resolver.key, config.to_setting())
    except Exception as e:
        logger.exception("Failed to save provider config")
        raise HTTPException(status_code=500, detail=f"Could not save settings: {e}")

    await run_blocking(resolver.reload)
    return _config_response(resolver)
