"""
FaceFind backend application.

Run with ``python run_backend.py`` or ``uvicorn facefind.app:app``.
"""

import logging
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import get_resolver, router as face_router
from .config import Config
from .database import init_db
from .embedding import get_embedding_provider
from .errors import ModelLoadError
from .providers import run_blocking

logging.basicConfig(
    level=Config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="FaceFind API", version="1.0.0")

if Config.CORS_ALLOW_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=Config.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

app.include_router(face_router)


@app.on_event("startup")
async def startup_event():
    init_db()

    # Warm up the local models so the first visitor does not wait for them
    config = await run_blocking(get_resolver().load)
    if config.uses_remote:
        return
    try:
        await run_blocking(get_embedding_provider().load_models)
    except ModelLoadError as e:
        logger.warning("Face models not preloaded: %s", e)


@app.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": datetime.now()}
