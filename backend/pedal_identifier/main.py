"""
Pedal Identifier - FastAPI Main Entry

LOCAL:
    pip install -e ".[test]"
    echo "GEMINI_API_KEY=..." > .env
    python -m uvicorn pedal_identifier.main:app --reload --host 0.0.0.0 --port 8000

TEST FROM THIS MACHINE:
    open http://127.0.0.1:8000/
    curl -i http://127.0.0.1:8000/docs
    curl -i http://127.0.0.1:8000/health
    curl -i http://127.0.0.1:8000/version

TEST FROM A PHONE (same WiFi):
    The camera tab needs a secure context; use the upload tab over plain http,
    or put the app behind https.

PRODUCTION:
    Start Command:
        python -m uvicorn pedal_identifier.main:app --host 0.0.0.0 --port $PORT
"""

import logging
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from pedal_identifier.api.routes_identify import router as identify_router
from pedal_identifier.api.routes_meta import router as meta_router
from pedal_identifier.api.routes_pages import router as pages_router
from pedal_identifier.core.config import settings
from pedal_identifier.core.logging_config import setup_logging

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).resolve().parent / "static"


def create_app() -> FastAPI:
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title="Pedal Identifier",
        version=settings.APP_VERSION,
        description="Identify guitar pedals from a photo and estimate their used value",
    )

    # CORS
    # NOTE: the bundled pages are same-origin; this only matters for
    # calling /v1/identify from another frontend or from Swagger on a tunnel.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    # Mount routers
    app.include_router(meta_router)
    app.include_router(pages_router)
    app.include_router(identify_router)

    if not settings.GEMINI_API_KEY:
        logger.warning("GEMINI_API_KEY is not set; identification requests will fail")

    return app


app = create_app()
