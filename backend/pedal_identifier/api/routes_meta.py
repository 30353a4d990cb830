import os

from fastapi import APIRouter

from pedal_identifier.core.config import settings

router = APIRouter(tags=["meta"])


@router.get("/health")
def health():
    return {"ok": True}


@router.get("/version")
def version():
    return {
        "version": settings.APP_VERSION,
        "build": settings.BUILD_ID,
        "git_commit": os.environ.get("RENDER_GIT_COMMIT"),
    }
