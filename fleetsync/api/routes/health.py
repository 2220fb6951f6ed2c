"""Health check."""

from fastapi import APIRouter

from fleetsync.core.config import settings

router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "ok", "app": settings.APP_NAME, "version": settings.APP_VERSION}
