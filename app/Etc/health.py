from fastapi import APIRouter

from app.core.config import settings


router = APIRouter()


@router.get("/healthz", tags=["system"])  # liveness probe for the chat service
def healthz() -> dict:
    return {"status": "ok", "service": settings.app_name}
