from fastapi import APIRouter
from pydantic import BaseModel

from lending.core.config import settings

router = APIRouter()


class HealthResponse(BaseModel):
    status: str = "ok"
    app: str
    environment: str


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check():
    """Simple liveness check; does not touch the store or collaborators."""
    return HealthResponse(app=settings.APP_NAME, environment=settings.ENVIRONMENT)
