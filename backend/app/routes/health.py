"""Health check endpoint — reports whether the relay can reach Gemini."""

from fastapi import APIRouter

from app.config import settings
from app.models import HealthResponse

router = APIRouter()


@router.get("/api/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """`degraded` means every chat turn will answer `Error: GEMINI_API_KEY missing`."""
    return HealthResponse(
        status="ok" if settings.gemini_configured else "degraded",
        gemini_configured=settings.gemini_configured,
        gemini_model=settings.gemini_model,
    )
