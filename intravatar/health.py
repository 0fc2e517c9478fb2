"""
Health check endpoints.
"""

from fastapi import APIRouter, Request

from .models import HealthResponse

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check endpoint",
    description="Returns service health status and configuration info"
)
def health(request: Request) -> HealthResponse:
    settings = request.app.state.settings
    return HealthResponse(
        status="ok",
        service=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        remotes=settings.remote_urls,
        email_confirmation=bool(settings.SMTP_HOST),
    )
