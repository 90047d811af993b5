"""Health check endpoint. No dependencies; used for liveness probes."""

from fastapi import APIRouter, Request

from reelsync.schemas.health import HealthResponse

router = APIRouter()


@router.get("", response_model=HealthResponse)
def health_check(request: Request) -> HealthResponse:
    """Return ok plus whether Redis fan-out is connected."""
    publisher = getattr(request.app.state, "change_publisher", None)
    return HealthResponse(redis=bool(publisher and publisher.is_available()))
