"""Health check endpoints."""

import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import text

from datacop_api import __version__
from datacop_api.db.session import SessionFactory, get_session_factory
from datacop_api.schemas import HealthResponse

router = APIRouter()
logger = logging.getLogger(__name__)


def check_database(session_factory: SessionFactory) -> str:
    """Check database connectivity.

    Returns:
        str: "up" if healthy, error message otherwise
    """
    db = session_factory()
    try:
        db.execute(text("SELECT 1"))
        return "up"
    except Exception as e:
        logger.error(f"Database health check failed: {type(e).__name__}")
        return f"down: {str(e)[:50]}"
    finally:
        db.close()


@router.get("/health", response_model=HealthResponse)
def health_check(
    response: Response,
    session_factory: SessionFactory = Depends(get_session_factory),
) -> HealthResponse:
    """Service status and entity store connectivity (503 when the store is down)."""
    services = {"api": "up", "database": check_database(session_factory)}
    if services["database"] != "up":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="degraded", version=__version__, services=services)
    return HealthResponse(status="healthy", version=__version__, services=services)
