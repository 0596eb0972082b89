"""Health check endpoint."""

from fastapi import APIRouter, Request

from splithttp import __version__
from splithttp.models.responses import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    """Report liveness and the number of active sessions."""
    store = request.app.state.session_store
    return HealthResponse(version=__version__, active_sessions=store.active_count())
