"""
Tunnel Endpoints.

Maps the split HTTP transport onto the session store:

    POST   <base>/{session_id}/{seq}   uplink chunk (raw body)
    GET    <base>/{session_id}         downlink stream (preamble + upstream bytes)
    DELETE <base>/{session_id}         explicit close

Error responses carry fixed, generic bodies so the decoder never becomes a
validation oracle for probing clients.
"""

import asyncio
import random

from fastapi import APIRouter, Depends, HTTPException, Path, Request, Response
from fastapi.responses import StreamingResponse

from splithttp.server.config import TunnelConfig
from splithttp.server.services.session_store import SessionStore
from splithttp.tunnel.exceptions import (
    HandshakeError,
    SessionError,
    SessionExpiredError,
    TunnelError,
    UpstreamUnreachableError,
)
from splithttp.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()

MAX_SESSION_ID_LENGTH = 64


# =============================================================================
# Dependencies & Helpers
# =============================================================================


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_config(request: Request) -> TunnelConfig:
    return request.app.state.config


def decoration_headers(config: TunnelConfig) -> dict[str, str]:
    """Cache-busting headers plus random-length padding."""
    padding = random.randint(config.PADDING_MIN, config.PADDING_MAX)
    return {
        "Cache-Control": "no-store",
        "X-Padding": "X" * padding,
    }


def http_error_for(exc: TunnelError) -> HTTPException:
    """Translate a tunnel error into a generic HTTP error."""
    if isinstance(exc, SessionExpiredError):
        return HTTPException(status_code=404, detail="Not Found")
    if isinstance(exc, UpstreamUnreachableError):
        return HTTPException(status_code=502, detail="Bad Gateway")
    if isinstance(exc, (HandshakeError, SessionError)):
        return HTTPException(status_code=400, detail="Bad Request")
    return HTTPException(status_code=500, detail="Internal Server Error")


async def read_chunk(request: Request, limit: int) -> bytes:
    """
    Read a POST body, stopping soon after it exceeds ``limit``.

    An oversized result is returned as is; the session store rejects it.
    """
    body = bytearray()
    async for fragment in request.stream():
        body.extend(fragment)
        if len(body) > limit:
            break
    return bytes(body)


# =============================================================================
# Uplink
# =============================================================================


@router.post("/{session_id}/{seq}")
async def upload_chunk(
    request: Request,
    session_id: str = Path(..., min_length=1, max_length=MAX_SESSION_ID_LENGTH),
    seq: int = Path(..., ge=0, description="Uplink sequence number"),
    store: SessionStore = Depends(get_session_store),
    config: TunnelConfig = Depends(get_config),
):
    """Accept one numbered uplink chunk."""
    chunk = await read_chunk(request, config.get_max_chunk_bytes())

    try:
        await store.admit(session_id, seq, chunk)
    except TunnelError as e:
        logger.debug(f"Uplink seq={seq} rejected: {type(e).__name__}")
        raise http_error_for(e)

    return Response(status_code=200, headers=decoration_headers(config))


# =============================================================================
# Downlink
# =============================================================================


@router.get("/{session_id}")
async def open_downlink(
    session_id: str = Path(..., min_length=1, max_length=MAX_SESSION_ID_LENGTH),
    store: SessionStore = Depends(get_session_store),
    config: TunnelConfig = Depends(get_config),
):
    """Stream the reply preamble followed by upstream bytes."""
    try:
        session, sink = await store.attach(session_id)
    except SessionExpiredError as e:
        raise http_error_for(e)

    async def body():
        try:
            async for data in session.downlink.stream(sink):
                yield data
        finally:
            # Runs under cancellation when the client disconnects
            await asyncio.shield(store.detach(session, sink))

    headers = decoration_headers(config)
    headers["X-Accel-Buffering"] = "no"
    return StreamingResponse(
        body(), media_type=config.DOWNLINK_CONTENT_TYPE, headers=headers
    )


# =============================================================================
# Close
# =============================================================================


@router.delete("/{session_id}")
async def close_session(
    session_id: str = Path(..., min_length=1, max_length=MAX_SESSION_ID_LENGTH),
    store: SessionStore = Depends(get_session_store),
    config: TunnelConfig = Depends(get_config),
):
    """Tear a session down on client request."""
    if not await store.close(session_id):
        raise HTTPException(status_code=404, detail="Not Found")
    return Response(status_code=200, headers=decoration_headers(config))
