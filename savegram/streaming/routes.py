"""
API route for proxying media downloads through the server.
"""
import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from savegram.errors import StreamAborted
from savegram.schemas import ErrorResponse
from savegram.streaming.streamer import MediaStream, StreamRequest, open_stream

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["stream"])


async def _forward(media: MediaStream) -> AsyncIterator[bytes]:
    # Headers are already committed once the first chunk goes out, so an
    # upstream failure can only end the body early.
    try:
        async for chunk in media.iter_chunks():
            yield chunk
    except StreamAborted as e:
        logger.warning(f"[api/stream] Terminated mid-body: {e}")


@router.get(
    "/stream",
    response_class=StreamingResponse,
    responses={
        400: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def stream_media(
    url: Optional[str] = Query(None, description="Absolute https media URL from /api/download"),
    shortcode: Optional[str] = Query(None, description="Post shortcode, used for the download filename"),
):
    """
    Stream a CDN video to the client as a file attachment.

    The body is forwarded chunk by chunk and never held in memory whole.
    """
    request = StreamRequest(media_url=url or "", shortcode=shortcode)
    media = await open_stream(request)

    return StreamingResponse(
        _forward(media),
        headers=media.headers,
        background=BackgroundTask(media.aclose),
    )
