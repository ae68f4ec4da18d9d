"""
API routes for media URL extraction.
"""
import logging

from fastapi import APIRouter

from savegram.errors import InvalidInput
from savegram.instagram.api_backend import get_api_backend
from savegram.instagram.extractor import extract
from savegram.instagram.normalize import normalize
from savegram.instagram.schemas import ExtractRequest, ExtractResponse
from savegram.schemas import ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["extract"])


@router.post(
    "/download",
    response_model=ExtractResponse,
    responses={
        400: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def download(body: ExtractRequest):
    """
    Resolve the direct video URL for a post, reel or IGTV link.

    The returned URL is a signed CDN address that expires; pass it to
    /api/stream to download through this server.
    """
    if not body.url or not body.url.strip():
        raise InvalidInput("URL is required.")

    ref = normalize(body.url)
    if ref is None:
        raise InvalidInput("Invalid Instagram URL. Supported: posts, reels, IGTV.")

    result = await extract(ref, backend=get_api_backend())

    return ExtractResponse(
        video_url=result.media_url,
        method=result.method,
        shortcode=ref.shortcode,
        post_type=ref.post_type,
    )
