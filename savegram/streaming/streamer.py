"""
Media streaming proxy.

Opens one upstream GET against the CDN and forwards the body in fixed-size
chunks. The chunk iterator is pull-based: the next upstream read happens only
after the consumer has taken the previous chunk, so memory stays bounded by
the chunk size no matter how large the file is. Closing or cancelling the
consumer closes the upstream response and its client.
"""
import asyncio
import logging
import re
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional, Protocol

import httpx

from savegram.config import get_settings
from savegram.errors import InvalidInput, StreamAborted, UpstreamUnavailable

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "video/mp4"
FILENAME_SAFE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class StreamRequest:
    """A media URL to proxy, plus the post shortcode used for the filename."""
    media_url: str
    shortcode: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.media_url, str) or self.media_url[:8].lower() != "https://":
            raise InvalidInput("Invalid video URL.")


@dataclass
class StreamOutcome:
    bytes_sent: int
    chunks: int
    content_type: str
    filename: str


class ByteSink(Protocol):
    """Destination for a proxied media body."""

    def set_headers(self, headers: Dict[str, str]) -> None:
        ...

    async def write(self, chunk: bytes) -> None:
        ...


def derive_filename(shortcode: Optional[str] = None, prefix: Optional[str] = None) -> str:
    """Build the attachment filename, e.g. ``savegram-Cx1AbC.mp4``."""
    prefix = prefix or get_settings().download_filename_prefix
    if shortcode and FILENAME_SAFE_PATTERN.match(shortcode):
        return f"{prefix}-{shortcode}.mp4"
    return f"{prefix}-video.mp4"


class MediaStream:
    """An open upstream media response."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        response: httpx.Response,
        filename: str,
        chunk_size: int,
    ):
        self.client = client
        self.response = response
        self.filename = filename
        self.chunk_size = chunk_size
        self._closed = False

    @property
    def content_type(self) -> str:
        return self.response.headers.get("content-type") or DEFAULT_CONTENT_TYPE

    @property
    def headers(self) -> Dict[str, str]:
        """Response headers to send to the downstream client."""
        headers = {
            "Content-Type": self.content_type,
            "Content-Disposition": f'attachment; filename="{self.filename}"',
        }
        content_length = self.response.headers.get("content-length")
        if content_length and content_length.isdigit():
            headers["Content-Length"] = content_length
        return headers

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        """
        Yield the upstream body chunk by chunk.

        Raises:
            StreamAborted: If the connection drops or a read stalls past the timeout.
        """
        try:
            async for chunk in self.response.aiter_raw(self.chunk_size):
                yield chunk
        except httpx.TimeoutException:
            logger.warning(f"Upstream stalled while streaming {self.filename}")
            raise StreamAborted("Video source stopped responding.")
        except httpx.HTTPError as e:
            logger.warning(f"Upstream connection lost while streaming {self.filename}: {e}")
            raise StreamAborted("Video source connection lost.")
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.response.aclose()
        await self.client.aclose()


async def open_stream(
    request: StreamRequest,
    timeout: Optional[float] = None,
    chunk_size: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> MediaStream:
    """
    Connect to the CDN and wait for response headers.

    ``timeout`` bounds both the wait for headers and each later read.

    Raises:
        UpstreamUnavailable: If the CDN answers with a non-2xx status.
        StreamAborted: If the CDN cannot be reached in time.
    """
    settings = get_settings()
    timeout = timeout if timeout is not None else settings.stream_timeout
    chunk_size = chunk_size or settings.stream_chunk_size

    headers = {
        "User-Agent": settings.stream_user_agent,
        "Referer": settings.stream_referer,
        "Accept-Encoding": "identity",
    }

    client = httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=True)
    upstream_request = client.build_request("GET", request.media_url, headers=headers)

    try:
        response = await asyncio.wait_for(client.send(upstream_request, stream=True), timeout=timeout)
    except (asyncio.TimeoutError, httpx.TimeoutException):
        await client.aclose()
        logger.warning(f"Upstream media request timed out after {timeout}s")
        raise StreamAborted("Video source did not respond in time.")
    except httpx.RequestError as e:
        await client.aclose()
        logger.error(f"Upstream media request failed: {e}")
        raise StreamAborted("Video source unreachable.")
    except BaseException:
        await client.aclose()
        raise

    if not response.is_success:
        status = response.status_code
        await response.aclose()
        await client.aclose()
        logger.warning(f"Upstream media returned {status}")
        raise UpstreamUnavailable("Video source unavailable.", status_code=status)

    return MediaStream(
        client=client,
        response=response,
        filename=derive_filename(request.shortcode),
        chunk_size=chunk_size,
    )


async def stream(
    request: StreamRequest,
    sink: ByteSink,
    timeout: Optional[float] = None,
    chunk_size: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> StreamOutcome:
    """
    Proxy a media URL into a sink.

    Headers are handed to the sink before the first byte. Each chunk is
    written (and awaited) before the next one is read from upstream.
    """
    media = await open_stream(request, timeout=timeout, chunk_size=chunk_size, transport=transport)
    bytes_sent = 0
    chunks = 0
    body = media.iter_chunks()
    try:
        sink.set_headers(media.headers)
        async for chunk in body:
            await sink.write(chunk)
            bytes_sent += len(chunk)
            chunks += 1
    finally:
        await body.aclose()
        await media.aclose()

    logger.info(
        "stream.completed",
        extra={"media_filename": media.filename, "bytes_sent": bytes_sent, "chunks": chunks},
    )
    return StreamOutcome(
        bytes_sent=bytes_sent,
        chunks=chunks,
        content_type=media.content_type,
        filename=media.filename,
    )
