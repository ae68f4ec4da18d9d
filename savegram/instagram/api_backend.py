"""
Client for an optional paid extraction API.

The backend is opaque: it receives the canonical post URL and answers with
a JSON envelope holding either a direct media URL or a list of variants.
Only used when API_BACKEND_URL is configured.
"""
import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from savegram.config import get_settings
from savegram.errors import FetchTimeout, UpstreamError
from savegram.instagram.normalize import PostReference
from savegram.instagram.strategies import (
    ExtractionMethod,
    ExtractionResult,
    MAX_SEARCH_DEPTH,
    decode_escapes,
    is_https_url,
)

logger = logging.getLogger(__name__)

DIRECT_URL_KEYS = ["video_url", "download_url", "url"]
VARIANT_LIST_KEYS = ["medias", "media", "video_versions", "data"]
NESTED_KEYS = ["data", "result"]


def _variant_width(entry: Any) -> float:
    """Width of a variant, falling back to the digits of a ``quality`` label like "720p"."""
    if not isinstance(entry, dict):
        return 0
    width = entry.get("width")
    if isinstance(width, (int, float)) and not isinstance(width, bool):
        return width
    quality = entry.get("quality")
    if isinstance(quality, str):
        digits = re.search(r"\d+", quality)
        if digits:
            return int(digits.group(0))
    return 0


def _is_video_variant(entry: Any) -> bool:
    if not isinstance(entry, dict) or not isinstance(entry.get("url"), str):
        return False
    if not is_https_url(decode_escapes(entry["url"])):
        return False
    kind = str(entry.get("type") or entry.get("extension") or "video").lower()
    return "video" in kind or "mp4" in kind


def parse_envelope(payload: Any, depth: int = 0) -> Optional[str]:
    """Pull the best media URL out of a backend response envelope."""
    if depth > MAX_SEARCH_DEPTH or not isinstance(payload, dict):
        return None

    for key in DIRECT_URL_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and is_https_url(decode_escapes(value)):
            return decode_escapes(value)

    for key in VARIANT_LIST_KEYS:
        variants = payload.get(key)
        if not isinstance(variants, list):
            continue
        videos: List[Dict[str, Any]] = [v for v in variants if _is_video_variant(v)]
        if videos:
            best = max(videos, key=_variant_width)
            return decode_escapes(best["url"])

    for key in NESTED_KEYS:
        nested = payload.get(key)
        if isinstance(nested, list) and nested:
            nested = nested[0]
        found = parse_envelope(nested, depth + 1)
        if found:
            return found

    return None


class ApiBackend:
    """Paid-API extraction backend."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        key_header: str = "x-api-key",
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.key_header = key_header
        self.timeout = timeout
        self.transport = transport
        if not api_key:
            logger.warning("API_BACKEND_KEY not set; backend calls may be rejected")

    async def extract(self, ref: PostReference) -> Optional[ExtractionResult]:
        """
        Ask the backend to resolve a post.

        Returns None when the envelope holds no usable URL.
        Raises UpstreamError / FetchTimeout when the backend itself fails.
        """
        headers = {self.key_header: self.api_key} if self.api_key else {}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.get(self.base_url, params={"url": ref.canonical_url}, headers=headers)
        except httpx.TimeoutException:
            raise FetchTimeout(f"Extraction API did not respond within {self.timeout:g}s")
        except httpx.RequestError as e:
            raise UpstreamError(f"Extraction API request failed: {e}")

        if not resp.is_success:
            raise UpstreamError(f"Extraction API returned {resp.status_code}", status_code=resp.status_code)

        try:
            payload = resp.json()
        except ValueError:
            logger.warning(f"Extraction API returned non-JSON body for {ref.canonical_url}")
            return None

        media_url = parse_envelope(payload)
        if not media_url:
            return None
        return ExtractionResult(media_url=media_url, method=ExtractionMethod.external_api)


def get_api_backend() -> Optional[ApiBackend]:
    """Build the configured backend, or None when none is configured."""
    settings = get_settings()
    if not settings.api_backend_url:
        return None
    return ApiBackend(
        base_url=settings.api_backend_url,
        api_key=settings.api_backend_key,
        key_header=settings.api_backend_key_header,
        timeout=settings.api_backend_timeout,
    )
