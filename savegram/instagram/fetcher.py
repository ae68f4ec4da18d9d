"""
Post page fetcher.

Retrieves the raw HTML for a canonical post URL with browser-like headers.
A fresh client is opened per call and closed on exit, so a timeout or a
cancelled request tears the socket down instead of leaving it pooled.
"""
import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

import httpx

from savegram.config import get_settings
from savegram.errors import FetchTimeout, UpstreamError
from savegram.instagram.normalize import PostReference

logger = logging.getLogger(__name__)

NAVIGATION_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Cache-Control": "no-cache",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
}


@dataclass
class FetchedDocument:
    """Raw page body owned by one extraction attempt."""
    source_url: str
    raw_html: str
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def pick_user_agent(user_agents: Optional[List[str]] = None) -> str:
    """Pick one client identity uniformly at random."""
    pool = user_agents if user_agents is not None else get_settings().user_agents
    if not pool:
        raise ValueError("user agent pool is empty")
    return pool[random.randrange(len(pool))]


def build_headers(user_agent: str) -> Dict[str, str]:
    return {"User-Agent": user_agent, **NAVIGATION_HEADERS}


async def _get_page(client: httpx.AsyncClient, url: str, headers: Dict[str, str]) -> httpx.Response:
    return await client.get(url, headers=headers, follow_redirects=True)


async def fetch_document(
    ref: PostReference,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FetchedDocument:
    """
    Fetch the page for a post.

    Args:
        ref: Normalized post reference.
        timeout: Overall deadline in seconds (defaults to settings.page_fetch_timeout).
        transport: Optional httpx transport, mainly for tests.

    Returns:
        FetchedDocument with the response body.

    Raises:
        FetchTimeout: If no complete response arrives within the deadline.
        UpstreamError: On a non-2xx status or a network error.
    """
    settings = get_settings()
    deadline = timeout if timeout is not None else settings.page_fetch_timeout
    url = ref.canonical_url
    headers = build_headers(pick_user_agent(settings.user_agents))

    try:
        async with httpx.AsyncClient(timeout=deadline, transport=transport) as client:
            resp = await asyncio.wait_for(_get_page(client, url, headers), timeout=deadline)
    except (asyncio.TimeoutError, httpx.TimeoutException):
        logger.warning(f"Page fetch timed out after {deadline}s: {url}")
        raise FetchTimeout(f"Instagram did not respond within {deadline:g}s")
    except httpx.RequestError as e:
        logger.error(f"Page fetch error for {url}: {e}")
        raise UpstreamError(f"Failed to fetch Instagram page: {e}")

    if not resp.is_success:
        logger.error(f"Page fetch HTTP error: {resp.status_code} for {url}")
        raise UpstreamError(f"Instagram returned {resp.status_code}", status_code=resp.status_code)

    return FetchedDocument(source_url=str(resp.url), raw_html=resp.text)
