"""
Media URL extraction strategies.

Each strategy is a pure function of the page HTML that returns an
ExtractionResult or None. Absence of a match is a normal outcome and never
raises. STRATEGIES fixes the order in which the extractor tries them.
"""
import enum
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, List, NamedTuple, Optional

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

MAX_SEARCH_DEPTH = 15


class ExtractionMethod(str, enum.Enum):
    embedded_structured_data = "embedded-structured-data"
    open_graph_tag = "open-graph-tag"
    broad_pattern_scan = "broad-pattern-scan"
    external_api = "external-api"


@dataclass(frozen=True)
class ExtractionResult:
    """A resolved media URL and the strategy that found it."""
    media_url: str
    method: ExtractionMethod


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def decode_escapes(url: str) -> str:
    """Undo the JSON-in-HTML escaping Instagram applies to URLs."""
    return url.replace("\\u0026", "&").replace("\\/", "/")


def is_https_url(url: Any) -> bool:
    """True for an absolute https URL, scheme compared case-insensitively."""
    return isinstance(url, str) and url[:8].lower() == "https://" and len(url) > 8


def _entry_url(entry: Any) -> Optional[str]:
    url = entry.get("url") if isinstance(entry, dict) else None
    if isinstance(url, str) and is_https_url(decode_escapes(url)):
        return decode_escapes(url)
    return None


def _width(entry: Any) -> float:
    if not isinstance(entry, dict):
        return 0
    width = entry.get("width")
    if isinstance(width, bool) or not isinstance(width, (int, float)):
        return 0
    return width


def pick_widest(versions: List[Any]) -> Optional[str]:
    """
    Return the URL of the widest quality variant.

    Entries without a numeric width count as width 0 and entries without an
    https URL are ignored. max() keeps the first of equal keys, so ties go
    to the earliest entry.
    """
    usable = [entry for entry in versions if _entry_url(entry)]
    if not usable:
        return None
    return _entry_url(max(usable, key=_width))


def find_video_in_object(obj: Any, depth: int = 0) -> Optional[str]:
    """
    Depth-first search of parsed JSON for a video URL.

    A ``video_url`` string wins; otherwise a non-empty ``video_versions``
    list yields its widest entry. Nothing below MAX_SEARCH_DEPTH is visited.
    """
    if depth > MAX_SEARCH_DEPTH or not isinstance(obj, (dict, list)):
        return None

    if isinstance(obj, dict):
        video_url = obj.get("video_url")
        if isinstance(video_url, str) and is_https_url(decode_escapes(video_url)):
            return decode_escapes(video_url)

        versions = obj.get("video_versions")
        if isinstance(versions, list) and versions:
            found = pick_widest(versions)
            if found:
                return found

        children = list(obj.values())
    else:
        children = obj

    for child in children:
        found = find_video_in_object(child, depth + 1)
        if found:
            return found

    return None


# ---------------------------------------------------------------------------
# Strategy A: embedded structured data
# ---------------------------------------------------------------------------

SHARED_DATA_PATTERN = re.compile(r"window\._sharedData\s*=\s*({.+?});</script>", re.DOTALL)
ADDITIONAL_DATA_PATTERN = re.compile(
    r"window\.__additionalDataLoaded\s*\([^,]*,\s*({.+?})\s*\);</script>", re.DOTALL
)
DIRECT_VIDEO_URL_PATTERN = re.compile(r'"video_url"\s*:\s*"(https?:[^"]+)"')

# (pattern, captures a bare URL rather than a JSON blob)
EMBEDDED_PATTERNS = [
    (SHARED_DATA_PATTERN, False),
    (ADDITIONAL_DATA_PATTERN, False),
    (DIRECT_VIDEO_URL_PATTERN, True),
]


def extract_from_embedded_json(html: str) -> Optional[ExtractionResult]:
    """Look for server-rendered state blobs, then a bare video_url field."""
    for pattern, is_direct in EMBEDDED_PATTERNS:
        match = pattern.search(html)
        if not match:
            continue

        if is_direct:
            media_url = decode_escapes(match.group(1))
            if not is_https_url(media_url):
                continue
            return ExtractionResult(
                media_url=media_url,
                method=ExtractionMethod.embedded_structured_data,
            )

        try:
            data = json.loads(match.group(1))
        except ValueError as e:
            logger.debug(f"Embedded JSON did not parse ({pattern.pattern[:30]}...): {e}")
            continue

        video_url = find_video_in_object(data)
        if video_url:
            return ExtractionResult(
                media_url=video_url,
                method=ExtractionMethod.embedded_structured_data,
            )

    return None


# ---------------------------------------------------------------------------
# Strategy B: Open Graph meta tags
# ---------------------------------------------------------------------------

OG_VIDEO_PROPERTIES = ["og:video", "og:video:url", "og:video:secure_url"]


def extract_from_open_graph(html: str) -> Optional[ExtractionResult]:
    """Read the first populated og:video tag, in preference order."""
    soup = BeautifulSoup(html, "html.parser")

    for prop in OG_VIDEO_PROPERTIES:
        tag = soup.find("meta", attrs={"property": prop})
        if tag is None:
            continue
        content = (tag.get("content") or "").strip()
        # An empty or non-https tag cannot be streamed; pages that carry one
        # often carry a usable secure_url further down the preference list.
        if is_https_url(content):
            return ExtractionResult(media_url=content, method=ExtractionMethod.open_graph_tag)

    return None


# ---------------------------------------------------------------------------
# Strategy C: broad pattern scan
# ---------------------------------------------------------------------------

SCAN_PATTERNS = [
    re.compile(r'"video_url"\s*:\s*"(https?:[^"]+)"'),
    re.compile(r'"contentUrl"\s*:\s*"(https?:[^"]+\.mp4[^"]*)"'),
    re.compile(r'video_versions.*?"url"\s*:\s*"(https?:[^"]+)"'),
]


def extract_from_pattern_scan(html: str) -> Optional[ExtractionResult]:
    """
    Collect every video-looking URL in the page and keep the longest.

    Longer CDN URLs carry more signed parameters, which in practice means
    the higher quality variant. Ties go to the first match.
    """
    candidates: List[str] = []
    for pattern in SCAN_PATTERNS:
        for match in pattern.finditer(html):
            url = decode_escapes(match.group(1))
            if is_https_url(url):
                candidates.append(url)

    if not candidates:
        return None

    best = max(candidates, key=len)
    return ExtractionResult(media_url=best, method=ExtractionMethod.broad_pattern_scan)


# ---------------------------------------------------------------------------
# Ordered chain
# ---------------------------------------------------------------------------


class Strategy(NamedTuple):
    name: str
    run: Callable[[str], Optional[ExtractionResult]]


STRATEGIES: List[Strategy] = [
    Strategy("embedded_json", extract_from_embedded_json),
    Strategy("opengraph", extract_from_open_graph),
    Strategy("pattern_scan", extract_from_pattern_scan),
]
