"""
Post URL validation and canonicalization.
"""
import enum
import re
from dataclasses import dataclass
from typing import Optional

from savegram.config import get_settings

SHORTCODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class PostType(str, enum.Enum):
    post = "p"
    reel = "reel"
    reels = "reels"
    tv = "tv"


@dataclass(frozen=True)
class PostReference:
    """A validated post address in canonical form."""
    canonical_url: str
    shortcode: str
    post_type: PostType

    def __post_init__(self):
        if not SHORTCODE_PATTERN.match(self.shortcode):
            raise ValueError(f"Invalid shortcode: {self.shortcode!r}")


def _url_pattern(host: str) -> "re.Pattern[str]":
    return re.compile(
        r"^https?://(?:www\.)?" + re.escape(host) + r"/(p|reel|reels|tv)/([A-Za-z0-9_-]+)",
        re.IGNORECASE,
    )


def normalize(raw_url: str, host: Optional[str] = None) -> Optional[PostReference]:
    """
    Validate a post URL and rewrite it to ``https://www.<host>/<type>/<shortcode>/``.

    Query strings, tracking parameters and trailing path segments are dropped.
    Returns None for anything that is not a post, reel or IGTV address.
    """
    if not isinstance(raw_url, str):
        return None

    host = (host or get_settings().instagram_host).lower()
    match = _url_pattern(host).match(raw_url.strip())
    if not match:
        return None

    post_type = PostType(match.group(1).lower())
    shortcode = match.group(2)

    return PostReference(
        canonical_url=f"https://www.{host}/{post_type.value}/{shortcode}/",
        shortcode=shortcode,
        post_type=post_type,
    )
