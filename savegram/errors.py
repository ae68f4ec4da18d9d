"""
Error taxonomy for extraction and streaming.

Every error here is scoped to a single request; main.py maps each class
to an HTTP status.
"""
from dataclasses import dataclass
from typing import List, Optional

LIKELY_CAUSES_MESSAGE = (
    "Could not extract video. The post may be private, image-only, "
    "or Instagram blocked the request."
)


class SavegramError(RuntimeError):
    """Base class for request-scoped failures."""


class InvalidInput(SavegramError, ValueError):
    """Raised when a post URL or media URL fails validation."""


class UpstreamError(SavegramError):
    """Raised when the origin page cannot be fetched."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FetchTimeout(UpstreamError, TimeoutError):
    """Raised when the origin page does not respond before the deadline."""


@dataclass(frozen=True)
class StrategyFailure:
    """Why one extraction strategy produced nothing."""
    strategy: str
    error: str  # exception class name, or "no_match"


class ExtractionFailed(SavegramError):
    """Raised when the page was fetched but no strategy found a media URL."""

    def __init__(self, reasons: List[StrategyFailure], message: str = LIKELY_CAUSES_MESSAGE):
        super().__init__(message)
        self.reasons = list(reasons)


class UpstreamUnavailable(SavegramError):
    """Raised when the CDN answers a media request with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StreamAborted(SavegramError):
    """Raised when the CDN connection is lost or exceeds its deadline."""
