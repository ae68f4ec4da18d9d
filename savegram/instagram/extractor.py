"""
Extraction pipeline: fetch the post page once, then try each strategy in order.
"""
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from savegram.errors import ExtractionFailed, SavegramError, StrategyFailure
from savegram.instagram.api_backend import ApiBackend
from savegram.instagram.fetcher import FetchedDocument, fetch_document
from savegram.instagram.normalize import PostReference
from savegram.instagram.strategies import STRATEGIES, ExtractionResult, Strategy, is_https_url

logger = logging.getLogger(__name__)

NO_MATCH = "no_match"

Fetcher = Callable[[PostReference], Awaitable[FetchedDocument]]


def run_strategies(
    html: str,
    strategies: Sequence[Strategy] = STRATEGIES,
) -> Tuple[Optional[ExtractionResult], List[StrategyFailure]]:
    """
    Try each strategy against the page and stop at the first hit.

    A strategy that raises is logged and counted as a miss, so one bad
    pattern never aborts the chain. A result whose URL is not absolute
    https also counts as a miss.

    Returns:
        (result or None, failures recorded before the hit)
    """
    failures: List[StrategyFailure] = []

    for strategy in strategies:
        try:
            result = strategy.run(html)
        except Exception as e:
            logger.warning(f"[extract] {strategy.name} failed: {e}")
            failures.append(StrategyFailure(strategy=strategy.name, error=type(e).__name__))
            continue

        if result is not None and is_https_url(result.media_url):
            return result, failures

        failures.append(StrategyFailure(strategy=strategy.name, error=NO_MATCH))

    return None, failures


async def extract(
    ref: PostReference,
    fetch: Fetcher = fetch_document,
    backend: Optional[ApiBackend] = None,
) -> ExtractionResult:
    """
    Resolve the media URL for a post.

    Args:
        ref: Normalized post reference.
        fetch: Page fetcher; UpstreamError and FetchTimeout propagate unchanged.
        backend: Optional paid API consulted only after every page strategy misses.

    Raises:
        ExtractionFailed: With the ordered per-strategy reasons when nothing matched.
    """
    document = await fetch(ref)
    result, failures = run_strategies(document.raw_html)

    if result is None and backend is not None:
        try:
            result = await backend.extract(ref)
        except SavegramError as e:
            logger.warning(f"[extract] external_api failed: {e}")
            failures.append(StrategyFailure(strategy="external_api", error=type(e).__name__))
        else:
            if result is not None and not is_https_url(result.media_url):
                result = None
            if result is None:
                failures.append(StrategyFailure(strategy="external_api", error=NO_MATCH))

    if result is None:
        logger.info(
            "extract.failed",
            extra={
                "shortcode": ref.shortcode,
                "reasons": [f"{f.strategy}:{f.error}" for f in failures],
            },
        )
        raise ExtractionFailed(failures)

    logger.info(f"[extract] Success via {result.method.value}: {ref.canonical_url}")
    return result
