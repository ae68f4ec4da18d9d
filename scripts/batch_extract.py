#!/usr/bin/env python3
"""
Batch extraction script.

Reads a text file of post URLs (one per line) and, for each one:
1. Normalizes the URL
2. Resolves the direct video URL
3. Optionally downloads the video into a directory

Usage:
    python scripts/batch_extract.py --file urls.txt
    python scripts/batch_extract.py --file urls.txt --dry-run
    python scripts/batch_extract.py --file urls.txt --download videos/ --limit 10
    python scripts/batch_extract.py --file urls.txt --output results.jsonl
"""
import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# Ensure the savegram package is importable when running from repo root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from savegram.errors import SavegramError
from savegram.instagram.api_backend import get_api_backend
from savegram.instagram.extractor import extract
from savegram.instagram.normalize import PostReference, normalize
from savegram.streaming.streamer import StreamRequest, stream

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("batch_extract")


# ── Input parsing ───────────────────────────────────────────────


def parse_url_file(path: str) -> List[str]:
    """Read URLs from a text file, skipping blank lines and # comments."""
    with open(path, "r", encoding="utf-8") as f:
        lines = [line.strip() for line in f]
    return [line for line in lines if line and not line.startswith("#")]


# ── Download sink ───────────────────────────────────────────────


class FileSink:
    """ByteSink that writes the proxied body to a local file."""

    def __init__(self, directory: str):
        self.directory = directory
        self.headers: Dict[str, str] = {}
        self.path: Optional[str] = None
        self._fh = None

    def set_headers(self, headers: Dict[str, str]) -> None:
        self.headers = headers
        disposition = headers.get("Content-Disposition", "")
        filename = "video.mp4"
        if 'filename="' in disposition:
            filename = disposition.split('filename="')[-1].rstrip('"') or filename
        self.path = os.path.join(self.directory, os.path.basename(filename))
        self._fh = open(self.path, "wb")

    async def write(self, chunk: bytes) -> None:
        self._fh.write(chunk)

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def discard(self) -> None:
        """Close and remove a partially written file."""
        self.close()
        if self.path and os.path.exists(self.path):
            os.remove(self.path)
        self.path = None


# ── Processing ──────────────────────────────────────────────────


@dataclass
class BatchSummary:
    total_urls: int = 0
    invalid_urls: int = 0
    extracted: int = 0
    extraction_failures: int = 0
    downloaded: int = 0
    download_failures: int = 0
    results: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


async def process_url_file(
    path: str,
    dry_run: bool = False,
    limit: Optional[int] = None,
    download_dir: Optional[str] = None,
) -> BatchSummary:
    """
    Main entry point: parse file, process each URL, return summary.
    """
    urls = parse_url_file(path)
    summary = BatchSummary(total_urls=len(urls))

    if limit is not None and limit < len(urls):
        urls = urls[:limit]
        logger.info(f"Limiting to {limit} URLs")

    refs: List[PostReference] = []
    for url in urls:
        ref = normalize(url)
        if ref is None:
            summary.invalid_urls += 1
            summary.errors.append(f"Invalid URL: {url}")
            continue
        refs.append(ref)

    if dry_run:
        _dry_run_report(refs, download_dir)
        return summary

    if download_dir:
        os.makedirs(download_dir, exist_ok=True)

    backend = get_api_backend()
    for i, ref in enumerate(refs):
        logger.info(f"[{i+1}/{len(refs)}] {ref.canonical_url}")
        await _process_one(ref, summary, backend, download_dir)

    return summary


async def _process_one(ref: PostReference, summary: BatchSummary, backend, download_dir: Optional[str]) -> None:
    """Extract (and maybe download) one post; failures are recorded, not raised."""
    try:
        result = await extract(ref, backend=backend)
    except SavegramError as e:
        summary.extraction_failures += 1
        summary.errors.append(f"Extraction failed for {ref.shortcode}: {e}")
        logger.error(f"  Extraction failed: {e}")
        return

    summary.extracted += 1
    record: Dict[str, Any] = {
        "videoUrl": result.media_url,
        "method": result.method.value,
        "shortcode": ref.shortcode,
        "type": ref.post_type.value,
    }
    summary.results.append(record)
    logger.info(f"  Resolved via {result.method.value}")

    if not download_dir:
        return

    sink = FileSink(download_dir)
    try:
        outcome = await stream(StreamRequest(media_url=result.media_url, shortcode=ref.shortcode), sink)
    except SavegramError as e:
        sink.discard()
        summary.download_failures += 1
        summary.errors.append(f"Download failed for {ref.shortcode}: {e}")
        logger.error(f"  Download failed: {e}")
        return
    finally:
        sink.close()

    summary.downloaded += 1
    record["file"] = sink.path
    logger.info(f"  Saved {outcome.bytes_sent} bytes to {sink.path}")


def _dry_run_report(refs: List[PostReference], download_dir: Optional[str]) -> None:
    """Print what would happen without doing anything."""
    print(f"\n=== DRY RUN ===")
    print(f"Would process {len(refs)} URLs:\n")
    for i, ref in enumerate(refs):
        print(f"  {i+1}. [{ref.post_type.value}] {ref.canonical_url}")
    print(f"\nSteps: extract=YES  download={'YES -> ' + download_dir if download_dir else 'NO'}")
    print(f"=== END DRY RUN ===\n")


def write_results(summary: BatchSummary, output_path: str) -> None:
    with open(output_path, "w", encoding="utf-8") as f:
        for record in summary.results:
            f.write(json.dumps(record) + "\n")


def print_summary(summary: BatchSummary) -> None:
    """Print the final summary."""
    print(f"\n{'='*50}")
    print(f"  BATCH EXTRACTION SUMMARY")
    print(f"{'='*50}")
    print(f"  Total URLs in file:   {summary.total_urls}")
    print(f"  Invalid URLs:         {summary.invalid_urls}")
    print(f"  Extracted:            {summary.extracted}")
    print(f"  Extraction failures:  {summary.extraction_failures}")
    print(f"  Downloaded:           {summary.downloaded}")
    print(f"  Download failures:    {summary.download_failures}")
    if summary.errors:
        print(f"\n  Errors ({len(summary.errors)}):")
        for err in summary.errors[:10]:
            print(f"    - {err}")
        if len(summary.errors) > 10:
            print(f"    ... and {len(summary.errors) - 10} more")
    print(f"{'='*50}\n")


# ── CLI ─────────────────────────────────────────────────────────


def main():
    parser = argparse.ArgumentParser(
        description="Resolve (and optionally download) videos for a list of Instagram post URLs.",
    )
    parser.add_argument(
        "--file", "-f", required=True,
        help="Path to a text file with one post URL per line",
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Only validate URLs; make no network requests",
    )
    parser.add_argument(
        "--limit", "-n", type=int, default=None,
        help="Process at most N URLs",
    )
    parser.add_argument(
        "--download", "-d", default=None, metavar="DIR",
        help="Download each resolved video into DIR",
    )
    parser.add_argument(
        "--output", "-o", default=None,
        help="Write resolved results as JSON lines to this path",
    )
    args = parser.parse_args()

    if not os.path.exists(args.file):
        print(f"Error: file not found: {args.file}", file=sys.stderr)
        sys.exit(1)

    summary = asyncio.run(process_url_file(
        path=args.file,
        dry_run=args.dry_run,
        limit=args.limit,
        download_dir=args.download,
    ))

    if args.output:
        write_results(summary, args.output)

    if not args.dry_run:
        print_summary(summary)


if __name__ == "__main__":
    main()
