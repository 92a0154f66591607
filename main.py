"""
Batch resolver.

Resolves many MakerWorld model URLs in parallel using asyncio.gather,
running each through: normalize -> API -> __NEXT_DATA__ fallback -> select,
then optionally downloads each resolved model file.
"""

import argparse
import asyncio
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path

from extractor import DEFAULT_FILENAME
from models import DownloadOutcome, RequestOptions, ResolveOutcome
from resolver import ModelResolver

logger = logging.getLogger(__name__)

OUTPUT_FILE = Path(__file__).parent / "resolved.json"


@dataclass
class UrlResult:
    url: str
    outcome: ResolveOutcome
    download: DownloadOutcome | None
    resolve_time: float
    download_time: float = 0.0


async def process_url(
    resolver: ModelResolver,
    url: str,
    variant_id: int | None,
    request: RequestOptions,
    download_dir: Path | None,
) -> UrlResult:
    """Resolve one URL and, when asked, download its model file into download_dir."""
    logger.info(f"Resolving {url}...")

    t0 = time.monotonic()
    outcome = await resolver.resolve(url, variant_id=variant_id, request=request)
    resolve_time = time.monotonic() - t0

    if not outcome.ok:
        logger.info(f"  Unresolvable: {outcome.reason_code} - {outcome.message}")
        return UrlResult(url=url, outcome=outcome, download=None, resolve_time=resolve_time)

    data = outcome.data
    logger.info(
        f"  Resolved: {data.source_model_title} | "
        f"variant {data.selected_variant_id} ({data.selection_strategy}) | "
        f"{data.source_profile_estimated_hours}h, {data.source_profile_estimated_grams}g | "
        f"via {outcome.diagnostics.pipeline[-1]}"
    )

    if download_dir is None or not data.download_url:
        return UrlResult(url=url, outcome=outcome, download=None, resolve_time=resolve_time)

    t0 = time.monotonic()
    download = await resolver.download(data.download_url)
    download_time = time.monotonic() - t0

    if download.ok:
        name = Path(download.filename).name
        if name in ("", ".", ".."):
            name = DEFAULT_FILENAME
        target = download_dir / name
        target.write_bytes(download.content)
        logger.info(f"  Saved {target} ({download.size_bytes} bytes)")
    else:
        logger.info(f"  Download failed: {download.reason_code} - {download.message}")

    return UrlResult(
        url=url,
        outcome=outcome,
        download=download,
        resolve_time=resolve_time,
        download_time=download_time,
    )


async def process_all(
    urls: list[str],
    variant_id: int | None = None,
    request: RequestOptions | None = None,
    download_dir: Path | None = None,
    resolver: ModelResolver | None = None,
) -> tuple[list[UrlResult], int]:
    """Resolve all URLs concurrently.

    Returns (results, failure_count). Failures here are crashes outside the
    resolver's own outcome handling, not unresolvable URLs.
    """
    resolver = resolver or ModelResolver()
    request = request or RequestOptions()
    if download_dir is not None:
        download_dir.mkdir(parents=True, exist_ok=True)

    logger.info(f"Found {len(urls)} URLs to resolve")

    results = await asyncio.gather(
        *[process_url(resolver, url, variant_id, request, download_dir) for url in urls],
        return_exceptions=True,
    )

    url_results: list[UrlResult] = []
    failures = 0
    for url, result in zip(urls, results):
        if isinstance(result, Exception):
            logger.error(f"Failed to process {url}: {result}", exc_info=result)
            failures += 1
        else:
            url_results.append(result)

    return url_results, failures


def _count(values: list[str]) -> list[tuple[str, int]]:
    counts: dict[str, int] = {}
    for value in values:
        counts[value] = counts.get(value, 0) + 1
    return sorted(counts.items(), key=lambda x: -x[1])


def print_report(results: list[UrlResult], failures: int, wall_clock: float) -> None:
    """Print an outcome / selection / timing report for one batch."""
    total = len(results) + failures
    resolved = [r for r in results if r.outcome.ok]

    print(f"\n{'='*70}")
    print("RESOLUTION REPORT")
    print(f"{'='*70}")

    print("\n── Reliability ──")
    print(f"  URLs attempted:   {total}")
    print(f"  Resolved:         {len(resolved)}")
    print(f"  Unresolvable:     {len(results) - len(resolved)}")
    print(f"  Crashed:          {failures}")
    print(f"  Success rate:     {len(resolved)/total*100:.0f}%" if total else "  N/A")

    unresolved = [r for r in results if not r.outcome.ok]
    if unresolved:
        print("\n── Failure reasons ──")
        for reason, count in _count([r.outcome.reason_code for r in unresolved]):
            print(f"  {reason:<30} {count}/{len(unresolved)}")

    if resolved:
        print("\n── Selection ──")
        for strategy, count in _count([r.outcome.data.selection_strategy for r in resolved]):
            print(f"  {strategy:<30} {count}/{len(resolved)}")
        for mode, count in _count([r.outcome.data.profile_resolution_mode for r in resolved]):
            print(f"  mode={mode:<25} {count}/{len(resolved)}")

        print("\n── Sources ──")
        for source, count in _count([r.outcome.diagnostics.pipeline[-1] for r in resolved]):
            label = {"api": "Design-service API", "next_data": "__NEXT_DATA__ fallback"}.get(source, source)
            print(f"  {label:<30} {count}/{len(resolved)}")

    downloads = [r.download for r in results if r.download is not None]
    if downloads:
        print("\n── Downloads ──")
        ok = [d for d in downloads if d.ok]
        print(f"  Downloaded:       {len(ok)}/{len(downloads)}")
        print(f"  Total bytes:      {sum(d.size_bytes for d in ok)}")
        for reason, count in _count([d.reason_code for d in downloads if not d.ok]):
            print(f"  {reason:<30} {count}")

    print("\n── Timing ──")
    print(f"  Wall clock (total):  {wall_clock:.2f}s")
    print(f"  {'URL':<50} {'Resolve':>9} {'Download':>10}")
    print(f"  {'-'*71}")
    for r in results:
        print(f"  {r.url[:50]:<50} {r.resolve_time:>8.3f}s {r.download_time:>9.3f}s")

    print(f"\n{'='*70}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Resolve MakerWorld model pages into printable variants.")
    parser.add_argument("urls", nargs="+", metavar="URL", help="MakerWorld model page URL(s)")
    parser.add_argument("--variant-id", type=int, default=None, help="Preferred variant/profile id")
    parser.add_argument("--timeout-ms", type=float, default=None, help="Design-service timeout per attempt")
    parser.add_argument("--retries", type=int, default=None, help="Retries on network-level failures")
    parser.add_argument("--download-dir", type=Path, default=None, help="Download resolved model files here")
    parser.add_argument("--output", type=Path, default=OUTPUT_FILE, help="Where to write outcomes as JSON")
    return parser


async def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    request = RequestOptions(timeout_ms=args.timeout_ms, retries=args.retries)

    t_wall_start = time.monotonic()
    results, failures = await process_all(args.urls, args.variant_id, request, args.download_dir)
    wall_clock = time.monotonic() - t_wall_start

    print(f"\n{'='*60}")
    print(f"Resolved {sum(1 for r in results if r.outcome.ok)}/{len(args.urls)} URLs:")
    print(f"{'='*60}")

    for r in results:
        print(f"\n  {r.url}")
        if not r.outcome.ok:
            print(f"    Failed:    {r.outcome.reason_code} ({r.outcome.message})")
            continue
        data = r.outcome.data
        print(f"    Title:     {data.source_model_title}")
        print(f"    Variant:   {data.source_profile_name} [{data.selected_variant_id}]")
        print(f"    Printer:   {data.source_profile_printer} ({data.profile_resolution_mode})")
        print(f"    Material:  {data.source_profile_material} -> {data.locked_material}")
        print(f"    Estimate:  {data.source_profile_estimated_hours}h, {data.source_profile_estimated_grams}g")
        print(f"    Variants:  {len(data.available_variants)} available")
        if data.download_url:
            print(f"    Download:  {data.download_url}")
        for warning in data.import_warnings:
            print(f"    Warning:   {warning}")

    outcomes_json = [
        {
            "url": r.url,
            "outcome": r.outcome.model_dump(mode="json"),
            "download": r.download.model_dump(mode="json") if r.download else None,
        }
        for r in results
    ]
    args.output.write_text(json.dumps(outcomes_json, indent=2))
    logger.info(f"Wrote {len(results)} outcomes to {args.output}")

    print_report(results, failures, wall_clock)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(main())
