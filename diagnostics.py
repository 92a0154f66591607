"""
Diagnostic: run extraction + selection over saved pages and payloads (no network).

Reads *.html model pages and *.json design-service payloads, and reports
which variants were found, how they scored against the target printer, and
which one selection would pick. Used to turn malformed_payload /
missing_profile_metrics reports into regression fixtures.
"""

import logging
import sys
from pathlib import Path

import orjson

from config import load_config
from extractor import extract_candidates, extract_instances_from_payload, extract_model_title
from parser import page_title, parse_html
from printers import is_compatible_printer
from selection import dedupe_variants, finalize_resolution

DATA_DIR = Path(__file__).parent / "data"
FIXTURE_SOURCE_URL = "https://makerworld.com/en/models/0-fixture"

logger = logging.getLogger(__name__)


def load_payload(filepath: Path) -> tuple[object, str | None]:
    """Return (payload, page title) for a fixture file; payload is None if nothing decodes."""
    raw = filepath.read_bytes()
    if filepath.suffix.lower() == ".json":
        try:
            return orjson.loads(raw), None
        except orjson.JSONDecodeError:
            logger.warning(f"{filepath.name}: invalid JSON")
            return None, None

    parsed = parse_html(raw.decode("utf-8", errors="replace"))
    return parsed.next_data, page_title(parsed)


def diagnose_file(filepath: Path) -> dict:
    config = load_config()
    site = config.site_base_url
    payload, fallback_title = load_payload(filepath)

    report = {
        "file": filepath.name,
        "payload": payload is not None,
        "title": None,
        "raw_nodes": 0,
        "candidates": [],
        "selection": None,
    }
    if payload is None:
        return report

    raw_nodes = extract_instances_from_payload(payload, site)
    candidates = dedupe_variants(extract_candidates(raw_nodes, config.target_printer, site))
    report["title"] = extract_model_title(payload, fallback=fallback_title)
    report["raw_nodes"] = len(raw_nodes)
    report["candidates"] = [
        {
            "variant_id": c.variant_id,
            "profile_id": c.profile_id,
            "name": c.name,
            "printer": c.printer,
            "compatible": is_compatible_printer(c.printer, config.target_printer),
            "material": c.material,
            "hours": c.estimated_hours,
            "grams": c.estimated_grams,
            "download_url": c.download_url,
        }
        for c in candidates
    ]

    if candidates:
        result = finalize_resolution(
            source_url=FIXTURE_SOURCE_URL,
            model_title=report["title"],
            candidates=candidates,
            target_printer=config.target_printer,
        )
        if result.ok:
            report["selection"] = {
                "ok": True,
                "variant_id": result.data.selected_variant_id,
                "strategy": result.data.selection_strategy,
                "mode": result.data.profile_resolution_mode,
                "warnings": result.data.import_warnings,
            }
        else:
            report["selection"] = {
                "ok": False,
                "reason_code": result.reason_code,
                "message": result.message,
                "warnings": result.warnings,
            }

    return report


def _fmt(value) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def print_report(report: dict) -> None:
    print(f"\n{'='*70}")
    print(f"  {report['file']}")
    print(f"{'='*70}")

    if not report["payload"]:
        print("  No decodable payload (missing __NEXT_DATA__ or invalid JSON)")
        return

    print(f"  Title:       {report['title']}")
    print(f"  Raw nodes:   {report['raw_nodes']}")
    print(f"  Candidates:  {len(report['candidates'])}")

    if report["candidates"]:
        print(f"\n  {'Variant':>10} {'Profile':>11} {'Printer':<22} {'OK':>3} {'Material':<14} {'Hours':>7} {'Grams':>8}  URL")
        print(f"  {'-'*90}")
        for c in report["candidates"]:
            print(
                f"  {_fmt(c['variant_id']):>10} {_fmt(c['profile_id']):>11} {c['printer'][:22]:<22} "
                f"{'y' if c['compatible'] else 'n':>3} {c['material'][:14]:<14} "
                f"{_fmt(c['hours']):>7} {_fmt(c['grams']):>8}  {'yes' if c['download_url'] else '-'}"
            )

    selection = report["selection"]
    if selection is None:
        print("\n  SELECTION: skipped (no variant-like nodes)")
    elif selection["ok"]:
        print(
            f"\n  SELECTION: variant {selection['variant_id']} "
            f"({selection['strategy']}, {selection['mode']})"
        )
    else:
        print(f"\n  SELECTION FAILED: {selection['reason_code']} - {selection['message']}")
    for warning in (selection or {}).get("warnings", []):
        print(f"    ! {warning}")


def collect_files(paths: list[Path]) -> list[Path]:
    files: list[Path] = []
    for path in paths:
        if path.is_dir():
            files.extend(sorted(p for p in path.iterdir() if p.suffix.lower() in (".html", ".json")))
        elif path.exists():
            files.append(path)
        else:
            logger.warning(f"Skipping missing path {path}")
    return files


def main(argv: list[str] | None = None) -> None:
    args = sys.argv[1:] if argv is None else argv
    files = collect_files([Path(a) for a in args] or [DATA_DIR])
    if not files:
        print("No fixture files found.")
        return

    reports = [diagnose_file(f) for f in files]
    for report in reports:
        print_report(report)

    # Coverage summary
    print(f"\n{'='*70}")
    print("  COVERAGE SUMMARY")
    print(f"{'='*70}")
    with_payload = sum(1 for r in reports if r["payload"])
    with_candidates = sum(1 for r in reports if r["candidates"])
    selected = sum(1 for r in reports if r["selection"] and r["selection"]["ok"])
    strict = sum(1 for r in reports if r["selection"] and r["selection"].get("mode") == "strict")
    print(f"  Files:            {len(reports)}")
    print(f"  Payload decoded:  {with_payload}/{len(reports)}")
    print(f"  Has candidates:   {with_candidates}/{len(reports)}")
    print(f"  Selected:         {selected}/{len(reports)}")
    print(f"  Strict printer:   {strict}/{len(reports)}")


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    main()
