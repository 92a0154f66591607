"""
Variant selection.

Given the candidates of one payload, pick a single printable variant:
  1. dedupe by id + lowercased name
  2. keep strictly printer-compatible, metric-complete candidates
  3. if none: an explicitly requested candidate alone, else every
     metric-complete candidate in relaxed mode
  4. sort by (hours, grams) and apply requested > user-selected > shortest
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any

from extractor import DEFAULT_FILENAME, UNKNOWN, VariantCandidate, file_name_from_url, has_complete_metrics
from models import AvailableVariant, Material, ReasonCode, ResolvedData
from printers import is_compatible_printer

logger = logging.getLogger(__name__)

WARN_INFERRED_FROM_SELECTION = "Printer compatibility inferred from explicitly selected MakerWorld variant."
WARN_RELAXED_PRINTER = (
    "Printer compatibility could not be verified strictly. Using the best available MakerWorld variant."
)
WARN_REQUESTED_UNAVAILABLE = "Requested MakerWorld variant was unavailable. Used the best available variant."
WARN_SELECTED_UNAVAILABLE = "Selected MakerWorld variant was unavailable. Used the best available variant."


@dataclass
class StageResult:
    """Outcome of one pipeline stage: ok with data, or a reason code and message."""

    ok: bool
    data: ResolvedData | None = None
    reason_code: ReasonCode | None = None
    message: str = ""
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def failure(cls, reason_code: ReasonCode, message: str, warnings: list[str] | None = None) -> "StageResult":
        return cls(ok=False, reason_code=reason_code, message=message, warnings=list(warnings or []))


# ---------------------------------------------------------------------------
# Pool helpers
# ---------------------------------------------------------------------------


def _completeness_score(candidate: VariantCandidate) -> int:
    return int(has_complete_metrics(candidate)) + int(candidate.download_url is not None)


def dedupe_variants(candidates: list[VariantCandidate]) -> list[VariantCandidate]:
    """Collapse candidates sharing id and name, keeping the more complete one. First-seen order is kept."""
    by_key: dict[str, VariantCandidate] = {}
    for candidate in candidates:
        key_id = candidate.primary_id
        key = f"{key_id if key_id is not None else 'none'}:{candidate.name.lower()}"
        existing = by_key.get(key)
        if existing is None or _completeness_score(candidate) > _completeness_score(existing):
            by_key[key] = candidate
    return list(by_key.values())


def sort_variants(candidates: list[VariantCandidate]) -> list[VariantCandidate]:
    """Ascending by (hours, grams); missing values sort last. Stable for ties."""

    def sort_key(candidate: VariantCandidate) -> tuple[float, float]:
        hours = candidate.estimated_hours if candidate.estimated_hours is not None else math.inf
        grams = candidate.estimated_grams if candidate.estimated_grams is not None else math.inf
        return hours, grams

    return sorted(candidates, key=sort_key)


def find_variant_by_requested_id(candidates: list[VariantCandidate], requested_id: int) -> VariantCandidate | None:
    return next((c for c in candidates if c.matches_id(requested_id)), None)


def map_material(label: str) -> Material:
    normalized = label.lower()
    if "petg" in normalized:
        return "PETG"
    if "pla" in normalized:
        return "PLA"
    return "other_request"


def _available_variant(candidate: VariantCandidate) -> AvailableVariant:
    return AvailableVariant(
        variant_id=candidate.variant_id,
        profile_id=candidate.profile_id,
        name=candidate.name,
        printer=candidate.printer,
        material=candidate.material,
        estimated_hours=round(candidate.estimated_hours or 0, 4),
        estimated_grams=round(candidate.estimated_grams or 0, 4),
    )


# ---------------------------------------------------------------------------
# Finalize
# ---------------------------------------------------------------------------


def finalize_resolution(
    *,
    source_url: str,
    model_title: str,
    candidates: list[VariantCandidate],
    target_printer: str,
    requested_variant_id: int | None = None,
    user_variant_id: int | None = None,
    warnings: list[str] | None = None,
) -> StageResult:
    """Select one variant and build ResolvedData, or fail with missing_profile_metrics."""
    warnings = list(warnings or [])

    with_metrics = [c for c in candidates if has_complete_metrics(c)]
    strict_pool = [c for c in with_metrics if is_compatible_printer(c.printer, target_printer)]

    pool = strict_pool
    mode = "strict"
    confidence = "high"

    if not pool:
        explicit = None
        for explicit_id in (requested_variant_id, user_variant_id):
            if explicit_id is None:
                continue
            explicit = find_variant_by_requested_id(with_metrics, explicit_id)
            if explicit is not None:
                break

        if explicit is not None:
            pool = [explicit]
            warnings.append(WARN_INFERRED_FROM_SELECTION)
        else:
            pool = with_metrics
            if not pool:
                return StageResult.failure(
                    "missing_profile_metrics", "MakerWorld profile data is incomplete for this model.", warnings
                )
            mode = "relaxed_printer"
            confidence = "medium"
            warnings.append(WARN_RELAXED_PRINTER)
            logger.info(f"No strictly compatible variant for {target_printer}; relaxed to {len(pool)} candidate(s)")

    sorted_pool = sort_variants(pool)
    selected = sorted_pool[0] if sorted_pool else None
    strategy = "shortest_time_fallback"

    if requested_variant_id is not None:
        requested = find_variant_by_requested_id(sorted_pool, requested_variant_id)
        if requested is not None:
            selected = requested
            strategy = "requested_variant_id"
        else:
            warnings.append(WARN_REQUESTED_UNAVAILABLE)

    if strategy == "shortest_time_fallback" and user_variant_id is not None:
        user_selected = find_variant_by_requested_id(sorted_pool, user_variant_id)
        if user_selected is not None:
            selected = user_selected
            strategy = "user_selected_variant"
        else:
            warnings.append(WARN_SELECTED_UNAVAILABLE)

    if selected is None or not has_complete_metrics(selected):
        return StageResult.failure(
            "missing_profile_metrics", "MakerWorld profile metrics are unavailable for the selected model.", warnings
        )

    deduped_warnings = list(dict.fromkeys(warnings))
    material = selected.material or UNKNOWN
    download_url = selected.download_url
    profile_payload: dict[str, Any] = {
        "source_variant_id": selected.variant_id,
        "source_profile_id": selected.profile_id,
        "selection_strategy": strategy,
        "profile_resolution_mode": mode,
        "profile_resolution_confidence": confidence,
        "import_warnings": deduped_warnings,
        "raw_variant_payload": selected.payload,
    }

    data = ResolvedData(
        source_url=source_url,
        source_model_title=model_title,
        download_url=download_url,
        file_original_name=file_name_from_url(download_url) if download_url else DEFAULT_FILENAME,
        selected_variant_id=selected.primary_id,
        selected_profile_id=selected.profile_id if selected.profile_id is not None else selected.variant_id,
        selection_strategy=strategy,
        available_variants=[_available_variant(c) for c in sorted_pool if has_complete_metrics(c)],
        import_warnings=deduped_warnings,
        profile_resolution_mode=mode,
        profile_resolution_confidence=confidence,
        source_profile_id=selected.profile_id if selected.profile_id is not None else selected.variant_id,
        source_profile_name=selected.name,
        source_profile_printer=selected.printer,
        source_profile_material=material,
        source_profile_estimated_grams=round(selected.estimated_grams, 4),
        source_profile_estimated_hours=round(selected.estimated_hours, 4),
        source_profile_payload=profile_payload,
        source_settings_summary=selected.settings_summary,
        locked_material=map_material(material),
    )
    return StageResult(ok=True, data=data, warnings=warnings)
