"""
Variant extraction from design-service payloads and page data.

Turns arbitrary nested JSON into VariantCandidate records:
  A) find the array most likely to hold print variants (decoy arrays such as
     "related models" are scored out)
  B) map each node to a candidate via hint search (ids, printer, material,
     time, mass, settings, download URL)
  C) merge a separately fetched profile into an incomplete candidate
"""

import dataclasses
import logging
import posixpath
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote, urlsplit

from hints import (
    JsonValue,
    as_object_array,
    find_array_by_key_hint,
    find_boolean_by_hints,
    find_duration_by_hints,
    find_integer_by_hints,
    find_number_by_hints,
    find_string_by_hints,
    iter_nodes,
    read_by_path,
)
from models import SettingsSummary
from printers import is_compatible_printer, normalize_printer_name

logger = logging.getLogger(__name__)

DEFAULT_MODEL_TITLE = "MakerWorld model"
DEFAULT_FILENAME = "makerworld-model"
UNKNOWN = "unknown"

DOWNLOAD_HINT_RE = re.compile(r"(download|asset|attachment|file=|/files?\b|\.stl\b|\.obj\b|\.3mf\b)", re.IGNORECASE)
_ABSOLUTE_URL_RE = re.compile(r"https?://[^\s\"'<>]+", re.IGNORECASE)


@dataclass
class VariantCandidate:
    """One printable variant pulled from a payload node.

    At least one of variant_id / profile_id is set. Profile enrichment may
    fill unknown fields once; known values are never overwritten.
    """

    variant_id: int | None
    profile_id: int | None
    name: str
    printer: str = UNKNOWN
    material: str = UNKNOWN
    estimated_hours: float | None = None
    estimated_grams: float | None = None
    settings_summary: SettingsSummary = field(default_factory=SettingsSummary)
    download_url: str | None = None
    payload: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def primary_id(self) -> int | None:
        return self.variant_id if self.variant_id is not None else self.profile_id

    def matches_id(self, requested_id: int) -> bool:
        return self.variant_id == requested_id or self.profile_id == requested_id


# ===== Hint vocabularies =====

_VARIANT_ID_HINTS = ["variantid", "instanceid", "id"]
_PROFILE_ID_HINTS = ["profileid", "presetid", "profile_id", "preset_id"]
_ANY_ID_HINTS = ["variantid", "instanceid", "profileid", "presetid", "id", "uid"]
_NAME_HINTS = ["title", "name", "profilename", "instancename"]
_PRINTER_PRESENCE_HINTS = ["printername", "printer", "machine", "device"]
_PRINTER_HINTS = [
    "printername",
    "printer_model",
    "printer",
    "machine",
    "device",
    "productname",
    "modelname",
    "devproductname",
    "devmodelname",
]
_MATERIAL_PRESENCE_HINTS = ["material", "filament"]
_MATERIAL_HINTS = ["material", "filament", "filamentname", "materialname"]
_PLATE_DURATION_HINTS = [
    "prediction",
    "estimate",
    "estimated",
    "printtime",
    "print_time",
    "duration",
    "costtime",
    "consumetime",
]
_DURATION_HINTS = [
    "prediction",
    "estimate",
    "estimated",
    "estimatedhours",
    "printtimehours",
    "print_time_hours",
    "print_time",
    "printtime",
    "duration",
    "costtime",
    "consumetime",
    "elapsed",
]
_PLATE_GRAMS_HINTS = ["weight", "grams", "filament"]
_GRAMS_HINTS = ["estimatedweight", "filamentweight", "materialweight", "grams", "weight", "filament"]
_COMPATIBILITY_HINTS = ["compatibility", "othercompatibility"]
_COMPATIBILITY_NAME_KEYS = [
    "devProductName",
    "productName",
    "printerName",
    "machineName",
    "modelName",
    "name",
    "devModelName",
]

# Where variant arrays usually live, most specific first
_PREFERRED_ARRAY_PATHS = [
    ["props", "pageProps", "design", "instances"],
    ["props", "pageProps", "design", "profiles"],
    ["props", "pageProps", "design", "variants"],
    ["props", "pageProps", "instances"],
    ["props", "pageProps", "profiles"],
    ["props", "pageProps", "variants"],
    ["pageProps", "design", "instances"],
    ["pageProps", "design", "profiles"],
    ["pageProps", "design", "variants"],
    ["design", "instances"],
    ["design", "profiles"],
    ["design", "variants"],
    ["data", "design", "instances"],
    ["result", "design", "instances"],
]
_VARIANT_ARRAY_KEYS = ("instances", "profiles", "variants")
_CONTAINER_KEYS = ("props", "result", "design", "model", "pageProps")
_CONTAINER_ARRAY_KEYS = ("instances", "profiles", "variants", "list", "items", "hits")
_VARIANT_KEY_TOKENS = ("instance", "profile", "variant", "preset")
_MODEL_PARENT_TOKENS = ("design", "model", "profile", "instance", "variant")


# =====================================================================
# Metrics
# =====================================================================


def _sum_positive(values: list[float | None]) -> float:
    return sum(v for v in values if v is not None and v > 0)


def extract_estimated_hours(node: JsonValue) -> float | None:
    """Print time in hours: the per-plate sum when plates exist, else the first duration hint."""
    plates = find_array_by_key_hint(node, ["plates"])
    from_plates = _sum_positive([find_duration_by_hints(plate, _PLATE_DURATION_HINTS) for plate in plates])
    if from_plates > 0:
        return round(from_plates, 4)

    direct = find_duration_by_hints(node, _DURATION_HINTS)
    if direct is not None and direct > 0:
        return round(direct, 4)
    return None


def extract_estimated_grams(node: JsonValue) -> float | None:
    plates = find_array_by_key_hint(node, ["plates"])
    from_plates = _sum_positive([find_number_by_hints(plate, _PLATE_GRAMS_HINTS) for plate in plates])
    if from_plates > 0:
        return round(from_plates, 4)

    direct = find_number_by_hints(node, _GRAMS_HINTS)
    if direct is not None and direct > 0:
        return round(direct, 4)
    return None


# =====================================================================
# Printer / material / settings
# =====================================================================


def _compatibility_names(entry: Any) -> list[str]:
    if isinstance(entry, str):
        return [entry.strip()] if entry.strip() else []
    if not isinstance(entry, dict):
        return []
    names = []
    for key in _COMPATIBILITY_NAME_KEYS:
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            names.append(value.strip())
    return names


def _is_compatibility_key(key: str) -> bool:
    normalized = key.lower()
    return any(hint in normalized for hint in _COMPATIBILITY_HINTS)


def extract_printer(node: JsonValue, target_printer: str) -> str:
    """Printer name for a variant node.

    Compatibility lists/objects take precedence; among their names the one
    matching the target printer exactly wins, then the first compatible one,
    then the first listed.
    """
    names: list[str] = []

    # Largest compatibility array first, its items may be bare strings
    largest: list = []
    for key, value, _ in iter_nodes(node):
        if not isinstance(value, list) or not _is_compatibility_key(key):
            continue
        entries = [item for item in value if isinstance(item, (str, dict))]
        if len(entries) > len(largest):
            largest = entries
    for entry in largest:
        names.extend(_compatibility_names(entry))

    # Then every compatibility record, including items of other arrays
    for key, value, _ in iter_nodes(node):
        if isinstance(value, dict) and _is_compatibility_key(key):
            names.extend(_compatibility_names(value))
    names = list(dict.fromkeys(names))

    if names:
        target = normalize_printer_name(target_printer)
        exact = next((name for name in names if normalize_printer_name(name) == target), None)
        if exact:
            return exact
        preferred = next((name for name in names if is_compatible_printer(name, target_printer)), None)
        return preferred or names[0]

    return find_string_by_hints(node, _PRINTER_HINTS) or UNKNOWN


def extract_material(node: JsonValue) -> str:
    return find_string_by_hints(node, _MATERIAL_HINTS) or UNKNOWN


def _positive(value: float | None, digits: int) -> float | None:
    if value is None or value <= 0:
        return None
    return round(value, digits)


def extract_settings_summary(node: JsonValue) -> SettingsSummary:
    return SettingsSummary(
        layer_height_mm=_positive(find_number_by_hints(node, ["layerheight", "layer_height"]), 4),
        nozzle_mm=_positive(find_number_by_hints(node, ["nozzle", "nozzlediameter"]), 4),
        infill_percent=_positive(find_number_by_hints(node, ["infill", "filldensity"]), 2),
        support_enabled=find_boolean_by_hints(node, ["support"]),
        wall_loops=_positive(find_number_by_hints(node, ["wallloop", "wall_loops", "walls"]), 2),
        speed_profile=find_string_by_hints(node, ["speedprofile", "speed_profile"]),
        filament_profile=find_string_by_hints(node, ["filamentprofile", "filament_profile"]),
    )


# =====================================================================
# Download URLs
# =====================================================================


def collect_url_candidates(node: JsonValue, site_base_url: str) -> list[str]:
    """Every absolute URL found in string values, plus download-looking site-relative paths."""
    urls: dict[str, None] = {}
    for _, value, _ in iter_nodes(node):
        if not isinstance(value, str):
            continue
        raw = value.strip()
        if not raw:
            continue
        decoded = raw.replace("\\/", "/")
        for match in _ABSOLUTE_URL_RE.findall(decoded):
            urls[match] = None
        if decoded.startswith("/") and DOWNLOAD_HINT_RE.search(decoded):
            urls[f"{site_base_url}{decoded}"] = None
    return list(urls)


def choose_download_url(node: JsonValue, site_base_url: str) -> str | None:
    """First URL whose path or query looks like a downloadable asset."""
    for candidate in collect_url_candidates(node, site_base_url):
        try:
            parts = urlsplit(candidate)
        except ValueError:
            continue
        if not parts.netloc:
            continue
        path_and_query = parts.path + (f"?{parts.query}" if parts.query else "")
        if DOWNLOAD_HINT_RE.search(path_and_query):
            return candidate
    return None


def file_name_from_url(url: str) -> str:
    """Percent-decoded basename of a URL path, or the default filename."""
    try:
        path = urlsplit(url).path
    except ValueError:
        return DEFAULT_FILENAME
    return unquote(posixpath.basename(path)) or DEFAULT_FILENAME


# =====================================================================
# Variant array discovery
# =====================================================================


def score_variant_like_item(item: Any, site_base_url: str) -> int:
    """How much a node looks like a print variant. Decoys (related models, images) score low."""
    if not isinstance(item, dict):
        return 0

    score = 0
    if find_integer_by_hints(item, _ANY_ID_HINTS) is not None:
        score += 4
    if find_string_by_hints(item, _PRINTER_PRESENCE_HINTS):
        score += 2
    if find_string_by_hints(item, _MATERIAL_PRESENCE_HINTS):
        score += 1
    if extract_estimated_hours(item) is not None:
        score += 2
    if extract_estimated_grams(item) is not None:
        score += 2
    if choose_download_url(item, site_base_url) is not None:
        score += 1
    return score


def select_best_variant_array(candidates: list[list], site_base_url: str) -> list:
    """Highest total item score wins; ties go to the longer array, then the earlier one."""
    best: list = []
    best_score = -1
    for items in candidates:
        if not items:
            continue
        score = sum(score_variant_like_item(item, site_base_url) for item in items)
        if score > best_score or (score == best_score and len(items) > len(best)):
            best = items
            best_score = score
    return best


def extract_instances_from_payload(payload: JsonValue, site_base_url: str) -> list:
    """The array of variant-like nodes in a payload, or [] if none is found."""
    candidates: list[list] = []

    def add_candidate(value: Any) -> None:
        items = as_object_array(value)
        if items:
            candidates.append(items)

    add_candidate(payload)

    for path in _PREFERRED_ARRAY_PATHS:
        add_candidate(read_by_path(payload, path))

    if isinstance(payload, dict):
        for key in _VARIANT_ARRAY_KEYS:
            add_candidate(payload.get(key))
        for container_key in _CONTAINER_KEYS:
            container = payload.get(container_key)
            if not isinstance(container, dict):
                continue
            for key in _CONTAINER_ARRAY_KEYS:
                add_candidate(container.get(key))

    for key, value, parent in iter_nodes(payload):
        if not isinstance(value, list):
            continue
        normalized = key.lower()
        is_variant_key = any(token in normalized for token in _VARIANT_KEY_TOKENS)
        parent_keys = "|".join(parent.keys()).lower() if isinstance(parent, dict) else ""
        parent_suggests_model = any(token in parent_keys for token in _MODEL_PARENT_TOKENS)
        if not is_variant_key and not (parent_suggests_model and normalized in ("list", "items")):
            continue
        add_candidate(value)

    best = select_best_variant_array(candidates, site_base_url)
    if best:
        return best

    return find_array_by_key_hint(payload, ["instances", "profiles", "variants", "presets"])


def extract_model_title(payload: JsonValue, fallback: str | None = None) -> str:
    title = find_string_by_hints(payload, ["title", "designtitle", "modeltitle"]) or find_string_by_hints(
        payload, ["name", "displayname"]
    )
    return title or fallback or DEFAULT_MODEL_TITLE


# =====================================================================
# Candidates
# =====================================================================


def to_variant_candidate(raw: Any, target_printer: str, site_base_url: str) -> VariantCandidate | None:
    """Map one node to a candidate. Nodes with neither a variant nor a profile id are rejected."""
    if not isinstance(raw, dict):
        return None

    variant_id = find_integer_by_hints(raw, _VARIANT_ID_HINTS)
    profile_id = find_integer_by_hints(raw, _PROFILE_ID_HINTS)
    if variant_id is None and profile_id is None:
        return None

    primary_id = variant_id if variant_id is not None else profile_id
    name = find_string_by_hints(raw, _NAME_HINTS) or f"MakerWorld variant {primary_id}"

    return VariantCandidate(
        variant_id=variant_id,
        profile_id=profile_id,
        name=name,
        printer=extract_printer(raw, target_printer),
        material=extract_material(raw),
        estimated_hours=extract_estimated_hours(raw),
        estimated_grams=extract_estimated_grams(raw),
        settings_summary=extract_settings_summary(raw),
        download_url=choose_download_url(raw, site_base_url),
        payload=raw,
    )


def extract_candidates(nodes: list, target_printer: str, site_base_url: str) -> list[VariantCandidate]:
    candidates = []
    for node in nodes:
        candidate = to_variant_candidate(node, target_printer, site_base_url)
        if candidate is None:
            logger.debug("Skipping node without variant or profile id")
            continue
        candidates.append(candidate)
    return candidates


def has_complete_metrics(candidate: VariantCandidate) -> bool:
    hours = candidate.estimated_hours
    grams = candidate.estimated_grams
    return hours is not None and hours > 0 and grams is not None and grams > 0


def needs_profile_enrichment(candidate: VariantCandidate) -> bool:
    if candidate.profile_id is None:
        return False
    return not (has_complete_metrics(candidate) and candidate.printer != UNKNOWN and candidate.material != UNKNOWN)


def merge_profile(
    candidate: VariantCandidate, profile: dict, target_printer: str, site_base_url: str
) -> VariantCandidate:
    """Fill a candidate's unknown fields from a profile payload. Known values are kept."""
    return dataclasses.replace(
        candidate,
        printer=candidate.printer if candidate.printer != UNKNOWN else extract_printer(profile, target_printer),
        material=candidate.material if candidate.material != UNKNOWN else extract_material(profile),
        estimated_hours=(
            candidate.estimated_hours
            if candidate.estimated_hours is not None
            else extract_estimated_hours(profile)
        ),
        estimated_grams=(
            candidate.estimated_grams
            if candidate.estimated_grams is not None
            else extract_estimated_grams(profile)
        ),
        settings_summary=(
            candidate.settings_summary
            if not candidate.settings_summary.is_empty()
            else extract_settings_summary(profile)
        ),
        download_url=candidate.download_url or choose_download_url(profile, site_base_url),
        payload={**candidate.payload, "profile_payload": profile},
    )
