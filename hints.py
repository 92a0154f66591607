"""
Schema-agnostic search over decoded JSON.

Upstream payloads change shape between endpoints, locales and releases, so
fields are located by *hint*: any key whose lowercased name contains one of a
few tokens. All finders share one breadth-first walk with these properties:

  - object keys are visited in insertion order, then array items in index order
  - array items inherit the key of the array that holds them
  - a node is visited at most once per identity, and at most MAX_VISIT_NODES
    nodes are visited in total

The first match in walk order wins. Fixtures depend on that order, so do not
replace the queue with recursion.
"""

import math
import re
from collections import deque
from collections.abc import Iterator
from typing import Any

# dict | list | str | int | float | bool | None, nested arbitrarily
JsonValue = Any

MAX_VISIT_NODES = 1500

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_HMS_RE = re.compile(r"^(\d{1,2}):(\d{1,2})(?::(\d{1,2}))?$")
_HOURS_RE = re.compile(r"(\d+(?:\.\d+)?)\s*h", re.IGNORECASE)
_MINUTES_RE = re.compile(r"(\d+(?:\.\d+)?)\s*m", re.IGNORECASE)
_SECONDS_RE = re.compile(r"(\d+(?:\.\d+)?)\s*s", re.IGNORECASE)

# Keys that carry wall-clock timestamps, never print durations
_TIMESTAMP_TOKENS = (
    "create",
    "update",
    "modify",
    "upload",
    "download",
    "publish",
    "release",
    "expire",
    "timestamp",
    "timezone",
    "date",
    "gmt",
    "utc",
)

_SECONDS_KEY_TOKENS = (
    "second",
    "sec",
    "prediction",
    "printtime",
    "print_time",
    "costtime",
    "consumetime",
    "duration",
)


# ---------------------------------------------------------------------------
# Walk
# ---------------------------------------------------------------------------


def iter_nodes(data: JsonValue, max_nodes: int = MAX_VISIT_NODES) -> Iterator[tuple[str, JsonValue, JsonValue]]:
    """Yield (key, value, parent) for each node in breadth-first order."""
    queue: deque[tuple[str, JsonValue, JsonValue]] = deque([("", data, None)])
    visited: set[int] = set()
    count = 0

    while queue and count < max_nodes:
        key, value, parent = queue.popleft()
        count += 1
        yield key, value, parent

        if not isinstance(value, (dict, list)):
            continue
        if id(value) in visited:
            continue
        visited.add(id(value))

        if isinstance(value, list):
            for item in value:
                queue.append((key, item, value))
            continue

        for child_key, child_value in value.items():
            queue.append((str(child_key), child_value, value))


def _key_matches(key: str, hints: list[str]) -> bool:
    normalized = key.lower()
    return any(hint in normalized for hint in hints)


def is_number(value: Any) -> bool:
    """True for real JSON numbers. bool is an int subclass and is excluded."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ---------------------------------------------------------------------------
# Scalar parsing
# ---------------------------------------------------------------------------


def parse_float(value: Any) -> float | None:
    """Read a finite number from a numeric literal or the first number embedded in a string."""
    if is_number(value):
        number = float(value)
        return number if math.isfinite(number) else None
    if not isinstance(value, str):
        return None
    match = _NUMBER_RE.search(value)
    if not match:
        return None
    number = float(match.group(0))
    return number if math.isfinite(number) else None


def _hours_from_magnitude(value: float) -> float:
    # <=72 reads as hours, <=7200 as minutes, anything larger as seconds
    if value <= 72:
        return value
    if value <= 7200:
        return value / 60
    return value / 3600


def parse_duration_hours(value: Any) -> float | None:
    """Convert a unitless duration value to hours.

    Accepts numbers (magnitude heuristic), ``HH:MM[:SS]``, ``"1h 30m 10s"``
    style labels, and strings holding a bare number.
    """
    if is_number(value) and math.isfinite(value) and value > 0:
        return _hours_from_magnitude(float(value))

    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed:
        return None

    hms = _HMS_RE.match(trimmed)
    if hms:
        hours = int(hms.group(1))
        minutes = int(hms.group(2))
        seconds = int(hms.group(3) or 0)
        return hours + minutes / 60 + seconds / 3600

    hour_match = _HOURS_RE.search(trimmed)
    minute_match = _MINUTES_RE.search(trimmed)
    second_match = _SECONDS_RE.search(trimmed)
    if hour_match or minute_match or second_match:
        hours = float(hour_match.group(1)) if hour_match else 0.0
        minutes = float(minute_match.group(1)) if minute_match else 0.0
        seconds = float(second_match.group(1)) if second_match else 0.0
        total = hours + minutes / 60 + seconds / 3600
        return total if total > 0 else None

    numeric = parse_float(trimmed)
    if numeric is None or numeric <= 0:
        return None
    return _hours_from_magnitude(numeric)


def parse_duration_hours_by_key(key: str, value: Any) -> float | None:
    """Like parse_duration_hours, but a unit named in the key wins over magnitude."""
    normalized = key.lower()

    if is_number(value) and math.isfinite(value) and value > 0:
        if "ms" in normalized or "millisecond" in normalized:
            return value / 3_600_000
        if any(token in normalized for token in _SECONDS_KEY_TOKENS):
            return value / 3600
        if "minute" in normalized or "min" in normalized:
            return value / 60
        if "hour" in normalized or "hr" in normalized:
            return float(value)

    return parse_duration_hours(value)


# ---------------------------------------------------------------------------
# Finders
# ---------------------------------------------------------------------------


def find_string_by_hints(data: JsonValue, hints: list[str]) -> str | None:
    for key, value, _ in iter_nodes(data):
        if not isinstance(value, str) or not _key_matches(key, hints):
            continue
        trimmed = value.strip()
        if trimmed:
            return trimmed
    return None


def find_boolean_by_hints(data: JsonValue, hints: list[str]) -> bool | None:
    for key, value, _ in iter_nodes(data):
        if not _key_matches(key, hints):
            continue
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "yes", "on"):
                return True
            if lowered in ("false", "no", "off"):
                return False
    return None


def find_number_by_hints(data: JsonValue, hints: list[str]) -> float | None:
    for key, value, _ in iter_nodes(data):
        if not _key_matches(key, hints):
            continue
        parsed = parse_float(value)
        if parsed is not None:
            return parsed
    return None


def find_duration_by_hints(data: JsonValue, hints: list[str]) -> float | None:
    """First hint-keyed value readable as a duration, in hours. Timestamp-like keys are skipped."""
    for key, value, _ in iter_nodes(data):
        normalized = key.lower()
        if not any(hint in normalized for hint in hints):
            continue
        if any(token in normalized for token in _TIMESTAMP_TOKENS):
            continue
        parsed = parse_duration_hours_by_key(normalized, value)
        if parsed is not None and math.isfinite(parsed):
            return parsed
    return None


def find_integer_by_hints(data: JsonValue, hints: list[str]) -> int | None:
    value = find_number_by_hints(data, hints)
    if value is None:
        return None
    truncated = math.trunc(value)
    return truncated if truncated > 0 else None


def find_array_by_key_hint(data: JsonValue, hints: list[str]) -> list:
    """Object items of the hint-keyed array holding the most object items."""
    best: list = []
    for key, value, _ in iter_nodes(data):
        if not isinstance(value, list) or not _key_matches(key, hints):
            continue
        object_items = as_object_array(value)
        if len(object_items) > len(best):
            best = object_items
    return best


def as_object_array(value: Any) -> list:
    """Items of a list that are themselves objects or arrays; [] for non-lists."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, (dict, list))]


def read_by_path(data: JsonValue, path: list[str]) -> JsonValue:
    current = data
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current
