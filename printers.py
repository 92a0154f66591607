"""Printer name canonicalization and compatibility clusters.

Free-text printer names ("Bambu Lab P2S", "X1 Carbon", "P2S") are reduced to a
canonical id so they can be compared. A configured target printer expands to
the set of canonical ids it accepts.
"""

import re

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")

# Ordered: "a1mini" must be tested before "a1"
_FAMILY_TOKENS: list[tuple[tuple[str, ...], str]] = [
    (("p2s",), "bambulabp2s"),
    (("p1s",), "bambulabp1s"),
    (("p1p",), "bambulabp1p"),
    (("x1c", "x1carbon"), "bambulabx1c"),
    (("a1mini",), "bambulaba1mini"),
    (("a1",), "bambulaba1"),
]

# Enclosed core-XY machines that share print profiles
COREXY_CLUSTER = frozenset(
    {
        "bambulabp2s",
        "bambulabp1s",
        "bambulabp1p",
        "bambulabx1c",
        "bambulabx1carbon",
    }
)


def normalize_printer_name(name: str) -> str:
    """Canonical id for a printer name; unknown families return the stripped lowercase form."""
    normalized = _NON_ALNUM_RE.sub("", name.lower())
    for tokens, canonical in _FAMILY_TOKENS:
        if any(token in normalized for token in tokens):
            return canonical
    return normalized


def compatible_printer_aliases(configured_printer: str) -> set[str]:
    normalized = normalize_printer_name(configured_printer)
    aliases = {normalized}
    if normalized in COREXY_CLUSTER:
        aliases |= COREXY_CLUSTER
    return aliases


def is_compatible_printer(candidate_printer: str, configured_printer: str) -> bool:
    """Whether a variant's printer can run on the configured printer.

    Exact alias matches count, as do sub-model names where one canonical form
    contains the other.
    """
    normalized_candidate = normalize_printer_name(candidate_printer)
    if not normalized_candidate:
        return False
    compatible = compatible_printer_aliases(configured_printer)
    if normalized_candidate in compatible:
        return True
    return any(normalized_candidate in alias or alias in normalized_candidate for alias in compatible)
