"""
HTML parser for model pages.

The page is a server-rendered Next.js document. Everything the fallback path
needs lives in the ``<script id="__NEXT_DATA__">`` JSON blob; Open Graph and
standard meta tags are kept for the page title.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import orjson
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

NEXT_DATA_SCRIPT_ID = "__NEXT_DATA__"


@dataclass
class ParsedPage:
    """Structured data pulled out of one model page."""

    next_data: Any = None  # None when the script is missing or not valid JSON
    embedded_json: dict[str, Any] = field(default_factory=dict)  # script id -> decoded JSON
    og_tags: dict[str, str] = field(default_factory=dict)
    meta_tags: dict[str, str] = field(default_factory=dict)
    title: str | None = None


def parse_html(html: str) -> ParsedPage:
    """Parse a model page and extract its embedded data sources."""
    soup = BeautifulSoup(html, "lxml")

    embedded_json = _extract_embedded_json(soup)
    title_tag = soup.find("title")
    title = title_tag.get_text(strip=True) if title_tag else ""

    return ParsedPage(
        next_data=embedded_json.get(NEXT_DATA_SCRIPT_ID),
        embedded_json=embedded_json,
        og_tags=_extract_og_tags(soup),
        meta_tags=_extract_meta_tags(soup),
        title=title or None,
    )


def extract_next_data(html: str) -> Any:
    """Decoded ``__NEXT_DATA__`` payload, or None."""
    return parse_html(html).next_data


# ---------------------------------------------------------------------------
# Embedded JSON
# ---------------------------------------------------------------------------


def _extract_embedded_json(soup: BeautifulSoup) -> dict[str, Any]:
    """Decode JSON script blocks keyed by their id.

    ``__NEXT_DATA__`` is read regardless of its ``type`` attribute; other
    scripts must declare a JSON type.
    """
    results: dict[str, Any] = {}
    for tag in soup.find_all("script"):
        tag_id = tag.get("id")
        if not tag_id:
            continue
        tag_type = (tag.get("type") or "").lower()
        if tag_id != NEXT_DATA_SCRIPT_ID and tag_type not in ("application/json", "text/json"):
            continue
        text = tag.string
        if not text or not text.strip():
            continue
        try:
            results[tag_id] = orjson.loads(str(text))
        except orjson.JSONDecodeError:
            logger.debug(f"Skipping malformed JSON in script#{tag_id}")
    return results


# ---------------------------------------------------------------------------
# Meta tags
# ---------------------------------------------------------------------------


def _extract_og_tags(soup: BeautifulSoup) -> dict[str, str]:
    """Open Graph tags without the ``og:`` prefix. Handles both property= and name=."""
    tags: dict[str, str] = {}
    for meta in soup.find_all("meta"):
        prop = meta.get("property", "") or meta.get("name", "")
        if not isinstance(prop, str) or not prop.startswith("og:"):
            continue
        content = meta.get("content", "")
        if content:
            tags[prop[3:]] = content
    return tags


def _extract_meta_tags(soup: BeautifulSoup) -> dict[str, str]:
    tags: dict[str, str] = {}
    for name in ("description", "keywords", "title"):
        meta = soup.find("meta", attrs={"name": name})
        if meta and meta.get("content"):
            tags[name] = meta["content"]
    return tags


def page_title(parsed: ParsedPage) -> str | None:
    """Best human title the page advertises outside its JSON payload."""
    return parsed.og_tags.get("title") or parsed.meta_tags.get("title") or parsed.title
