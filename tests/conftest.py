"""
Shared pytest fixtures for resolver tests.

Network access goes through FakeUpstream, an httpx.MockTransport handler
that routes requests by URL path. Unrouted paths answer 404.
"""

from collections.abc import Callable

import httpx
import orjson
import pytest

from config import load_config
from resolver import ModelResolver

API_PREFIX = "/v1/design-service"


def json_response(payload, status: int = 200) -> httpx.Response:
    return httpx.Response(status, content=orjson.dumps(payload), headers={"content-type": "application/json"})


def html_response(html: str, status: int = 200) -> httpx.Response:
    return httpx.Response(status, text=html, headers={"content-type": "text/html; charset=utf-8"})


def next_data_html(payload) -> str:
    """A minimal model page embedding payload as __NEXT_DATA__."""
    body = orjson.dumps(payload).decode()
    return (
        "<html><head><title>MakerWorld</title></head><body>"
        f'<script id="__NEXT_DATA__" type="application/json">{body}</script>'
        "</body></html>"
    )


class FakeUpstream:
    """Path-routed fake for the design service, model pages and asset hosts."""

    def __init__(self):
        self.routes: dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def route(self, path: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[path] = handler

    def json(self, path: str, payload, status: int = 200) -> None:
        self.route(path, lambda request: json_response(payload, status))

    def api(self, path: str, payload, status: int = 200) -> None:
        self.json(f"{API_PREFIX}{path}", payload, status)

    def html(self, path: str, html: str, status: int = 200) -> None:
        self.route(path, lambda request: html_response(html, status))

    def raw(self, path: str, content: bytes, status: int = 200, headers: dict[str, str] | None = None) -> None:
        self.route(path, lambda request: httpx.Response(status, content=content, headers=headers or {}))

    def calls(self, path: str) -> int:
        return sum(1 for request in self.requests if request.url.path == path)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404, text="not routed")
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def config():
    """Resolver config independent of the local environment."""
    return load_config(
        target_printer="Bambu Lab P2S",
        api_timeout_ms=2000,
        api_retries=1,
        page_timeout_ms=2000,
        max_page_bytes=1024 * 1024,
        download_timeout_ms=2000,
        max_download_bytes=1024 * 1024,
    )


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def resolver(config, upstream):
    return ModelResolver(config, transport=upstream.transport)


@pytest.fixture
def variant():
    """Factory for a metric-complete instance node as the design service returns it."""

    def _variant(variant_id: int, profile_id: int, **overrides) -> dict:
        node = {
            "id": variant_id,
            "profileId": profile_id,
            "title": f"Variant {variant_id}",
            "printerName": "Bambu Lab P2S",
            "material": "PLA Basic",
            "prediction": "4.0 h",
            "weight": 40,
        }
        node.update(overrides)
        return {k: v for k, v in node.items() if v is not None}

    return _variant
