"""
Design-service client and bounded page fetch.

Every design-service call returns an ApiResult; HTTP and network failures are
mapped to reason codes and never raised. Network-level failures are retried
sequentially, HTTP error statuses are not.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx
import orjson

from config import ResolverConfig
from models import ReasonCode, RequestOptions

logger = logging.getLogger(__name__)


@dataclass
class ApiError:
    reason_code: ReasonCode
    message: str
    status: int | None = None


@dataclass
class ApiResult:
    ok: bool
    data: Any = None
    error: ApiError | None = None

    @classmethod
    def success(cls, data: Any) -> "ApiResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, reason_code: ReasonCode, message: str, status: int | None = None) -> "ApiResult":
        return cls(ok=False, error=ApiError(reason_code, message, status))


class FetchError(Exception):
    """A bounded page or asset fetch failed with a known reason code."""

    def __init__(self, reason_code: ReasonCode, message: str, status: int | None = None):
        super().__init__(message)
        self.reason_code = reason_code
        self.message = message
        self.status = status


def map_http_status(status: int) -> tuple[ReasonCode, str]:
    if status == 404:
        return "not_found", "MakerWorld resource was not found."
    if status in (401, 403, 429):
        return "upstream_blocked", f"MakerWorld blocked the request ({status})."
    if status in (408, 504):
        return "timeout", "MakerWorld request timed out."
    return "network_error", f"MakerWorld API request failed ({status})."


def resolve_timeout_ms(value: float | None, default: float) -> float:
    """Caller timeout if it is a positive number, else the configured default."""
    if value is None or isinstance(value, bool) or not value > 0:
        return default
    return float(value)


# ---------------------------------------------------------------------------
# Design service
# ---------------------------------------------------------------------------


class DesignServiceClient:
    """Thin JSON client over the design-service endpoints.

    The caller owns ``http``; request options apply to every call made
    through one client.
    """

    def __init__(self, http: httpx.AsyncClient, config: ResolverConfig, options: RequestOptions | None = None):
        options = options or RequestOptions()
        self._http = http
        self._base_url = config.api_base_url.rstrip("/")
        self.timeout = resolve_timeout_ms(options.timeout_ms, config.api_timeout_ms) / 1000
        self.retries = max(0, int(options.retries)) if options.retries is not None else config.api_retries
        self.headers = {**config.api_headers, **options.headers}

    def build_url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    async def fetch_json(self, path: str) -> ApiResult:
        url = self.build_url(path)

        for attempt in range(self.retries + 1):
            last_attempt = attempt >= self.retries
            try:
                response = await asyncio.wait_for(
                    self._http.get(url, headers=self.headers, timeout=self.timeout),
                    self.timeout,
                )
            except (asyncio.TimeoutError, httpx.TimeoutException):
                if last_attempt:
                    return ApiResult.failure("timeout", "MakerWorld API request timed out.")
                logger.warning(f"Timeout on {path} (attempt {attempt + 1}/{self.retries + 1}), retrying")
                continue
            except httpx.RequestError as exc:
                if last_attempt:
                    return ApiResult.failure("network_error", f"MakerWorld API request failed: {exc}")
                logger.warning(f"Network error on {path} (attempt {attempt + 1}/{self.retries + 1}): {exc}")
                continue

            if not response.is_success:
                reason_code, message = map_http_status(response.status_code)
                return ApiResult.failure(reason_code, message, response.status_code)

            raw = response.content
            if not raw.strip():
                return ApiResult.failure(
                    "malformed_payload", "MakerWorld API returned an empty payload.", response.status_code
                )
            try:
                return ApiResult.success(orjson.loads(raw))
            except orjson.JSONDecodeError:
                logger.debug(f"Invalid JSON from {path}: {raw[:200]!r}")
                return ApiResult.failure(
                    "malformed_payload", "MakerWorld API returned invalid JSON.", response.status_code
                )

        return ApiResult.failure("network_error", "MakerWorld API request failed.")

    async def fetch_design(self, design_id: int) -> ApiResult:
        return await self.fetch_json(f"/design/{design_id}")

    async def fetch_design_instances(self, design_id: int) -> ApiResult:
        return await self.fetch_json(f"/design/{design_id}/instances")

    async def fetch_profile(self, profile_id: int) -> ApiResult:
        return await self.fetch_json(f"/profile/{profile_id}")

    async def fetch_instance_3mf(self, instance_id: int) -> ApiResult:
        return await self.fetch_json(f"/instance/{instance_id}/f3mf")

    async def fetch_design_model(self, design_id: int) -> ApiResult:
        return await self.fetch_json(f"/design/{design_id}/model")


# ---------------------------------------------------------------------------
# Bounded fetches
# ---------------------------------------------------------------------------


def declared_length(response: httpx.Response) -> int:
    raw = response.headers.get("content-length", "")
    return int(raw) if raw.strip().isdigit() else 0


async def read_limited(response: httpx.Response, max_bytes: int, too_large: FetchError) -> bytes:
    """Read a streamed body, rejecting it once it exceeds max_bytes (declared or actual)."""
    if declared_length(response) > max_bytes:
        raise too_large
    body = bytearray()
    async for chunk in response.aiter_bytes():
        body.extend(chunk)
        if len(body) > max_bytes:
            raise too_large
    return bytes(body)


async def fetch_text_with_limit(
    http: httpx.AsyncClient,
    url: str,
    *,
    headers: dict[str, str],
    timeout_ms: float,
    max_bytes: int,
) -> str:
    """GET a page as text within a byte cap and an overall timeout. Raises FetchError."""
    timeout = timeout_ms / 1000

    async def _read() -> str:
        async with http.stream("GET", url, headers=headers, timeout=timeout) as response:
            if not response.is_success:
                reason_code, _ = map_http_status(response.status_code)
                raise FetchError(
                    reason_code, f"MakerWorld page request failed ({response.status_code}).", response.status_code
                )
            too_large = FetchError("network_error", "MakerWorld page is too large to parse.", response.status_code)
            body = await read_limited(response, max_bytes, too_large)
            return body.decode(response.encoding or "utf-8", errors="replace")

    try:
        return await asyncio.wait_for(_read(), timeout)
    except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
        raise FetchError("timeout", "MakerWorld page request timed out.") from exc
    except httpx.RequestError as exc:
        raise FetchError("network_error", f"MakerWorld page request failed: {exc}") from exc
