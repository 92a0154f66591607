"""
Model file download and format validation.

download_model_file() never raises: HTTP, size, timeout and format problems
come back as a DownloadFailure.
"""

import asyncio
import logging
import posixpath
import re
from dataclasses import dataclass
from urllib.parse import unquote

import httpx

from api import FetchError, read_limited, resolve_timeout_ms
from config import ResolverConfig, load_config
from extractor import DEFAULT_FILENAME, file_name_from_url
from models import DownloadFailure, DownloadOptions, DownloadOutcome, DownloadSuccess, ModelExtension

logger = logging.getLogger(__name__)

_UTF8_FILENAME_RE = re.compile(r"filename\*=UTF-8''([^;]+)", re.IGNORECASE)
_FILENAME_RE = re.compile(r"filename=\"?([^\";]+)\"?", re.IGNORECASE)

_SUPPORTED_EXTENSIONS: tuple[ModelExtension, ...] = ("stl", "obj", "3mf")


@dataclass
class FetchedFile:
    content: bytes
    final_url: str
    content_type: str | None
    content_disposition: str | None


# ---------------------------------------------------------------------------
# Filename / extension
# ---------------------------------------------------------------------------


def parse_content_disposition_filename(value: str | None) -> str | None:
    """Filename from a Content-Disposition header; RFC 5987 ``filename*`` wins over ``filename``."""
    if not value:
        return None
    utf8 = _UTF8_FILENAME_RE.search(value)
    if utf8:
        try:
            return unquote(utf8.group(1), errors="strict")
        except UnicodeDecodeError:
            return utf8.group(1)

    basic = _FILENAME_RE.search(value)
    if not basic:
        return None
    return basic.group(1).strip() or None


def normalize_model_extension(extension: str | None) -> ModelExtension | None:
    if not extension:
        return None
    normalized = extension.lower().removeprefix(".")
    return normalized if normalized in _SUPPORTED_EXTENSIONS else None


def infer_model_extension(filename: str, final_url: str, content_type: str | None) -> ModelExtension | None:
    """Extension from the filename, then the final URL, then the content type."""
    explicit = normalize_model_extension(posixpath.splitext(filename)[1])
    if explicit:
        return explicit

    from_url = normalize_model_extension(posixpath.splitext(file_name_from_url(final_url))[1])
    if from_url:
        return from_url

    content_type = (content_type or "").lower()
    if "3mf" in content_type or "zip" in content_type:
        return "3mf"
    if "stl" in content_type or "sla" in content_type:
        return "stl"
    if "obj" in content_type:
        return "obj"
    return None


def _size_label(max_bytes: int) -> str:
    if max_bytes >= 1024 * 1024:
        return f"{max_bytes / (1024 * 1024):g}MB"
    return f"{max_bytes} bytes"


# ---------------------------------------------------------------------------
# Fetch
# ---------------------------------------------------------------------------


async def fetch_model_file_with_limit(
    http: httpx.AsyncClient,
    url: str,
    *,
    headers: dict[str, str],
    timeout_ms: float,
    max_bytes: int,
) -> FetchedFile:
    """GET an asset within a byte cap and an overall timeout. Raises FetchError."""
    timeout = timeout_ms / 1000

    async def _read() -> FetchedFile:
        async with http.stream("GET", url, headers=headers, timeout=timeout) as response:
            if not response.is_success:
                status = response.status_code
                reason_code = "not_found" if status == 404 else "download_unavailable"
                raise FetchError(reason_code, f"MakerWorld model download failed ({status}).", status)
            too_large = FetchError(
                "download_unavailable",
                f"MakerWorld model is too large (max {_size_label(max_bytes)} on current plan).",
                response.status_code,
            )
            content = await read_limited(response, max_bytes, too_large)
            return FetchedFile(
                content=content,
                final_url=str(response.url),
                content_type=response.headers.get("content-type"),
                content_disposition=response.headers.get("content-disposition"),
            )

    try:
        return await asyncio.wait_for(_read(), timeout)
    except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
        raise FetchError("timeout", "MakerWorld model download timed out.") from exc
    except httpx.InvalidURL as exc:
        raise FetchError("download_unavailable", f"MakerWorld model download URL is invalid: {exc}") from exc
    except httpx.RequestError as exc:
        raise FetchError("download_unavailable", f"MakerWorld model download failed: {exc}") from exc


async def download_model_file(
    download_url: str,
    options: DownloadOptions | None = None,
    *,
    config: ResolverConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> DownloadOutcome:
    """Download and validate one STL/OBJ/3MF asset."""
    config = config or load_config()
    options = options or DownloadOptions()
    max_bytes = options.max_bytes if options.max_bytes and options.max_bytes > 0 else config.max_download_bytes

    try:
        async with httpx.AsyncClient(transport=transport, follow_redirects=True) as http:
            fetched = await fetch_model_file_with_limit(
                http,
                download_url,
                headers={**config.download_headers, **options.headers},
                timeout_ms=resolve_timeout_ms(options.timeout_ms, config.download_timeout_ms),
                max_bytes=max_bytes,
            )
    except FetchError as exc:
        logger.warning(f"Download failed for {download_url}: {exc.reason_code} {exc.message}")
        return DownloadFailure(reason_code=exc.reason_code, message=exc.message)
    except Exception as exc:
        logger.exception(f"Unexpected error downloading {download_url}")
        return DownloadFailure(
            reason_code="download_unavailable",
            message=str(exc) or "MakerWorld model download failed.",
        )

    header_filename = parse_content_disposition_filename(fetched.content_disposition)
    base_filename = (header_filename or file_name_from_url(fetched.final_url)).strip() or DEFAULT_FILENAME

    extension = infer_model_extension(base_filename, fetched.final_url, fetched.content_type)
    if extension is None:
        return DownloadFailure(
            reason_code="unsupported_model_format",
            message="Could not detect STL/OBJ/3MF format from MakerWorld download.",
        )

    filename = base_filename
    if not filename.lower().endswith(f".{extension}"):
        filename = f"{filename}.{extension}"

    logger.info(f"Downloaded {filename} ({len(fetched.content)} bytes) from {fetched.final_url}")
    return DownloadSuccess(
        content=fetched.content,
        size_bytes=len(fetched.content),
        filename=filename,
        extension=extension,
        content_type=fetched.content_type,
        final_url=fetched.final_url,
    )
