"""
Model resolver: MakerWorld page URL -> selected print variant.

Two ordered stages, each ending in a StageResult:
  1. design-service API (design + instances, profile enrichment, download URL refinement)
  2. __NEXT_DATA__ fallback parsed from the model page

The first stage to succeed wins. resolve() never raises: every failure is
returned as a ResolveFailure with the attempt log in its diagnostics.
"""

import asyncio
import logging
import math
import re
from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

import httpx

from api import DesignServiceClient, FetchError, fetch_text_with_limit
from config import ResolverConfig, load_config
from download import download_model_file
from extractor import (
    DEFAULT_FILENAME,
    VariantCandidate,
    choose_download_url,
    extract_candidates,
    extract_instances_from_payload,
    extract_model_title,
    file_name_from_url,
    merge_profile,
    needs_profile_enrichment,
)
from models import (
    Attempt,
    DataSource,
    Diagnostics,
    DownloadOptions,
    DownloadOutcome,
    RequestOptions,
    ResolveFailure,
    ResolveOutcome,
    ResolveSuccess,
)
from parser import page_title, parse_html
from selection import StageResult, dedupe_variants, finalize_resolution

logger = logging.getLogger(__name__)

INVALID_URL_MESSAGE = "MakerWorld model page URL is required."
INVALID_DESIGN_ID_MESSAGE = "Could not extract MakerWorld design ID from URL."
UNEXPECTED_ERROR_WARNING = "Resolver recovered from an unexpected internal error."
UNEXPECTED_ERROR_MESSAGE = "Could not import MakerWorld profile. Please upload STL/OBJ/3MF."

_MODEL_PATH_RE = re.compile(r"/models?/", re.IGNORECASE)
_DESIGN_ID_RE = re.compile(r"/models?/(\d+)", re.IGNORECASE)
_PROFILE_FRAGMENT_RE = re.compile(r"profileid-(\d+)", re.IGNORECASE)


# ---------------------------------------------------------------------------
# URL normalization
# ---------------------------------------------------------------------------


class InvalidSourceUrl(ValueError):
    """The source URL is not a MakerWorld model page."""


@dataclass
class NormalizedUrl:
    url: str  # fragment stripped
    design_id: int
    requested_variant_id: int | None


def normalize_source_url(source_url: str, site_domain: str = "makerworld.com") -> NormalizedUrl:
    """Validate a model page URL and pull out its design id and ``#profileId-N`` fragment.

    Raises InvalidSourceUrl; no network call is made.
    """
    if not isinstance(source_url, str) or not source_url.strip():
        raise InvalidSourceUrl(INVALID_URL_MESSAGE)
    try:
        parts = urlsplit(source_url.strip())
        host = (parts.hostname or "").lower()
    except ValueError as exc:
        raise InvalidSourceUrl(INVALID_URL_MESSAGE) from exc

    if parts.scheme.lower() != "https" or not (host == site_domain or host.endswith(f".{site_domain}")):
        raise InvalidSourceUrl(INVALID_URL_MESSAGE)
    if not _MODEL_PATH_RE.search(parts.path):
        raise InvalidSourceUrl(INVALID_URL_MESSAGE)

    design_match = _DESIGN_ID_RE.search(parts.path)
    design_id = int(design_match.group(1)) if design_match else 0
    if design_id <= 0:
        raise InvalidSourceUrl(INVALID_DESIGN_ID_MESSAGE)

    fragment_match = _PROFILE_FRAGMENT_RE.search(parts.fragment)
    requested_variant_id = int(fragment_match.group(1)) if fragment_match else None
    if requested_variant_id is not None and requested_variant_id <= 0:
        requested_variant_id = None

    normalized = urlunsplit((parts.scheme.lower(), parts.netloc, parts.path or "/", parts.query, ""))
    return NormalizedUrl(url=normalized, design_id=design_id, requested_variant_id=requested_variant_id)


def _normalize_variant_id(value) -> int | None:
    if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    truncated = math.trunc(value)
    return truncated if truncated > 0 else None


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class ModelResolver:
    """Resolves model pages and downloads assets with one immutable config.

    ``transport`` is handed to every httpx client the resolver opens; tests
    pass an ``httpx.MockTransport``.
    """

    def __init__(self, config: ResolverConfig | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config or load_config()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, follow_redirects=True)

    async def resolve(
        self,
        source_url: str,
        variant_id: int | None = None,
        request: RequestOptions | None = None,
    ) -> ResolveOutcome:
        diagnostics = Diagnostics()
        try:
            return await self._resolve(source_url, variant_id, request, diagnostics)
        except Exception as exc:
            logger.exception(f"Unexpected error resolving {source_url}")
            diagnostics.warnings = list(dict.fromkeys([*diagnostics.warnings, UNEXPECTED_ERROR_WARNING]))
            source: DataSource = diagnostics.pipeline[-1] if diagnostics.pipeline else "api"
            diagnostics.attempts.append(
                Attempt(
                    source=source,
                    ok=False,
                    reason_code="network_error",
                    message=str(exc) or "MakerWorld resolver failed unexpectedly.",
                )
            )
            return ResolveFailure(
                reason_code="network_error", message=UNEXPECTED_ERROR_MESSAGE, diagnostics=diagnostics
            )

    async def download(
        self, download_url: str, options: DownloadOptions | None = None
    ) -> DownloadOutcome:
        return await download_model_file(download_url, options, config=self.config, transport=self._transport)

    async def _resolve(
        self,
        source_url: str,
        variant_id: int | None,
        request: RequestOptions | None,
        diagnostics: Diagnostics,
    ) -> ResolveOutcome:
        try:
            normalized = normalize_source_url(source_url, self.config.site_domain)
        except InvalidSourceUrl as exc:
            logger.info(f"Rejected source URL {source_url!r}: {exc}")
            diagnostics.attempts.append(Attempt(source="api", ok=False, reason_code="invalid_url", message=str(exc)))
            return ResolveFailure(reason_code="invalid_url", message=str(exc), diagnostics=diagnostics)

        user_variant_id = _normalize_variant_id(variant_id)

        async with self._client() as http:
            api = DesignServiceClient(http, self.config, request)

            diagnostics.pipeline.append("api")
            logger.info(f"Resolving design {normalized.design_id} via API")
            api_result = await self._resolve_via_api(api, normalized, user_variant_id)
            if api_result.ok:
                return self._success(api_result, "api", "Resolved via MakerWorld API.", diagnostics)

            logger.warning(
                f"API stage failed for design {normalized.design_id}: {api_result.reason_code} {api_result.message}"
            )
            diagnostics.attempts.append(
                Attempt(source="api", ok=False, reason_code=api_result.reason_code, message=api_result.message)
            )

            diagnostics.pipeline.append("next_data")
            logger.info(f"Resolving design {normalized.design_id} via __NEXT_DATA__ fallback")
            fallback_result = await self._resolve_via_next_data(http, api, normalized, user_variant_id)
            if fallback_result.ok:
                return self._success(fallback_result, "next_data", "Resolved via __NEXT_DATA__ fallback.", diagnostics)

        logger.warning(
            f"Fallback stage failed for design {normalized.design_id}: "
            f"{fallback_result.reason_code} {fallback_result.message}"
        )
        diagnostics.attempts.append(
            Attempt(
                source="next_data",
                ok=False,
                reason_code=fallback_result.reason_code,
                message=fallback_result.message,
            )
        )
        diagnostics.warnings = list(dict.fromkeys([*api_result.warnings, *fallback_result.warnings]))
        return ResolveFailure(
            reason_code=fallback_result.reason_code,
            message=fallback_result.message,
            diagnostics=diagnostics,
        )

    @staticmethod
    def _success(result: StageResult, source: DataSource, message: str, diagnostics: Diagnostics) -> ResolveSuccess:
        warnings = list(dict.fromkeys(result.warnings))
        diagnostics.attempts.append(Attempt(source=source, ok=True, message=message))
        diagnostics.warnings = warnings
        data = result.data.model_copy(update={"import_warnings": warnings})
        return ResolveSuccess(data=data, diagnostics=diagnostics)

    # ----- Stage 1: design-service API -----

    async def _resolve_via_api(
        self,
        api: DesignServiceClient,
        normalized: NormalizedUrl,
        user_variant_id: int | None,
    ) -> StageResult:
        design_result, instances_result = await asyncio.gather(
            api.fetch_design(normalized.design_id),
            api.fetch_design_instances(normalized.design_id),
        )
        if not instances_result.ok:
            return StageResult.failure(instances_result.error.reason_code, instances_result.error.message)

        site = self.config.site_base_url
        raw_instances = extract_instances_from_payload(instances_result.data, site)
        if not raw_instances and design_result.ok:
            raw_instances = extract_instances_from_payload(design_result.data, site)
        if not raw_instances:
            return StageResult.failure("malformed_payload", "MakerWorld API did not return usable variant data.")

        candidates = dedupe_variants(extract_candidates(raw_instances, self.config.target_printer, site))
        if not candidates:
            return StageResult.failure(
                "malformed_payload", "MakerWorld API returned variants in an unsupported format."
            )

        enriched = await self._enrich(api, candidates)
        title_payload = design_result.data if design_result.ok else instances_result.data
        finalized = finalize_resolution(
            source_url=normalized.url,
            model_title=extract_model_title(title_payload),
            candidates=enriched,
            target_printer=self.config.target_printer,
            requested_variant_id=normalized.requested_variant_id,
            user_variant_id=user_variant_id,
        )
        if not finalized.ok:
            return finalized

        download_url = await self._refine_download_url(api, normalized.design_id, finalized)
        finalized.data = finalized.data.model_copy(
            update={
                "download_url": download_url,
                "file_original_name": file_name_from_url(download_url) if download_url else DEFAULT_FILENAME,
            }
        )
        return finalized

    async def _refine_download_url(
        self, api: DesignServiceClient, design_id: int, finalized: StageResult
    ) -> str | None:
        """Prefer the selected instance's asset URL; use the design-level model URL only if none is known."""
        site = self.config.site_base_url
        download_url = finalized.data.download_url

        selected_id = finalized.data.selected_variant_id
        if selected_id:
            instance_download = await api.fetch_instance_3mf(selected_id)
            if instance_download.ok:
                download_url = choose_download_url(instance_download.data, site) or download_url

        model_download = await api.fetch_design_model(design_id)
        if model_download.ok:
            download_url = download_url or choose_download_url(model_download.data, site)
        return download_url

    # ----- Stage 2: __NEXT_DATA__ -----

    async def _resolve_via_next_data(
        self,
        http: httpx.AsyncClient,
        api: DesignServiceClient,
        normalized: NormalizedUrl,
        user_variant_id: int | None,
    ) -> StageResult:
        try:
            html = await fetch_text_with_limit(
                http,
                normalized.url,
                headers=self.config.page_headers,
                timeout_ms=self.config.page_timeout_ms,
                max_bytes=self.config.max_page_bytes,
            )
        except FetchError as exc:
            return StageResult.failure(exc.reason_code, exc.message)

        parsed = parse_html(html)
        if parsed.next_data is None:
            return StageResult.failure("malformed_payload", "MakerWorld page did not expose __NEXT_DATA__ payload.")

        site = self.config.site_base_url
        raw_instances = extract_instances_from_payload(parsed.next_data, site)
        if not raw_instances:
            return StageResult.failure("malformed_payload", "MakerWorld fallback payload did not include variants.")

        candidates = dedupe_variants(extract_candidates(raw_instances, self.config.target_printer, site))
        if not candidates:
            return StageResult.failure(
                "malformed_payload", "MakerWorld fallback payload variant format was unsupported."
            )

        enriched = await self._enrich(api, candidates)
        return finalize_resolution(
            source_url=normalized.url,
            model_title=extract_model_title(parsed.next_data, fallback=page_title(parsed)),
            candidates=enriched,
            target_printer=self.config.target_printer,
            requested_variant_id=normalized.requested_variant_id,
            user_variant_id=user_variant_id,
        )

    # ----- Profile enrichment -----

    async def _enrich(self, api: DesignServiceClient, candidates: list[VariantCandidate]) -> list[VariantCandidate]:
        results = await asyncio.gather(
            *[self._enrich_candidate(api, candidate) for candidate in candidates],
            return_exceptions=True,
        )
        enriched: list[VariantCandidate] = []
        for candidate, result in zip(candidates, results):
            if isinstance(result, BaseException):
                logger.warning(f"Profile enrichment failed for profile {candidate.profile_id}: {result}")
                enriched.append(candidate)
            else:
                enriched.append(result)
        return enriched

    async def _enrich_candidate(self, api: DesignServiceClient, candidate: VariantCandidate) -> VariantCandidate:
        if not needs_profile_enrichment(candidate):
            return candidate
        profile = await api.fetch_profile(candidate.profile_id)
        if not profile.ok or not isinstance(profile.data, dict):
            logger.debug(f"No usable profile payload for {candidate.profile_id}")
            return candidate
        return merge_profile(candidate, profile.data, self.config.target_printer, self.config.site_base_url)


async def resolve_model(
    source_url: str,
    variant_id: int | None = None,
    request: RequestOptions | None = None,
    *,
    config: ResolverConfig | None = None,
) -> ResolveOutcome:
    """Resolve one model page with a default resolver."""
    return await ModelResolver(config).resolve(source_url, variant_id, request)
