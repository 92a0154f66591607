"""
FastAPI server for the model resolver.

- POST /api/resolve   → resolve outcome (200 for both resolved and unresolvable)
- POST /api/download  → model file bytes, or a download failure with an error status
- GET  /api/health    → liveness plus the configured target printer
"""

import logging
from functools import lru_cache
from urllib.parse import quote

from fastapi import Depends, FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel

from models import DownloadOptions, ReasonCode, RequestOptions, ResolveFailure, ResolveSuccess
from resolver import ModelResolver

logger = logging.getLogger("server")

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class ResolveRequest(BaseModel):
    url: str
    variant_id: int | None = None
    request: RequestOptions | None = None


class DownloadRequest(BaseModel):
    url: str
    timeout_ms: float | None = None
    max_bytes: int | None = None
    headers: dict[str, str] = {}


class HealthResponse(BaseModel):
    status: str
    target_printer: str


# Failure reason -> HTTP status for /api/download
_DOWNLOAD_ERROR_STATUS: dict[ReasonCode, int] = {
    "not_found": 404,
    "timeout": 504,
    "unsupported_model_format": 415,
}


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def get_resolver() -> ModelResolver:
    """Process-wide resolver; its config is immutable so one instance serves every request."""
    return ModelResolver()


# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------

app = FastAPI(
    title="MakerWorld Resolver API",
    default_response_class=ORJSONResponse,
)

app.add_middleware(GZipMiddleware, minimum_size=500)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    max_age=86400,
)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/api/health", response_model=HealthResponse)
async def health(resolver: ModelResolver = Depends(get_resolver)):
    return HealthResponse(status="ok", target_printer=resolver.config.target_printer)


@app.post("/api/resolve", response_model=ResolveSuccess | ResolveFailure)
async def resolve(body: ResolveRequest, resolver: ModelResolver = Depends(get_resolver)):
    """Resolve a model page URL. Unresolvable URLs are a normal 200 outcome."""
    outcome = await resolver.resolve(body.url, variant_id=body.variant_id, request=body.request)
    if not outcome.ok:
        logger.info(f"Unresolvable {body.url}: {outcome.reason_code}")
    return outcome


@app.post("/api/download", response_model=None)
async def download(body: DownloadRequest, resolver: ModelResolver = Depends(get_resolver)) -> Response:
    """Stream back a validated model file, or the failure outcome with an error status."""
    options = DownloadOptions(timeout_ms=body.timeout_ms, max_bytes=body.max_bytes, headers=body.headers)
    outcome = await resolver.download(body.url, options)

    if not outcome.ok:
        status_code = _DOWNLOAD_ERROR_STATUS.get(outcome.reason_code, 502)
        logger.info(f"Download failed for {body.url}: {outcome.reason_code} ({status_code})")
        return ORJSONResponse(status_code=status_code, content=outcome.model_dump())

    return Response(
        content=outcome.content,
        media_type=outcome.content_type or "application/octet-stream",
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(outcome.filename)}",
            "X-Model-Extension": outcome.extension,
        },
    )


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host="127.0.0.1", port=8000)
