"""Configuration and environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

load_dotenv(Path(__file__).parent / ".env")

# --- Upstream ---
SITE_DOMAIN = "makerworld.com"
SITE_BASE_URL = f"https://{SITE_DOMAIN}"
DESIGN_SERVICE_BASE_URL = f"{SITE_BASE_URL}/v1/design-service"

# --- Target printer ---
TARGET_PRINTER = os.getenv("MAKERWORLD_TARGET_PRINTER", "Bambu Lab P2S")

# --- Timeouts / retries ---
API_TIMEOUT_MS = float(os.getenv("MAKERWORLD_API_TIMEOUT_MS", "8000"))
API_RETRIES = int(os.getenv("MAKERWORLD_API_RETRIES", "1"))
PAGE_TIMEOUT_MS = float(os.getenv("MAKERWORLD_PAGE_TIMEOUT_MS", "12000"))
DOWNLOAD_TIMEOUT_MS = float(os.getenv("MAKERWORLD_DOWNLOAD_TIMEOUT_MS", "20000"))

# --- Byte caps ---
MAX_PAGE_BYTES = int(os.getenv("MAKERWORLD_MAX_PAGE_BYTES", str(3 * 1024 * 1024)))
MAX_DOWNLOAD_BYTES = int(os.getenv("MAKERWORLD_MAX_DOWNLOAD_BYTES", str(50 * 1024 * 1024)))

# --- Headers ---
USER_AGENT = os.getenv("MAKERWORLD_USER_AGENT", "3d-printing-service/1.0")

API_HEADERS = {
    "user-agent": USER_AGENT,
    "accept": "application/json,text/plain,*/*",
    "x-bbl-client-type": "web",
    "x-bbl-client-version": "00.00.00.01",
    "x-bbl-app-source": "makerworld",
    "x-bbl-client-name": "MakerWorld",
}
PAGE_HEADERS = {"user-agent": USER_AGENT, "accept": "text/html,*/*"}
DOWNLOAD_HEADERS = {"user-agent": USER_AGENT, "accept": "*/*"}


class ResolverConfig(BaseModel):
    """Immutable settings handed to the resolver at construction."""

    model_config = ConfigDict(frozen=True)

    site_domain: str = SITE_DOMAIN
    site_base_url: str = SITE_BASE_URL
    api_base_url: str = DESIGN_SERVICE_BASE_URL
    target_printer: str = TARGET_PRINTER
    api_headers: dict[str, str] = API_HEADERS
    page_headers: dict[str, str] = PAGE_HEADERS
    download_headers: dict[str, str] = DOWNLOAD_HEADERS
    api_timeout_ms: float = API_TIMEOUT_MS
    api_retries: int = API_RETRIES
    page_timeout_ms: float = PAGE_TIMEOUT_MS
    max_page_bytes: int = MAX_PAGE_BYTES
    download_timeout_ms: float = DOWNLOAD_TIMEOUT_MS
    max_download_bytes: int = MAX_DOWNLOAD_BYTES


def load_config(**overrides) -> ResolverConfig:
    """Build a config from the environment defaults, applying keyword overrides."""
    return ResolverConfig(**overrides)
