from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Closed set shared by resolve and download outcomes
ReasonCode = Literal[
    "invalid_url",
    "not_found",
    "upstream_blocked",
    "timeout",
    "malformed_payload",
    "network_error",
    "incompatible_profile",
    "missing_profile_metrics",
    "download_unavailable",
    "unsupported_model_format",
]

DataSource = Literal["api", "next_data"]
SelectionStrategy = Literal["requested_variant_id", "user_selected_variant", "shortest_time_fallback"]
ResolutionMode = Literal["strict", "relaxed_printer"]
ResolutionConfidence = Literal["high", "medium"]
ModelExtension = Literal["stl", "obj", "3mf"]
Material = Literal["PLA", "PETG", "other_request"]


class SettingsSummary(BaseModel):
    """Slicer settings recovered from a variant node. Every field is optional."""

    layer_height_mm: float | None = None
    nozzle_mm: float | None = None
    infill_percent: float | None = None
    support_enabled: bool | None = None
    wall_loops: float | None = None
    speed_profile: str | None = None
    filament_profile: str | None = None

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class AvailableVariant(BaseModel):
    """A metric-complete variant offered alongside the selected one."""

    variant_id: int | None = None
    profile_id: int | None = None
    name: str
    printer: str
    material: str
    estimated_hours: float
    estimated_grams: float


class ResolvedData(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_kind: Literal["makerworld"] = "makerworld"
    source_provider: Literal["makerworld"] = "makerworld"
    source_url: str
    source_model_title: str
    download_url: str | None = None
    file_original_name: str
    selected_variant_id: int | None = None
    selected_profile_id: int | None = None
    selection_strategy: SelectionStrategy
    available_variants: list[AvailableVariant]
    import_warnings: list[str] = []
    profile_resolution_mode: ResolutionMode
    profile_resolution_confidence: ResolutionConfidence
    source_profile_id: int | None = None
    source_profile_name: str
    source_profile_printer: str
    source_profile_material: str
    source_profile_estimated_grams: float
    source_profile_estimated_hours: float
    source_profile_payload: dict[str, Any]
    source_settings_summary: SettingsSummary
    locked_material: Material

    @field_validator("import_warnings")
    @classmethod
    def dedupe_warnings(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


class Attempt(BaseModel):
    source: DataSource
    ok: bool
    reason_code: ReasonCode | None = None
    message: str


class Diagnostics(BaseModel):
    """Attempt log for one resolve call. Built incrementally, never persisted."""

    pipeline: list[DataSource] = []
    warnings: list[str] = []
    attempts: list[Attempt] = []


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class ResolveSuccess(BaseModel):
    ok: Literal[True] = True
    state: Literal["resolved"] = "resolved"
    data: ResolvedData
    diagnostics: Diagnostics


class ResolveFailure(BaseModel):
    ok: Literal[False] = False
    state: Literal["unresolvable"] = "unresolvable"
    reason_code: ReasonCode
    message: str
    diagnostics: Diagnostics


ResolveOutcome = Annotated[ResolveSuccess | ResolveFailure, Field(discriminator="state")]


class DownloadSuccess(BaseModel):
    ok: Literal[True] = True
    state: Literal["downloaded"] = "downloaded"
    content: bytes = Field(repr=False, exclude=True)
    size_bytes: int
    filename: str
    extension: ModelExtension
    content_type: str | None = None
    final_url: str


class DownloadFailure(BaseModel):
    ok: Literal[False] = False
    state: Literal["unavailable"] = "unavailable"
    reason_code: ReasonCode
    message: str


DownloadOutcome = Annotated[DownloadSuccess | DownloadFailure, Field(discriminator="state")]


# ---------------------------------------------------------------------------
# Caller options
# ---------------------------------------------------------------------------


class RequestOptions(BaseModel):
    """Per-call overrides for design-service requests."""

    timeout_ms: float | None = None
    retries: int | None = None
    headers: dict[str, str] = {}


class DownloadOptions(BaseModel):
    timeout_ms: float | None = None
    max_bytes: int | None = None
    headers: dict[str, str] = {}
