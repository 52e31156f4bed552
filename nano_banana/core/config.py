"""Central runtime configuration for nano-banana-mcp."""

from __future__ import annotations

from functools import lru_cache
import re

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_HEX_COLOR_RE = re.compile(r"^#?(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
_FLATTEN_KEYWORDS = {"auto", "off", "none", "false", ""}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    env: str = "development"
    log_level: str = "INFO"
    port: int = 8000
    app_name: str = "nano-banana-mcp"
    app_version: str = "0.1.0"
    nano_banana_model: str = "gemini-3-pro-image-preview"
    vertex_location: str = "global"
    vertex_project_id: str = Field(
        default="",
        validation_alias=AliasChoices("VERTEX_PROJECT_ID", "GOOGLE_CLOUD_PROJECT", "GCLOUD_PROJECT"),
    )
    vertex_timeout_seconds: int = 180
    google_service_account_json: str = ""
    nano_banana_gcs_bucket: str = ""
    nano_banana_gcs_prefix: str = "nano-banana/refs"
    gcs_timeout_seconds: int = 60
    image_provider: str = "vertex"
    object_store: str = "gcs"
    redis_url: str = ""
    task_ttl_seconds: int = 3600
    auto_task_enabled: bool = True
    auto_task_image_sizes: str = "4K"
    auto_task_min_candidates: int = 4
    progress_heartbeat_seconds: float = 10.0
    transparency_tolerance: int = 24
    transparency_feather: int = 0
    transparency_auto_feather: int = 12
    transparency_fallback_color: str = "#ffffff"
    transparency_min_coverage: float = 0.5
    transparency_tolerance_percentile: float = 90.0
    transparency_tolerance_margin: int = 6
    background_quantization_step: int = 8
    background_max_colors: int = 2
    flatten_background: str = "off"
    metrics_enabled: bool = True
    sentry_dsn: str = ""
    sentry_traces_sample_rate: float = 0.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    def auto_task_size_set(self) -> set[str]:
        return {item.strip().upper() for item in self.auto_task_image_sizes.split(",") if item.strip()}


def _validate(settings: Settings) -> Settings:
    if settings.image_provider.strip().lower() not in {"vertex", "mock"}:
        raise ValueError("IMAGE_PROVIDER must be one of: vertex, mock.")
    if settings.object_store.strip().lower() not in {"gcs", "memory"}:
        raise ValueError("OBJECT_STORE must be one of: gcs, memory.")
    if settings.task_ttl_seconds < 0:
        raise ValueError("TASK_TTL_SECONDS must be zero or positive.")
    if settings.progress_heartbeat_seconds <= 0:
        raise ValueError("PROGRESS_HEARTBEAT_SECONDS must be positive.")
    if settings.auto_task_min_candidates < 1:
        raise ValueError("AUTO_TASK_MIN_CANDIDATES must be at least 1.")
    for name in ("transparency_tolerance", "transparency_feather", "transparency_auto_feather"):
        value = getattr(settings, name)
        if value < 0 or value > 255:
            raise ValueError(f"{name.upper()} must be between 0 and 255.")
    if settings.transparency_tolerance_margin < 0:
        raise ValueError("TRANSPARENCY_TOLERANCE_MARGIN must be zero or positive.")
    if settings.transparency_min_coverage < 0 or settings.transparency_min_coverage > 1:
        raise ValueError("TRANSPARENCY_MIN_COVERAGE must be between 0 and 1.")
    if settings.transparency_tolerance_percentile < 0 or settings.transparency_tolerance_percentile > 100:
        raise ValueError("TRANSPARENCY_TOLERANCE_PERCENTILE must be between 0 and 100.")
    if settings.background_quantization_step < 1:
        raise ValueError("BACKGROUND_QUANTIZATION_STEP must be at least 1.")
    if settings.background_max_colors < 1:
        raise ValueError("BACKGROUND_MAX_COLORS must be at least 1.")
    if not _HEX_COLOR_RE.match(settings.transparency_fallback_color.strip()):
        raise ValueError("TRANSPARENCY_FALLBACK_COLOR must be a #rgb or #rrggbb color.")
    flatten = settings.flatten_background.strip().lower()
    if flatten not in _FLATTEN_KEYWORDS and not _HEX_COLOR_RE.match(flatten):
        raise ValueError("FLATTEN_BACKGROUND must be auto, off, or a hex color.")
    if settings.sentry_traces_sample_rate < 0 or settings.sentry_traces_sample_rate > 1:
        raise ValueError("SENTRY_TRACES_SAMPLE_RATE must be between 0 and 1.")
    return settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return validated settings as a cached singleton."""

    return _validate(Settings())
