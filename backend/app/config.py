from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".channel-transcripts"
FETCH_POLICIES: frozenset[str] = frozenset({"serial", "concurrent"})
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (("log_dir", Path("logs")),)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "telemetry_enabled",
    "summary_stream",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{CHANNEL_TRANSCRIPTS_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Every option is read from a `CHANNEL_TRANSCRIPTS_*` environment variable
    (or `.env`), and the field description documents what it controls.
    """

    model_config = SettingsConfigDict(
        env_prefix="CHANNEL_TRANSCRIPTS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for logs and local state.",
    )

    # Extraction pipeline.
    default_language: str = Field(
        default="es",
        description="Transcript language used when a request does not specify one.",
    )
    fetch_policy: Literal["serial", "concurrent"] = Field(
        default="concurrent",
        description=(
            "How transcripts are fetched during a channel extraction. `serial` fetches one "
            "video at a time; `concurrent` fans out over the whole filtered batch."
        ),
    )
    listing_max_pages: int = Field(
        default=50,
        ge=1,
        description="Hard ceiling on channel listing pages; reaching it silently truncates.",
    )
    listing_http_timeout_seconds: float = Field(
        default=20.0,
        description="HTTP timeout for each channel listing page request.",
    )
    youtube_user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
        ),
        description="User-Agent sent to YouTube listing endpoints.",
    )
    transcript_timeout_seconds: float = Field(
        default=60.0,
        description=(
            "Upper bound for a single transcript fetch. A fetch that exceeds it is reported "
            "with the fetch-error placeholder."
        ),
    )

    # Summarization.
    openai_api_key: str | None = Field(
        default=None,
        description="API key for the OpenAI-compatible summarization endpoint.",
    )
    openai_base_url: str | None = Field(
        default=None,
        description="Optional base URL for an OpenAI-compatible API (e.g. OpenRouter).",
    )
    summary_model: str = Field(
        default="gpt-4o-mini",
        description="Model used for transcript analysis.",
    )
    summary_temperature: float = Field(
        default=0.5,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for transcript analysis.",
    )
    summary_top_p: float = Field(
        default=0.95,
        gt=0.0,
        le=1.0,
        description="Nucleus sampling parameter for transcript analysis.",
    )
    summary_stream: bool = Field(
        default=False,
        description=(
            "Stream analysis output as `text/plain` instead of returning a single "
            "`{analysis}` JSON object."
        ),
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for backend log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @field_validator("fetch_policy", mode="before")
    @classmethod
    def _normalize_fetch_policy(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("CHANNEL_TRANSCRIPTS_FETCH_POLICY must be a string.")
        normalized = value.strip().lower()
        if normalized in FETCH_POLICIES:
            return normalized
        raise ValueError("CHANNEL_TRANSCRIPTS_FETCH_POLICY must be set to: serial, concurrent.")

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("CHANNEL_TRANSCRIPTS_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("CHANNEL_TRANSCRIPTS_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("default_language", mode="before")
    @classmethod
    def _normalize_default_language(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("CHANNEL_TRANSCRIPTS_DEFAULT_LANGUAGE must be a string.")
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("CHANNEL_TRANSCRIPTS_DEFAULT_LANGUAGE must not be empty.")
        return normalized

    @field_validator("openai_base_url", mode="before")
    @classmethod
    def _normalize_openai_base_url(cls, value: Any) -> str | None:
        normalized = _normalize_optional_text(value)
        if normalized is None:
            return None
        return normalized.rstrip("/")

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator("openai_api_key", mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings() -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    return _resolve_path_fields(settings)
