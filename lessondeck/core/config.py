"""Application settings loaded from environment variables."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from lessondeck.core.constants import (
    BACKOFF_BASE_SECONDS_DEFAULT,
    BACKOFF_CAP_SECONDS_DEFAULT,
    BACKOFF_JITTER_SECONDS_DEFAULT,
    DECK_FORMATS,
    DEFAULT_DECK_FORMAT,
    DEFAULT_THEME_NAME,
    EXPORT_FORMATS,
    GAMMA_API_BASE_DEFAULT,
    POLL_INTERVAL_SECONDS_DEFAULT,
    POLL_MAX_ATTEMPTS_DEFAULT,
    REQUEST_TIMEOUT_SECONDS_DEFAULT,
    SUBMIT_MAX_ATTEMPTS_DEFAULT,
)
from lessondeck.core.errors import ConfigurationError


class Settings(BaseSettings):
    """
    Configuration loaded from environment variables.

    Secrets are optional at load time so that a missing key surfaces as a
    ConfigurationError from the code path that needs it.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ---------------------------------------------------------------------------
    # Gamma API (required secrets)
    # ---------------------------------------------------------------------------
    gamma_api_key: str = Field(default="", validation_alias="GAMMA_KEY")
    host: str = Field(default="", validation_alias="HOST")
    gamma_api_base: str = Field(default=GAMMA_API_BASE_DEFAULT, validation_alias="GAMMA_API_BASE")

    # ---------------------------------------------------------------------------
    # Deck defaults (optional)
    # ---------------------------------------------------------------------------
    deck_format: str = Field(default=DEFAULT_DECK_FORMAT, validation_alias="DECK_FORMAT")
    theme_name: str = Field(default=DEFAULT_THEME_NAME, validation_alias="THEME_NAME")
    export_as: str | None = Field(default=None, validation_alias="EXPORT_AS")
    deck_language: str = Field(default="en", validation_alias="DECK_LANGUAGE")

    # ---------------------------------------------------------------------------
    # Input / output (optional)
    # ---------------------------------------------------------------------------
    lessons_dir: str = Field(default="./lessons", validation_alias="LESSONS_DIR")
    deck_file: str = Field(default="deck.md", validation_alias="DECK_FILE")
    batch_csv: str | None = Field(default=None, validation_alias="BATCH_CSV")
    output_dir: str = Field(default="./site", validation_alias="OUTPUT_DIR")
    download_exports: bool = Field(default=False, validation_alias="DOWNLOAD_EXPORTS")

    # ---------------------------------------------------------------------------
    # Polling / backoff (optional)
    # ---------------------------------------------------------------------------
    poll_max_attempts: int = Field(default=POLL_MAX_ATTEMPTS_DEFAULT, validation_alias="POLL_MAX_ATTEMPTS")
    poll_interval_seconds: float = Field(
        default=POLL_INTERVAL_SECONDS_DEFAULT,
        validation_alias="POLL_INTERVAL_SECONDS",
    )
    backoff_base_seconds: float = Field(
        default=BACKOFF_BASE_SECONDS_DEFAULT,
        validation_alias="BACKOFF_BASE_SECONDS",
    )
    backoff_cap_seconds: float = Field(default=BACKOFF_CAP_SECONDS_DEFAULT, validation_alias="BACKOFF_CAP_SECONDS")
    backoff_jitter_seconds: float = Field(
        default=BACKOFF_JITTER_SECONDS_DEFAULT,
        validation_alias="BACKOFF_JITTER_SECONDS",
    )
    submit_max_attempts: int = Field(default=SUBMIT_MAX_ATTEMPTS_DEFAULT, validation_alias="SUBMIT_MAX_ATTEMPTS")
    request_timeout_seconds: float = Field(
        default=REQUEST_TIMEOUT_SECONDS_DEFAULT,
        validation_alias="REQUEST_TIMEOUT_SECONDS",
    )

    @field_validator(
        "gamma_api_key",
        "host",
        "gamma_api_base",
        "deck_format",
        "theme_name",
        "deck_language",
        "lessons_dir",
        "deck_file",
        "output_dir",
        mode="before",
    )
    @classmethod
    def _strip_strings(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("export_as", "batch_csv", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @field_validator("deck_format")
    @classmethod
    def _check_deck_format(cls, value: str) -> str:
        value = value.lower() or DEFAULT_DECK_FORMAT
        if value not in DECK_FORMATS:
            raise ValueError(f"DECK_FORMAT must be one of {', '.join(DECK_FORMATS)}.")
        return value

    @field_validator("export_as")
    @classmethod
    def _check_export_as(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.lower()
        if value not in EXPORT_FORMATS:
            raise ValueError(f"EXPORT_AS must be one of {', '.join(EXPORT_FORMATS)}.")
        return value

    @field_validator("poll_max_attempts", "submit_max_attempts")
    @classmethod
    def _clamp_attempts(cls, value: int) -> int:
        return max(1, value)

    @field_validator(
        "poll_interval_seconds",
        "backoff_base_seconds",
        "backoff_cap_seconds",
        "backoff_jitter_seconds",
    )
    @classmethod
    def _clamp_non_negative(cls, value: float) -> float:
        return max(0.0, value)

    @model_validator(mode="after")
    def _clamp_jitter_to_base(self) -> Settings:
        # Backoff delays only grow monotonically while jitter <= base.
        self.backoff_jitter_seconds = min(self.backoff_jitter_seconds, self.backoff_base_seconds)
        return self

    def require_host(self) -> str:
        if not self.host:
            raise ConfigurationError("HOST is not configured.")
        return self.host.rstrip("/")


@dataclass(frozen=True)
class ClientConfig:
    """Connection settings for one batch run, injected into GammaClient."""

    api_key: str
    api_base: str = GAMMA_API_BASE_DEFAULT
    timeout_seconds: float = REQUEST_TIMEOUT_SECONDS_DEFAULT

    @classmethod
    def from_settings(cls, settings: Settings) -> ClientConfig:
        if not settings.gamma_api_key:
            raise ConfigurationError("GAMMA_KEY is not configured.")

        api_base = settings.gamma_api_base or GAMMA_API_BASE_DEFAULT
        if not (api_base.startswith("http://") or api_base.startswith("https://")):
            raise ConfigurationError("GAMMA_API_BASE must be an absolute http(s) URL.")

        return cls(
            api_key=settings.gamma_api_key,
            api_base=api_base.rstrip("/"),
            timeout_seconds=settings.request_timeout_seconds,
        )


def load_settings(**overrides: object) -> Settings:
    """Build settings; `overrides` are keyed by env var name and win over the environment."""
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc

