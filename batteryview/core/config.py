"""Configuration management using Pydantic Settings."""

from pathlib import Path

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _drop_blank(section: dict) -> dict:
    return {key: value for key, value in section.items() if value not in (None, "")}


class GeminiConfig(BaseSettings):
    """Configuration for the Gemini vision/text API."""

    model_config = SettingsConfigDict(env_prefix="GEMINI_", case_sensitive=False)

    api_key: str = ""
    api_url: str = "https://generativelanguage.googleapis.com/v1beta"
    vision_model: str = "gemini-1.5-flash-latest"
    text_model: str = "gemini-1.5-flash-latest"
    timeout: float = Field(default=60.0, gt=0, le=600)

    @property
    def has_credentials(self) -> bool:
        """True when an API key is configured."""
        return bool(self.api_key.strip())


class UploadConfig(BaseSettings):
    """Configuration for the screenshot upload queue."""

    rate_limit_backoff: float = Field(default=60.0, ge=0)
    settle_delay: float = Field(default=1.5, ge=0)
    url_timeout: float = Field(default=30.0, gt=0)


class AdvisoryConfig(BaseSettings):
    """Configuration for the advisory cycle (health summary, alerts, insights)."""

    debounce: float = Field(default=1.5, ge=0)
    soc_threshold: float = Field(default=2.0, gt=0)
    cell_diff_threshold: float = Field(default=0.005, gt=0)
    # Older summary flows expected 0.0 instead of null for missing cell data
    coerce_null_cell_voltages: bool = False
    insights_freshness_hours: float = Field(default=12.0, gt=0)
    location: str = "Pahoa, HI"


class NotificationConfig(BaseSettings):
    """Configuration for user-visible notifications."""

    enabled: bool = True
    urls: str = ""  # Apprise URLs, comma separated
    history_size: int = Field(default=1000, ge=1)


class BackupConfig(BaseSettings):
    """Configuration for battery data backups."""

    directory: str = "backups"


class LoggingConfig(BaseSettings):
    """Configuration for logging."""

    level: str = Field(default="INFO")
    format: str = Field(default="json")  # json or text
    file: str = ""

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        if v.lower() not in ("json", "text"):
            raise ValueError(f"Invalid log format: {v}. Must be 'json' or 'text'")
        return v.lower()


class AppConfig(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(env_prefix="BATTERYVIEW_", case_sensitive=False)

    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    upload: UploadConfig = Field(default_factory=UploadConfig)
    advisory: AdvisoryConfig = Field(default_factory=AdvisoryConfig)
    notification: NotificationConfig = Field(default_factory=NotificationConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: Path | str) -> "AppConfig":
        """Load configuration from YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with path.open() as f:
            data = yaml.safe_load(f) or {}

        # Convert nested dicts to config objects. Blank values fall back to
        # the environment or the default
        data = {
            key: _drop_blank(value) if isinstance(value, dict) else value
            for key, value in data.items()
        }

        if "gemini" in data:
            data["gemini"] = GeminiConfig(**data["gemini"])

        if "upload" in data:
            data["upload"] = UploadConfig(**data["upload"])

        if "advisory" in data:
            data["advisory"] = AdvisoryConfig(**data["advisory"])

        if "notification" in data:
            data["notification"] = NotificationConfig(**data["notification"])

        if "backup" in data:
            data["backup"] = BackupConfig(**data["backup"])

        if "logging" in data:
            data["logging"] = LoggingConfig(**data["logging"])

        return cls(**data)
