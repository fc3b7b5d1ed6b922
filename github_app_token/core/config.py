from __future__ import annotations

from pathlib import Path

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from github_app_token.core.errors import ConfigurationError
from github_app_token.utils.parsers import decode_private_key, parse_identifier


class Settings(BaseSettings):
    """Configuration loaded from environment variables (and an optional .env file)."""

    # GitHub App identity; a literal value wins over the matching *_file path
    github_app_id: str | None = None
    github_app_id_file: str = "app-id"
    github_app_private_key: str | None = None
    github_app_private_key_file: str = "private-key.pem"
    github_app_installation_id: str | None = None
    github_app_installation_id_file: str = "installation-id"

    # GitHub
    github_url: str = "https://github.com"
    github_api_url: str = "https://api.github.com"

    # Assertion
    jwt_skew_margin: int = Field(60, ge=0)
    jwt_validity_window: int = Field(600, gt=0, le=600)

    # Retry
    max_attempts: int = Field(4, ge=1, le=10)
    backoff_base: float = Field(1.0, ge=0)
    backoff_max: float = Field(8.0, ge=0)
    request_timeout: float = Field(10.0, gt=0)
    total_deadline: float = Field(60.0, gt=0)

    log_level: str = "WARNING"

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore"
    )


def get_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def read_value(description: str, value: str | None, file_path: str) -> str:
    """Return ``value`` if given, otherwise the contents of ``file_path``."""
    if value is not None:
        return value
    try:
        return Path(file_path).expanduser().read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(
            f"Failed to read {description} from file: {file_path} ({exc.strerror or exc})"
        ) from exc


def load_app_id(settings: Settings) -> int:
    text = read_value("App ID", settings.github_app_id, settings.github_app_id_file)
    try:
        return parse_identifier(text, "App ID")
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc


def load_installation_id(settings: Settings) -> int:
    text = read_value(
        "App installation ID",
        settings.github_app_installation_id,
        settings.github_app_installation_id_file,
    )
    try:
        return parse_identifier(text, "App installation ID")
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc


def load_private_key(settings: Settings) -> str:
    text = read_value(
        "private key",
        settings.github_app_private_key,
        settings.github_app_private_key_file,
    )
    try:
        return decode_private_key(text)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc
