"""Client configuration loaded from environment variables and the .env file."""

from __future__ import annotations

from typing import Literal

from dotenv import load_dotenv
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_AUTH_BASE_URL = "https://identitytoolkit.googleapis.com/v1"


class VivaSettings(BaseSettings):
    """Viva API configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="VIVA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    base_url: str = ""
    auth_base_url: str = DEFAULT_AUTH_BASE_URL
    auth_api_key: str = ""
    referer: str = "https://dev.vivamove.io"
    secure_store_path: str = ".viva_session"
    timeout: float = 30.0
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = False
    log_bodies: bool = False

    @model_validator(mode="after")
    def validate_endpoints(self) -> VivaSettings:
        """Validate that the backend endpoints are configured."""
        if not self.base_url or self.base_url == "your_base_url_here":
            raise ValueError("VIVA_BASE_URL is not configured. Please set it in your .env file.")
        if not self.referer:
            raise ValueError("VIVA_REFERER must not be empty.")
        self.base_url = self.base_url.rstrip("/")
        self.auth_base_url = self.auth_base_url.rstrip("/")
        return self


def load_settings() -> VivaSettings:
    """Load configuration from .env file."""
    load_dotenv()
    return VivaSettings()
