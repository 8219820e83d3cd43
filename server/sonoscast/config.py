"""Application configuration with JSON file persistence."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel
from pydantic_settings import BaseSettings


# Config file location (can be overridden by CONFIG_DIR env var)
CONFIG_DIR = Path(os.getenv("CONFIG_DIR", "/app/config"))
SETTINGS_FILE = CONFIG_DIR / "settings.json"
TOKENS_FILE = CONFIG_DIR / "tokens.json"


class CastBreezeConfig(BaseModel):
    url: str = "https://api.casttosonos.com"
    timeout: float = 30


class OAuthConfig(BaseModel):
    client_id: str = "zapier-client-1"
    scope: str = "playback-control-all"
    redirect_uri: str = "http://localhost:8000/oauth/callback"
    refresh_skew: int = 60


class Settings(BaseSettings):
    # Remote casting API
    castbreeze_api_url: str = "https://api.casttosonos.com"
    castbreeze_timeout: float = 30

    # OAuth client registration
    oauth_client_id: str = "zapier-client-1"
    oauth_scope: str = "playback-control-all"
    oauth_redirect_uri: str = "http://localhost:8000/oauth/callback"
    # Refresh this many seconds before the stored token's known expiry
    token_refresh_skew: int = 60

    # Audio clip identity shown on the speaker
    clip_app_id: str = "com.casttosonos.zapier"
    clip_name: str = "Zapier Audio Clip"

    # Token storage - empty = CONFIG_DIR/tokens.json
    token_file: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @property
    def castbreeze(self) -> CastBreezeConfig:
        return CastBreezeConfig(
            url=self.castbreeze_api_url,
            timeout=self.castbreeze_timeout,
        )

    @property
    def oauth(self) -> OAuthConfig:
        return OAuthConfig(
            client_id=self.oauth_client_id,
            scope=self.oauth_scope,
            redirect_uri=self.oauth_redirect_uri,
            refresh_skew=self.token_refresh_skew,
        )

    @property
    def token_path(self) -> Path:
        return Path(self.token_file) if self.token_file else TOKENS_FILE


_settings: Settings | None = None


def load_settings_from_file() -> dict[str, Any]:
    """Load settings from JSON file if it exists."""
    if SETTINGS_FILE.exists():
        try:
            with open(SETTINGS_FILE) as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError):
            pass
    return {}


def save_settings_to_file(settings: dict[str, Any]) -> bool:
    """Save settings to JSON file."""
    try:
        CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        with open(SETTINGS_FILE, "w") as f:
            json.dump(settings, f, indent=2)
        return True
    except IOError:
        return False


def get_settings() -> Settings:
    """Get settings, merging env vars with JSON file (JSON takes precedence)."""
    global _settings
    if _settings is None:
        # Load base settings from env
        _settings = Settings()

        # Override with JSON file settings
        file_settings = load_settings_from_file()
        if file_settings:
            for key, value in file_settings.items():
                if key in Settings.model_fields:
                    setattr(_settings, key, value)

    return _settings


def update_settings(updates: dict[str, Any]) -> Settings:
    """Update settings and persist to JSON file."""
    settings = get_settings()

    file_settings = load_settings_from_file()

    for key, value in updates.items():
        if key in Settings.model_fields:
            setattr(settings, key, value)
            file_settings[key] = value

    save_settings_to_file(file_settings)

    return settings


def get_editable_settings() -> dict[str, Any]:
    """Get settings that can be edited through the API."""
    settings = get_settings()
    return {
        "castbreeze_api_url": settings.castbreeze_api_url,
        "castbreeze_timeout": settings.castbreeze_timeout,
        "oauth_client_id": settings.oauth_client_id,
        "oauth_scope": settings.oauth_scope,
        "oauth_redirect_uri": settings.oauth_redirect_uri,
        "token_refresh_skew": settings.token_refresh_skew,
        "clip_app_id": settings.clip_app_id,
        "clip_name": settings.clip_name,
    }


def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() re-reads env and file."""
    global _settings
    _settings = None
