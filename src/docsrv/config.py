"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (DOCSRV__GITHUB__API_KEY=...)
  2. docsrv.yaml            (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The host → project mapping lives in a separate file (see mapping.py) whose
path is ``paths.hosts_file``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

DEFAULT_REFRESH_INTERVAL_MINUTES = 5
DEFAULT_PER_PAGE = 100


def _find_config_file() -> str | None:
    """Return the path of the first docsrv.yaml found, or None."""
    candidates = [
        Path("docsrv.yaml"),
        Path(platformdirs.user_config_dir("docsrv")) / "docsrv.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 9091
    # Builds can take minutes; keep idle connections around long enough.
    timeout_keep_alive: int = 300


class GitHubSettings(BaseModel):
    api_key: str = ""
    api_url: str = "https://api.github.com"
    per_page: int = DEFAULT_PER_PAGE

    @field_validator("per_page")
    @classmethod
    def default_per_page(cls, v: int) -> int:
        return v if v > 0 else DEFAULT_PER_PAGE


class PathSettings(BaseModel):
    base_folder: str = "/var/www/public"
    shared_folder: str = "/etc/shared"
    hosts_file: str = "/etc/docsrv/conf.d/hosts.yaml"


class IndexSettings(BaseModel):
    refresh_interval_minutes: int = DEFAULT_REFRESH_INTERVAL_MINUTES

    @field_validator("refresh_interval_minutes")
    @classmethod
    def default_interval(cls, v: int) -> int:
        return v if v >= 1 else DEFAULT_REFRESH_INTERVAL_MINUTES


class BuildSettings(BaseModel):
    command: list[str] = ["make", "docs"]
    download_timeout_seconds: float = 300.0


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: DOCSRV__SERVER__PORT=9090
        env_prefix="DOCSRV__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    server: ServerSettings = ServerSettings()
    github: GitHubSettings = GitHubSettings()
    paths: PathSettings = PathSettings()
    index: IndexSettings = IndexSettings()
    build: BuildSettings = BuildSettings()
    logging: LoggingSettings = LoggingSettings()
    refresh_token: str = ""

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
        )
