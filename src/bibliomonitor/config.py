"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (BIBLIOMONITOR__CHECKS__TIMEOUT_MS=500)
  2. bibliomonitor.yaml     (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional; all fields have sensible defaults. The source
URL and API domain default to empty, which disables the routes that need them.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

import platformdirs
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("bibliomonitor")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "cache.db")


def _find_config_file() -> str | None:
    """Return the path of the first bibliomonitor.yaml found, or None."""
    candidates = [
        Path("bibliomonitor.yaml"),
        Path(platformdirs.user_config_dir("bibliomonitor")) / "bibliomonitor.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8787


class SourceSettings(BaseModel):
    url: str = ""


class ChecksSettings(BaseModel):
    timeout_ms: int = Field(default=2000, ge=1)
    concurrency_limit: int = Field(default=5, ge=1)
    # Comma-separated in env vars: BIBLIOMONITOR__CHECKS__WHITELIST=https://a,https://b
    whitelist: Annotated[frozenset[str], NoDecode] = frozenset()

    @field_validator("whitelist", mode="before")
    @classmethod
    def split_whitelist(cls, v: Any) -> Any:
        if isinstance(v, str):
            return frozenset(url.strip() for url in v.split(",") if url.strip())
        return v


class CacheSettings(BaseModel):
    ttl_seconds: int = Field(default=300, ge=1)
    db_path: str = _DEFAULT_DB_PATH
    cleanup_interval_hours: int = 6
    # At most one background refresh per key instead of one per stale read
    single_flight_refresh: bool = False


class ApiCheckSettings(BaseModel):
    domain: str = ""


class NotifySettings(BaseModel):
    ntfy_url: str = ""


class HttpSettings(BaseModel):
    user_agent: str = "bibliomonitor/1.0"
    max_connections: int = 20
    max_keepalive_connections: int = 10


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: BIBLIOMONITOR__SERVER__PORT=9090
        env_prefix="BIBLIOMONITOR__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    server: ServerSettings = ServerSettings()
    source: SourceSettings = SourceSettings()
    checks: ChecksSettings = ChecksSettings()
    cache: CacheSettings = CacheSettings()
    api_check: ApiCheckSettings = ApiCheckSettings()
    notify: NotifySettings = NotifySettings()
    http: HttpSettings = HttpSettings()
    logging: LoggingSettings = LoggingSettings()

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
            # dotenv and file secrets intentionally excluded
        )
