"""Runtime settings for devdock."""

from __future__ import annotations

import sys
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BUNDLED_TEMPLATES_DIR = Path(__file__).parent / "templates"

UNIX_HOSTS_FILE = Path("/etc/hosts")
WINDOWS_HOSTS_FILE = Path(r"C:\Windows\System32\drivers\etc\hosts")


def default_hosts_file() -> Path:
    return WINDOWS_HOSTS_FILE if sys.platform == "win32" else UNIX_HOSTS_FILE


class Settings(BaseSettings):
    """Application settings, read from `DEVDOCK_*` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DEVDOCK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    data_dir: Path = Path("data")
    projects_dir: Path = Path("projects")
    templates_dir: Path = BUNDLED_TEMPLATES_DIR
    hosts_file: Path = Field(default_factory=default_hosts_file)

    host: str = "127.0.0.1"
    port: int = 5001
    proxy_port: int = 80
    compose_command: list[str] = Field(default_factory=lambda: ["docker", "compose"])

    poll_interval_seconds: float = Field(default=30.0, ge=0)
    discover_on_startup: bool = True
    command_timeout_seconds: float = Field(default=600.0, gt=0)
    probe_timeout_seconds: float = Field(default=5.0, gt=0)

    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "console"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        upper = value.upper()
        if upper not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            msg = f"Invalid log level: {value}"
            raise ValueError(msg)
        return upper

    @property
    def projects_file(self) -> Path:
        return self.data_dir / "projects.json"

    @property
    def proxy_config_file(self) -> Path:
        return self.data_dir / "proxy-config.json"

    @property
    def ngrok_config_file(self) -> Path:
        return self.data_dir / "ngrok-config.json"

    @property
    def history_db(self) -> Path:
        return self.data_dir / "operations.db"


@lru_cache
def get_settings() -> Settings:
    return Settings()
