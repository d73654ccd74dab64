"""Project domain models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from uuid import uuid4

from pydantic import BaseModel, Field


class ProjectStatus(str, Enum):
    """Lifecycle status for a managed project."""

    CREATING = "creating"
    READY = "ready"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


class Template(str, Enum):
    """Project templates devdock can scaffold."""

    LARAVEL = "laravel"
    NODEJS = "nodejs"


class AddonService(str, Enum):
    """Optional containers a project can enable."""

    REDIS = "redis"
    PHPMYADMIN = "phpmyadmin"
    MAILHOG = "mailhog"


class ProjectConfig(BaseModel):
    """Add-ons, language versions and package managers chosen at creation."""

    services: list[AddonService] = Field(default_factory=list)
    php_version: str = "8.2"
    node_version: str = "18"
    install_bun: bool = False
    install_pnpm: bool = False

    def has(self, service: AddonService) -> bool:
        return service in self.services


class ProjectRecord(BaseModel):
    """Persisted metadata for one managed project."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    template: Template
    path: Path
    ports: dict[str, int] = Field(default_factory=dict)
    status: ProjectStatus = ProjectStatus.CREATING
    config: ProjectConfig = Field(default_factory=ProjectConfig)
    custom_domain: str | None = None
    progress: str | None = None
    error: str | None = None
    containers: dict[str, str] = Field(default_factory=dict)
    discovered: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_activity: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_checked: datetime | None = None

    @property
    def src_path(self) -> Path:
        return self.path / "src"

    @property
    def docker_path(self) -> Path:
        return self.path / "docker"

    @property
    def compose_file(self) -> Path:
        return self.path / "docker-compose.yml"

    @property
    def env_file(self) -> Path:
        return self.src_path / ".env"

    def touch(self) -> None:
        """Update activity timestamp."""
        self.last_activity = datetime.now(UTC)
