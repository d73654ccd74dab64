"""Project API schemas."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from devdock.models.project import ProjectConfig, ProjectRecord, Template


class CreateProjectRequest(BaseModel):
    """Payload for scaffolding a project."""

    name: str
    template: Template
    config: ProjectConfig = Field(default_factory=ProjectConfig)
    ports: dict[str, int] = Field(default_factory=dict)


class UpdateProjectRequest(BaseModel):
    """Port or domain changes; omitted fields are left untouched."""

    ports: dict[str, int] | None = None
    custom_domain: str | None = None
    regenerate_docker: bool = False


class CheckPortsRequest(BaseModel):
    ports: dict[str, int]
    exclude_project_id: str | None = None


class EnvUpdateRequest(BaseModel):
    content: str


class ProjectsResponse(BaseModel):
    """Collection response for projects."""

    success: bool = True
    data: list[ProjectRecord]


class ProjectResponse(BaseModel):
    success: bool = True
    data: ProjectRecord
    operation: dict[str, Any] | None = None
