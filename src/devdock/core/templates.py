"""Catalog of project templates shipped as `config.json` plus stub files."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from devdock.errors import NotFoundError

logger = structlog.get_logger(__name__)

STUB_SUFFIX = ".stub"
ROOT_OUTPUTS = frozenset({"docker-compose.yml", "Dockerfile", "Makefile"})
SRC_OUTPUTS = frozenset({".env"})


@dataclass(slots=True)
class TemplateInfo:
    """Template metadata read from its `config.json`."""

    id: str
    config: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {"id": self.id, **self.config}


def output_location(stub_name: str) -> tuple[str, str]:
    """Map a stub file name to `(area, file name)` where area is root, src or docker."""
    output = stub_name.removesuffix(STUB_SUFFIX)
    if output in ROOT_OUTPUTS:
        return "root", output
    if output in SRC_OUTPUTS:
        return "src", output
    return "docker", output


class TemplateCatalog:
    """Read-only view over the templates directory."""

    def __init__(self, root: Path) -> None:
        self._root = root

    def list(self) -> list[TemplateInfo]:
        templates: list[TemplateInfo] = []
        if not self._root.is_dir():
            return templates
        for directory in sorted(self._root.iterdir()):
            if not directory.is_dir():
                continue
            try:
                templates.append(self.get(directory.name))
            except NotFoundError:
                logger.warning("template_config_invalid", template=directory.name)
        return templates

    def get(self, template_id: str) -> TemplateInfo:
        config_path = self._template_dir(template_id) / "config.json"
        try:
            config = json.loads(config_path.read_text(encoding="utf-8"))
        except (FileNotFoundError, json.JSONDecodeError) as exc:
            msg = f"Template not found: {template_id}"
            raise NotFoundError(msg) from exc
        return TemplateInfo(id=template_id, config=config)

    def stubs(self, template_id: str) -> dict[str, str]:
        stubs_dir = self._template_dir(template_id) / "stubs"
        if not stubs_dir.is_dir():
            msg = f"Template stubs not found: {template_id}"
            raise NotFoundError(msg)
        return {
            path.name: path.read_text(encoding="utf-8")
            for path in sorted(stubs_dir.iterdir())
            if path.is_file() and path.name.endswith(STUB_SUFFIX)
        }

    def _template_dir(self, template_id: str) -> Path:
        candidate = (self._root / template_id).resolve()
        if candidate.parent != self._root.resolve():
            msg = f"Template not found: {template_id}"
            raise NotFoundError(msg)
        return candidate
