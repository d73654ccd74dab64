"""Flat JSON file persistence with atomic replace."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


def write_text_atomic(path: Path, text: str) -> None:
    """Write `text` to a sibling temp file, fsync it and rename it over `path`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class JsonFile:
    """One JSON document on disk, written via temp file and `os.replace`."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def read(self, default: Any) -> Any:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("json_file_missing", path=str(self.path))
            return default
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            logger.warning("json_file_corrupt", path=str(self.path), error=str(exc))
            return default

    def write(self, data: Any) -> None:
        write_text_atomic(self.path, json.dumps(data, indent=2) + "\n")
