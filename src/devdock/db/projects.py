"""JSON-backed registry of project records."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from pydantic import ValidationError as PydanticValidationError

from devdock.db.json_file import JsonFile
from devdock.errors import NotFoundError
from devdock.models.project import ProjectRecord

logger = structlog.get_logger(__name__)


class ProjectStore:
    """Own the project list and serialize every mutation through one lock.

    Readers get deep copies. Writers go through `transaction()`, which holds the
    writer lock for the whole load-mutate-save sequence and only persists when
    the block exits cleanly.
    """

    def __init__(self, path: Path) -> None:
        self._file = JsonFile(path)
        self._lock = asyncio.Lock()
        self._records: list[ProjectRecord] | None = None

    @property
    def path(self) -> Path:
        return self._file.path

    def load(self) -> list[ProjectRecord]:
        raw = self._file.read(default=[])
        if not isinstance(raw, list):
            logger.warning("projects_file_not_a_list", path=str(self.path))
            return []
        records: list[ProjectRecord] = []
        for item in raw:
            try:
                records.append(ProjectRecord.model_validate(item))
            except PydanticValidationError as exc:
                logger.warning("project_record_skipped", error=str(exc))
        return records

    def save(self, records: list[ProjectRecord]) -> None:
        self._file.write([record.model_dump(mode="json") for record in records])

    def reload(self) -> None:
        """Drop the in-memory copy so the next access re-reads the file."""
        self._records = None

    async def list(self) -> list[ProjectRecord]:
        return [record.model_copy(deep=True) for record in self._current()]

    async def get(self, project_id: str) -> ProjectRecord | None:
        for record in self._current():
            if record.id == project_id:
                return record.model_copy(deep=True)
        return None

    async def get_by_name(self, name: str) -> ProjectRecord | None:
        for record in self._current():
            if record.name == name:
                return record.model_copy(deep=True)
        return None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[list[ProjectRecord]]:
        async with self._lock:
            working = [record.model_copy(deep=True) for record in self._current()]
            yield working
            await asyncio.to_thread(self.save, working)
            self._records = working

    async def add(self, record: ProjectRecord) -> ProjectRecord:
        async with self.transaction() as records:
            records.append(record.model_copy(deep=True))
        return record

    async def update(
        self, project_id: str, mutate: Callable[[ProjectRecord], None]
    ) -> ProjectRecord:
        async with self.transaction() as records:
            record = _find(records, project_id)
            mutate(record)
            updated = record.model_copy(deep=True)
        return updated

    async def delete(self, project_id: str) -> ProjectRecord:
        async with self.transaction() as records:
            record = _find(records, project_id)
            del records[next(i for i, item in enumerate(records) if item is record)]
        logger.info("project_record_deleted", project=record.name)
        return record

    def _current(self) -> list[ProjectRecord]:
        if self._records is None:
            self._records = self.load()
        return self._records


def _find(records: list[ProjectRecord], project_id: str) -> ProjectRecord:
    for record in records:
        if record.id == project_id:
            return record
    msg = f"Project not found: {project_id}"
    raise NotFoundError(msg)
