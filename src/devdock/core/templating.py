"""Placeholder rendering for template stub files."""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict

from devdock.errors import TemplateRenderError

PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z0-9_]+)\s*\}\}")


class StubSlots(BaseModel):
    """Closed set of values a stub may reference.

    A slot left as `None` is unavailable for this project; a stub that
    references it fails to render.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    PROJECT_NAME: str
    APP_PORT: int
    DB_PORT: int
    VITE_PORT: int | None = None
    REDIS_PORT: int | None = None
    PHPMYADMIN_PORT: int | None = None
    MAILHOG_PORT: int | None = None
    PHP_VERSION: str
    NODE_VERSION: str
    INSTALL_BUN: str
    INSTALL_PNPM: str
    APP_KEY: str
    CACHE_DRIVER: str
    QUEUE_CONNECTION: str
    SESSION_DRIVER: str
    REDIS_DEPENDS: str
    REDIS_SERVICE: str
    REDIS_VOLUME: str
    PHPMYADMIN_SERVICE: str
    MAILHOG_SERVICE: str
    REDIS_CONFIG: str
    MAIL_CONFIG: str
    SERVICES_INFO: str


def placeholders(text: str) -> set[str]:
    return {match.group(1) for match in PLACEHOLDER.finditer(text)}


def render_stub(text: str, slots: StubSlots, *, stub_name: str = "<stub>") -> str:
    """Substitute every `{{TOKEN}}`; reject tokens outside the schema or without a value."""
    values = slots.model_dump()
    referenced = placeholders(text)

    unknown = sorted(referenced - values.keys())
    if unknown:
        msg = f"{stub_name}: unknown placeholders {', '.join(unknown)}"
        raise TemplateRenderError(msg, stub=stub_name, unknown=unknown)

    missing = sorted(name for name in referenced if values[name] is None)
    if missing:
        msg = f"{stub_name}: no value for placeholders {', '.join(missing)}"
        raise TemplateRenderError(msg, stub=stub_name, missing=missing)

    return PLACEHOLDER.sub(lambda match: str(values[match.group(1)]), text)
