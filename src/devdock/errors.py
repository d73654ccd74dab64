"""Error taxonomy shared by core managers and API handlers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from devdock.core.executor import CommandResult


class DevdockError(Exception):
    """Base error; `status_code` is the HTTP status the API reports."""

    status_code = 500

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra


class NotFoundError(DevdockError):
    status_code = 404


class ValidationError(DevdockError):
    status_code = 400


class ConflictError(DevdockError):
    status_code = 409


class PermissionDeniedError(DevdockError):
    status_code = 403


class InvalidCredentialsError(PermissionDeniedError):
    status_code = 401


class TemplateRenderError(DevdockError):
    status_code = 500


class ExternalToolError(DevdockError):
    """A shelled-out tool failed; the raw result is kept for callers."""

    status_code = 502

    def __init__(self, message: str, result: CommandResult | None = None, **extra: Any) -> None:
        if result is not None:
            extra.setdefault("exit_code", result.exit_code)
            extra.setdefault("failure", result.failure)
        super().__init__(message, **extra)
        self.result = result
