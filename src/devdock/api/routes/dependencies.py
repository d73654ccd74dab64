"""Host dependency check routes."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends

from devdock.api.deps import get_dependency_checker
from devdock.api.routes.common import ok
from devdock.api.schemas.dependencies import InstallCommandRequest
from devdock.core.dependencies import DependencyChecker

router = APIRouter(prefix="/api/v1/dependencies", tags=["dependencies"])


@router.get("/check")
async def check_dependencies(
    checker: DependencyChecker = Depends(get_dependency_checker),
) -> dict[str, Any]:
    return ok(await checker.check())


@router.post("/install/{dependency}")
async def install_command(
    dependency: str,
    request: InstallCommandRequest,
    checker: DependencyChecker = Depends(get_dependency_checker),
) -> dict[str, Any]:
    return ok(checker.install_command(dependency, request.method))


@router.post("/fix")
async def fix_suggestions(
    checker: DependencyChecker = Depends(get_dependency_checker),
) -> dict[str, Any]:
    return ok({"fixes": await checker.fixes(), "timestamp": datetime.now(UTC).isoformat()})
