"""Template catalog routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from devdock.api.deps import get_catalog
from devdock.api.routes.common import ok
from devdock.core.templates import TemplateCatalog

router = APIRouter(prefix="/api/v1/templates", tags=["templates"])


@router.get("")
async def list_templates(catalog: TemplateCatalog = Depends(get_catalog)) -> dict[str, Any]:
    return ok([template.as_dict() for template in catalog.list()])


@router.get("/{template_id}")
async def get_template(
    template_id: str, catalog: TemplateCatalog = Depends(get_catalog)
) -> dict[str, Any]:
    return ok(catalog.get(template_id).as_dict())


@router.get("/{template_id}/stubs")
async def get_template_stubs(
    template_id: str, catalog: TemplateCatalog = Depends(get_catalog)
) -> dict[str, Any]:
    return ok(catalog.stubs(template_id))
