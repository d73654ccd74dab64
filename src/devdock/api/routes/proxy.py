"""Reverse proxy routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from devdock.api.deps import get_proxy_manager
from devdock.api.routes.common import ok
from devdock.api.schemas.network import ProxyDomainRequest
from devdock.core.proxy import ProxyManager

router = APIRouter(prefix="/api/v1/proxy", tags=["proxy"])


@router.get("/status")
async def proxy_status(proxy: ProxyManager = Depends(get_proxy_manager)) -> dict[str, Any]:
    return ok(proxy.status())


@router.post("/start")
async def start_proxy(proxy: ProxyManager = Depends(get_proxy_manager)) -> dict[str, Any]:
    return ok(await proxy.start())


@router.post("/stop")
async def stop_proxy(proxy: ProxyManager = Depends(get_proxy_manager)) -> dict[str, Any]:
    return ok(await proxy.stop())


@router.get("/domains")
async def proxy_domains(proxy: ProxyManager = Depends(get_proxy_manager)) -> dict[str, Any]:
    return ok(proxy.domains())


@router.post("/domains")
async def add_proxy_domain(
    request: ProxyDomainRequest, proxy: ProxyManager = Depends(get_proxy_manager)
) -> dict[str, Any]:
    return ok(proxy.add_domain(request.domain, request.port))


@router.delete("/domains/{domain}")
async def remove_proxy_domain(
    domain: str, proxy: ProxyManager = Depends(get_proxy_manager)
) -> dict[str, Any]:
    proxy.remove_domain(domain)
    return ok(message=f"Domain {domain} removed from proxy")
