"""Hosts-file domain routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, status

from devdock.api.deps import get_hosts_manager
from devdock.api.routes.common import ok
from devdock.api.schemas.network import AddDomainRequest, TestDomainRequest
from devdock.core.hosts import HostsManager

router = APIRouter(prefix="/api/v1/domains", tags=["domains"])


@router.get("")
async def list_domains(hosts: HostsManager = Depends(get_hosts_manager)) -> dict[str, Any]:
    return ok(await hosts.list())


@router.post("", status_code=status.HTTP_201_CREATED)
async def add_domain(
    request: AddDomainRequest, hosts: HostsManager = Depends(get_hosts_manager)
) -> dict[str, Any]:
    result = await hosts.add(
        request.domain,
        ip=request.ip,
        comment=request.comment,
        project_id=request.project_id,
        admin_password=request.admin_password,
    )
    return ok(result, message=f"Domain {request.domain} added successfully")


@router.get("/suggestions")
async def domain_suggestions(
    project_name: str | None = None, hosts: HostsManager = Depends(get_hosts_manager)
) -> dict[str, Any]:
    return ok({"suggestions": hosts.suggestions(project_name)})


@router.get("/info")
async def hosts_info(hosts: HostsManager = Depends(get_hosts_manager)) -> dict[str, Any]:
    return ok(hosts.info())


@router.post("/test")
async def test_domain(
    request: TestDomainRequest, hosts: HostsManager = Depends(get_hosts_manager)
) -> dict[str, Any]:
    return ok(await hosts.test(request.domain, port=request.port))


@router.delete("/{domain}")
async def remove_domain(
    domain: str,
    admin_password: str | None = Body(default=None, embed=True),
    hosts: HostsManager = Depends(get_hosts_manager),
) -> dict[str, Any]:
    result = await hosts.remove(domain, admin_password=admin_password)
    return ok(result, message=f"Domain {domain} removed successfully")
