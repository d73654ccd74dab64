"""ngrok tunnel routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status

from devdock.api.deps import get_tunnel_manager
from devdock.api.routes.common import ok
from devdock.api.schemas.network import CreateTunnelRequest, NgrokAuthRequest
from devdock.core.tunnels import TunnelManager

router = APIRouter(prefix="/api/v1/ngrok", tags=["ngrok"])


@router.get("/status")
async def ngrok_status(tunnels: TunnelManager = Depends(get_tunnel_manager)) -> dict[str, Any]:
    return ok(tunnels.status())


@router.post("/auth")
async def authenticate(
    request: NgrokAuthRequest, tunnels: TunnelManager = Depends(get_tunnel_manager)
) -> dict[str, Any]:
    await tunnels.authenticate(request.auth_token)
    return ok(message="Ngrok authenticated successfully")


@router.post("/tunnels", status_code=status.HTTP_201_CREATED)
async def create_tunnel(
    request: CreateTunnelRequest, tunnels: TunnelManager = Depends(get_tunnel_manager)
) -> dict[str, Any]:
    tunnel = await tunnels.create(
        request.port,
        subdomain=request.subdomain,
        region=request.region,
        protocol=request.protocol,
    )
    return ok(tunnel.as_dict())


@router.get("/tunnels")
async def list_tunnels(tunnels: TunnelManager = Depends(get_tunnel_manager)) -> dict[str, Any]:
    return ok([tunnel.as_dict() for tunnel in tunnels.list()])


@router.delete("/tunnels/{tunnel_id}")
async def stop_tunnel(
    tunnel_id: str, tunnels: TunnelManager = Depends(get_tunnel_manager)
) -> dict[str, Any]:
    await tunnels.stop(tunnel_id)
    return ok(message="Tunnel stopped successfully")


@router.post("/stop-all")
async def stop_all_tunnels(tunnels: TunnelManager = Depends(get_tunnel_manager)) -> dict[str, Any]:
    return ok({"stopped_count": await tunnels.stop_all()})
