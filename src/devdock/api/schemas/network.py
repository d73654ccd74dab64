"""Schemas for hosts-file domains, the proxy and ngrok tunnels."""

from __future__ import annotations

from pydantic import BaseModel, Field


class AddDomainRequest(BaseModel):
    """A hosts-file entry; `admin_password` is used once for sudo and never stored."""

    domain: str
    ip: str = "127.0.0.1"
    comment: str = ""
    project_id: str | None = None
    admin_password: str | None = None


class TestDomainRequest(BaseModel):
    domain: str
    port: int = Field(default=80, ge=1, le=65535)


class ProxyDomainRequest(BaseModel):
    domain: str
    port: int


class NgrokAuthRequest(BaseModel):
    auth_token: str = Field(min_length=1)


class CreateTunnelRequest(BaseModel):
    port: int
    subdomain: str | None = None
    region: str | None = "us"
    protocol: str = Field(default="http", pattern="^(http|tcp|tls)$")
