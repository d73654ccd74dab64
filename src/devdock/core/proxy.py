"""Host-header reverse proxy routing local domains to project ports."""

from __future__ import annotations

import asyncio
import contextlib
import errno
import socket
from collections.abc import Callable, Iterator, Mapping
from html import escape
from pathlib import Path
from typing import Any

import httpx
import structlog
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, Field

from devdock.core.hosts import validate_domain
from devdock.core.ports import validate_port
from devdock.db.json_file import JsonFile
from devdock.errors import ConflictError, DevdockError, NotFoundError, PermissionDeniedError

logger = structlog.get_logger(__name__)

HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "host",
        "content-length",
    }
)
# httpx hands back a decoded body, so the upstream encoding no longer applies.
DECODED_RESPONSE = HOP_BY_HOP | {"content-encoding"}
PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]
STARTUP_TIMEOUT = 5.0


class ProxyConfig(BaseModel):
    """Contents of `proxy-config.json`."""

    port: int = 80
    domains: dict[str, int] = Field(default_factory=dict)


def _forward_headers(
    headers: Mapping[str, str], dropped: frozenset[str] = HOP_BY_HOP
) -> dict[str, str]:
    return {key: value for key, value in headers.items() if key.lower() not in dropped}


def _not_found_page(domain: str, routes: Mapping[str, int]) -> str:
    items = "".join(
        f"<li>{escape(name)} &rarr; localhost:{port}</li>" for name, port in sorted(routes.items())
    )
    return (
        "<h1>Domain Not Found</h1>"
        f"<p>No configuration found for domain: {escape(domain)}</p>"
        f"<p>Configured domains:</p><ul>{items}</ul>"
    )


def build_proxy_app(
    routes: Callable[[], Mapping[str, int]], client: httpx.AsyncClient
) -> FastAPI:
    """ASGI app that forwards each request to `localhost:<port>` chosen by Host header."""
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.api_route("/{path:path}", methods=PROXY_METHODS)
    async def forward(request: Request, path: str) -> Response:
        domain = request.headers.get("host", "").split(":", 1)[0].lower()
        table = routes()
        port = table.get(domain)
        if port is None:
            return HTMLResponse(_not_found_page(domain, table), status_code=404)

        headers = _forward_headers(request.headers)
        headers["host"] = f"localhost:{port}"
        headers["x-forwarded-host"] = request.headers.get("host", domain)
        url = httpx.URL(f"http://localhost:{port}/{path}", query=request.url.query.encode("utf-8"))
        logger.debug("proxy_request", domain=domain, target=str(url))
        try:
            upstream = await client.request(
                request.method, url, headers=headers, content=await request.body()
            )
        except httpx.HTTPError as exc:
            logger.warning("proxy_upstream_failed", domain=domain, port=port, error=str(exc))
            return HTMLResponse(
                "<h1>Bad Gateway</h1>"
                f"<p>Could not connect to the application on port {port}</p>"
                "<p>Make sure your project is running.</p>",
                status_code=502,
            )
        return Response(
            content=upstream.content,
            status_code=upstream.status_code,
            headers=_forward_headers(upstream.headers, DECODED_RESPONSE),
        )

    return app


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves the host process's signal handlers alone."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield

    def install_signal_handlers(self) -> None:
        return


class ProxyManager:
    """Own the proxy's domain table and its in-process uvicorn server."""

    def __init__(self, config_file: Path, *, port: int = 80, host: str = "0.0.0.0") -> None:
        self._file = JsonFile(config_file)
        raw = self._file.read(default={})
        try:
            self._config = ProxyConfig.model_validate(raw)
        except ValueError:
            logger.warning("proxy_config_invalid", path=str(config_file))
            self._config = ProxyConfig()
        self._config.port = port
        self._host = host
        self._server: _EmbeddedServer | None = None
        self._task: asyncio.Task[None] | None = None
        self._client: httpx.AsyncClient | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def port(self) -> int:
        return self._config.port

    def domains(self) -> dict[str, int]:
        return dict(self._config.domains)

    def status(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "port": self._config.port,
            "domains": self.domains(),
            "domain_count": len(self._config.domains),
        }

    async def start(self) -> dict[str, Any]:
        if self.is_running:
            return {**self.status(), "message": "Proxy server already running"}

        sock = self._bind()
        self._client = httpx.AsyncClient(timeout=30.0, follow_redirects=False)
        app = build_proxy_app(self.domains, self._client)
        config = uvicorn.Config(app, log_config=None, lifespan="off", access_log=False)
        self._server = _EmbeddedServer(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]), name="devdock-proxy")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + STARTUP_TIMEOUT
        while not self._server.started:
            if self._task.done() or loop.time() > deadline:
                await self._cleanup()
                msg = f"Failed to start proxy server on port {self._config.port}"
                raise DevdockError(msg)
            await asyncio.sleep(0.05)

        logger.info("proxy_started", port=self._config.port, domains=len(self._config.domains))
        return {**self.status(), "message": f"Proxy server started on port {self._config.port}"}

    async def stop(self) -> dict[str, Any]:
        if not self.is_running:
            await self._cleanup()
            return {**self.status(), "message": "Proxy server not running"}
        await self._cleanup()
        logger.info("proxy_stopped")
        return {**self.status(), "message": "Proxy server stopped"}

    def add_domain(self, domain: str, port: int) -> dict[str, Any]:
        validate_domain(domain)
        validate_port(port)
        self._config.domains[domain.lower()] = port
        self._save()
        return {"domain": domain.lower(), "port": port, "is_running": self.is_running}

    def remove_domain(self, domain: str) -> None:
        if self._config.domains.pop(domain.lower(), None) is None:
            msg = f"Domain {domain} not found in proxy configuration"
            raise NotFoundError(msg)
        self._save()

    def _save(self) -> None:
        self._file.write(self._config.model_dump())

    def _bind(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self._host, self._config.port))
        except PermissionError as exc:
            sock.close()
            msg = f"Permission denied. Port {self._config.port} requires elevated privileges."
            raise PermissionDeniedError(msg, requires_sudo=True) from exc
        except OSError as exc:
            sock.close()
            if exc.errno == errno.EADDRINUSE:
                msg = f"Port {self._config.port} is already in use"
                raise ConflictError(msg, port_in_use=True) from exc
            raise
        sock.listen(128)
        sock.setblocking(False)
        return sock

    async def _cleanup(self) -> None:
        if self._task is not None:
            if self._server is not None:
                self._server.should_exit = True
            try:
                await asyncio.wait_for(self._task, timeout=STARTUP_TIMEOUT)
            except TimeoutError:
                self._task.cancel()
                await asyncio.wait([self._task])
            except Exception:
                logger.exception("proxy_server_crashed")
        if self._client is not None:
            await self._client.aclose()
        self._task = None
        self._server = None
        self._client = None
