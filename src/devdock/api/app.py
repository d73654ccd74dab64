"""FastAPI app entrypoint."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from devdock.api.deps import AppContainer
from devdock.api.routes.dependencies import router as dependencies_router
from devdock.api.routes.domains import router as domains_router
from devdock.api.routes.env import router as env_router
from devdock.api.routes.laravel import router as laravel_router
from devdock.api.routes.ngrok import router as ngrok_router
from devdock.api.routes.operations import router as operations_router
from devdock.api.routes.projects import router as projects_router
from devdock.api.routes.proxy import router as proxy_router
from devdock.api.routes.services import router as services_router
from devdock.api.routes.templates import router as templates_router
from devdock.api.routes.terminal import router as terminal_router
from devdock.config import Settings, get_settings
from devdock.core.events import Subscription
from devdock.core.executor import CommandExecutor
from devdock.errors import DevdockError
from devdock.logging_config import setup_logging

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    container: AppContainer = app.state.container
    settings = container.settings
    if settings.discover_on_startup:
        discovered = await container.projects.discover()
        if discovered:
            logger.info("projects_discovered", count=len(discovered))

    poller: asyncio.Task[None] | None = None
    if settings.poll_interval_seconds > 0:
        poller = asyncio.create_task(
            container.poller.run_forever(settings.poll_interval_seconds), name="devdock-status-poller"
        )
    logger.info("devdock_started", projects_dir=str(settings.projects_dir))
    try:
        yield
    finally:
        if poller is not None:
            poller.cancel()
            await asyncio.wait([poller])
        await container.tasks.shutdown()
        await container.tunnels.stop_all()
        await container.proxy.stop()
        logger.info("devdock_stopped")


async def _forward_events(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        event = await subscription.queue.get()
        await websocket.send_json(event.model_dump(mode="json"))


def create_app(
    settings: Settings | None = None, *, executor: CommandExecutor | None = None
) -> FastAPI:
    container = AppContainer.build(settings or get_settings(), executor=executor)
    app = FastAPI(title="devdock API", version="0.1.0", lifespan=lifespan)
    app.state.container = container

    app.include_router(projects_router)
    app.include_router(templates_router)
    app.include_router(operations_router)
    app.include_router(env_router)
    app.include_router(terminal_router)
    app.include_router(laravel_router)
    app.include_router(services_router)
    app.include_router(dependencies_router)
    app.include_router(domains_router)
    app.include_router(proxy_router)
    app.include_router(ngrok_router)

    @app.exception_handler(DevdockError)
    async def devdock_error(request: Request, exc: DevdockError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning("request_failed", path=request.url.path, error=exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder({"success": False, "error": exc.message, **exc.extra}),
        )

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in exc.errors()
        ]
        summary = "; ".join(f"{item['field']}: {item['message']}" for item in details)
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": f"Invalid request: {summary}", "details": details},
        )

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("request_crashed", path=request.url.path, error_type=type(exc).__name__)
        return JSONResponse(
            status_code=500, content={"success": False, "error": "Internal server error"}
        )

    @app.get("/api/v1/health", tags=["system"])
    async def health() -> dict[str, str | int]:
        return {
            "status": "ok",
            "projects": len(await container.store.list()),
            "subscribers": container.bus.subscriber_count,
        }

    @app.websocket("/api/v1/ws")
    async def dashboard_events(websocket: WebSocket) -> None:
        await websocket.accept()
        subscription = container.bus.subscribe()
        sender = asyncio.create_task(_forward_events(websocket, subscription))
        try:
            while True:
                try:
                    message = json.loads(await websocket.receive_text())
                except ValueError:
                    continue
                if isinstance(message, dict) and message.get("type") == "subscribe_logs":
                    subscription.project_id = message.get("project_id")
                    await websocket.send_json(
                        {"type": "subscribed", "project_id": subscription.project_id}
                    )
        except WebSocketDisconnect:
            return
        finally:
            sender.cancel()
            container.bus.unsubscribe(subscription)

    return app


def run() -> None:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)
