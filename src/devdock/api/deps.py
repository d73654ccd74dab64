"""Application container and FastAPI dependency providers."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Request

from devdock.config import Settings
from devdock.core.dependencies import DependencyChecker
from devdock.core.docker_manager import DockerManager
from devdock.core.events import EventBus
from devdock.core.executor import CommandExecutor
from devdock.core.hosts import HostsManager
from devdock.core.introspection import ArtisanIntrospector
from devdock.core.laravel import LaravelManager
from devdock.core.ports import HostPortProbe, PortAllocator
from devdock.core.project_manager import ProjectManager
from devdock.core.proxy import ProxyManager
from devdock.core.scaffold import ProjectScaffolder
from devdock.core.services import ServiceMonitor
from devdock.core.status import StatusPoller
from devdock.core.tasks import TaskManager
from devdock.core.templates import TemplateCatalog
from devdock.core.terminal import TerminalManager
from devdock.core.tunnels import TunnelManager
from devdock.db.history import OperationHistory
from devdock.db.projects import ProjectStore


@dataclass(slots=True)
class AppContainer:
    """Every long-lived object the API needs, built once per app."""

    settings: Settings
    store: ProjectStore
    history: OperationHistory
    bus: EventBus
    tasks: TaskManager
    executor: CommandExecutor
    docker: DockerManager
    catalog: TemplateCatalog
    poller: StatusPoller
    projects: ProjectManager
    monitor: ServiceMonitor
    laravel: LaravelManager
    hosts: HostsManager
    proxy: ProxyManager
    tunnels: TunnelManager
    terminals: TerminalManager
    dependencies: DependencyChecker

    @classmethod
    def build(cls, settings: Settings, *, executor: CommandExecutor | None = None) -> AppContainer:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        settings.projects_dir.mkdir(parents=True, exist_ok=True)

        executor = executor or CommandExecutor(default_timeout=settings.command_timeout_seconds)
        store = ProjectStore(settings.projects_file)
        history = OperationHistory(settings.history_db)
        bus = EventBus()
        tasks = TaskManager(bus, history)
        docker = DockerManager(
            executor,
            compose_command=settings.compose_command,
            probe_timeout=settings.probe_timeout_seconds,
        )
        catalog = TemplateCatalog(settings.templates_dir)
        probe = HostPortProbe(executor)
        poller = StatusPoller(store, docker, bus)
        projects = ProjectManager(
            store,
            projects_dir=settings.projects_dir,
            allocator=PortAllocator(),
            scaffolder=ProjectScaffolder(catalog, executor),
            docker=docker,
            poller=poller,
            tasks=tasks,
            bus=bus,
            probe=probe,
        )
        introspector = ArtisanIntrospector(docker, timeout=settings.probe_timeout_seconds)
        monitor = ServiceMonitor(docker, introspector)
        return cls(
            settings=settings,
            store=store,
            history=history,
            bus=bus,
            tasks=tasks,
            executor=executor,
            docker=docker,
            catalog=catalog,
            poller=poller,
            projects=projects,
            monitor=monitor,
            laravel=LaravelManager(projects, docker, introspector, monitor),
            hosts=HostsManager(
                settings.hosts_file,
                store,
                executor,
                staging_dir=settings.data_dir,
                timeout=settings.probe_timeout_seconds,
            ),
            proxy=ProxyManager(settings.proxy_config_file, port=settings.proxy_port),
            tunnels=TunnelManager(executor, settings.ngrok_config_file),
            terminals=TerminalManager(docker),
            dependencies=DependencyChecker(executor, probe=probe),
        )


def get_container(request: Request) -> AppContainer:
    return request.app.state.container


def get_project_manager(container: AppContainer = Depends(get_container)) -> ProjectManager:
    return container.projects


def get_task_manager(container: AppContainer = Depends(get_container)) -> TaskManager:
    return container.tasks


def get_history(container: AppContainer = Depends(get_container)) -> OperationHistory:
    return container.history


def get_catalog(container: AppContainer = Depends(get_container)) -> TemplateCatalog:
    return container.catalog


def get_laravel_manager(container: AppContainer = Depends(get_container)) -> LaravelManager:
    return container.laravel


def get_service_monitor(container: AppContainer = Depends(get_container)) -> ServiceMonitor:
    return container.monitor


def get_hosts_manager(container: AppContainer = Depends(get_container)) -> HostsManager:
    return container.hosts


def get_proxy_manager(container: AppContainer = Depends(get_container)) -> ProxyManager:
    return container.proxy


def get_tunnel_manager(container: AppContainer = Depends(get_container)) -> TunnelManager:
    return container.tunnels


def get_terminal_manager(container: AppContainer = Depends(get_container)) -> TerminalManager:
    return container.terminals


def get_dependency_checker(container: AppContainer = Depends(get_container)) -> DependencyChecker:
    return container.dependencies
