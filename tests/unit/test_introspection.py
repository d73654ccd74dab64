from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from devdock.core.docker_manager import DockerManager
from devdock.core.introspection import (
    AppHealth,
    ArtisanIntrospector,
    CacheStatus,
    DatabaseStatus,
    QueueStatus,
    count_queue_workers,
    health_score,
    parse_queue_monitor,
    parse_schedule_list,
)
from tests.support.fakes import FakeExecutor, make_record

EXEC_APP = ("docker", "compose", "exec", "-T", "app")


def test_parse_queue_monitor_counts() -> None:
    text = "  [redis] default ........ 3 pending\n  1 failed jobs\n"
    assert parse_queue_monitor(text) == {"pending": 3, "processing": 0, "failed": 1}
    assert parse_queue_monitor("") == {"pending": 0, "processing": 0, "failed": 0}


def test_parse_schedule_list_splits_next_due() -> None:
    text = (
        "\n"
        "  0 * * * *  php artisan inspire ........... Next Due: 1 hour from now\n"
        "  * * * * *  Closure at: routes/console.php:9\n"
        "  0 0 * * *  php artisan backup:run\n"
    )
    entries = parse_schedule_list(text)
    assert [(entry.command, entry.next_run) for entry in entries] == [
        ("0 * * * *  php artisan inspire", "1 hour from now"),
        ("0 0 * * *  php artisan backup:run", None),
    ]


def test_count_queue_workers_ignores_grep() -> None:
    ps = (
        "www 10 php artisan queue:work --sleep=3\n"
        "www 11 php artisan queue:work --queue=emails\n"
        "www 12 grep queue:work\n"
        "www 13 php-fpm: master process\n"
    )
    assert count_queue_workers(ps) == 2


def test_queue_status_health() -> None:
    assert not QueueStatus().healthy
    assert QueueStatus(workers=1, failed=2).healthy
    assert not QueueStatus(workers=1, failed=10).healthy
    assert QueueStatus(workers=1, pending=4).as_dict()["jobs"]["pending"] == 4


def test_health_score_labels() -> None:
    everything = dict.fromkeys(("app", "db", "redis", "nginx"), True)
    best = health_score(everything, AppHealth(port=8000, http_code=200), DatabaseStatus(connected=True), CacheStatus())
    assert best == {"score": 100, "status": "excellent", "total_services": 7, "healthy_services": 7}

    nothing = dict.fromkeys(("app", "db", "redis", "nginx"), False)
    worst = health_score(nothing, AppHealth(port=8000), DatabaseStatus(), CacheStatus())
    assert worst["score"] == 14
    assert worst["status"] == "critical"

    no_redis = {**everything, "redis": False}
    assert health_score(no_redis, AppHealth(port=8000, http_code=302), DatabaseStatus(connected=True), CacheStatus())[
        "status"
    ] == "good"


def test_app_health_treats_client_errors_as_responding() -> None:
    assert AppHealth(port=8000, http_code=404).responding
    assert not AppHealth(port=8000, http_code=502).responding
    assert not AppHealth(port=8000).responding


@pytest.mark.asyncio
async def test_introspector_queue_and_schedule(tmp_path: Path) -> None:
    executor = FakeExecutor()
    executor.on(*EXEC_APP, "ps", "aux", stdout="www 1 php artisan queue:work\n")
    executor.on(*EXEC_APP, "php", "artisan", "queue:monitor", stdout="default 2 pending\n")
    executor.on(
        *EXEC_APP, "php", "artisan", "schedule:list",
        stdout="0 * * * *  php artisan inspire ... Next Due: 5 minutes from now\n",
    )
    introspector = ArtisanIntrospector(DockerManager(executor))
    project = make_record(tmp_path)

    queue = await introspector.queue(project)
    assert (queue.workers, queue.pending) == (1, 2)

    schedule = await introspector.schedule(project)
    assert schedule.enabled
    assert schedule.schedules[0].next_run == "5 minutes from now"


@pytest.mark.asyncio
async def test_introspector_reports_failures(tmp_path: Path) -> None:
    executor = FakeExecutor()
    executor.on("docker", "compose", "exec", exit_code=1, stderr="service \"app\" is not running")
    introspector = ArtisanIntrospector(DockerManager(executor))
    project = make_record(tmp_path)

    queue = await introspector.queue(project)
    assert queue.workers == 0
    assert queue.error == 'service "app" is not running'
    assert (await introspector.schedule(project)).error is not None
    assert (await introspector.database(project)).connected is False
    assert (await introspector.cache(project)).redis_available is False


@pytest.mark.asyncio
async def test_introspector_database_and_cache(tmp_path: Path) -> None:
    executor = FakeExecutor()
    exec_db = ("docker", "compose", "exec", "-T", "db", "mysql", "-u", "root", "-ppassword", "-e")
    executor.on(*exec_db, stdout="size_mb\n12.5\n")
    executor.on(*exec_db, "SELECT 1 AS connected", stdout="connected\n1\n")
    executor.on("docker", "compose", "exec", "-T", "redis", "redis-cli", "ping", stdout="PONG\n")
    introspector = ArtisanIntrospector(DockerManager(executor))

    database = await introspector.database(make_record(tmp_path))
    assert database.connected is True
    assert database.size_mb == 12.5
    assert "table_schema='demo'" in executor.calls[-1][-1]

    cache = await introspector.cache(make_record(tmp_path))
    assert cache.redis_available is True
    assert cache.driver == "redis"


@pytest.mark.asyncio
async def test_introspector_app_health(monkeypatch, tmp_path: Path) -> None:
    def upstream(request: httpx.Request) -> httpx.Response:
        assert (request.url.host, request.url.port) == ("localhost", 8000)
        return httpx.Response(200)

    real_client = httpx.AsyncClient

    def client_factory(*args, **kwargs):  # type: ignore[no-untyped-def]
        kwargs["transport"] = httpx.MockTransport(upstream)
        return real_client(*args, **kwargs)

    monkeypatch.setattr("devdock.core.introspection.httpx.AsyncClient", client_factory)
    introspector = ArtisanIntrospector(DockerManager(FakeExecutor()))

    health = await introspector.app_health(make_record(tmp_path))
    assert health.responding
    assert health.http_code == 200

    missing_port = await introspector.app_health(make_record(tmp_path, ports={"db": 3306}))
    assert missing_port.error == "no app port allocated"
