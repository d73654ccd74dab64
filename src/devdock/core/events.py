"""Best-effort fan-out of dashboard events to connected clients."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import structlog

from devdock.models.events import DashboardEvent, EventType

logger = structlog.get_logger(__name__)


@dataclass(eq=False, slots=True)
class Subscription:
    """One client's queue; `project_id` narrows delivery when set."""

    queue: asyncio.Queue[DashboardEvent]
    project_id: str | None = None
    dropped: int = field(default=0)

    def wants(self, event: DashboardEvent) -> bool:
        return self.project_id is None or event.project_id in {None, self.project_id}


class EventBus:
    """Broadcast events; a subscriber whose queue is full misses the event."""

    def __init__(self, *, queue_size: int = 256) -> None:
        self._queue_size = queue_size
        self._subscriptions: set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, project_id: str | None = None) -> Subscription:
        subscription = Subscription(
            queue=asyncio.Queue(maxsize=self._queue_size), project_id=project_id
        )
        self._subscriptions.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)

    def publish(self, event: DashboardEvent) -> None:
        for subscription in list(self._subscriptions):
            if not subscription.wants(event):
                continue
            try:
                subscription.queue.put_nowait(event)
            except asyncio.QueueFull:
                subscription.dropped += 1
                logger.debug("event_dropped", type=event.type.value, dropped=subscription.dropped)

    def project_update(self, project_id: str, project: dict[str, Any]) -> None:
        self.publish(
            DashboardEvent(
                type=EventType.PROJECT_UPDATE,
                project_id=project_id,
                payload={"project": project},
            )
        )

    def command_output(
        self, project_id: str | None, stream: str, line: str, operation_id: str | None = None
    ) -> None:
        self.publish(
            DashboardEvent(
                type=EventType.COMMAND_OUTPUT,
                project_id=project_id,
                operation_id=operation_id,
                payload={"stream": stream, "line": line},
            )
        )
