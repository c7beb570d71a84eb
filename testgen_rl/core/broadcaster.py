"""
Per-workflow event fan-out.

Subscribers register for one workflow's channel (``workflow:<id>``) or for
every channel. Delivery is at-most-once and best effort: a failing or slow
handler never affects the workflow or the other subscribers.
"""

import asyncio
import inspect
import threading
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import structlog

from ..data.models.events import Event, EventPriority

logger = structlog.get_logger()

EventHandler = Callable[[Event], Union[None, Awaitable[None]]]


class EventBroadcaster:
    """Publishes workflow events to subscribed handlers."""

    def __init__(self, source: str = "orchestrator"):
        self.source = source
        self._subscribers: Dict[str, List[EventHandler]] = defaultdict(list)
        self._global: List[EventHandler] = []
        self._lock = threading.Lock()
        self._pending: Set[asyncio.Task] = set()
        self.published_count = 0
        self.failed_deliveries = 0

    def subscribe(self, workflow_id: str, handler: EventHandler) -> None:
        with self._lock:
            self._subscribers[workflow_id].append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        with self._lock:
            self._global.append(handler)

    def unsubscribe(self, handler: EventHandler, workflow_id: Optional[str] = None) -> None:
        """Remove ``handler`` from one workflow, or from everywhere."""
        with self._lock:
            channels = [workflow_id] if workflow_id is not None else list(self._subscribers)
            for channel in channels:
                handlers = self._subscribers.get(channel, [])
                if handler in handlers:
                    handlers.remove(handler)
            if workflow_id is None and handler in self._global:
                self._global.remove(handler)

    def publish(
        self,
        workflow_id: str,
        event_type: str,
        payload: Optional[Dict[str, Any]] = None,
        priority: EventPriority = EventPriority.MEDIUM,
    ) -> Event:
        event = Event(
            event_type=event_type,
            workflow_id=workflow_id,
            data=payload or {},
            source=self.source,
            priority=priority,
        )
        with self._lock:
            handlers = list(self._subscribers.get(workflow_id, [])) + list(self._global)
        self.published_count += 1

        for handler in handlers:
            self._deliver(handler, event)
        return event

    def _deliver(self, handler: EventHandler, event: Event) -> None:
        try:
            result = handler(event)
        except Exception as e:
            self._record_failure(event, e)
            return

        if inspect.isawaitable(result):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                # No loop to schedule on; coroutine handlers need one
                if inspect.iscoroutine(result):
                    result.close()
                self._record_failure(event, RuntimeError("no running event loop"))
                return
            task = loop.create_task(self._await_handler(result, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _await_handler(self, result: Awaitable[None], event: Event) -> None:
        try:
            await result
        except Exception as e:
            self._record_failure(event, e)

    def _record_failure(self, event: Event, error: Exception) -> None:
        self.failed_deliveries += 1
        logger.warning(
            "event_delivery_failed",
            channel=event.channel,
            event_type=event.type,
            error=str(error),
        )

    async def drain(self) -> None:
        """Wait for scheduled async handlers to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def subscriber_count(self, workflow_id: Optional[str] = None) -> int:
        with self._lock:
            if workflow_id is None:
                return sum(len(h) for h in self._subscribers.values()) + len(self._global)
            return len(self._subscribers.get(workflow_id, []))
