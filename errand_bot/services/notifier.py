"""
Task update fan-out.

Browsers subscribe to a task's topic (keyed by task id) over the WebSocket
route and receive every transition of that task as it is committed.

Delivery is push-only and at most once: nothing is queued or replayed, so a
subscriber that joins late only sees the next transition. Publishing to a
topic with no subscribers is a no-op. A subscriber whose send fails is
dropped from every topic.

Subscribers only need an ``async send_json(dict)`` method, which Starlette's
WebSocket provides.
"""

import asyncio
import logging
from typing import Any, Dict, Set

from ..schemas import TaskUpdateEvent

logger = logging.getLogger(__name__)

TASK_UPDATE_EVENT = "task_update"


class TaskNotifier:
    """Topic registry of live subscribers, keyed by task id."""

    def __init__(self):
        self._topics: Dict[str, Set[Any]] = {}

    def join(self, task_id: str, subscriber: Any) -> None:
        self._topics.setdefault(task_id, set()).add(subscriber)
        logger.debug("[%s] Subscriber joined (%d in topic)", task_id, len(self._topics[task_id]))

    def leave(self, task_id: str, subscriber: Any) -> None:
        members = self._topics.get(task_id)
        if not members:
            return
        members.discard(subscriber)
        if not members:
            del self._topics[task_id]

    def leave_all(self, subscriber: Any) -> None:
        """Remove a subscriber from every topic (socket closed)."""
        for task_id in list(self._topics):
            self.leave(task_id, subscriber)

    def subscriber_count(self, task_id: str) -> int:
        return len(self._topics.get(task_id, ()))

    async def publish(self, event: TaskUpdateEvent) -> int:
        """
        Push one task update to every subscriber of its topic.

        Returns:
            Number of subscribers the event was delivered to
        """
        members = list(self._topics.get(event.task_id, ()))
        if not members:
            return 0

        message = {"event": TASK_UPDATE_EVENT, "data": event.model_dump(mode="json", by_alias=True)}
        results = await asyncio.gather(
            *(subscriber.send_json(message) for subscriber in members),
            return_exceptions=True,
        )

        delivered = 0
        for subscriber, result in zip(members, results):
            if isinstance(result, Exception):
                logger.info("[%s] Dropping subscriber after failed send: %s", event.task_id, result)
                self.leave_all(subscriber)
            else:
                delivered += 1
        return delivered
