import asyncio
from datetime import UTC, datetime
from typing import Any

from app.models.schemas import RunStatus

SUBSCRIBER_QUEUE_SIZE = 32


class RunStatusHolder:
    """
    Holds the current RunStatus snapshot and fans changes out to subscribers.

    Snapshots are frozen models, so readers can never observe a half-written
    status. Only the orchestrator calls update()/reset().
    """

    def __init__(self) -> None:
        self._status = RunStatus()
        self._subscribers: set[asyncio.Queue[RunStatus]] = set()

    @property
    def current(self) -> RunStatus:
        return self._status

    def update(self, **changes: Any) -> RunStatus:
        changes.setdefault("updated_at", datetime.now(UTC))
        self._status = self._status.model_copy(update=changes)
        self._publish(self._status)
        return self._status

    def reset(self, **fields: Any) -> RunStatus:
        """Replace the snapshot entirely, dropping fields left over from the previous run."""
        self._status = RunStatus(**fields)
        self._publish(self._status)
        return self._status

    def subscribe(self) -> asyncio.Queue[RunStatus]:
        queue: asyncio.Queue[RunStatus] = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        queue.put_nowait(self._status)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[RunStatus]) -> None:
        self._subscribers.discard(queue)

    def _publish(self, status: RunStatus) -> None:
        for queue in self._subscribers:
            if queue.full():
                # Slow consumer: drop its oldest snapshot, it only needs the latest
                queue.get_nowait()
            queue.put_nowait(status)
