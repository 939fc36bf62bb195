import asyncio
import logging
from collections import defaultdict

from app.core.models import ChannelEvent

logger = logging.getLogger(__name__)


def channel_name(run_id: str) -> str:
    return f"workflow_run:{run_id}"


def serialize_live_step(live_step) -> dict:
    return {
        "id": live_step.id,
        "workflow_run_id": live_step.workflow_run_id,
        "step_number": live_step.step_number,
        "step_type": live_step.step_type,
        "content": live_step.content,
        "timestamp": live_step.timestamp,
        "metadata": live_step.extra or {},
    }


class RunChannelHub:
    """In-process fan-out of run events to live subscribers.

    Delivery is at-most-once: a subscriber whose queue is full misses the
    event and has to re-read the persisted live steps.
    """

    def __init__(self, max_queue_size: int = 256):
        self.max_queue_size = max_queue_size
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, run_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers[run_id].add(queue)
        return queue

    def unsubscribe(self, run_id: str, queue: asyncio.Queue) -> None:
        subscribers = self._subscribers.get(run_id)
        if subscribers is None:
            return
        subscribers.discard(queue)
        if not subscribers:
            del self._subscribers[run_id]

    def subscriber_count(self, run_id: str) -> int:
        return len(self._subscribers.get(run_id, ()))

    def publish(self, run_id: str, event: ChannelEvent, payload: dict) -> int:
        message = {"type": "broadcast", "event": event.value, "payload": payload}
        delivered = 0
        for queue in list(self._subscribers.get(run_id, ())):
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(
                    "Dropped %s on %s: subscriber queue full",
                    event.value,
                    channel_name(run_id),
                )
        return delivered
