"""
In-process realtime fan-out for chat messages and reminders.

Each connected client gets its own queue, keyed by the user it listens for.
Publishing never blocks: a subscriber whose queue is full misses the event
and is expected to reload history over the REST API.
"""

import asyncio
import json
import logging
from collections import defaultdict
from typing import AsyncGenerator, Dict, Optional, Set

from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)

HEARTBEAT_SECONDS = 15


class RealtimeBroker:
    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, user_id: str) -> asyncio.Queue:
        queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers[user_id].add(queue)
        logger.info(f"Realtime subscriber added for {user_id} ({len(self._subscribers[user_id])} open)")
        return queue

    def unsubscribe(self, user_id: str, queue: asyncio.Queue):
        queues = self._subscribers.get(user_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[user_id]
        logger.info(f"Realtime subscriber removed for {user_id}")

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subscribers.get(user_id, ()))

    def publish(self, user_id: str, event: dict) -> int:
        """Deliver event to every subscriber of user_id; returns how many got it"""
        delivered = 0
        for queue in list(self._subscribers.get(user_id, ())):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Realtime queue full for {user_id}, dropping {event.get('type')} event")
        return delivered

    async def listen(
        self, user_id: str, heartbeat: Optional[float] = HEARTBEAT_SECONDS
    ) -> AsyncGenerator[Optional[dict], None]:
        """Yield events for user_id; yields None on each idle heartbeat interval"""
        queue = self.subscribe(user_id)
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=heartbeat)
                except asyncio.TimeoutError:
                    yield None
                    continue
                yield event
        finally:
            self.unsubscribe(user_id, queue)


def format_sse(event: Optional[dict]) -> str:
    """Encode an event as a Server-Sent Events frame (None -> keep-alive comment)"""
    if event is None:
        return ": keep-alive\n\n"
    return f"data: {json.dumps(jsonable_encoder(event))}\n\n"


broker = RealtimeBroker()
