"""Outbound message fan-out.

Every JSON-RPC response and notification the gateway produces is
published here. The stdio adapter forwards notifications to stdout and
each SSE listener gets its own queue.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

logger = logging.getLogger(__name__)


class OutboundBroadcaster:
    """Fan-out of outbound JSON-RPC messages to subscriber queues.

    Publishing never blocks: queues are unbounded and a publish with no
    subscribers is a no-op.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[dict[str, Any]]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, message: dict[str, Any]) -> None:
        """Deliver ``message`` to every current subscriber."""
        for queue in list(self._subscribers):
            queue.put_nowait(message)

    def subscribe(self) -> tuple[asyncio.Queue[dict[str, Any]], Callable[[], None]]:
        """Register a new subscriber queue.

        Returns:
            The queue and a function that unsubscribes it.
        """
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._subscribers.append(queue)
        logger.debug(f"Outbound subscriber added ({len(self._subscribers)} total)")

        def unsubscribe() -> None:
            if queue in self._subscribers:
                self._subscribers.remove(queue)
                logger.debug(f"Outbound subscriber removed ({len(self._subscribers)} total)")

        return queue, unsubscribe

    async def stream(self) -> AsyncIterator[dict[str, Any]]:
        """Yield every message published after the call.

        Usage:
            async for message in broadcaster.stream():
                yield f"data: {json.dumps(message)}\\n\\n"
        """
        queue, unsubscribe = self.subscribe()
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()
