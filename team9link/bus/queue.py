"""Bounded async queue carrying transport events to the supervisor."""

import asyncio

from loguru import logger

from team9link.bus.events import TransportEvent

_CLOSED = TransportEvent(name="__closed__")


class EventBus:
    """
    Single inbound-event channel for one transport connection.

    The transport publishes every socket event here and the supervisor's
    consumer reads them in arrival order. When the queue is full the oldest
    event is dropped so a stalled consumer cannot grow memory without bound.
    """

    def __init__(self, maxsize: int = 1000, name: str = "team9"):
        self.name = name
        self._queue: asyncio.Queue[TransportEvent] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    def publish(self, event: TransportEvent) -> None:
        """Enqueue an event without blocking."""
        if self._closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            try:
                dropped = self._queue.get_nowait()
                self.dropped += 1
                logger.warning(f"[{self.name}] Event queue full, dropped oldest '{dropped.name}' event")
                self._queue.put_nowait(event)
            except (asyncio.QueueEmpty, asyncio.QueueFull):
                pass

    async def consume(self) -> TransportEvent | None:
        """Next event, or None once the bus is closed and drained."""
        if self._closed and self._queue.empty():
            return None
        event = await self._queue.get()
        if event is _CLOSED:
            return None
        return event

    def close(self) -> None:
        """Stop accepting events and wake the consumer."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            try:
                self._queue.get_nowait()
                self._queue.put_nowait(_CLOSED)
            except (asyncio.QueueEmpty, asyncio.QueueFull):
                pass

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def size(self) -> int:
        """Number of pending events."""
        return self._queue.qsize()
