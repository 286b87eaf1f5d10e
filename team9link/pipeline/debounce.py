"""Inbound debouncer - merges rapid consecutive messages from one sender."""

import asyncio
import dataclasses
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from loguru import logger

from team9link.bus.events import IncomingMessage

FlushHandler = Callable[[IncomingMessage], Awaitable[None]]


def merge_messages(batch: list[IncomingMessage]) -> IncomingMessage:
    """
    Fold a batch into one message.

    The last message carries the merged content (non-empty parts joined by
    newlines, in arrival order); attachments are unioned and every message
    id is kept in ``message_ids``.
    """
    if not batch:
        raise ValueError("cannot merge an empty batch")
    last = batch[-1]
    if len(batch) == 1:
        return dataclasses.replace(last, message_ids=[last.message_id])
    parts = [m.content for m in batch if m.content and m.content.strip()]
    attachments = [a for m in batch for a in m.attachments]
    return dataclasses.replace(
        last,
        content="\n".join(parts),
        attachments=attachments,
        message_ids=[m.message_id for m in batch],
    )


@dataclass
class _PendingBatch:
    messages: list[IncomingMessage] = field(default_factory=list)
    timer: asyncio.Task | None = None


class InboundDebouncer:
    """
    Holds messages per (account, channel, sender) for a quiet window.

    Each new message restarts the window for its key; when the window elapses
    the batch is merged and handed to ``on_flush``. Messages for which
    ``should_bypass`` is true skip the window: any pending batch for the same
    key is flushed first, then the message is delivered on its own.
    Deliveries for one key run one at a time in flush order.
    """

    def __init__(
        self,
        on_flush: FlushHandler,
        *,
        window_ms: int = 1500,
        should_bypass: Callable[[IncomingMessage], bool] | None = None,
        name: str = "team9",
    ):
        self.on_flush = on_flush
        self.window_ms = window_ms
        self.should_bypass = should_bypass or (lambda _msg: False)
        self.name = name
        self._pending: dict[str, _PendingBatch] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._deliveries: set[asyncio.Task] = set()

    @property
    def pending_keys(self) -> list[str]:
        return list(self._pending.keys())

    def enqueue(self, message: IncomingMessage) -> None:
        """Add a message; must be called from the event loop."""
        key = message.debounce_key
        if self.window_ms <= 0 or not message.sender_id:
            self._deliver(key, [[message]])
            return

        if self.should_bypass(message):
            batches: list[list[IncomingMessage]] = []
            pending = self._take(key)
            if pending:
                batches.append(pending)
            batches.append([message])
            self._deliver(key, batches)
            return

        state = self._pending.setdefault(key, _PendingBatch())
        state.messages.append(message)
        if state.timer:
            state.timer.cancel()
        state.timer = asyncio.create_task(self._flush_after(key))

    def _take(self, key: str) -> list[IncomingMessage]:
        state = self._pending.pop(key, None)
        if state is None:
            return []
        if state.timer and state.timer is not asyncio.current_task():
            state.timer.cancel()
        return state.messages

    async def _flush_after(self, key: str) -> None:
        await asyncio.sleep(self.window_ms / 1000.0)
        messages = self._take(key)
        if messages:
            self._deliver(key, [messages])

    def _deliver(self, key: str, batches: list[list[IncomingMessage]]) -> None:
        task = asyncio.create_task(self._run_delivery(key, batches))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _run_delivery(self, key: str, batches: list[list[IncomingMessage]]) -> None:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                for batch in batches:
                    try:
                        await self.on_flush(merge_messages(batch))
                    except Exception as e:
                        logger.error(f"[{self.name}] Flush failed for {key}: {e}")
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] <= 0:
                self._lock_users.pop(key, None)
                self._locks.pop(key, None)

    async def drain(self) -> None:
        """Flush every pending batch now and wait for all deliveries."""
        for key in list(self._pending.keys()):
            messages = self._take(key)
            if messages:
                self._deliver(key, [messages])
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

    def cancel(self) -> int:
        """Drop pending batches without delivering them. Returns the number of dropped messages."""
        dropped = 0
        for key in list(self._pending.keys()):
            dropped += len(self._take(key))
        if dropped:
            logger.info(f"[{self.name}] Dropped {dropped} pending message(s)")
        return dropped
