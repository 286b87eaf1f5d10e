"""Reply dispatch - run the agent runtime and deliver its replies."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Awaitable, Callable

from loguru import logger

from team9link.config.schema import DeliveryConfig
from team9link.errors import DeliveryError
from team9link.runtime import AgentRuntime, ReplyPayload
from team9link.transport.models import OutboundAttachment

if TYPE_CHECKING:
    from team9link.gateway.supervisor import Connection
    from team9link.pipeline.prepare import PreparedTurn

DEFAULT_TEXT_CHUNK_LIMIT = 4000


def chunk_text(text: str, max_len: int = DEFAULT_TEXT_CHUNK_LIMIT) -> list[str]:
    """Split a reply into chunks that fit the server's message limit."""
    if len(text) <= max_len:
        return [text]

    chunks: list[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= max_len:
            chunks.append(remaining)
            break
        # Try to split on double newline
        cut = remaining.rfind("\n\n", 0, max_len)
        if cut <= 0:
            cut = remaining.rfind("\n", 0, max_len)
        if cut <= 0:
            cut = max_len
        chunks.append(remaining[:cut])
        remaining = remaining[cut:].lstrip("\n")
    return chunks


class ReplyDispatcher:
    """
    Handed to the agent runtime for one turn.

    ``start`` shows the typing indicator and keeps it alive until
    ``mark_idle``. Each ``deliver`` call is one attempt; failures are logged
    and never raised to the runtime.
    """

    def __init__(
        self,
        *,
        deliver: Callable[[ReplyPayload], Awaitable[None]],
        on_reply_start: Callable[[], Awaitable[object]] | None = None,
        on_idle: Callable[[], Awaitable[object]] | None = None,
        typing_interval_s: float = 4.0,
        label: str = "team9",
    ):
        self._deliver = deliver
        self._on_reply_start = on_reply_start
        self._on_idle = on_idle
        self.typing_interval_s = typing_interval_s
        self.label = label
        self._typing_task: asyncio.Task | None = None
        self._idle = False
        self.delivered = 0
        self.failed = 0

    async def start(self) -> None:
        if self._on_reply_start is None or self._typing_task is not None or self._idle:
            return
        try:
            await self._on_reply_start()
        except Exception as e:
            logger.debug(f"[{self.label}] Typing signal failed: {e}")
            return

        async def _keepalive() -> None:
            while not self._idle:
                await asyncio.sleep(self.typing_interval_s)
                if self._idle:
                    return
                try:
                    await self._on_reply_start()
                except Exception:
                    return

        self._typing_task = asyncio.create_task(_keepalive())

    async def deliver(self, payload: ReplyPayload) -> bool:
        if payload.empty:
            return False
        try:
            await self._deliver(payload)
            self.delivered += 1
            return True
        except Exception as e:
            self.failed += 1
            logger.error(f"[{self.label}] Reply delivery failed: {e}")
            return False

    async def mark_idle(self) -> None:
        """Stop the typing indicator. Runs once."""
        if self._idle:
            return
        self._idle = True
        task, self._typing_task = self._typing_task, None
        if task and not task.done():
            task.cancel()
        if self._on_idle is not None:
            try:
                await self._on_idle()
            except Exception as e:
                logger.debug(f"[{self.label}] Typing stop failed: {e}")

    @property
    def idle(self) -> bool:
        return self._idle


class DispatchPipeline:
    """Invokes the runtime for a prepared turn and sends replies back to the channel."""

    def __init__(self, runtime: AgentRuntime, delivery: DeliveryConfig | None = None):
        self.runtime = runtime
        self.delivery = delivery or DeliveryConfig()

    async def dispatch(self, conn: "Connection", prepared: "PreparedTurn") -> ReplyDispatcher:
        turn = prepared.turn
        channel_id = turn.channel_id
        label = f"team9:{turn.account_id}"

        async def deliver(payload: ReplyPayload) -> None:
            await self.send_reply(conn, channel_id, payload, parent_id=prepared.message.parent_id)

        dispatcher = ReplyDispatcher(
            deliver=deliver,
            on_reply_start=lambda: conn.transport.start_typing(channel_id),
            on_idle=lambda: conn.transport.stop_typing(channel_id),
            typing_interval_s=self.delivery.typing_interval_s,
            label=label,
        )
        try:
            await dispatcher.start()
            await self.runtime.dispatch_reply(turn, dispatcher)
        except Exception as e:
            logger.error(f"[{label}] Failed to dispatch message {turn.message_id}: {e}")
        finally:
            await dispatcher.mark_idle()
        return dispatcher

    async def send_reply(
        self,
        conn: "Connection",
        channel_id: str,
        payload: ReplyPayload,
        *,
        parent_id: str | None = None,
    ) -> list[str]:
        """Upload media, then send text chunks. Returns the created message ids."""
        attachments: list[OutboundAttachment] = []
        for source in payload.media_urls:
            try:
                attachments.append(await conn.media.upload_from_source(source, channel_id))
            except DeliveryError as e:
                logger.error(f"[team9:{conn.account.account_id}] Failed to upload media in reply: {e}")

        chunks = chunk_text(payload.text, self.delivery.text_chunk_limit) if payload.text else [""]
        message_ids: list[str] = []
        try:
            for index, chunk in enumerate(chunks):
                first = index == 0
                if not chunk and not (first and attachments):
                    continue
                sent = await conn.rest.send_message(
                    channel_id,
                    chunk,
                    parent_id=parent_id,
                    attachments=attachments if first and attachments else None,
                )
                message_ids.append(sent.id)
        except Exception as e:
            raise DeliveryError(f"Failed to send reply to {channel_id}: {e}") from e
        return message_ids
