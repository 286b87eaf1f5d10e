"""Inbound pipeline - flushed message -> access check -> prepare -> dispatch."""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from team9link.bus.events import IncomingMessage
from team9link.config.schema import Config
from team9link.pipeline.access import evaluate_dm_access
from team9link.pipeline.commands import has_control_command
from team9link.pipeline.dispatch import DispatchPipeline
from team9link.pipeline.mentions import MentionGate, strip_html
from team9link.pipeline.prepare import prepare_turn
from team9link.pipeline.router import Router
from team9link.runtime import AgentRuntime, PairingRequest

if TYPE_CHECKING:
    from team9link.gateway.supervisor import Connection


class InboundPipeline:
    """Runs one flushed message through gating, routing and dispatch."""

    def __init__(
        self,
        config: Config,
        runtime: AgentRuntime,
        *,
        router: Router | None = None,
        gate: MentionGate | None = None,
        dispatch: DispatchPipeline | None = None,
    ):
        self.config = config
        self.runtime = runtime
        self.router = router or Router(config.team9.routing.rules)
        self.gate = gate or MentionGate(config.team9.commands)
        self.dispatch = dispatch or DispatchPipeline(runtime, config.team9.delivery)

    def should_bypass_debounce(self, message: IncomingMessage) -> bool:
        """Attachments, empty text and control commands never wait in the debouncer."""
        if message.attachments:
            return True
        plain = strip_html(message.content)
        if not plain:
            return True
        return has_control_command(plain, self.config.team9.commands.control)

    async def handle(self, conn: "Connection", message: IncomingMessage) -> bool:
        """Process one (possibly merged) message. Returns True when the runtime was invoked."""
        account_id = conn.account.account_id
        merged = len(message.batch_ids)
        logger.info(
            f"[team9:{account_id}] Processing message from {message.sender_name or message.sender_id} "
            f"in {message.channel_id} ({len(message.attachments)} attachments"
            f"{f', merged {merged} messages' if merged > 1 else ''})"
        )

        if not message.is_group and not await self._check_dm_access(conn, message):
            return False

        prepared = await prepare_turn(conn, message, config=self.config, router=self.router, gate=self.gate)
        if prepared is None:
            return False

        await self.dispatch.dispatch(conn, prepared)
        return True

    async def _check_dm_access(self, conn: "Connection", message: IncomingMessage) -> bool:
        account = conn.account
        decision = evaluate_dm_access(account, message.sender_id)
        if decision == "allow":
            return True
        if decision == "block":
            logger.info(
                f"[team9:{account.account_id}] Dropping DM from {message.sender_id} "
                f"(dm policy '{account.dm_policy}')"
            )
            return False

        request = PairingRequest(
            account_id=account.account_id,
            channel_id=message.channel_id,
            sender_id=message.sender_id,
            sender_name=message.sender_name or message.sender_id,
            text=strip_html(message.content),
        )
        try:
            reply = await self.runtime.on_pairing_request(request)
        except Exception as e:
            logger.error(f"[team9:{account.account_id}] Pairing request failed for {message.sender_id}: {e}")
            return False
        if reply:
            try:
                await conn.rest.send_message(message.channel_id, reply)
            except Exception as e:
                logger.error(f"[team9:{account.account_id}] Failed to send pairing reply: {e}")
        logger.info(f"[team9:{account.account_id}] DM from unpaired sender {message.sender_id} held for pairing")
        return False
