"""Turn preparation - parse, gate, route and build the turn context."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from team9link.bus.events import IncomingMessage
from team9link.config.schema import Config
from team9link.pipeline.mentions import (
    MentionDecision,
    MentionGate,
    build_mention_regexes,
    extract_mentioned_user_ids,
    resolve_group_require_mention,
    resolve_mention_patterns,
    strip_html,
)
from team9link.pipeline.router import Route, Router
from team9link.runtime import TurnContext
from team9link.transport.media import build_attachment_placeholder, build_media_payload

if TYPE_CHECKING:
    from team9link.gateway.supervisor import Connection


@dataclass
class PreparedTurn:
    turn: TurnContext
    message: IncomingMessage
    route: Route
    decision: MentionDecision | None = None


def conversation_label(message: IncomingMessage) -> str:
    if message.is_group:
        return f"Team9 Channel {message.channel_id}"
    return f"Team9 DM from {message.sender_name or message.sender_id}"


async def prepare_turn(
    conn: "Connection",
    message: IncomingMessage,
    *,
    config: Config,
    router: Router,
    gate: MentionGate,
) -> PreparedTurn | None:
    """
    Build the turn for a (possibly merged) message, or None to skip it.

    Group messages are gated before any attachment is downloaded.
    """
    account_id = conn.account.account_id
    mentioned_ids = extract_mentioned_user_ids(message.content)
    plain = strip_html(message.content)
    has_attachments = bool(message.attachments)

    if not plain and not has_attachments:
        logger.debug(f"[team9:{account_id}] Skipping empty message {message.message_id}")
        return None

    body = plain or build_attachment_placeholder(message.attachments)
    route = router.resolve(account_id, message.channel_id, message.sender_id, message.is_group)

    decision: MentionDecision | None = None
    if message.is_group:
        require_mention = resolve_group_require_mention(conn.account, message.channel_id)
        regexes = build_mention_regexes(resolve_mention_patterns(config, route.agent_id, conn.bot_username))
        decision = gate.evaluate(
            text=body,
            mentioned_user_ids=mentioned_ids,
            require_mention=require_mention,
            regexes=regexes,
            bot_user_id=conn.bot_user_id,
            bot_username=conn.bot_username,
        )
        logger.debug(
            f"[team9:{account_id}] Mention check: require_mention={require_mention}, "
            f"was_mentioned={decision.was_mentioned}, skip={decision.should_skip}"
        )
        if decision.should_skip:
            logger.info(
                f"[team9:{account_id}] Skipping group message in channel {message.channel_id} "
                f"(mention required but not mentioned)"
            )
            return None

    media = await conn.media.download_attachments(message.attachments) if has_attachments else []
    address = f"team9:{message.channel_id}"
    logger.debug(f"[team9:{account_id}] Routed: agent={route.agent_id}, matched_by={route.matched_by}")

    turn = TurnContext(
        body=body,
        raw_body=message.content,
        command_body=plain or body,
        session_key=route.session_key,
        agent_id=route.agent_id,
        account_id=account_id,
        channel_id=message.channel_id,
        chat_type="group" if message.is_group else "direct",
        conversation_label=conversation_label(message),
        sender_id=message.sender_id,
        sender_name=message.sender_name or "Unknown",
        message_id=message.message_id,
        timestamp_ms=int(message.timestamp.timestamp() * 1000),
        from_address=address,
        to_address=address,
        matched_by=route.matched_by,
        parent_id=message.parent_id,
        message_sids=message.batch_ids,
        was_mentioned=decision.effective_was_mentioned if decision else None,
        **build_media_payload(media),
    )
    return PreparedTurn(turn=turn, message=message, route=route, decision=decision)
