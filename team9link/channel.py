"""Team9 channel - the outbound action surface exposed to the host."""

from __future__ import annotations

import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Literal, Mapping

from loguru import logger

from team9link.config.accounts import ResolvedAccount, describe_account, list_accounts, resolve_account
from team9link.config.schema import Config
from team9link.errors import Team9Error
from team9link.gateway.supervisor import ConnectionSupervisor
from team9link.pipeline.handler import InboundPipeline
from team9link.runtime import AgentRuntime, EchoRuntime
from team9link.transport.media import MediaClient
from team9link.transport.rest import RestClient

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)

TARGET_HINT = "<channelId|channel:channelId|user:userId>"


@dataclass
class SendResult:
    status: Literal["sent", "failed"]
    message_id: str | None = None
    channel_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "sent"


@dataclass
class ActionResult:
    success: bool
    error: str | None = None


def normalize_target(target: str) -> str:
    """Trim a target and drop a leading ``team9:`` prefix."""
    value = (target or "").strip()
    if value.lower().startswith("team9:"):
        value = value[len("team9:"):].strip()
    return value


def looks_like_id(value: str) -> bool:
    """Team9 ids are UUIDs."""
    return bool(_UUID_RE.match((value or "").strip()))


class Team9Channel:
    """
    Host-facing entry point for one Team9 integration.

    Starts and stops accounts through the supervisor and performs outbound
    actions. Actions use the account's live connection when there is one and
    a short-lived REST client otherwise. Sends and actions never raise;
    failures come back as ``SendResult``/``ActionResult``.
    """

    name = "team9"

    def __init__(
        self,
        config: Config,
        runtime: AgentRuntime | None = None,
        *,
        supervisor: ConnectionSupervisor | None = None,
        config_loader: Callable[[], Config] | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        self.config = config
        self._environ = environ
        self._config_loader = config_loader or (lambda: self.config)
        if supervisor is None:
            pipeline = InboundPipeline(config, runtime or EchoRuntime())
            supervisor = ConnectionSupervisor(
                config,
                pipeline,
                config_loader=self._config_loader,
                environ=environ,
            )
        self.supervisor = supervisor

    def resolve(self, account_id: str | None = None) -> ResolvedAccount:
        return resolve_account(self._config_loader(), account_id, self._environ)

    # Lifecycle

    async def start_account(self, account_id: str | None = None) -> bool:
        account = self.resolve(account_id)
        conn = await self.supervisor.start_account(account)
        if conn is not None:
            logger.info(f"[team9:{account.account_id}] Account started")
        return conn is not None

    async def start_all(self) -> list[str]:
        """Start every enabled, configured account. Returns the ids that came up."""
        started: list[str] = []
        for account in list_accounts(self._config_loader(), self._environ):
            try:
                if await self.supervisor.start_account(account) is not None:
                    started.append(account.account_id)
            except Exception as e:
                logger.error(f"[team9:{account.account_id}] Failed to start: {e}")
        return started

    async def stop_account(self, account_id: str) -> None:
        await self.supervisor.stop_account(account_id)

    async def shutdown(self) -> None:
        await self.supervisor.shutdown()

    async def probe_account(self, account_id: str | None = None) -> dict[str, Any]:
        return await self.supervisor.probe(self.resolve(account_id))

    def account_snapshot(self, account_id: str | None = None) -> dict[str, Any]:
        account = self.resolve(account_id)
        snapshot = describe_account(account)
        conn = self.supervisor.connection(account.account_id)
        snapshot["running"] = bool(conn and conn.is_active())
        snapshot["bot_user_id"] = conn.bot_user_id if conn else None
        snapshot["last_activity_at"] = conn.last_activity_at if conn else None
        return snapshot

    # Outbound

    @asynccontextmanager
    async def _rest(self, account: ResolvedAccount) -> AsyncIterator[tuple[RestClient, MediaClient]]:
        conn = self.supervisor.connection(account.account_id)
        if conn is not None and conn.is_active():
            yield conn.rest, conn.media
            return
        rest = self.supervisor.rest_factory(account, self.config.team9.transport)
        try:
            yield rest, MediaClient(rest, self.config.media_path, self.config.team9.delivery.media_max_bytes)
        finally:
            await rest.close()

    async def _resolve_channel_id(self, rest: RestClient, target: str) -> str:
        value = normalize_target(target)
        if value.startswith("user:"):
            user_id = value[len("user:"):].strip()
            if not user_id:
                raise ValueError(f"Empty user id in target {target!r}")
            channel = await rest.get_or_create_dm_channel(user_id)
            return channel.id
        if value.startswith("channel:"):
            value = value[len("channel:"):].strip()
        if not value:
            raise ValueError(f"Invalid target {target!r}, expected {TARGET_HINT}")
        return value

    async def send_text(
        self,
        to: str,
        text: str,
        *,
        account_id: str | None = None,
        reply_to: str | None = None,
    ) -> SendResult:
        account = self.resolve(account_id)
        channel_id: str | None = None
        try:
            async with self._rest(account) as (rest, _media):
                channel_id = await self._resolve_channel_id(rest, to)
                message = await rest.send_message(channel_id, text, parent_id=reply_to)
        except (Team9Error, ValueError) as e:
            logger.error(f"[team9:{account.account_id}] Failed to send to {to}: {e}")
            return SendResult(status="failed", channel_id=channel_id, error=str(e))
        logger.debug(f"[team9:{account.account_id}] Sent message {message.id} to {channel_id}")
        return SendResult(status="sent", message_id=message.id, channel_id=channel_id)

    async def send_media(
        self,
        to: str,
        text: str,
        media_url: str,
        *,
        account_id: str | None = None,
        reply_to: str | None = None,
    ) -> SendResult:
        account = self.resolve(account_id)
        channel_id: str | None = None
        try:
            async with self._rest(account) as (rest, media):
                channel_id = await self._resolve_channel_id(rest, to)
                attachment = await media.upload_from_source(media_url, channel_id)
                message = await rest.send_message(
                    channel_id, text or "", parent_id=reply_to, attachments=[attachment]
                )
        except (Team9Error, ValueError) as e:
            logger.error(f"[team9:{account.account_id}] Failed to send media to {to}: {e}")
            return SendResult(status="failed", channel_id=channel_id, error=str(e))
        return SendResult(status="sent", message_id=message.id, channel_id=channel_id)

    async def _action(self, account_id: str | None, label: str, call) -> ActionResult:
        account = self.resolve(account_id)
        try:
            async with self._rest(account) as (rest, _media):
                await call(rest)
        except Team9Error as e:
            logger.warning(f"[team9:{account.account_id}] {label} failed: {e}")
            return ActionResult(success=False, error=str(e))
        return ActionResult(success=True)

    async def edit_message(self, message_id: str, text: str, *, account_id: str | None = None) -> ActionResult:
        return await self._action(account_id, "Edit", lambda rest: rest.update_message(message_id, text))

    async def delete_message(self, message_id: str, *, account_id: str | None = None) -> ActionResult:
        return await self._action(account_id, "Delete", lambda rest: rest.delete_message(message_id))

    async def add_reaction(self, message_id: str, emoji: str, *, account_id: str | None = None) -> ActionResult:
        return await self._action(account_id, "React", lambda rest: rest.add_reaction(message_id, emoji))

    async def remove_reaction(self, message_id: str, emoji: str, *, account_id: str | None = None) -> ActionResult:
        return await self._action(account_id, "Unreact", lambda rest: rest.remove_reaction(message_id, emoji))
