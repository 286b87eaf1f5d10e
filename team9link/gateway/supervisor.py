"""Connection supervisor - one live connection per account, rebuilt on failure."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import partial
from typing import Any, Callable, Mapping

from loguru import logger
from pydantic import ValidationError

from team9link.bus.events import IncomingMessage, TransportEvent
from team9link.bus.queue import EventBus
from team9link.config.accounts import ResolvedAccount, resolve_account
from team9link.config.schema import Config, TransportConfig
from team9link.errors import (
    AccountStoppedError,
    AuthenticationError,
    ConfigurationError,
    DiscoveryError,
    Team9Error,
)
from team9link.gateway.metadata import ChannelMetadataCache
from team9link.gateway.watchdog import ConnectionWatchdog, Health
from team9link.pipeline.debounce import InboundDebouncer
from team9link.pipeline.handler import InboundPipeline
from team9link.transport.media import MediaClient
from team9link.transport.models import Team9Message
from team9link.transport.realtime import TransportClient
from team9link.transport.rest import RestClient

RestFactory = Callable[[ResolvedAccount, TransportConfig], Any]
TransportFactory = Callable[[ResolvedAccount, EventBus, TransportConfig], Any]


class AccountState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    ACTIVE = "active"
    UNHEALTHY = "unhealthy"


@dataclass
class Connection:
    """Everything live for one account. Replaced wholesale on rebuild."""

    account: ResolvedAccount
    rest: RestClient
    transport: TransportClient
    bus: EventBus
    channels: ChannelMetadataCache
    media: MediaClient
    bot_user_id: str | None = None
    bot_username: str | None = None
    state: AccountState = AccountState.DISCONNECTED
    consumer: asyncio.Task | None = None
    created_at: float = field(default_factory=time.monotonic)

    def is_active(self) -> bool:
        return self.transport.is_active()

    @property
    def last_activity_at(self) -> float | None:
        """Newest of socket inbound traffic and successful REST calls."""
        stamps = [t for t in (self.transport.last_activity_at, self.rest.last_success_at) if t is not None]
        return max(stamps) if stamps else None

    async def close(self) -> None:
        self.state = AccountState.DISCONNECTED
        self.bus.close()
        consumer, self.consumer = self.consumer, None
        if consumer and not consumer.done() and consumer is not asyncio.current_task():
            consumer.cancel()
            await asyncio.gather(consumer, return_exceptions=True)
        try:
            await self.transport.disconnect()
        finally:
            await self.rest.close()


def _default_rest_factory(account: ResolvedAccount, settings: TransportConfig) -> RestClient:
    return RestClient(account.base_url, account.token, timeout=settings.request_timeout_s)


def _default_transport_factory(account: ResolvedAccount, bus: EventBus, settings: TransportConfig) -> TransportClient:
    return TransportClient(account.account_id, account.ws_url, account.token, bus, settings=settings)


class ConnectionSupervisor:
    """
    Owns the registry of live connections, one per account id.

    Inbound socket events are read from each connection's event bus and fed
    to the account's debouncer; flushed batches run through the inbound
    pipeline against whatever connection is current for that account.
    """

    def __init__(
        self,
        config: Config,
        pipeline: InboundPipeline,
        *,
        config_loader: Callable[[], Config] | None = None,
        environ: Mapping[str, str] | None = None,
        rest_factory: RestFactory | None = None,
        transport_factory: TransportFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.pipeline = pipeline
        self._config_loader = config_loader or (lambda: self.config)
        self._environ = environ
        self.rest_factory = rest_factory or _default_rest_factory
        self._transport_factory = transport_factory or _default_transport_factory
        self._clock = clock
        self._connections: dict[str, Connection] = {}
        self._building: dict[str, asyncio.Task[Connection]] = {}
        self._debouncers: dict[str, InboundDebouncer] = {}
        self._tracked: set[str] = set()
        settings = config.team9.watchdog
        self.watchdog = ConnectionWatchdog(
            accounts=lambda: sorted(self._tracked),
            check=self.health,
            rebuild=self.rebuild,
            interval_s=settings.interval_s,
            failure_threshold=settings.failure_threshold,
        )

    # Registry

    def connection(self, account_id: str) -> Connection | None:
        return self._connections.get(account_id)

    @property
    def tracked_accounts(self) -> list[str]:
        return sorted(self._tracked)

    async def get_connection(self, account: ResolvedAccount) -> Connection:
        """
        Return the active connection for a tracked account, building one if needed.

        Concurrent callers share one in-flight build. Raises AccountStoppedError
        when the account stops being tracked before the build is installed.
        """
        account_id = account.account_id
        if not account.token:
            raise ConfigurationError(
                f"Team9 account '{account_id}' has no bot token; set TEAM9_TOKEN or team9.credentials.token"
            )
        existing = self._connections.get(account_id)
        if existing is not None and existing.is_active():
            return existing

        task = self._building.get(account_id)
        if task is None:
            task = asyncio.create_task(self._replace(account))
            self._building[account_id] = task
            task.add_done_callback(partial(self._build_done, account_id))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # stop_account cancelled the build itself, not our caller.
            if task.cancelled() and account_id not in self._tracked:
                raise AccountStoppedError(f"Account '{account_id}' was stopped while connecting") from None
            raise

    def _build_done(self, account_id: str, task: asyncio.Task) -> None:
        if self._building.get(account_id) is task:
            self._building.pop(account_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"[team9:{account_id}] Connection build failed: {task.exception()}")

    async def _replace(self, account: ResolvedAccount) -> Connection:
        """Close any previous connection and install a new one while the account stays tracked."""
        account_id = account.account_id
        old = self._connections.pop(account_id, None)
        if old is not None:
            await old.close()
        if account_id not in self._tracked:
            raise AccountStoppedError(f"Account '{account_id}' was stopped while connecting")
        conn = await self._build(account)
        if account_id not in self._tracked:
            await conn.close()
            raise AccountStoppedError(f"Account '{account_id}' was stopped while connecting")
        self._connections[account_id] = conn
        self._sync_watchdog()
        return conn

    async def _build(self, account: ResolvedAccount) -> Connection:
        account_id = account.account_id
        settings = self.config.team9.transport
        rest = self.rest_factory(account, settings)
        bus = EventBus(maxsize=settings.event_queue_size, name=f"team9:{account_id}")
        transport = self._transport_factory(account, bus, settings)
        conn = Connection(
            account=account,
            rest=rest,
            transport=transport,
            bus=bus,
            channels=ChannelMetadataCache(rest, account_id=account_id),
            media=MediaClient(rest, self.config.media_path, self.config.team9.delivery.media_max_bytes),
            state=AccountState.CONNECTING,
        )
        logger.info(f"[team9:{account_id}] Connecting to {account.ws_url}")

        try:
            conn.bot_user_id = await transport.connect() or None
            conn.state = AccountState.AUTHENTICATED
            await self._learn_identity(conn)
            await self._join_channels(conn)
        except BaseException:
            await conn.close()
            raise

        conn.consumer = asyncio.create_task(self._consume(conn))
        conn.state = AccountState.ACTIVE
        logger.info(
            f"[team9:{account_id}] Connection active as {conn.bot_username or conn.bot_user_id} "
            f"({len(conn.channels)} channels)"
        )
        return conn

    async def _learn_identity(self, conn: Connection) -> None:
        try:
            me = await conn.rest.get_me()
        except AuthenticationError:
            raise
        except Team9Error as e:
            logger.warning(f"[team9:{conn.account.account_id}] Could not fetch bot profile, mention detection degraded: {e}")
            return
        conn.bot_username = me.username or None
        conn.bot_user_id = conn.bot_user_id or me.id

    async def _join_channels(self, conn: Connection) -> None:
        try:
            channels = await conn.channels.load_all()
        except DiscoveryError as e:
            logger.warning(f"[team9:{conn.account.account_id}] {e}; continuing without joining existing channels")
            return
        for channel in channels:
            await conn.transport.join_channel(channel.id)
        logger.debug(f"[team9:{conn.account.account_id}] Joined {len(channels)} channels")

    # Inbound events

    async def _consume(self, conn: Connection) -> None:
        while True:
            event = await conn.bus.consume()
            if event is None:
                break
            try:
                await self._handle_event(conn, event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[team9:{conn.account.account_id}] Error handling '{event.name}' event: {e}")

    async def _handle_event(self, conn: Connection, event: TransportEvent) -> None:
        account_id = conn.account.account_id
        payload = event.payload if isinstance(event.payload, dict) else {}

        if event.name == "new_message":
            message = await self._to_incoming(conn, payload)
            if message is not None:
                self.debouncer(account_id).enqueue(message)
        elif event.name == "channel_created":
            channel_id = str(payload.get("id") or "")
            if channel_id:
                logger.info(f"[team9:{account_id}] New channel created: {channel_id} ({payload.get('type') or 'unknown'})")
                conn.channels.set(channel_id, payload.get("type"))
                await conn.transport.join_channel(channel_id)
        elif event.name == "channel_joined":
            channel_id = str(payload.get("channelId") or "")
            if channel_id:
                logger.info(f"[team9:{account_id}] {payload.get('username') or payload.get('userId')} joined channel {channel_id}")
                await conn.transport.join_channel(channel_id)
                await conn.channels.refresh(channel_id)
        elif event.name == "channel_left":
            channel_id = str(payload.get("channelId") or "")
            if channel_id and payload.get("userId") == conn.bot_user_id:
                conn.channels.forget(channel_id)
        elif event.name == "authenticated":
            logger.info(f"[team9:{account_id}] Rejoining channels after reconnect")
            await self._join_channels(conn)
        elif event.name == "disconnect":
            logger.debug(f"[team9:{account_id}] Transport reported disconnect: {payload.get('reason')}")
        else:
            logger.debug(f"[team9:{account_id}] Event '{event.name}': {str(event.payload)[:200]}")

    async def _to_incoming(self, conn: Connection, payload: dict[str, Any]) -> IncomingMessage | None:
        account = conn.account
        try:
            raw = Team9Message.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"[team9:{account.account_id}] Ignoring malformed message: {e.error_count()} errors")
            return None

        if conn.bot_user_id and raw.sender_id == conn.bot_user_id:
            return None
        if account.channel_allowlist and raw.channel_id not in account.channel_allowlist:
            logger.debug(f"[team9:{account.account_id}] Ignoring message in non-allowlisted channel {raw.channel_id}")
            return None

        sender_name = None
        if raw.sender is not None:
            sender_name = raw.sender.display_name or raw.sender.username or None
        return IncomingMessage(
            account_id=account.account_id,
            message_id=raw.id,
            channel_id=raw.channel_id,
            sender_id=raw.sender_id,
            content=raw.content,
            sender_name=sender_name,
            timestamp=raw.created_at or datetime.now(),
            parent_id=raw.parent_id,
            attachments=list(raw.attachments),
            is_group=await conn.channels.is_group(raw.channel_id),
        )

    def debouncer(self, account_id: str) -> InboundDebouncer:
        """The account's debouncer; it outlives individual connections."""
        debouncer = self._debouncers.get(account_id)
        if debouncer is None:
            debouncer = InboundDebouncer(
                partial(self._on_flush, account_id),
                window_ms=self.config.team9.debounce.inbound_ms,
                should_bypass=self.pipeline.should_bypass_debounce,
                name=f"team9:{account_id}",
            )
            self._debouncers[account_id] = debouncer
        return debouncer

    async def _on_flush(self, account_id: str, message: IncomingMessage) -> None:
        conn = self._connections.get(account_id)
        if conn is None:
            logger.warning(f"[team9:{account_id}] No live connection, dropping message {message.message_id}")
            return
        await self.pipeline.handle(conn, message)

    # Health

    def health(self, account_id: str) -> Health:
        conn = self._connections.get(account_id)
        if conn is None:
            return "missing" if account_id not in self._building else "healthy"
        if not conn.is_active():
            conn.state = AccountState.UNHEALTHY
            return "unhealthy"
        last = conn.last_activity_at
        if last is None or self._clock() - last > self.config.team9.watchdog.idle_timeout_s:
            conn.state = AccountState.UNHEALTHY
            return "unhealthy"
        conn.state = AccountState.ACTIVE
        return "healthy"

    async def rebuild(self, account_id: str) -> None:
        """Tear down the stale connection and reconnect with freshly resolved config."""
        if account_id not in self._tracked:
            return
        old = self._connections.pop(account_id, None)
        if old is not None:
            logger.warning(f"[team9:{account_id}] Rebuilding connection")
            await old.close()
        if account_id not in self._tracked:
            logger.debug(f"[team9:{account_id}] Stopped during rebuild, not reconnecting")
            return

        account = resolve_account(self._config_loader(), account_id, self._environ)
        if not account.enabled:
            logger.info(f"[team9:{account_id}] Account disabled, no longer supervised")
            await self.stop_account(account_id)
            return
        try:
            await self.get_connection(account)
        except AccountStoppedError as e:
            logger.debug(f"[team9:{account_id}] {e}")
        except AuthenticationError as e:
            logger.error(f"[team9:{account_id}] {e}")
            await self.stop_account(account_id)
        except ConfigurationError as e:
            logger.error(f"[team9:{account_id}] {e}")
            await self.stop_account(account_id)

    def _sync_watchdog(self) -> None:
        if self._tracked and not self.watchdog.running:
            self.watchdog.start()
        elif not self._tracked and self.watchdog.running:
            self.watchdog.stop()

    # Lifecycle

    async def start_account(self, account: ResolvedAccount) -> Connection | None:
        """
        Start supervising an account. Disabled or unconfigured accounts are skipped.

        Auth and configuration errors propagate and leave the account
        unsupervised; transport errors propagate but the watchdog keeps retrying.
        """
        account_id = account.account_id
        if not account.enabled:
            logger.info(f"[team9:{account_id}] Account disabled, skipping")
            return None
        if not account.configured:
            logger.warning(f"[team9:{account_id}] Account not configured (no token), skipping")
            return None

        self._tracked.add(account_id)
        try:
            return await self.get_connection(account)
        except AccountStoppedError as e:
            logger.info(f"[team9:{account_id}] {e}")
            return None
        except (AuthenticationError, ConfigurationError):
            await self.stop_account(account_id)
            raise
        finally:
            self._sync_watchdog()

    async def stop_account(self, account_id: str) -> None:
        """Stop supervising the account and close whatever it has open or in flight."""
        self._tracked.discard(account_id)
        await self.watchdog.cancel_rebuild(account_id)
        debouncer = self._debouncers.pop(account_id, None)
        if debouncer is not None:
            debouncer.cancel()
        task = self._building.pop(account_id, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        conn = self._connections.pop(account_id, None)
        if conn is not None:
            await conn.close()
            logger.info(f"[team9:{account_id}] Stopped")
        self._sync_watchdog()

    async def shutdown(self) -> None:
        accounts = sorted(self._tracked | set(self._connections) | set(self._building))
        # Untrack first so that no rebuild or build in flight can install a connection.
        self._tracked.clear()
        await self.watchdog.close()
        for account_id in accounts:
            await self.stop_account(account_id)

    async def probe(self, account: ResolvedAccount) -> dict[str, Any]:
        """Connection status for the host: configured/connected plus base URL."""
        if not account.configured:
            return {"status": "not_configured", "configured": False, "connected": False, "base_url": account.base_url}
        conn = self._connections.get(account.account_id)
        connected = bool(conn and conn.is_active())
        return {
            "status": "connected" if connected else "disconnected",
            "configured": True,
            "connected": connected,
            "base_url": account.base_url,
            "state": conn.state.value if conn else AccountState.DISCONNECTED.value,
        }
