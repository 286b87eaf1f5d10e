"""Realtime Socket.IO transport for one Team9 account."""

import asyncio
import time
from typing import Any, Callable
from urllib.parse import urlsplit, urlunsplit

import socketio
from loguru import logger
from socketio.exceptions import ConnectionError as SocketConnectionError

from team9link.bus.events import TransportEvent
from team9link.bus.queue import EventBus
from team9link.config.schema import TransportConfig
from team9link.errors import AuthenticationError, TransportError

# Events forwarded to the supervisor through the event bus.
FORWARDED_EVENTS = (
    "channel_created",
    "channel_joined",
    "channel_left",
    "new_message",
    "message_updated",
    "message_deleted",
    "user_typing",
    "reaction_added",
    "reaction_removed",
    "read_status_updated",
)
# Events that only count as liveness.
QUIET_EVENTS = ("pong", "user_online", "user_offline")


def split_ws_url(ws_url: str) -> tuple[str, str]:
    """Split ``ws://host/im`` into the Socket.IO server URL and namespace."""
    parts = urlsplit(ws_url)
    scheme = {"ws": "http", "wss": "https"}.get(parts.scheme, parts.scheme or "http")
    namespace = parts.path.rstrip("/") or "/"
    return urlunsplit((scheme, parts.netloc, "", "", "")), namespace


def _default_client_factory(settings: TransportConfig) -> socketio.AsyncClient:
    return socketio.AsyncClient(
        reconnection=True,
        reconnection_attempts=settings.reconnect_attempts,
        reconnection_delay=max(0.1, settings.reconnect_delay_s),
        reconnection_delay_max=max(0.1, settings.reconnect_delay_max_s),
        logger=False,
        engineio_logger=False,
    )


class TransportClient:
    """
    Owns one Socket.IO connection for one account.

    Every inbound event is published to a single EventBus in arrival order;
    the transport never calls back into pipeline code directly.
    """

    def __init__(
        self,
        account_id: str,
        ws_url: str,
        token: str,
        bus: EventBus,
        *,
        settings: TransportConfig | None = None,
        client_factory: Callable[[TransportConfig], Any] | None = None,
    ):
        self.account_id = account_id
        self.ws_url = ws_url
        self.server_url, self.namespace = split_ws_url(ws_url)
        self.bus = bus
        self.settings = settings or TransportConfig()
        self._token = token
        self._client_factory = client_factory or _default_client_factory
        self._client: Any = None
        self._authenticated = False
        self._auth_waiter: asyncio.Future[str] | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self.bot_user_id: str | None = None
        self.last_inbound_at: float | None = None

    # Connection lifecycle

    async def connect(self) -> str:
        """
        Connect and wait for the server's ``authenticated`` event.

        Returns the bot's user id. Socket-level failures are retried with
        exponential backoff; an ``auth_error`` is raised immediately.
        """
        loop = asyncio.get_running_loop()
        attempts = self.settings.reconnect_attempts + 1
        delay = self.settings.reconnect_delay_s
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            self._auth_waiter = loop.create_future()
            self._client = self._client_factory(self.settings)
            self._register_handlers(self._client)
            try:
                await self._client.connect(
                    self.server_url,
                    namespaces=[self.namespace],
                    transports=["websocket", "polling"],
                    socketio_path="socket.io",
                    auth={"token": self._token},
                    wait_timeout=self.settings.connect_timeout_s,
                )
                user_id = await asyncio.wait_for(
                    asyncio.shield(self._auth_waiter),
                    timeout=self.settings.connect_timeout_s,
                )
                logger.info(f"[team9:{self.account_id}] Authenticated as user {user_id}")
                return user_id
            except AuthenticationError:
                await self._drop_client()
                raise
            except asyncio.TimeoutError:
                last_error = TransportError("Timed out waiting for authentication")
            except (SocketConnectionError, OSError) as e:
                last_error = e

            await self._drop_client()
            if attempt < attempts:
                logger.warning(
                    f"[team9:{self.account_id}] Connect attempt {attempt}/{attempts} failed: "
                    f"{last_error}; retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.settings.reconnect_delay_max_s)

        raise TransportError(f"Could not connect to {self.ws_url} after {attempts} attempts: {last_error}")

    async def disconnect(self) -> None:
        """Stop the heartbeat and close the socket. Safe to call twice."""
        self._stop_heartbeat()
        self._authenticated = False
        await self._drop_client()

    async def _drop_client(self) -> None:
        client, self._client = self._client, None
        if self._auth_waiter and not self._auth_waiter.done():
            self._auth_waiter.cancel()
        if client is None:
            return
        try:
            await client.disconnect()
        except Exception as e:
            logger.debug(f"[team9:{self.account_id}] Socket disconnect error: {e}")

    def is_active(self) -> bool:
        return bool(self._authenticated and self._client is not None and self._client.connected)

    @property
    def last_activity_at(self) -> float | None:
        return self.last_inbound_at

    # Inbound events

    def _register_handlers(self, client: Any) -> None:
        ns = self.namespace
        client.on("connect", self._on_connect, namespace=ns)
        client.on("disconnect", self._on_disconnect, namespace=ns)
        client.on("connect_error", self._on_connect_error, namespace=ns)
        client.on("authenticated", self._on_authenticated, namespace=ns)
        client.on("auth_error", self._on_auth_error, namespace=ns)
        for name in FORWARDED_EVENTS:
            client.on(name, self._forwarder(name), namespace=ns)
        for name in QUIET_EVENTS:
            client.on(name, self._quiet(name), namespace=ns)

    def _touch(self) -> None:
        self.last_inbound_at = time.monotonic()

    def _forwarder(self, name: str):
        async def handler(payload: Any = None) -> None:
            self._touch()
            self.bus.publish(TransportEvent(name=name, payload=payload))
        return handler

    def _quiet(self, name: str):
        async def handler(payload: Any = None) -> None:
            self._touch()
            if name == "pong" and isinstance(payload, dict) and payload.get("timestamp"):
                latency = int(time.time() * 1000) - int(payload["timestamp"])
                logger.debug(f"[team9:{self.account_id}] Pong received, latency: {latency}ms")
        return handler

    async def _on_connect(self) -> None:
        self._touch()
        logger.debug(f"[team9:{self.account_id}] Socket connected to {self.server_url}{self.namespace}")

    async def _on_disconnect(self, *args: Any) -> None:
        reason = args[0] if args else "unknown"
        was_authenticated = self._authenticated
        self._authenticated = False
        self._stop_heartbeat()
        if was_authenticated:
            logger.warning(f"[team9:{self.account_id}] Socket disconnected: {reason}")
            self.bus.publish(TransportEvent(name="disconnect", payload={"reason": str(reason)}))

    async def _on_connect_error(self, data: Any = None) -> None:
        logger.error(f"[team9:{self.account_id}] Socket connect error: {data}")
        self.bus.publish(TransportEvent(name="connect_error", payload=data))

    async def _on_authenticated(self, payload: Any = None) -> None:
        self._touch()
        user_id = str((payload or {}).get("userId") or "") if isinstance(payload, dict) else ""
        self.bot_user_id = user_id or self.bot_user_id
        self._authenticated = True
        self._start_heartbeat()
        waiter = self._auth_waiter
        if waiter and not waiter.done():
            waiter.set_result(self.bot_user_id or "")
        else:
            # Socket.IO reconnected on its own; rooms must be joined again.
            logger.info(f"[team9:{self.account_id}] Re-authenticated after reconnect")
            self.bus.publish(TransportEvent(name="authenticated", payload={"userId": self.bot_user_id}))

    async def _on_auth_error(self, payload: Any = None) -> None:
        message = payload.get("message") if isinstance(payload, dict) else payload
        logger.error(f"[team9:{self.account_id}] Auth error: {message}")
        waiter = self._auth_waiter
        if waiter and not waiter.done():
            waiter.set_exception(AuthenticationError(f"Authentication failed: {message}"))

    # Heartbeat

    def _start_heartbeat(self) -> None:
        if self._heartbeat_task and not self._heartbeat_task.done():
            return
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    def _stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _heartbeat_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.settings.heartbeat_interval_s)
                if self.is_active():
                    await self._client.emit("ping", {"timestamp": int(time.time() * 1000)}, namespace=self.namespace)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning(f"[team9:{self.account_id}] Heartbeat ping failed: {e}")

    # Outbound signals

    async def _emit(self, event: str, data: dict[str, Any]) -> bool:
        if not self.is_active():
            logger.debug(f"[team9:{self.account_id}] Skipping '{event}': not connected")
            return False
        try:
            await self._client.emit(event, data, namespace=self.namespace)
            return True
        except Exception as e:
            logger.warning(f"[team9:{self.account_id}] Failed to emit '{event}': {e}")
            return False

    async def join_channel(self, channel_id: str) -> bool:
        if not self.is_active():
            logger.warning(f"[team9:{self.account_id}] Cannot join channel {channel_id}: not connected")
            return False
        return await self._emit("join_channel", {"channelId": channel_id})

    async def leave_channel(self, channel_id: str) -> bool:
        return await self._emit("leave_channel", {"channelId": channel_id})

    async def start_typing(self, channel_id: str) -> bool:
        return await self._emit("typing_start", {"channelId": channel_id})

    async def stop_typing(self, channel_id: str) -> bool:
        return await self._emit("typing_stop", {"channelId": channel_id})

    async def mark_as_read(self, channel_id: str, message_id: str) -> bool:
        return await self._emit("mark_as_read", {"channelId": channel_id, "messageId": message_id})

    async def add_reaction(self, message_id: str, emoji: str) -> bool:
        return await self._emit("add_reaction", {"messageId": message_id, "emoji": emoji})

    async def remove_reaction(self, message_id: str, emoji: str) -> bool:
        return await self._emit("remove_reaction", {"messageId": message_id, "emoji": emoji})
