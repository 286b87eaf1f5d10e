import asyncio

import pytest
from socketio.exceptions import ConnectionError as SocketConnectionError

from team9link.bus.queue import EventBus
from team9link.config.schema import TransportConfig
from team9link.errors import AuthenticationError, TransportError
from team9link.transport.realtime import TransportClient, split_ws_url


class _FakeSocket:
    def __init__(self, behaviour: str) -> None:
        self.behaviour = behaviour
        self.handlers: dict[str, object] = {}
        self.connected = False
        self.connect_kwargs: dict = {}
        self.url: str | None = None
        self.emitted: list[tuple[str, dict, str]] = []

    def on(self, event, handler, namespace=None) -> None:
        self.handlers[event] = handler

    async def connect(self, url, **kwargs) -> None:
        self.url = url
        self.connect_kwargs = kwargs
        if self.behaviour == "refuse":
            raise SocketConnectionError("Connection refused by the server")
        self.connected = True
        await self.handlers["connect"]()
        if self.behaviour == "auth_error":
            await self.handlers["auth_error"]({"message": "Invalid token"})
        elif self.behaviour == "ok":
            await self.handlers["authenticated"]({"userId": "bot-1"})

    async def disconnect(self) -> None:
        self.connected = False

    async def emit(self, event, data=None, namespace=None) -> None:
        self.emitted.append((event, data, namespace))


class _SocketFactory:
    def __init__(self, *behaviours: str) -> None:
        self.behaviours = list(behaviours)
        self.sockets: list[_FakeSocket] = []

    def __call__(self, settings) -> _FakeSocket:
        behaviour = self.behaviours.pop(0) if len(self.behaviours) > 1 else self.behaviours[0]
        sock = _FakeSocket(behaviour)
        self.sockets.append(sock)
        return sock


def _transport(factory: _SocketFactory, **settings) -> tuple[TransportClient, EventBus]:
    bus = EventBus(maxsize=10)
    values = {"reconnect_attempts": 2, "reconnect_delay_s": 0, "reconnect_delay_max_s": 0, "connect_timeout_s": 1}
    values.update(settings)
    client = TransportClient(
        "default",
        "ws://team9.local/im",
        "t9bot_x",
        bus,
        settings=TransportConfig(**values),
        client_factory=factory,
    )
    return client, bus


def test_split_ws_url() -> None:
    assert split_ws_url("ws://team9.local:3000/im") == ("http://team9.local:3000", "/im")
    assert split_ws_url("wss://team9.example.com/im/") == ("https://team9.example.com", "/im")
    assert split_ws_url("wss://team9.example.com") == ("https://team9.example.com", "/")


async def test_connect_authenticates_with_token() -> None:
    factory = _SocketFactory("ok")
    client, _ = _transport(factory)

    assert await client.connect() == "bot-1"

    sock = factory.sockets[0]
    assert sock.url == "http://team9.local"
    assert sock.connect_kwargs["namespaces"] == ["/im"]
    assert sock.connect_kwargs["auth"] == {"token": "t9bot_x"}
    assert sock.connect_kwargs["socketio_path"] == "socket.io"
    assert client.is_active()
    assert client.bot_user_id == "bot-1"
    assert client.last_activity_at is not None
    await client.disconnect()
    assert not client.is_active()


async def test_auth_error_is_not_retried() -> None:
    factory = _SocketFactory("auth_error")
    client, _ = _transport(factory)

    with pytest.raises(AuthenticationError) as exc_info:
        await client.connect()

    assert "Invalid token" in str(exc_info.value)
    assert len(factory.sockets) == 1


async def test_refused_connections_are_retried_then_surface() -> None:
    factory = _SocketFactory("refuse")
    client, _ = _transport(factory)

    with pytest.raises(TransportError):
        await client.connect()

    assert len(factory.sockets) == 3


async def test_retry_recovers_after_transient_failure() -> None:
    factory = _SocketFactory("refuse", "ok")
    client, _ = _transport(factory)

    assert await client.connect() == "bot-1"
    assert len(factory.sockets) == 2
    await client.disconnect()


async def test_missing_authenticated_event_times_out() -> None:
    factory = _SocketFactory("silent")
    client, _ = _transport(factory, reconnect_attempts=0, connect_timeout_s=0.05)

    with pytest.raises(TransportError):
        await client.connect()


async def test_inbound_events_are_published_in_order() -> None:
    factory = _SocketFactory("ok")
    client, bus = _transport(factory)
    await client.connect()
    sock = factory.sockets[0]

    await sock.handlers["new_message"]({"id": "m1"})
    await sock.handlers["pong"]({"timestamp": 1})
    await sock.handlers["channel_created"]({"id": "c2"})

    first = await bus.consume()
    second = await bus.consume()
    assert (first.name, first.payload) == ("new_message", {"id": "m1"})
    assert second.name == "channel_created"
    assert bus.size == 0
    await client.disconnect()


async def test_disconnect_is_published_and_deactivates() -> None:
    factory = _SocketFactory("ok")
    client, bus = _transport(factory)
    await client.connect()

    await factory.sockets[0].handlers["disconnect"]("transport close")

    assert not client.is_active()
    event = await bus.consume()
    assert event.name == "disconnect"
    assert event.payload == {"reason": "transport close"}


async def test_emits_use_namespace_and_skip_when_inactive() -> None:
    factory = _SocketFactory("ok")
    client, _ = _transport(factory)

    assert await client.start_typing("c1") is False
    assert await client.join_channel("c1") is False

    await client.connect()
    sock = factory.sockets[0]
    assert await client.join_channel("c1") is True
    assert await client.stop_typing("c1") is True
    assert await client.add_reaction("m1", "👍") is True

    assert sock.emitted == [
        ("join_channel", {"channelId": "c1"}, "/im"),
        ("typing_stop", {"channelId": "c1"}, "/im"),
        ("add_reaction", {"messageId": "m1", "emoji": "👍"}, "/im"),
    ]
    await client.disconnect()


async def test_heartbeat_pings_while_authenticated() -> None:
    factory = _SocketFactory("ok")
    client, _ = _transport(factory, heartbeat_interval_s=0.01)
    await client.connect()

    await asyncio.sleep(0.05)
    await client.disconnect()

    pings = [e for e in factory.sockets[0].emitted if e[0] == "ping"]
    assert pings
    assert "timestamp" in pings[0][1]


async def test_reauthentication_after_reconnect_is_published() -> None:
    factory = _SocketFactory("ok")
    client, bus = _transport(factory)
    await client.connect()
    assert bus.size == 0
    sock = factory.sockets[0]

    await sock.handlers["disconnect"]("transport close")
    await sock.handlers["connect"]()
    await sock.handlers["authenticated"]({"userId": "bot-1"})

    assert client.is_active()
    names = [(await bus.consume()).name, (await bus.consume()).name]
    assert names == ["disconnect", "authenticated"]
    await client.disconnect()
