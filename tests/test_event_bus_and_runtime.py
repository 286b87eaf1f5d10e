import pytest

from team9link.bus.events import TransportEvent
from team9link.bus.queue import EventBus
from team9link.runtime import AgentRuntime, EchoRuntime, ReplyPayload, load_runtime


async def test_full_bus_drops_oldest_event() -> None:
    bus = EventBus(maxsize=2)
    for name in ("a", "b", "c"):
        bus.publish(TransportEvent(name=name))

    assert bus.dropped == 1
    assert (await bus.consume()).name == "b"
    assert (await bus.consume()).name == "c"


async def test_closed_bus_wakes_consumer_and_rejects_events() -> None:
    bus = EventBus()
    bus.publish(TransportEvent(name="a"))
    bus.close()
    bus.publish(TransportEvent(name="late"))

    assert (await bus.consume()).name == "a"
    assert await bus.consume() is None
    assert await bus.consume() is None
    assert bus.closed


def test_load_runtime_from_import_string() -> None:
    runtime = load_runtime("team9link.runtime:EchoRuntime")
    assert isinstance(runtime, EchoRuntime)
    assert isinstance(runtime, AgentRuntime)


def test_load_runtime_rejects_bad_targets() -> None:
    with pytest.raises(ValueError):
        load_runtime("team9link.runtime")
    with pytest.raises(TypeError):
        load_runtime("team9link.runtime:ReplyPayload")


def test_reply_payload_emptiness() -> None:
    assert ReplyPayload().empty
    assert ReplyPayload(text="  ").empty
    assert not ReplyPayload(media_urls=["/tmp/a.png"]).empty
