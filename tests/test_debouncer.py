import asyncio

from team9link.bus.events import IncomingMessage
from team9link.pipeline.debounce import InboundDebouncer, merge_messages
from team9link.transport.models import MessageAttachment


def _msg(message_id: str, content: str, *, sender: str = "u1", channel: str = "c1", attachments=None) -> IncomingMessage:
    return IncomingMessage(
        account_id="default",
        message_id=message_id,
        channel_id=channel,
        sender_id=sender,
        content=content,
        attachments=list(attachments or []),
    )


def _image(name: str) -> MessageAttachment:
    return MessageAttachment(id=name, file_name=f"{name}.png", mime_type="image/png", url=f"http://files/{name}")


class _Recorder:
    def __init__(self, delay: float = 0.0) -> None:
        self.flushed: list[IncomingMessage] = []
        self.delay = delay

    async def __call__(self, message: IncomingMessage) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.flushed.append(message)


async def test_rapid_messages_merge_into_one_turn() -> None:
    recorder = _Recorder()
    debouncer = InboundDebouncer(recorder, window_ms=60)

    debouncer.enqueue(_msg("m1", "hello"))
    await asyncio.sleep(0.01)
    debouncer.enqueue(_msg("m2", "world"))
    await asyncio.sleep(0.02)
    assert recorder.flushed == []

    await asyncio.sleep(0.1)
    await debouncer.drain()

    assert len(recorder.flushed) == 1
    merged = recorder.flushed[0]
    assert merged.content == "hello\nworld"
    assert merged.message_ids == ["m1", "m2"]
    assert merged.message_id == "m2"


async def test_bypass_flushes_pending_batch_before_the_bypassing_message() -> None:
    recorder = _Recorder()
    debouncer = InboundDebouncer(recorder, window_ms=5000, should_bypass=lambda m: bool(m.attachments))

    debouncer.enqueue(_msg("m1", "look at this"))
    debouncer.enqueue(_msg("m2", "", attachments=[_image("a")]))
    await debouncer.drain()

    assert [m.batch_ids for m in recorder.flushed] == [["m1"], ["m2"]]
    assert recorder.flushed[1].attachments[0].id == "a"
    assert debouncer.pending_keys == []


async def test_zero_window_delivers_each_message_alone() -> None:
    recorder = _Recorder()
    debouncer = InboundDebouncer(recorder, window_ms=0)

    debouncer.enqueue(_msg("m1", "a"))
    debouncer.enqueue(_msg("m2", "b"))
    await debouncer.drain()

    assert [m.content for m in recorder.flushed] == ["a", "b"]


async def test_different_senders_are_batched_separately() -> None:
    recorder = _Recorder()
    debouncer = InboundDebouncer(recorder, window_ms=5000)

    debouncer.enqueue(_msg("m1", "from one", sender="u1"))
    debouncer.enqueue(_msg("m2", "from two", sender="u2"))
    debouncer.enqueue(_msg("m3", "one again", sender="u1"))
    assert sorted(debouncer.pending_keys) == ["team9:default:c1:u1", "team9:default:c1:u2"]
    await debouncer.drain()

    by_sender = {m.sender_id: m for m in recorder.flushed}
    assert by_sender["u1"].content == "from one\none again"
    assert by_sender["u2"].message_ids == ["m2"]


async def test_deliveries_for_one_key_stay_in_order() -> None:
    recorder = _Recorder(delay=0.02)
    debouncer = InboundDebouncer(recorder, window_ms=5000, should_bypass=lambda _m: True)

    for i in range(4):
        debouncer.enqueue(_msg(f"m{i}", f"/status {i}"))
    await debouncer.drain()

    assert [m.message_id for m in recorder.flushed] == ["m0", "m1", "m2", "m3"]


async def test_flush_failure_does_not_block_later_batches() -> None:
    seen: list[str] = []

    async def on_flush(message: IncomingMessage) -> None:
        seen.append(message.message_id)
        if message.message_id == "m1":
            raise RuntimeError("boom")

    debouncer = InboundDebouncer(on_flush, window_ms=5000, should_bypass=lambda _m: True)
    debouncer.enqueue(_msg("m1", "first"))
    debouncer.enqueue(_msg("m2", "second"))
    await debouncer.drain()

    assert seen == ["m1", "m2"]


async def test_cancel_drops_pending_messages() -> None:
    recorder = _Recorder()
    debouncer = InboundDebouncer(recorder, window_ms=30)

    debouncer.enqueue(_msg("m1", "a"))
    debouncer.enqueue(_msg("m2", "b", sender="u2"))
    assert debouncer.cancel() == 2

    await asyncio.sleep(0.06)
    assert recorder.flushed == []


def test_merge_skips_empty_parts_and_unions_attachments() -> None:
    merged = merge_messages(
        [
            _msg("m1", "first", attachments=[_image("a")]),
            _msg("m2", "   "),
            _msg("m3", "third", attachments=[_image("b")]),
        ]
    )
    assert merged.content == "first\nthird"
    assert [a.id for a in merged.attachments] == ["a", "b"]
    assert merged.batch_ids == ["m1", "m2", "m3"]
