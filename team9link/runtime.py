"""Agent runtime contract - the external component that produces replies."""

from __future__ import annotations

import importlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from team9link.pipeline.dispatch import ReplyDispatcher


@dataclass
class TurnContext:
    """One finalized conversational turn handed to the agent runtime."""

    body: str
    raw_body: str
    command_body: str
    session_key: str
    agent_id: str
    account_id: str
    channel_id: str
    chat_type: str  # "group" | "direct"
    conversation_label: str
    sender_id: str
    sender_name: str
    message_id: str
    timestamp_ms: int
    from_address: str = ""
    to_address: str = ""
    provider: str = "team9"
    surface: str = "team9"
    matched_by: str = "peer"
    parent_id: str | None = None
    message_sids: list[str] = field(default_factory=list)
    command_authorized: bool = True
    was_mentioned: bool | None = None  # Groups only
    media_path: str | None = None
    media_url: str | None = None
    media_type: str | None = None
    media_paths: list[str] = field(default_factory=list)
    media_urls: list[str] = field(default_factory=list)
    media_types: list[str] = field(default_factory=list)

    @property
    def is_group(self) -> bool:
        return self.chat_type == "group"

    @property
    def message_sid_first(self) -> str:
        return self.message_sids[0] if self.message_sids else self.message_id

    @property
    def message_sid_last(self) -> str:
        return self.message_sids[-1] if self.message_sids else self.message_id


@dataclass
class ReplyPayload:
    """One reply chunk from the runtime: text, media, or both."""

    text: str = ""
    media_urls: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.text.strip() and not self.media_urls


@dataclass
class PairingRequest:
    """A DM from a sender who is not yet on the allow list."""

    account_id: str
    channel_id: str
    sender_id: str
    sender_name: str
    text: str


class AgentRuntime(ABC):
    """
    Abstract agent runtime.

    ``dispatch_reply`` is called once per turn and may call
    ``await dispatcher.deliver(ReplyPayload(...))`` any number of times.
    """

    @abstractmethod
    async def dispatch_reply(self, turn: TurnContext, dispatcher: "ReplyDispatcher") -> None:
        pass

    async def on_pairing_request(self, request: PairingRequest) -> str | None:
        """Text to send back to an unpaired DM sender, or None to stay silent."""
        return None


class EchoRuntime(AgentRuntime):
    """Replies with the body it received. Useful for smoke-testing a bot token."""

    async def dispatch_reply(self, turn: TurnContext, dispatcher: "ReplyDispatcher") -> None:
        await dispatcher.deliver(ReplyPayload(text=turn.body))


def load_runtime(target: str, **kwargs: Any) -> AgentRuntime:
    """
    Import ``module:attribute`` and return an AgentRuntime.

    A class or factory is called with ``kwargs``; an instance is returned as is.
    """
    module_name, sep, attr = (target or "").partition(":")
    if not module_name or not sep or not attr:
        raise ValueError(f"Runtime must look like 'package.module:attribute', got {target!r}")
    obj: Any = importlib.import_module(module_name)
    for part in attr.split("."):
        obj = getattr(obj, part)
    if isinstance(obj, AgentRuntime):
        return obj
    if callable(obj):
        runtime = obj(**kwargs)
        if isinstance(runtime, AgentRuntime):
            return runtime
    raise TypeError(f"{target} did not produce an AgentRuntime")
