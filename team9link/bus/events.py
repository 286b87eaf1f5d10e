"""Event types for the inbound event queue and pipeline."""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from team9link.transport.models import MessageAttachment


@dataclass
class TransportEvent:
    """A raw event received from the realtime socket."""

    name: str
    payload: Any = None
    received_at: float = field(default_factory=time.monotonic)


@dataclass
class IncomingMessage:
    """A chat message received for one account, before debouncing."""

    account_id: str
    message_id: str
    channel_id: str
    sender_id: str
    content: str  # Raw markup, may contain <mention> tags
    sender_name: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    parent_id: str | None = None
    attachments: list[MessageAttachment] = field(default_factory=list)
    is_group: bool = True
    message_ids: list[str] = field(default_factory=list)  # Set when merged

    @property
    def debounce_key(self) -> str:
        return f"team9:{self.account_id}:{self.channel_id}:{self.sender_id}"

    @property
    def batch_ids(self) -> list[str]:
        """Ids of every message folded into this one, in arrival order."""
        return list(self.message_ids) if self.message_ids else [self.message_id]
