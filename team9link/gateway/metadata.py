"""Channel metadata cache used to tell group channels from direct messages."""

import time
from dataclasses import dataclass
from typing import Callable

from loguru import logger
from pydantic import ValidationError

from team9link.errors import DiscoveryError, Team9Error
from team9link.transport.models import ChannelType, Team9Channel
from team9link.transport.rest import RestClient

DEFAULT_TTL_S = 3600.0


@dataclass
class _Entry:
    kind: ChannelType
    fetched_at: float


class ChannelMetadataCache:
    """
    channel id -> chat kind, with a staleness window.

    Entries are written when channels are enumerated, created or joined and
    refetched lazily once older than ``ttl_s``. When a lookup fails the last
    known kind is used; a channel never seen before counts as a group so that
    mention gating stays on.
    """

    def __init__(
        self,
        rest: RestClient,
        *,
        ttl_s: float = DEFAULT_TTL_S,
        account_id: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rest = rest
        self.ttl_s = ttl_s
        self.account_id = account_id
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    def set(self, channel_id: str, kind: str | None) -> None:
        if kind not in ("direct", "public", "private"):
            return
        self._entries[channel_id] = _Entry(kind=kind, fetched_at=self._clock())

    def forget(self, channel_id: str) -> None:
        self._entries.pop(channel_id, None)

    def get(self, channel_id: str) -> ChannelType | None:
        """Cached kind if present and fresh."""
        entry = self._entries.get(channel_id)
        if entry is None or self._clock() - entry.fetched_at > self.ttl_s:
            return None
        return entry.kind

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def load_all(self) -> list[Team9Channel]:
        """Enumerate the bot's channels and cache their kinds."""
        try:
            channels = await self.rest.get_user_channels()
        except (Team9Error, ValidationError) as e:
            raise DiscoveryError(f"Failed to list channels: {e}") from e
        for channel in channels:
            self.set(channel.id, channel.type)
        return channels

    async def refresh(self, channel_id: str) -> ChannelType | None:
        try:
            channel = await self.rest.get_channel(channel_id)
        except (Team9Error, ValidationError) as e:
            logger.warning(f"[team9:{self.account_id}] Failed to fetch metadata for channel {channel_id}: {e}")
            return None
        self.set(channel_id, channel.type)
        return channel.type

    async def is_group(self, channel_id: str) -> bool:
        kind = self.get(channel_id)
        if kind is None:
            kind = await self.refresh(channel_id)
        if kind is None:
            stale = self._entries.get(channel_id)
            kind = stale.kind if stale else None
        return kind != "direct"
