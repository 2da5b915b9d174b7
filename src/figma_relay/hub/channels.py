"""Channel membership registry.

A channel is an opaque id plus the set of connections currently in it.
Channels are created on first join and removed the moment their last
member leaves, so a later join with the same id starts from an empty set.

All methods are synchronous. The hub calls them from the event loop
thread only, which keeps every membership change atomic.
"""

from __future__ import annotations

import logging
import uuid
from typing import Protocol

logger = logging.getLogger(__name__)


class ChannelMember(Protocol):
    """Anything that can sit in a channel.

    ``channel_id`` is a back-reference maintained by the registry.
    """

    channel_id: str | None


def new_channel_id() -> str:
    """Mint a fresh, globally unique channel id."""
    return str(uuid.uuid4())


class ChannelRegistry:
    """Owned map of channel id -> member set."""

    def __init__(self) -> None:
        self._channels: dict[str, set[ChannelMember]] = {}

    def join(self, member: ChannelMember, channel_id: str | None = None) -> str:
        """Place ``member`` in ``channel_id`` (minted when absent).

        Leaves the member's previous channel first. Rejoining the current
        channel leaves membership untouched.

        Returns:
            The channel id the member now belongs to.
        """
        if not channel_id:
            channel_id = new_channel_id()

        if member.channel_id == channel_id and member in self._channels.get(channel_id, ()):
            return channel_id

        self.leave(member)
        self._channels.setdefault(channel_id, set()).add(member)
        member.channel_id = channel_id
        logger.debug(f"Member joined channel {channel_id} ({len(self._channels[channel_id])} members)")
        return channel_id

    def leave(self, member: ChannelMember) -> str | None:
        """Remove ``member`` from its channel, deleting the channel if empty.

        Returns:
            The channel id the member left, or None if it was in none.
        """
        channel_id = member.channel_id
        if channel_id is None:
            return None

        member.channel_id = None
        members = self._channels.get(channel_id)
        if members is None:
            return channel_id

        members.discard(member)
        if not members:
            del self._channels[channel_id]
            logger.debug(f"Channel {channel_id} removed (empty)")
        return channel_id

    def members(self, channel_id: str) -> frozenset[ChannelMember]:
        """Snapshot of a channel's members (empty if the channel is gone)."""
        return frozenset(self._channels.get(channel_id, ()))

    def peers_of(self, member: ChannelMember) -> list[ChannelMember]:
        """Every other member of ``member``'s channel."""
        if member.channel_id is None:
            return []
        return [m for m in self._channels.get(member.channel_id, ()) if m is not member]

    @property
    def channel_count(self) -> int:
        return len(self._channels)

    def channel_ids(self) -> list[str]:
        return list(self._channels)

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._channels

    def __len__(self) -> int:
        return len(self._channels)
