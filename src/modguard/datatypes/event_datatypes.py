"""
Normalized moderation events and the categories they are counted under.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from modguard.datatypes.discord_datatypes import ChannelID, GuildID, RoleID, UserID


ANTINUKE_MODULE = "antinuke"
AUTOMOD_MODULE = "automod"


class EventCategory(Enum):
    """Kinds of guild activity the engine rate-limits."""

    CHANNEL_DELETE = "channel_delete"
    ROLE_DELETE = "role_delete"
    MEMBER_BAN = "member_ban"
    MEMBER_KICK = "member_kick"
    WEBHOOK_CREATE = "webhook_create"
    PERMISSION_CHANGE = "permission_change"
    MESSAGE = "message"

    def __str__(self) -> str:
        return self.value

    @property
    def severity(self) -> int:
        """Rank used to pick one response when several categories trip at once."""
        return CATEGORY_SEVERITY[self]

    @property
    def module(self) -> str:
        """Module that owns the category; disabling the module drops its events."""
        return AUTOMOD_MODULE if self is EventCategory.MESSAGE else ANTINUKE_MODULE


# ban > kick > role_delete > channel_delete > permission_change > webhook_create > message
CATEGORY_SEVERITY: dict[EventCategory, int] = {
    EventCategory.MEMBER_BAN: 7,
    EventCategory.MEMBER_KICK: 6,
    EventCategory.ROLE_DELETE: 5,
    EventCategory.CHANNEL_DELETE: 4,
    EventCategory.PERMISSION_CHANGE: 3,
    EventCategory.WEBHOOK_CREATE: 2,
    EventCategory.MESSAGE: 1,
}


@dataclass(frozen=True, slots=True)
class ModerationEvent:
    """
    A platform event in the uniform shape consumed by the engine.

    Attributes:
        guild_id: Guild the event happened in.
        actor_id: User responsible for the event (audit-log executor or message author).
        category: Counting category.
        timestamp: Aware UTC datetime of the event.
        metadata: Read-only extra payload fields (target ids, names, content hints).
        channel_id: Originating channel, if any; used by the channel whitelist.
        actor_role_ids: Roles held by the actor when the event fired.
    """

    guild_id: GuildID
    actor_id: UserID
    category: EventCategory
    timestamp: datetime
    metadata: Mapping[str, Any] = field(default_factory=dict)
    channel_id: Optional[ChannelID] = None
    actor_role_ids: frozenset[RoleID] = frozenset()

    def __post_init__(self) -> None:
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))
        if not isinstance(self.actor_role_ids, frozenset):
            object.__setattr__(self, "actor_role_ids", frozenset(self.actor_role_ids))

    @property
    def epoch(self) -> float:
        """Event time as POSIX seconds, the unit the rate windows work in."""
        return self.timestamp.timestamp()
