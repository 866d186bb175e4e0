"""
Whitelist checks run before an event is counted.
"""

from __future__ import annotations

from typing import Iterable, Optional

from modguard.datatypes.discord_datatypes import ChannelID, GuildID, RoleID, UserID
from modguard.datatypes.event_datatypes import ModerationEvent
from modguard.datatypes.guild_policy import GuildPolicy


class WhitelistResolver:
    """Decides whether an actor/channel is exempt from detection and counting."""

    def is_exempt(
        self,
        guild_id: GuildID,
        actor_id: UserID,
        role_ids: Iterable[RoleID],
        channel_id: Optional[ChannelID],
        policy: GuildPolicy,
    ) -> bool:
        """
        Return True if any of user, role or channel whitelist matches.

        A policy belonging to another guild never exempts anything.
        """
        if policy.guild_id != guild_id:
            return False

        whitelist = policy.whitelist
        if actor_id in whitelist.user_ids:
            return True
        if channel_id is not None and channel_id in whitelist.channel_ids:
            return True
        return any(role_id in whitelist.role_ids for role_id in role_ids)

    def is_event_exempt(self, event: ModerationEvent, policy: GuildPolicy) -> bool:
        return self.is_exempt(event.guild_id, event.actor_id, event.actor_role_ids, event.channel_id, policy)
