"""
py-cord implementations of the engine's outbound collaborators.

:class:`DiscordPlatformActions` performs guild actions and translates py-cord
errors into the engine's failure taxonomy:

* ``discord.Forbidden`` / ``discord.NotFound`` -> PermanentActionFailure
* 429 and 5xx ``discord.HTTPException``, timeouts and dropped connections
  (``aiohttp.ClientError`` / ``OSError``) -> TransientActionFailure
* any other ``discord.HTTPException`` -> PermanentActionFailure

:class:`DiscordNotifier` posts alerts to the guild's alert channel and sends
user notices by DM.
"""

from __future__ import annotations

import asyncio
import datetime
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Iterable, List, Optional

import aiohttp
import discord

from modguard.datatypes.discord_datatypes import ChannelID, GuildID, RoleID, UserID
from modguard.datatypes.guild_policy import GuildPolicy
from modguard.exceptions import PermanentActionFailure, TransientActionFailure
from modguard.util.logger import get_logger

logger = get_logger("discord_adapters")

AUDIT_PREFIX = "ModGuard"


@asynccontextmanager
async def translate_errors(action: str) -> AsyncIterator[None]:
    """Map py-cord exceptions raised inside the block onto ActionFailure subclasses."""
    try:
        yield
    except (discord.Forbidden, discord.NotFound) as exc:
        raise PermanentActionFailure(action, f"{type(exc).__name__}: {exc.text or exc}") from exc
    except discord.HTTPException as exc:
        if exc.status == 429 or exc.status >= 500:
            raise TransientActionFailure(action, f"HTTP {exc.status}: {exc.text or exc}") from exc
        raise PermanentActionFailure(action, f"HTTP {exc.status}: {exc.text or exc}") from exc
    except asyncio.TimeoutError as exc:
        raise TransientActionFailure(action, "request timed out") from exc
    except (aiohttp.ClientError, OSError) as exc:
        raise TransientActionFailure(action, f"connection error: {type(exc).__name__}: {exc}") from exc


class DiscordPlatformActions:
    """PlatformActionAPI backed by a running ``discord.Bot``."""

    def __init__(self, bot: discord.Bot) -> None:
        self.bot = bot

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _guild(self, guild_id: GuildID, action: str) -> discord.Guild:
        guild = self.bot.get_guild(int(guild_id))
        if guild is None:
            raise PermanentActionFailure(action, f"guild {guild_id} is not available")
        return guild

    async def _member(self, guild: discord.Guild, user_id: UserID, action: str) -> discord.Member:
        member = guild.get_member(int(user_id))
        if member is not None:
            return member
        async with translate_errors(action):
            return await guild.fetch_member(int(user_id))

    async def _channel(self, guild: discord.Guild, channel_id: Optional[ChannelID], action: str):
        if channel_id is None:
            raise PermanentActionFailure(action, "no channel recorded for the message")
        channel = guild.get_channel_or_thread(int(channel_id))
        if channel is not None:
            return channel
        async with translate_errors(action):
            return await guild.fetch_channel(int(channel_id))

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def ban(self, guild_id: GuildID, user_id: UserID, reason: str) -> None:
        guild = self._guild(guild_id, "ban")
        async with translate_errors("ban"):
            await guild.ban(discord.Object(id=int(user_id)), reason=f"{AUDIT_PREFIX}: {reason}")

    async def unban(self, guild_id: GuildID, user_id: UserID, reason: str) -> None:
        guild = self._guild(guild_id, "unban")
        async with translate_errors("unban"):
            await guild.unban(discord.Object(id=int(user_id)), reason=f"{AUDIT_PREFIX}: {reason}")

    async def kick(self, guild_id: GuildID, user_id: UserID, reason: str) -> None:
        guild = self._guild(guild_id, "kick")
        async with translate_errors("kick"):
            await guild.kick(discord.Object(id=int(user_id)), reason=f"{AUDIT_PREFIX}: {reason}")

    async def timeout(self, guild_id: GuildID, user_id: UserID, duration_minutes: int, reason: str) -> None:
        guild = self._guild(guild_id, "timeout")
        member = await self._member(guild, user_id, "timeout")
        until = discord.utils.utcnow() + datetime.timedelta(minutes=duration_minutes)
        async with translate_errors("timeout"):
            await member.timeout(until, reason=f"{AUDIT_PREFIX}: {reason}")

    async def clear_timeout(self, guild_id: GuildID, user_id: UserID, reason: str) -> None:
        guild = self._guild(guild_id, "timeout_clear")
        member = await self._member(guild, user_id, "timeout_clear")
        async with translate_errors("timeout_clear"):
            await member.remove_timeout(reason=f"{AUDIT_PREFIX}: {reason}")

    async def delete_message(
        self, guild_id: GuildID, channel_id: Optional[ChannelID], message_id: Optional[int], reason: str
    ) -> None:
        if message_id is None:
            raise PermanentActionFailure("delete", "no message recorded for the event")
        guild = self._guild(guild_id, "delete")
        channel = await self._channel(guild, channel_id, "delete")
        async with translate_errors("delete"):
            await channel.get_partial_message(int(message_id)).delete()

    async def restore_message(
        self, guild_id: GuildID, channel_id: Optional[ChannelID], content: str, reason: str
    ) -> None:
        guild = self._guild(guild_id, "restore_message")
        channel = await self._channel(guild, channel_id, "restore_message")
        async with translate_errors("restore_message"):
            await channel.send(
                f"Restored message ({reason}):\n{content}",
                allowed_mentions=discord.AllowedMentions.none(),
            )

    async def remove_roles(self, guild_id: GuildID, user_id: UserID, reason: str) -> List[RoleID]:
        """Strip every assignable role from the member and return what was removed."""
        guild = self._guild(guild_id, "revoke_permissions")
        member = await self._member(guild, user_id, "revoke_permissions")
        roles = [role for role in member.roles if not role.is_default() and not role.managed]
        if roles:
            async with translate_errors("revoke_permissions"):
                await member.remove_roles(*roles, reason=f"{AUDIT_PREFIX}: {reason}")
        return [RoleID(role.id) for role in roles]

    async def restore_roles(
        self, guild_id: GuildID, user_id: UserID, role_ids: Iterable[RoleID], reason: str
    ) -> None:
        guild = self._guild(guild_id, "restore_permissions")
        member = await self._member(guild, user_id, "restore_permissions")
        roles = [role for role in (guild.get_role(int(role_id)) for role_id in role_ids) if role is not None]
        if not roles:
            return
        async with translate_errors("restore_permissions"):
            await member.add_roles(*roles, reason=f"{AUDIT_PREFIX}: {reason}")


class DiscordNotifier:
    """
    Notifier posting security alerts to a guild channel and notices by DM.

    Alerts go to the guild's configured alert channel, falling back to the
    updates or system channel. When the guild enables DM alerts, the owner and
    cached administrators get a copy as well.
    """

    def __init__(
        self, bot: discord.Bot, policy_lookup: Optional[Callable[[GuildID], GuildPolicy]] = None
    ) -> None:
        self.bot = bot
        self.policy_lookup = policy_lookup

    def _alert_channel(self, guild: discord.Guild, policy: Optional[GuildPolicy]):
        if policy is not None and policy.alert_channel_id is not None:
            channel = guild.get_channel(int(policy.alert_channel_id))
            if channel is not None:
                return channel
            logger.warning(
                "[NOTIFIER] Alert channel %s missing in guild %s, using default", policy.alert_channel_id, guild.id
            )
        return guild.public_updates_channel or guild.system_channel

    @staticmethod
    def _administrators(guild: discord.Guild) -> List[discord.Member]:
        recipients = {}
        if guild.owner is not None:
            recipients[guild.owner.id] = guild.owner
        for member in guild.members:
            if not member.bot and member.guild_permissions.administrator:
                recipients.setdefault(member.id, member)
        return list(recipients.values())

    async def send_alert(self, guild_id: GuildID, text: str) -> None:
        guild = self.bot.get_guild(int(guild_id))
        if guild is None:
            logger.info("[NOTIFIER] Guild %s unavailable, alert dropped: %s", guild_id, text)
            return
        policy = self.policy_lookup(guild_id) if self.policy_lookup is not None else None

        embed = discord.Embed(
            title="🛡️ ModGuard alert",
            description=text,
            color=discord.Color.orange(),
            timestamp=discord.utils.utcnow(),
        )

        channel = self._alert_channel(guild, policy)
        if channel is None:
            logger.info("[NOTIFIER] No alert channel in guild %s: %s", guild_id, text)
        else:
            try:
                await channel.send(embed=embed)
            except discord.Forbidden:
                logger.warning("[NOTIFIER] Cannot post to channel %s: missing permissions", channel.id)
            except discord.HTTPException as exc:
                logger.error("[NOTIFIER] Error posting alert to channel %s: %s", channel.id, exc)

        if policy is None or not policy.dm_alerts:
            return
        for admin in self._administrators(guild):
            try:
                await admin.send(content=f"**{guild.name}**", embed=embed)
            except discord.Forbidden:
                logger.debug("[NOTIFIER] Cannot DM alert to administrator %s: DMs disabled", admin.id)
            except discord.HTTPException as exc:
                logger.error("[NOTIFIER] Error sending alert DM to %s: %s", admin.id, exc)

    async def notify_user(self, guild_id: GuildID, user_id: UserID, text: str) -> None:
        guild = self.bot.get_guild(int(guild_id))
        guild_name = guild.name if guild else str(guild_id)
        try:
            user = self.bot.get_user(int(user_id)) or await self.bot.fetch_user(int(user_id))
            await user.send(f"**{guild_name}**: {text}")
        except discord.Forbidden:
            logger.debug("[NOTIFIER] Cannot send DM to user %s: DMs disabled", user_id)
        except discord.HTTPException as exc:
            logger.error("[NOTIFIER] Error sending DM to %s: %s", user_id, exc)
