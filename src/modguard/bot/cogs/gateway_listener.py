"""Gateway listener Cog for ModGuard.

Translates py-cord events into raw payloads, normalizes them and hands them to
the moderation queue. Destructive guild events do not carry the responsible
user, so the executor is looked up in the audit log.
"""

from __future__ import annotations

import datetime
from typing import Any, Dict, Optional

import discord
from discord.ext import commands

from modguard.datatypes.discord_datatypes import GuildID
from modguard.exceptions import MalformedEventError
from modguard.moderation.event_normalizer import EventNormalizer
from modguard.moderation.rate_window_tracker import RateWindowTracker
from modguard.services.moderation_queue_service import ModerationQueueService
from modguard.services.policy_service import PolicyService
from modguard.util.logger import get_logger

logger = get_logger("gateway_listener")

# Audit entries older than this are not attributed to the current event
AUDIT_LOOKBACK = datetime.timedelta(seconds=15)


class GatewayListenerCog(commands.Cog):
    """Cog feeding guild activity into the moderation engine."""

    def __init__(
        self,
        discord_bot_instance: discord.Bot,
        queue_service: ModerationQueueService,
        policies: PolicyService,
        tracker: RateWindowTracker,
        normalizer: Optional[EventNormalizer] = None,
    ) -> None:
        self.bot = discord_bot_instance
        self.queue_service = queue_service
        self.policies = policies
        self.tracker = tracker
        self.normalizer = normalizer or EventNormalizer()
        logger.info("[GATEWAY LISTENER] Gateway listener cog loaded")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def submit(self, payload: Dict[str, Any]) -> bool:
        """Normalize and enqueue one payload; malformed payloads are logged and dropped."""
        try:
            event = self.normalizer.normalize(payload)
        except MalformedEventError as exc:
            logger.warning("[GATEWAY LISTENER] Dropping malformed %s event: %s", payload.get("type"), exc)
            return False
        await self.queue_service.enqueue(event)
        return True

    async def find_executor(
        self, guild: discord.Guild, action: discord.AuditLogAction, target_id: Optional[int] = None
    ) -> Optional[discord.AuditLogEntry]:
        """Most recent matching audit entry, or None if missing, stale or not visible."""
        cutoff = discord.utils.utcnow() - AUDIT_LOOKBACK
        try:
            async for entry in guild.audit_logs(limit=5, action=action):
                if entry.created_at < cutoff:
                    break
                entry_target = getattr(entry.target, "id", None)
                if target_id is None or entry_target == target_id:
                    return entry
        except discord.Forbidden:
            logger.warning("[GATEWAY LISTENER] Missing audit log access in guild %s", guild.id)
        except discord.HTTPException as exc:
            logger.error("[GATEWAY LISTENER] Audit log lookup failed in guild %s: %s", guild.id, exc)
        return None

    async def submit_audited(
        self,
        event_type: str,
        guild: discord.Guild,
        action: discord.AuditLogAction,
        target_id: Optional[int] = None,
        **extra: Any,
    ) -> bool:
        entry = await self.find_executor(guild, action, target_id)
        if entry is None or entry.user is None:
            return False
        # Our own enforcement actions must not count against anyone
        if self.bot.user is not None and entry.user.id == self.bot.user.id:
            return False

        executor = entry.user
        roles = getattr(executor, "roles", None) or []
        payload: Dict[str, Any] = {
            "type": event_type,
            "guild_id": guild.id,
            "executor_id": executor.id,
            "timestamp": entry.created_at,
            "role_ids": [role.id for role in roles if not role.is_default()],
            "target_id": target_id,
            **extra,
        }
        return await self.submit(payload)

    # ------------------------------------------------------------------
    # Anti-nuke events
    # ------------------------------------------------------------------

    @commands.Cog.listener(name="on_guild_channel_delete")
    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel):
        await self.submit_audited(
            "CHANNEL_DELETE", channel.guild, discord.AuditLogAction.channel_delete, channel.id,
            channel_name=channel.name,
        )

    @commands.Cog.listener(name="on_guild_role_delete")
    async def on_guild_role_delete(self, role: discord.Role):
        await self.submit_audited(
            "GUILD_ROLE_DELETE", role.guild, discord.AuditLogAction.role_delete, role.id, role_name=role.name
        )

    @commands.Cog.listener(name="on_guild_role_update")
    async def on_guild_role_update(self, before: discord.Role, after: discord.Role):
        if before.permissions == after.permissions:
            return
        await self.submit_audited("GUILD_ROLE_UPDATE", after.guild, discord.AuditLogAction.role_update, after.id)

    @commands.Cog.listener(name="on_guild_channel_update")
    async def on_guild_channel_update(self, before: discord.abc.GuildChannel, after: discord.abc.GuildChannel):
        if before.overwrites == after.overwrites:
            return
        await self.submit_audited(
            "CHANNEL_OVERWRITE_UPDATE", after.guild, discord.AuditLogAction.overwrite_update, after.id,
            channel_id=after.id,
        )

    @commands.Cog.listener(name="on_member_ban")
    async def on_member_ban(self, guild: discord.Guild, user: discord.User | discord.Member):
        await self.submit_audited("GUILD_BAN_ADD", guild, discord.AuditLogAction.ban, user.id)

    @commands.Cog.listener(name="on_member_remove")
    async def on_member_remove(self, member: discord.Member):
        # Plain leaves have no kick entry and are ignored
        await self.submit_audited("MEMBER_KICK", member.guild, discord.AuditLogAction.kick, member.id)

    @commands.Cog.listener(name="on_webhooks_update")
    async def on_webhooks_update(self, channel: discord.abc.GuildChannel):
        await self.submit_audited(
            "WEBHOOK_CREATE", channel.guild, discord.AuditLogAction.webhook_create, channel_id=channel.id
        )

    # ------------------------------------------------------------------
    # Automod events
    # ------------------------------------------------------------------

    @commands.Cog.listener(name="on_message")
    async def on_message(self, message: discord.Message):
        if message.guild is None or message.author.bot:
            return

        roles = getattr(message.author, "roles", None) or []
        await self.submit({
            "type": "MESSAGE_CREATE",
            "guild_id": message.guild.id,
            "author_id": message.author.id,
            "channel_id": message.channel.id,
            "timestamp": message.created_at,
            "role_ids": [role.id for role in roles if not role.is_default()],
            "message_id": message.id,
            "content": message.content,
        })

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @commands.Cog.listener(name="on_guild_remove")
    async def on_guild_remove(self, guild: discord.Guild):
        """Drop the guild's queue, counters and cached policy; the ledger is kept."""
        guild_id = GuildID(guild.id)
        await self.queue_service.remove_guild(guild_id)
        self.tracker.forget_guild(guild_id)
        await self.policies.forget_guild(guild_id)
        logger.info("[GATEWAY LISTENER] Released state for guild %s (%s)", guild.name, guild.id)
