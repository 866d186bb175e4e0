"""
PolicyService: owns the per-guild GuildPolicy snapshots.

Responsibilities:
- Serve the current snapshot for a guild (lock-free dict lookup on the hot path)
- Validate, persist and swap in new snapshots on configuration writes
- Per-guild async locks so two guilds can be reconfigured concurrently

Snapshots are immutable; a write builds a new one from the current one and
replaces the dict entry in a single assignment, so an evaluation in flight
always sees either the old or the new policy, never a mix.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Callable, Dict, Optional

from modguard.configuration.app_configuration import AppConfig
from modguard.datatypes.discord_datatypes import GuildID, Snowflake
from modguard.datatypes.event_datatypes import EventCategory
from modguard.datatypes.guild_policy import AppealSettings, GuildPolicy, PolicyPreset, WhitelistKind
from modguard.exceptions import ConfigurationError
from modguard.moderation.interfaces import ModerationStore
from modguard.util.logger import get_logger

logger = get_logger("policy_service")


class PolicyService:
    """
    Configuration interface consumed by the command layer and the engine.

    Guilds without a stored policy get a default one built from the
    application defaults; it is not persisted until the first write.
    """

    def __init__(
        self,
        store: Optional[ModerationStore] = None,
        *,
        near_threshold_ratio: float = 0.8,
        strict_factor: float = 0.5,
        timeout_minutes: int = 60,
        appeal_cooldown_hours: float = 24.0,
        appeal_abandonment_hours: float = 72.0,
    ) -> None:
        self._store = store
        self._near_threshold_ratio = near_threshold_ratio
        self._strict_factor = strict_factor
        self._timeout_minutes = timeout_minutes
        self._appeal_cooldown_hours = appeal_cooldown_hours
        self._appeal_abandonment_hours = appeal_abandonment_hours
        self._policies: Dict[GuildID, GuildPolicy] = {}
        # Per-guild locks: concurrent guilds don't block each other
        self._per_guild_locks: Dict[int, asyncio.Lock] = {}

    @classmethod
    def from_config(cls, config: AppConfig, store: Optional[ModerationStore] = None) -> "PolicyService":
        return cls(
            store,
            near_threshold_ratio=config.near_threshold_ratio,
            strict_factor=config.strict_mode_factor,
            timeout_minutes=config.default_timeout_minutes,
            appeal_cooldown_hours=config.appeal_cooldown_hours,
            appeal_abandonment_hours=config.appeal_abandonment_hours,
        )

    def _lock_for(self, guild_id: GuildID) -> asyncio.Lock:
        gid = int(guild_id)
        if gid not in self._per_guild_locks:
            self._per_guild_locks[gid] = asyncio.Lock()
        return self._per_guild_locks[gid]

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    async def load(self) -> int:
        """Load every stored policy; returns the number of guilds loaded."""
        if self._store is None:
            return 0
        policies = await self._store.load_policies()
        for policy in policies:
            self._policies[policy.guild_id] = policy
        logger.info("[POLICY SERVICE] Loaded %d guild policies", len(policies))
        return len(policies)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def default_policy(self, guild_id: GuildID) -> GuildPolicy:
        return GuildPolicy(
            guild_id=GuildID(guild_id),
            timeout_minutes=self._timeout_minutes,
            near_threshold_ratio=self._near_threshold_ratio,
            strict_factor=self._strict_factor,
            appeals=AppealSettings(
                cooldown_hours=self._appeal_cooldown_hours,
                abandonment_hours=self._appeal_abandonment_hours,
            ),
        )

    def get_policy(self, guild_id: GuildID) -> GuildPolicy:
        policy = self._policies.get(guild_id)
        if policy is None:
            policy = self.default_policy(guild_id)
        return policy

    def window_for(self, guild_id: GuildID, category: EventCategory) -> float:
        """Window length resolver handed to the rate tracker."""
        return self.get_policy(guild_id).window_for(category)

    def has_policy(self, guild_id: GuildID) -> bool:
        return guild_id in self._policies

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def set_policy(self, guild_id: GuildID, policy: GuildPolicy) -> GuildPolicy:
        """
        Validate, persist and swap in a complete policy.

        Raises:
            ConfigurationError: If the policy is invalid or belongs to another guild.
        """
        async with self._lock_for(guild_id):
            return await self._store_locked(guild_id, policy)

    async def add_whitelist_entry(
        self, guild_id: GuildID, kind: WhitelistKind, entry_id: Snowflake | int | str
    ) -> GuildPolicy:
        return await self._update(guild_id, lambda p: p.with_whitelist_entry(kind, entry_id))

    async def remove_whitelist_entry(
        self, guild_id: GuildID, kind: WhitelistKind, entry_id: Snowflake | int | str
    ) -> GuildPolicy:
        return await self._update(guild_id, lambda p: p.without_whitelist_entry(kind, entry_id))

    async def clear_whitelist(self, guild_id: GuildID, kind: Optional[WhitelistKind] = None) -> GuildPolicy:
        return await self._update(guild_id, lambda p: p.with_cleared_whitelist(kind))

    async def set_enabled(self, guild_id: GuildID, enabled: bool) -> GuildPolicy:
        return await self._update(guild_id, lambda p: replace(p, enabled=enabled))

    async def set_automod_enabled(self, guild_id: GuildID, enabled: bool) -> GuildPolicy:
        return await self._update(guild_id, lambda p: replace(p, automod_enabled=enabled))

    async def set_strict_mode(self, guild_id: GuildID, strict: bool) -> GuildPolicy:
        return await self._update(guild_id, lambda p: replace(p, strict_mode=strict))

    async def set_limit(
        self, guild_id: GuildID, category: EventCategory, limit: int, window_seconds: float
    ) -> GuildPolicy:
        return await self._update(guild_id, lambda p: p.with_limit(category, limit, window_seconds))

    async def apply_preset(self, guild_id: GuildID, preset: PolicyPreset | str) -> GuildPolicy:
        """Reset limits and actions to one of the setup presets."""
        try:
            preset = PolicyPreset(preset)
        except ValueError as exc:
            raise ConfigurationError(f"unknown preset {preset!r}") from exc
        return await self._update(guild_id, lambda p: p.with_preset(preset))

    async def update_appeal_settings(
        self,
        guild_id: GuildID,
        *,
        allow_appeals: Optional[bool] = None,
        cooldown_hours: Optional[float] = None,
        abandonment_hours: Optional[float] = None,
        auto_notify: Optional[bool] = None,
    ) -> GuildPolicy:
        """Change the appeal settings; arguments left as None keep their value."""
        changes = {
            "allow_appeals": allow_appeals,
            "cooldown_hours": cooldown_hours,
            "abandonment_hours": abandonment_hours,
            "auto_notify": auto_notify,
        }
        changes = {key: value for key, value in changes.items() if value is not None}
        return await self._update(guild_id, lambda p: replace(p, appeals=replace(p.appeals, **changes)))

    async def update_alert_settings(
        self,
        guild_id: GuildID,
        *,
        alert_channel_id: Optional[Snowflake | int | str] = None,
        dm_alerts: Optional[bool] = None,
        reset_channel: bool = False,
    ) -> GuildPolicy:
        """Set where security alerts go (``/security-alerts setup``).

        ``reset_channel`` routes alerts back to the guild's default channel;
        otherwise arguments left as None keep their value.
        """

        def change(policy: GuildPolicy) -> GuildPolicy:
            if reset_channel:
                policy = policy.with_alert_channel(None)
            elif alert_channel_id is not None:
                policy = policy.with_alert_channel(alert_channel_id)
            if dm_alerts is not None:
                policy = replace(policy, dm_alerts=dm_alerts)
            return policy

        return await self._update(guild_id, change)

    async def forget_guild(self, guild_id: GuildID) -> None:
        """Drop the in-memory snapshot; the stored row is kept for when the bot rejoins."""
        async with self._lock_for(guild_id):
            self._policies.pop(guild_id, None)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _update(self, guild_id: GuildID, change: Callable[[GuildPolicy], GuildPolicy]) -> GuildPolicy:
        async with self._lock_for(guild_id):
            return await self._store_locked(guild_id, change(self.get_policy(guild_id)))

    async def _store_locked(self, guild_id: GuildID, policy: GuildPolicy) -> GuildPolicy:
        if policy.guild_id != GuildID(guild_id):
            raise ConfigurationError(f"policy for guild {policy.guild_id} cannot be stored for guild {guild_id}")
        policy.validate()

        if self._store is not None:
            await self._store.save_policy(policy)
        self._policies[policy.guild_id] = policy

        logger.info("[POLICY SERVICE] Stored policy for guild %s", guild_id)
        return policy
