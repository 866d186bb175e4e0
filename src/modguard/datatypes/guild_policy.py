"""
Immutable per-guild policy snapshots.

A :class:`GuildPolicy` is configuration-as-value: every change produces a new
snapshot through one of the ``with_*`` helpers and the policy service swaps it
in whole, so an evaluation in flight always sees one consistent policy.

Serialized form (``to_dict``/``from_dict``) is a plain JSON-compatible mapping
stored by the persistence layer.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from modguard.datatypes.action_datatypes import ActionType
from modguard.datatypes.discord_datatypes import ChannelID, GuildID, RoleID, Snowflake, UserID
from modguard.datatypes.event_datatypes import EventCategory
from modguard.exceptions import ConfigurationError


class WhitelistKind(Enum):
    USER = "user"
    ROLE = "role"
    CHANNEL = "channel"

    def __str__(self) -> str:
        return self.value


class PolicyPreset(Enum):
    """Starting points offered by the automod setup command."""

    STRICT = "strict"
    BALANCED = "balanced"
    LENIENT = "lenient"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class CategoryLimit:
    """At most ``limit`` events per ``window_seconds`` before escalating."""

    limit: int
    window_seconds: float


@dataclass(frozen=True, slots=True)
class Whitelist:
    user_ids: frozenset[UserID] = frozenset()
    role_ids: frozenset[RoleID] = frozenset()
    channel_ids: frozenset[ChannelID] = frozenset()

    def ids_for(self, kind: WhitelistKind) -> frozenset:
        match kind:
            case WhitelistKind.USER:
                return self.user_ids
            case WhitelistKind.ROLE:
                return self.role_ids
            case WhitelistKind.CHANNEL:
                return self.channel_ids

    def with_ids(self, kind: WhitelistKind, ids: frozenset) -> "Whitelist":
        match kind:
            case WhitelistKind.USER:
                return replace(self, user_ids=frozenset(UserID(i) for i in ids))
            case WhitelistKind.ROLE:
                return replace(self, role_ids=frozenset(RoleID(i) for i in ids))
            case WhitelistKind.CHANNEL:
                return replace(self, channel_ids=frozenset(ChannelID(i) for i in ids))

    def __len__(self) -> int:
        return len(self.user_ids) + len(self.role_ids) + len(self.channel_ids)


@dataclass(frozen=True, slots=True)
class AppealSettings:
    """Per-guild appeal workflow knobs (``/automod-appeals settings``)."""

    allow_appeals: bool = True
    cooldown_hours: float = 24.0
    abandonment_hours: float = 72.0
    auto_notify: bool = True


DEFAULT_LIMITS: Dict[EventCategory, CategoryLimit] = {
    EventCategory.CHANNEL_DELETE: CategoryLimit(limit=3, window_seconds=60),
    EventCategory.ROLE_DELETE: CategoryLimit(limit=2, window_seconds=60),
    EventCategory.MEMBER_BAN: CategoryLimit(limit=5, window_seconds=60),
    EventCategory.MEMBER_KICK: CategoryLimit(limit=10, window_seconds=60),
    EventCategory.WEBHOOK_CREATE: CategoryLimit(limit=3, window_seconds=60),
    EventCategory.PERMISSION_CHANGE: CategoryLimit(limit=5, window_seconds=60),
    EventCategory.MESSAGE: CategoryLimit(limit=5, window_seconds=10),
}

DEFAULT_ACTIONS: Dict[EventCategory, ActionType] = {
    EventCategory.MESSAGE: ActionType.TIMEOUT,
}


def _readonly(mapping: Mapping) -> MappingProxyType:
    return mapping if isinstance(mapping, MappingProxyType) else MappingProxyType(dict(mapping))


@dataclass(frozen=True, slots=True)
class GuildPolicy:
    """
    Per-guild anti-nuke and automod configuration.

    Attributes:
        enabled: Anti-nuke module switch (all categories except ``message``).
        automod_enabled: Automod module switch (``message`` category).
        strict_mode: Multiply every limit by ``strict_factor``.
        limits: Per-category limit and window length.
        actions: Per-category auto-response overrides; others use ``default_action``.
        default_action: Auto-response when a category has no override.
        timeout_minutes: Duration used for ``timeout`` auto-responses.
        near_threshold_ratio: Fraction of the limit that produces a ``warn`` verdict.
        strict_factor: Limit multiplier in strict mode, strictly between 0 and 1.
        whitelist: Exempt users, roles and channels.
        appeals: Appeal workflow settings.
        alert_channel_id: Channel for security alerts; None falls back to the
            guild's updates or system channel.
        dm_alerts: Also send security alerts to administrators by DM.
    """

    guild_id: GuildID
    enabled: bool = True
    automod_enabled: bool = True
    strict_mode: bool = False
    limits: Mapping[EventCategory, CategoryLimit] = field(default_factory=lambda: dict(DEFAULT_LIMITS))
    actions: Mapping[EventCategory, ActionType] = field(default_factory=lambda: dict(DEFAULT_ACTIONS))
    default_action: ActionType = ActionType.BAN
    timeout_minutes: int = 60
    near_threshold_ratio: float = 0.8
    strict_factor: float = 0.5
    whitelist: Whitelist = field(default_factory=Whitelist)
    appeals: AppealSettings = field(default_factory=AppealSettings)
    alert_channel_id: Optional[ChannelID] = None
    dm_alerts: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "guild_id", GuildID(self.guild_id))
        object.__setattr__(self, "limits", _readonly(self.limits))
        object.__setattr__(self, "actions", _readonly(self.actions))

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def module_enabled(self, category: EventCategory) -> bool:
        return self.automod_enabled if category is EventCategory.MESSAGE else self.enabled

    def limit_for(self, category: EventCategory) -> Optional[CategoryLimit]:
        return self.limits.get(category)

    def window_for(self, category: EventCategory) -> float:
        configured = self.limits.get(category)
        return configured.window_seconds if configured else 0.0

    def effective_limit(self, category: EventCategory) -> int:
        """Configured limit, tightened by ``strict_factor`` when strict mode is on.

        Rounded up and never below 1 so strict mode cannot make a single event
        an automatic escalation unless the configured limit already is 1.
        """
        configured = self.limits.get(category)
        if configured is None:
            return 0
        if not self.strict_mode:
            return configured.limit
        return max(1, math.ceil(configured.limit * self.strict_factor))

    def action_for(self, category: EventCategory) -> ActionType:
        return self.actions.get(category, self.default_action)

    # ------------------------------------------------------------------
    # Copy-on-write helpers
    # ------------------------------------------------------------------

    def with_whitelist_entry(self, kind: WhitelistKind, entry_id: Snowflake | int | str) -> "GuildPolicy":
        ids = self.whitelist.ids_for(kind)
        return replace(self, whitelist=self.whitelist.with_ids(kind, ids | {int(Snowflake(entry_id))}))

    def without_whitelist_entry(self, kind: WhitelistKind, entry_id: Snowflake | int | str) -> "GuildPolicy":
        target = int(Snowflake(entry_id))
        ids = frozenset(i for i in self.whitelist.ids_for(kind) if int(i) != target)
        return replace(self, whitelist=self.whitelist.with_ids(kind, ids))

    def with_cleared_whitelist(self, kind: Optional[WhitelistKind] = None) -> "GuildPolicy":
        if kind is None:
            return replace(self, whitelist=Whitelist())
        return replace(self, whitelist=self.whitelist.with_ids(kind, frozenset()))

    def with_alert_channel(self, channel_id: Optional[Snowflake | int | str]) -> "GuildPolicy":
        """Route alerts to ``channel_id``; None restores the default channel."""
        if channel_id is None:
            return replace(self, alert_channel_id=None)
        try:
            return replace(self, alert_channel_id=ChannelID(channel_id))
        except ValueError as exc:
            raise ConfigurationError(f"invalid alert channel: {exc}") from exc

    def with_limit(self, category: EventCategory, limit: int, window_seconds: float) -> "GuildPolicy":
        limits = dict(self.limits)
        limits[category] = CategoryLimit(limit=limit, window_seconds=window_seconds)
        return replace(self, limits=limits)

    def with_action(self, category: EventCategory, action: ActionType) -> "GuildPolicy":
        actions = dict(self.actions)
        actions[category] = action
        return replace(self, actions=actions)

    def with_preset(self, preset: PolicyPreset) -> "GuildPolicy":
        """Return a copy reset to a preset; whitelist and appeal settings are kept."""
        base = replace(
            self,
            strict_mode=False,
            limits=dict(DEFAULT_LIMITS),
            actions=dict(DEFAULT_ACTIONS),
            default_action=ActionType.BAN,
        )
        match preset:
            case PolicyPreset.STRICT:
                return replace(base, strict_mode=True)
            case PolicyPreset.BALANCED:
                return base
            case PolicyPreset.LENIENT:
                doubled = {
                    category: CategoryLimit(limit=value.limit * 2, window_seconds=value.window_seconds)
                    for category, value in DEFAULT_LIMITS.items()
                }
                return replace(
                    base,
                    limits=doubled,
                    actions={EventCategory.MESSAGE: ActionType.WARN},
                    default_action=ActionType.KICK,
                )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> "GuildPolicy":
        """Check the snapshot and return it unchanged.

        Raises:
            ConfigurationError: On the first invalid field found.
        """
        for category, configured in self.limits.items():
            if not isinstance(category, EventCategory):
                raise ConfigurationError(f"unknown category {category!r}")
            if configured.limit <= 0:
                raise ConfigurationError(f"{category.value}: limit must be positive, got {configured.limit}")
            if configured.window_seconds <= 0:
                raise ConfigurationError(
                    f"{category.value}: window must be positive, got {configured.window_seconds}"
                )
        for category, action in {**self.actions, None: self.default_action}.items():
            if action.is_compensating:
                label = category.value if category else "default"
                raise ConfigurationError(f"{label}: {action.value} cannot be used as an auto-response")
        if not 0 < self.near_threshold_ratio <= 1:
            raise ConfigurationError(f"near-threshold ratio must be in (0, 1], got {self.near_threshold_ratio}")
        if not 0 < self.strict_factor < 1:
            raise ConfigurationError(f"strict factor must be in (0, 1), got {self.strict_factor}")
        if self.timeout_minutes <= 0:
            raise ConfigurationError(f"timeout minutes must be positive, got {self.timeout_minutes}")
        if self.appeals.cooldown_hours < 0:
            raise ConfigurationError("appeal cooldown cannot be negative")
        if self.appeals.abandonment_hours <= 0:
            raise ConfigurationError("appeal abandonment timeout must be positive")
        if self.alert_channel_id is not None and not isinstance(self.alert_channel_id, ChannelID):
            raise ConfigurationError(f"alert channel must be a ChannelID, got {self.alert_channel_id!r}")
        if not isinstance(self.dm_alerts, bool):
            raise ConfigurationError(f"dm_alerts must be a boolean, got {self.dm_alerts!r}")
        return self

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "guild_id": self.guild_id.to_int(),
            "enabled": self.enabled,
            "automod_enabled": self.automod_enabled,
            "strict_mode": self.strict_mode,
            "limits": {
                category.value: {"limit": value.limit, "window_seconds": value.window_seconds}
                for category, value in self.limits.items()
            },
            "actions": {category.value: action.value for category, action in self.actions.items()},
            "default_action": self.default_action.value,
            "timeout_minutes": self.timeout_minutes,
            "near_threshold_ratio": self.near_threshold_ratio,
            "strict_factor": self.strict_factor,
            "whitelist": {
                "users": sorted(i.to_int() for i in self.whitelist.user_ids),
                "roles": sorted(i.to_int() for i in self.whitelist.role_ids),
                "channels": sorted(i.to_int() for i in self.whitelist.channel_ids),
            },
            "appeals": {
                "allow_appeals": self.appeals.allow_appeals,
                "cooldown_hours": self.appeals.cooldown_hours,
                "abandonment_hours": self.appeals.abandonment_hours,
                "auto_notify": self.appeals.auto_notify,
            },
            "alerts": {
                "channel_id": self.alert_channel_id.to_int() if self.alert_channel_id is not None else None,
                "dm_alerts": self.dm_alerts,
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GuildPolicy":
        """Rebuild a policy from :meth:`to_dict` output; missing keys take defaults.

        Raises:
            ConfigurationError: If a category or action name is unknown.
        """
        try:
            limits = {
                EventCategory(name): CategoryLimit(limit=int(value["limit"]), window_seconds=float(value["window_seconds"]))
                for name, value in (data.get("limits") or {}).items()
            } or dict(DEFAULT_LIMITS)
            actions = {
                EventCategory(name): ActionType(value) for name, value in (data.get("actions") or {}).items()
            }
            whitelist_data = data.get("whitelist") or {}
            appeals_data = data.get("appeals") or {}
            alerts_data = data.get("alerts") or {}
            alert_channel = alerts_data.get("channel_id")
            defaults = AppealSettings()
            return cls(
                guild_id=GuildID(data["guild_id"]),
                enabled=bool(data.get("enabled", True)),
                automod_enabled=bool(data.get("automod_enabled", True)),
                strict_mode=bool(data.get("strict_mode", False)),
                limits=limits,
                actions=actions,
                default_action=ActionType(data.get("default_action", ActionType.BAN.value)),
                timeout_minutes=int(data.get("timeout_minutes", 60)),
                near_threshold_ratio=float(data.get("near_threshold_ratio", 0.8)),
                strict_factor=float(data.get("strict_factor", 0.5)),
                whitelist=Whitelist(
                    user_ids=frozenset(UserID(i) for i in whitelist_data.get("users", ())),
                    role_ids=frozenset(RoleID(i) for i in whitelist_data.get("roles", ())),
                    channel_ids=frozenset(ChannelID(i) for i in whitelist_data.get("channels", ())),
                ),
                appeals=AppealSettings(
                    allow_appeals=bool(appeals_data.get("allow_appeals", defaults.allow_appeals)),
                    cooldown_hours=float(appeals_data.get("cooldown_hours", defaults.cooldown_hours)),
                    abandonment_hours=float(appeals_data.get("abandonment_hours", defaults.abandonment_hours)),
                    auto_notify=bool(appeals_data.get("auto_notify", defaults.auto_notify)),
                ),
                alert_channel_id=ChannelID(alert_channel) if alert_channel is not None else None,
                dm_alerts=bool(alerts_data.get("dm_alerts", False)),
            )
        except (KeyError, ValueError, TypeError) as exc:
            raise ConfigurationError(f"invalid stored policy: {exc}") from exc
