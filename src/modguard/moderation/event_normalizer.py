"""
Adapter boundary between raw gateway payloads and :class:`ModerationEvent`.

The normalizer is the only place that understands the loose payload shapes
produced by the gateway listener (or replayed from elsewhere). Everything past
this point works with typed, immutable events.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from modguard.datatypes.discord_datatypes import ChannelID, GuildID, RoleID, UserID
from modguard.datatypes.event_datatypes import EventCategory, ModerationEvent
from modguard.exceptions import MalformedEventError
from modguard.util.logger import get_logger

logger = get_logger("event_normalizer")


# Gateway event names mapped onto counting categories
GATEWAY_EVENT_CATEGORIES: dict[str, EventCategory] = {
    "CHANNEL_DELETE": EventCategory.CHANNEL_DELETE,
    "GUILD_ROLE_DELETE": EventCategory.ROLE_DELETE,
    "ROLE_DELETE": EventCategory.ROLE_DELETE,
    "GUILD_BAN_ADD": EventCategory.MEMBER_BAN,
    "MEMBER_BAN_ADD": EventCategory.MEMBER_BAN,
    "MEMBER_KICK": EventCategory.MEMBER_KICK,
    "GUILD_MEMBER_REMOVE_KICK": EventCategory.MEMBER_KICK,
    "WEBHOOKS_UPDATE": EventCategory.WEBHOOK_CREATE,
    "WEBHOOK_CREATE": EventCategory.WEBHOOK_CREATE,
    "CHANNEL_OVERWRITE_UPDATE": EventCategory.PERMISSION_CHANGE,
    "CHANNEL_OVERWRITE_CREATE": EventCategory.PERMISSION_CHANGE,
    "GUILD_ROLE_UPDATE": EventCategory.PERMISSION_CHANGE,
    "MESSAGE_CREATE": EventCategory.MESSAGE,
}

ACTOR_KEYS = ("actor_id", "executor_id", "user_id", "author_id")
RESERVED_KEYS = frozenset({"type", "category", "guild_id", "timestamp", "channel_id", "role_ids", *ACTOR_KEYS})


class EventNormalizer:
    """Converts raw event payloads into :class:`ModerationEvent` records."""

    def normalize(self, payload: Mapping[str, Any], *, now: Optional[datetime] = None) -> ModerationEvent:
        """
        Build a typed event from a raw payload.

        Args:
            payload: Mapping with at least ``type`` (gateway name or category
                value), ``guild_id`` and an actor key (``actor_id``,
                ``executor_id``, ``user_id`` or ``author_id``).
            now: Timestamp used when the payload carries none.

        Returns:
            ModerationEvent: The normalized, immutable event.

        Raises:
            MalformedEventError: If the guild, actor or type is missing or invalid.
        """
        category = self._category(payload)
        guild_id = self._snowflake(payload.get("guild_id"), GuildID, "guild_id")

        raw_actor = next((payload[key] for key in ACTOR_KEYS if payload.get(key) is not None), None)
        actor_id = self._snowflake(raw_actor, UserID, "actor_id")

        channel_id = None
        if payload.get("channel_id") is not None:
            channel_id = self._snowflake(payload["channel_id"], ChannelID, "channel_id")

        try:
            role_ids = frozenset(RoleID(role) for role in payload.get("role_ids") or ())
        except (TypeError, ValueError) as exc:
            raise MalformedEventError(f"invalid role_ids: {exc}") from exc

        timestamp = self._timestamp(payload.get("timestamp"), now)
        metadata = {key: value for key, value in payload.items() if key not in RESERVED_KEYS}

        return ModerationEvent(
            guild_id=guild_id,
            actor_id=actor_id,
            category=category,
            timestamp=timestamp,
            metadata=metadata,
            channel_id=channel_id,
            actor_role_ids=role_ids,
        )

    # ------------------------------------------------------------------
    # Field parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _category(payload: Mapping[str, Any]) -> EventCategory:
        raw = payload.get("type", payload.get("category"))
        if isinstance(raw, EventCategory):
            return raw
        if not isinstance(raw, str) or not raw.strip():
            raise MalformedEventError("event type is missing")

        name = raw.strip()
        if name.upper() in GATEWAY_EVENT_CATEGORIES:
            return GATEWAY_EVENT_CATEGORIES[name.upper()]
        try:
            return EventCategory(name.lower())
        except ValueError:
            raise MalformedEventError(f"unsupported event type {raw!r}") from None

    @staticmethod
    def _snowflake(value: Any, kind: type, label: str):
        if value is None or value == "":
            raise MalformedEventError(f"{label} is missing")
        try:
            return kind(value)
        except (TypeError, ValueError) as exc:
            raise MalformedEventError(f"invalid {label} {value!r}") from exc

    @staticmethod
    def _timestamp(value: Any, now: Optional[datetime]) -> datetime:
        if value is None:
            return now or datetime.now(timezone.utc)
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            parsed = datetime.fromtimestamp(value, tz=timezone.utc)
        elif isinstance(value, str):
            try:
                parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            except ValueError as exc:
                raise MalformedEventError(f"invalid timestamp {value!r}") from exc
        else:
            raise MalformedEventError(f"invalid timestamp {value!r}")

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
