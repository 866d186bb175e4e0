"""
Collaborator interfaces the engine depends on.

The engine never imports py-cord or aiosqlite directly; it talks to these
protocols. Concrete implementations live in ``modguard.bot`` (Discord) and
``modguard.database`` (SQLite), and tests supply in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol

from modguard.datatypes.appeal_datatypes import Appeal
from modguard.datatypes.discord_datatypes import ChannelID, GuildID, RoleID, UserID
from modguard.datatypes.event_datatypes import ModerationEvent
from modguard.datatypes.guild_policy import GuildPolicy
from modguard.datatypes.violation_datatypes import ViolationRecord
from modguard.util.logger import get_logger

logger = get_logger("notifier")


class PlatformActionAPI(Protocol):
    """Outbound action calls keyed by guild + user.

    Implementations raise :class:`~modguard.exceptions.TransientActionFailure`
    for retryable errors and :class:`~modguard.exceptions.PermanentActionFailure`
    for permission or missing-target errors.
    """

    async def ban(self, guild_id: GuildID, user_id: UserID, reason: str) -> None: ...

    async def unban(self, guild_id: GuildID, user_id: UserID, reason: str) -> None: ...

    async def kick(self, guild_id: GuildID, user_id: UserID, reason: str) -> None: ...

    async def timeout(self, guild_id: GuildID, user_id: UserID, duration_minutes: int, reason: str) -> None: ...

    async def clear_timeout(self, guild_id: GuildID, user_id: UserID, reason: str) -> None: ...

    async def delete_message(
        self, guild_id: GuildID, channel_id: Optional[ChannelID], message_id: Optional[int], reason: str
    ) -> None: ...

    async def restore_message(
        self, guild_id: GuildID, channel_id: Optional[ChannelID], content: str, reason: str
    ) -> None: ...

    async def remove_roles(self, guild_id: GuildID, user_id: UserID, reason: str) -> List[RoleID]: ...

    async def restore_roles(self, guild_id: GuildID, user_id: UserID, role_ids: Iterable[RoleID], reason: str) -> None: ...


class Notifier(Protocol):
    """Delivery of moderator alerts and user notices (log channels, DMs)."""

    async def send_alert(self, guild_id: GuildID, text: str) -> None: ...

    async def notify_user(self, guild_id: GuildID, user_id: UserID, text: str) -> None: ...


class ModerationStore(Protocol):
    """Durable storage for policies, ledger entries and appeals.

    Writes must be idempotent: appending a record or saving an appeal with an
    id that already exists must not create a duplicate.
    """

    async def load_policies(self) -> List[GuildPolicy]: ...

    async def save_policy(self, policy: GuildPolicy) -> None: ...

    async def load_violations(self) -> List[ViolationRecord]: ...

    async def append_violation(self, record: ViolationRecord) -> None: ...

    async def load_appeals(self) -> List[Appeal]: ...

    async def save_appeal(self, appeal: Appeal) -> None: ...

    async def save_resolution(self, appeal: Optional[Appeal], record: ViolationRecord) -> None:
        """Persist an appeal transition together with the record's ``overridden`` flag, atomically."""
        ...


@dataclass(frozen=True, slots=True)
class ContentVerdict:
    flagged: bool
    severity: int = 0


class ContentClassifier(Protocol):
    """Pluggable message classifier (profanity, spam scoring...). None ships with ModGuard."""

    def classify(self, event: ModerationEvent) -> ContentVerdict: ...


class LoggingNotifier:
    """Notifier that only writes to the log; used when no delivery channel is wired."""

    async def send_alert(self, guild_id: GuildID, text: str) -> None:
        logger.warning("[ALERT] guild %s: %s", guild_id, text)

    async def notify_user(self, guild_id: GuildID, user_id: UserID, text: str) -> None:
        logger.info("[NOTICE] guild %s user %s: %s", guild_id, user_id, text)
