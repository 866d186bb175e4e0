"""
Appeal records and their lifecycle states.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from modguard.datatypes.discord_datatypes import GuildID, UserID
from modguard.datatypes.event_datatypes import EventCategory


class AppealStatus(Enum):
    PENDING = "pending"
    INVESTIGATING = "investigating"
    APPROVED = "approved"
    REJECTED = "rejected"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in (AppealStatus.APPROVED, AppealStatus.REJECTED)


def new_appeal_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class Appeal:
    """
    A user's dispute of one violation record.

    Instances are immutable; every transition produces a new snapshot via
    :func:`dataclasses.replace` so readers never see a half-applied change.

    Attributes:
        violation_record_id: Ledger entry being disputed (same guild and user).
        category: Category of the disputed violation, used for cooldowns.
        updated_at: Time of the last transition, drives the abandonment sweep.
        statement: Optional text supplied by the user on submission.
    """

    guild_id: GuildID
    user_id: UserID
    violation_record_id: str
    category: EventCategory
    status: AppealStatus = AppealStatus.PENDING
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolver_id: Optional[UserID] = None
    resolution_reason: Optional[str] = None
    statement: str = ""
    id: str = field(default_factory=new_appeal_id)

    @property
    def last_activity(self) -> datetime:
        return self.updated_at or self.submitted_at
