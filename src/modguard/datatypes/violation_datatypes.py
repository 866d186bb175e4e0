"""
Violation ledger entries.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict

from modguard.datatypes.action_datatypes import FAILED_PREFIX
from modguard.datatypes.discord_datatypes import GuildID, UserID
from modguard.datatypes.event_datatypes import EventCategory


def new_record_id() -> str:
    return uuid.uuid4().hex


@dataclass(slots=True)
class ViolationRecord:
    """
    One enforcement entry in the append-only violation ledger.

    ``action`` is the action value (``"ban"``, ``"unban"``...) or
    ``"failed:<action>"`` when the platform call did not succeed.
    ``overridden`` is the only field that changes after the record is
    written; it flips to True when an appeal approval or a moderator
    override reverses the action. ``details`` keeps what the inverse action
    needs later (deleted message content, removed role ids, timeout expiry).
    """

    guild_id: GuildID
    user_id: UserID
    category: EventCategory
    action: str
    reason: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    overridden: bool = False
    details: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_record_id)

    @property
    def failed(self) -> bool:
        return self.action.startswith(FAILED_PREFIX)
