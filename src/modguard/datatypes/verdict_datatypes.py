"""
Threshold evaluation outcomes.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from modguard.datatypes.action_datatypes import ActionType
from modguard.datatypes.discord_datatypes import UserID
from modguard.datatypes.event_datatypes import EventCategory


class VerdictKind(Enum):
    ALLOW = "allow"
    WARN = "warn"
    ESCALATE = "escalate"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class Verdict:
    """
    Result of evaluating one event against its guild policy.

    Attributes:
        kind: allow, warn, or escalate.
        action: Auto-response to apply; set only for escalate.
        category: Category the event was counted under.
        count: Window count observed when the verdict was taken.
        limit: Effective limit the count was compared against.
        actor_id: Actor the verdict applies to.
        reason: Short human readable explanation, used as the ledger reason.
    """

    kind: VerdictKind
    action: Optional[ActionType] = None
    category: Optional[EventCategory] = None
    count: int = 0
    limit: int = 0
    actor_id: Optional[UserID] = None
    reason: str = ""

    @classmethod
    def allow(cls, **kwargs) -> "Verdict":
        return cls(VerdictKind.ALLOW, **kwargs)

    @classmethod
    def warn(cls, **kwargs) -> "Verdict":
        return cls(VerdictKind.WARN, **kwargs)

    @classmethod
    def escalate(cls, action: ActionType, **kwargs) -> "Verdict":
        return cls(VerdictKind.ESCALATE, action=action, **kwargs)

    @property
    def is_allow(self) -> bool:
        return self.kind is VerdictKind.ALLOW

    @property
    def is_warn(self) -> bool:
        return self.kind is VerdictKind.WARN

    @property
    def is_escalate(self) -> bool:
        return self.kind is VerdictKind.ESCALATE
