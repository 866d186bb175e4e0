"""
Read-only views over engine state for the command layer and dashboards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from modguard.datatypes.action_datatypes import ActionType
from modguard.datatypes.appeal_datatypes import Appeal, AppealStatus
from modguard.datatypes.discord_datatypes import GuildID, UserID
from modguard.datatypes.event_datatypes import EventCategory
from modguard.datatypes.violation_datatypes import ViolationRecord
from modguard.exceptions import NotFound
from modguard.moderation.appeal_state_machine import AppealStateMachine
from modguard.moderation.rate_window_tracker import RateWindowTracker
from modguard.moderation.violation_ledger import ViolationLedger
from modguard.services.policy_service import PolicyService


@dataclass(slots=True)
class GuildStatus:
    """Snapshot returned by ``current_status``."""

    guild_id: GuildID
    enabled: bool
    automod_enabled: bool
    strict_mode: bool
    module_counts: Dict[EventCategory, int] = field(default_factory=dict)
    recent_actions: List[ViolationRecord] = field(default_factory=list)
    whitelist_size: int = 0
    pending_appeals: int = 0


class QueryService:
    def __init__(
        self,
        policies: PolicyService,
        tracker: RateWindowTracker,
        ledger: ViolationLedger,
        appeals: AppealStateMachine,
        *,
        recent_actions_limit: int = 10,
    ) -> None:
        self._policies = policies
        self._tracker = tracker
        self._ledger = ledger
        self._appeals = appeals
        self._recent_actions_limit = recent_actions_limit

    def current_status(self, guild_id: GuildID, now: Optional[datetime] = None) -> GuildStatus:
        """Module switches, live window counts and the newest ledger entries of a guild."""
        policy = self._policies.get_policy(guild_id)
        now = now or datetime.now(timezone.utc)
        counts = self._tracker.snapshot(guild_id, now)
        return GuildStatus(
            guild_id=guild_id,
            enabled=policy.enabled,
            automod_enabled=policy.automod_enabled,
            strict_mode=policy.strict_mode,
            module_counts={category: counts.get(category, 0) for category in policy.limits},
            recent_actions=self._ledger.recent(guild_id, self._recent_actions_limit),
            whitelist_size=len(policy.whitelist),
            pending_appeals=len(self._appeals.list(guild_id, AppealStatus.PENDING)),
        )

    def list_appeals(self, guild_id: GuildID, status_filter: AppealStatus | str | None = None) -> List[Appeal]:
        return self._appeals.list(guild_id, status_filter)

    def get_violation_history(self, guild_id: GuildID, user_id: UserID) -> List[ViolationRecord]:
        return self._ledger.history(guild_id, user_id)

    def recent_actions(
        self,
        guild_id: GuildID,
        limit: Optional[int] = None,
        action_filter: ActionType | str | None = None,
    ) -> List[ViolationRecord]:
        """Newest ledger entries; ``action_filter`` of ``"all"`` or None disables filtering."""
        if isinstance(action_filter, str):
            action_filter = None if action_filter == "all" else ActionType(action_filter)
        return self._ledger.recent(guild_id, limit if limit is not None else self._recent_actions_limit, action_filter)

    def get_incident(self, guild_id: GuildID, record_id: str) -> ViolationRecord:
        """
        Look up one ledger entry for investigation.

        Raises:
            NotFound: If the guild has no record with that id.
        """
        record = self._ledger.get(guild_id, record_id)
        if record is None:
            raise NotFound(f"violation {record_id} not found in guild {guild_id}")
        return record
