"""
In-process ModerationStore.

Used when no database path is configured and by the test-suite. Stored
objects are copied on the way in so later in-memory changes made by the
engine do not leak into the "persisted" state.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional

from modguard.datatypes.appeal_datatypes import Appeal
from modguard.datatypes.discord_datatypes import GuildID
from modguard.datatypes.guild_policy import GuildPolicy
from modguard.datatypes.violation_datatypes import ViolationRecord


class MemoryModerationStore:
    def __init__(self) -> None:
        self.policies: Dict[GuildID, GuildPolicy] = {}
        self.violations: Dict[str, ViolationRecord] = {}
        self.appeals: Dict[str, Appeal] = {}

    async def load_policies(self) -> List[GuildPolicy]:
        return list(self.policies.values())

    async def save_policy(self, policy: GuildPolicy) -> None:
        self.policies[policy.guild_id] = policy

    async def load_violations(self) -> List[ViolationRecord]:
        return [replace(record, details=dict(record.details)) for record in self.violations.values()]

    async def append_violation(self, record: ViolationRecord) -> None:
        self.violations.setdefault(record.id, replace(record, details=dict(record.details)))

    async def load_appeals(self) -> List[Appeal]:
        return list(self.appeals.values())

    async def save_appeal(self, appeal: Appeal) -> None:
        self.appeals[appeal.id] = appeal

    async def save_resolution(self, appeal: Optional[Appeal], record: ViolationRecord) -> None:
        self.violations[record.id] = replace(record, details=dict(record.details))
        if appeal is not None:
            self.appeals[appeal.id] = appeal
