"""
Append-only, per-guild history of enforcement actions.

The ledger is the source for dashboards (recent actions), the appeals
workflow (which violation is being disputed) and user history lookups. Entries
are never removed; ``overridden`` is the only field that changes.
"""

from __future__ import annotations

from collections import defaultdict
from typing import DefaultDict, Dict, List, Optional

from modguard.datatypes.action_datatypes import ActionType, parse_ledger_action
from modguard.datatypes.discord_datatypes import GuildID, UserID
from modguard.datatypes.violation_datatypes import ViolationRecord
from modguard.moderation.interfaces import ModerationStore
from modguard.util.logger import get_logger

logger = get_logger("violation_ledger")


class ViolationLedger:
    """
    In-memory ledger backed by an optional durable store.

    Appends are idempotent on record id so a persistence retry (or a replayed
    dispatch) never produces a duplicate entry. Writes go to the store first;
    the in-memory view only changes once the store accepted the entry.
    """

    def __init__(self, store: Optional[ModerationStore] = None) -> None:
        self._store = store
        self._records: DefaultDict[GuildID, Dict[str, ViolationRecord]] = defaultdict(dict)

    async def load(self) -> int:
        """Populate the in-memory view from the store; returns the number of records loaded."""
        if self._store is None:
            return 0
        records = await self._store.load_violations()
        for record in records:
            self._records[record.guild_id][record.id] = record
        logger.info("[LEDGER] Loaded %d violation records", len(records))
        return len(records)

    async def append(self, record: ViolationRecord) -> ViolationRecord:
        """
        Append a record, returning the stored instance.

        If a record with the same id already exists for the guild it is
        returned unchanged and nothing is written.
        """
        existing = self._records.get(record.guild_id, {}).get(record.id)
        if existing is not None:
            return existing

        if self._store is not None:
            await self._store.append_violation(record)
        self._records[record.guild_id][record.id] = record
        logger.debug(
            "[LEDGER] %s on user %s in guild %s (%s)",
            record.action, record.user_id, record.guild_id, record.category,
        )
        return record

    def get(self, guild_id: GuildID, record_id: str) -> Optional[ViolationRecord]:
        return self._records.get(guild_id, {}).get(record_id)

    def mark_overridden(self, guild_id: GuildID, record_id: str) -> ViolationRecord:
        """Flip ``overridden`` in memory. Persisting it is the caller's job.

        Raises:
            KeyError: If the record does not exist.
        """
        record = self._records[guild_id][record_id]
        record.overridden = True
        return record

    def history(self, guild_id: GuildID, user_id: UserID) -> List[ViolationRecord]:
        """All records for a user in a guild, oldest first."""
        records = [r for r in self._records.get(guild_id, {}).values() if r.user_id == user_id]
        return sorted(records, key=lambda r: r.timestamp)

    def recent(
        self,
        guild_id: GuildID,
        limit: int = 10,
        action_filter: Optional[ActionType] = None,
    ) -> List[ViolationRecord]:
        """
        Newest records for a guild, optionally restricted to one action type.

        Failed attempts of the filtered action are included so enforcement
        gaps stay visible.
        """
        records = list(self._records.get(guild_id, {}).values())
        if action_filter is not None:
            records = [r for r in records if parse_ledger_action(r.action)[0] is action_filter]
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records[: max(limit, 0)]

    def count(self, guild_id: GuildID) -> int:
        return len(self._records.get(guild_id, {}))
