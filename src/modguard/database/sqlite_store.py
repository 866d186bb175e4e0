"""
SqliteModerationStore: durable ModerationStore on top of aiosqlite.

Orchestrates the three repositories; the store never builds SQL itself.
Every write runs inside ``ConnectionManager.transaction()`` so it is
serialized with other writers and rolled back on failure.
"""

from __future__ import annotations

from typing import List, Optional

from modguard.database.db_connection import ConnectionManager
from modguard.datatypes.appeal_datatypes import Appeal
from modguard.datatypes.guild_policy import GuildPolicy
from modguard.datatypes.violation_datatypes import ViolationRecord
from modguard.repositories.appeal_repo import AppealRepository
from modguard.repositories.policy_repo import PolicyRepository
from modguard.repositories.violation_repo import ViolationRepository
from modguard.util.logger import get_logger

logger = get_logger("sqlite_store")


class SqliteModerationStore:
    """ModerationStore backed by one shared SQLite connection."""

    def __init__(self, connection: ConnectionManager) -> None:
        self._db = connection

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    async def load_policies(self) -> List[GuildPolicy]:
        async with self._db.read() as conn:
            return await PolicyRepository.get_all(conn)

    async def save_policy(self, policy: GuildPolicy) -> None:
        async with self._db.transaction() as conn:
            await PolicyRepository.upsert(conn, policy)

    # ------------------------------------------------------------------
    # Violations
    # ------------------------------------------------------------------

    async def load_violations(self) -> List[ViolationRecord]:
        async with self._db.read() as conn:
            return await ViolationRepository.get_all(conn)

    async def append_violation(self, record: ViolationRecord) -> None:
        async with self._db.transaction() as conn:
            await ViolationRepository.insert(conn, record)

    # ------------------------------------------------------------------
    # Appeals
    # ------------------------------------------------------------------

    async def load_appeals(self) -> List[Appeal]:
        async with self._db.read() as conn:
            return await AppealRepository.get_all(conn)

    async def save_appeal(self, appeal: Appeal) -> None:
        async with self._db.transaction() as conn:
            await AppealRepository.upsert(conn, appeal)

    async def save_resolution(self, appeal: Optional[Appeal], record: ViolationRecord) -> None:
        """Write the appeal transition and the record's override flag in one transaction."""
        async with self._db.transaction() as conn:
            await ViolationRepository.set_overridden(conn, record)
            if appeal is not None:
                await AppealRepository.upsert(conn, appeal)
        logger.debug("[SQLITE STORE] Persisted resolution for violation %s", record.id)
