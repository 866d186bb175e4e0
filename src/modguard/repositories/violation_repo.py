"""
Low-level storage for the ``violation_records`` table.

Timestamps are stored as REAL unix seconds; ``details`` is a JSON object.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import List

import aiosqlite

from modguard.datatypes.discord_datatypes import GuildID, UserID
from modguard.datatypes.event_datatypes import EventCategory
from modguard.datatypes.violation_datatypes import ViolationRecord


class ViolationRepository:
    """CRUD for ledger entries. Inserts are idempotent on record id."""

    @staticmethod
    async def insert(conn: aiosqlite.Connection, record: ViolationRecord) -> None:
        await conn.execute(
            """
            INSERT OR IGNORE INTO violation_records
                (id, guild_id, user_id, category, action, reason, timestamp, overridden, details)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.guild_id.to_int(),
                record.user_id.to_int(),
                record.category.value,
                record.action,
                record.reason,
                record.timestamp.timestamp(),
                int(record.overridden),
                json.dumps(record.details),
            ),
        )

    @staticmethod
    async def set_overridden(conn: aiosqlite.Connection, record: ViolationRecord) -> None:
        """Upsert-style override: inserts the record if a retried write lost it."""
        await ViolationRepository.insert(conn, record)
        await conn.execute(
            "UPDATE violation_records SET overridden = ? WHERE id = ?",
            (int(record.overridden), record.id),
        )

    @staticmethod
    async def get_all(conn: aiosqlite.Connection) -> List[ViolationRecord]:
        cursor = await conn.execute(
            "SELECT id, guild_id, user_id, category, action, reason, timestamp, overridden, details "
            "FROM violation_records ORDER BY timestamp"
        )
        rows = await cursor.fetchall()
        return [
            ViolationRecord(
                id=row["id"],
                guild_id=GuildID(row["guild_id"]),
                user_id=UserID(row["user_id"]),
                category=EventCategory(row["category"]),
                action=row["action"],
                reason=row["reason"],
                timestamp=datetime.fromtimestamp(row["timestamp"], tz=timezone.utc),
                overridden=bool(row["overridden"]),
                details=json.loads(row["details"] or "{}"),
            )
            for row in rows
        ]
