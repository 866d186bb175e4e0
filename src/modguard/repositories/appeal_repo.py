"""
Low-level storage for the ``appeals`` table.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

import aiosqlite

from modguard.datatypes.appeal_datatypes import Appeal, AppealStatus
from modguard.datatypes.discord_datatypes import GuildID, UserID
from modguard.datatypes.event_datatypes import EventCategory


def _to_epoch(value: Optional[datetime]) -> Optional[float]:
    return value.timestamp() if value is not None else None


def _from_epoch(value: Optional[float]) -> Optional[datetime]:
    return datetime.fromtimestamp(value, tz=timezone.utc) if value is not None else None


class AppealRepository:
    """CRUD for appeals; one row per appeal id, overwritten on every transition."""

    @staticmethod
    async def upsert(conn: aiosqlite.Connection, appeal: Appeal) -> None:
        await conn.execute(
            """
            INSERT INTO appeals
                (id, guild_id, user_id, violation_record_id, category, status, submitted_at,
                 updated_at, resolved_at, resolver_id, resolution_reason, statement)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                status            = excluded.status,
                updated_at        = excluded.updated_at,
                resolved_at       = excluded.resolved_at,
                resolver_id       = excluded.resolver_id,
                resolution_reason = excluded.resolution_reason
            """,
            (
                appeal.id,
                appeal.guild_id.to_int(),
                appeal.user_id.to_int(),
                appeal.violation_record_id,
                appeal.category.value,
                appeal.status.value,
                appeal.submitted_at.timestamp(),
                _to_epoch(appeal.updated_at),
                _to_epoch(appeal.resolved_at),
                appeal.resolver_id.to_int() if appeal.resolver_id is not None else None,
                appeal.resolution_reason,
                appeal.statement,
            ),
        )

    @staticmethod
    async def get_all(conn: aiosqlite.Connection) -> List[Appeal]:
        cursor = await conn.execute(
            "SELECT id, guild_id, user_id, violation_record_id, category, status, submitted_at, "
            "updated_at, resolved_at, resolver_id, resolution_reason, statement "
            "FROM appeals ORDER BY submitted_at"
        )
        rows = await cursor.fetchall()
        return [
            Appeal(
                id=row["id"],
                guild_id=GuildID(row["guild_id"]),
                user_id=UserID(row["user_id"]),
                violation_record_id=row["violation_record_id"],
                category=EventCategory(row["category"]),
                status=AppealStatus(row["status"]),
                submitted_at=datetime.fromtimestamp(row["submitted_at"], tz=timezone.utc),
                updated_at=_from_epoch(row["updated_at"]),
                resolved_at=_from_epoch(row["resolved_at"]),
                resolver_id=UserID(row["resolver_id"]) if row["resolver_id"] is not None else None,
                resolution_reason=row["resolution_reason"],
                statement=row["statement"],
            )
            for row in rows
        ]
