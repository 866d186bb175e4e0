"""
Low-level storage for the ``guild_policies`` table.

The whole snapshot is stored as one JSON document per guild, matching the
swap-in-whole update model of :class:`GuildPolicy`.
"""

from __future__ import annotations

import json
from typing import List

import aiosqlite

from modguard.datatypes.guild_policy import GuildPolicy
from modguard.exceptions import ConfigurationError
from modguard.util.logger import get_logger

logger = get_logger("policy_repository")


class PolicyRepository:
    @staticmethod
    async def upsert(conn: aiosqlite.Connection, policy: GuildPolicy) -> None:
        await conn.execute(
            """
            INSERT INTO guild_policies (guild_id, policy)
            VALUES (?, ?)
            ON CONFLICT(guild_id) DO UPDATE SET
                policy     = excluded.policy,
                updated_at = CURRENT_TIMESTAMP
            """,
            (policy.guild_id.to_int(), json.dumps(policy.to_dict())),
        )

    @staticmethod
    async def get_all(conn: aiosqlite.Connection) -> List[GuildPolicy]:
        """Load every stored policy; rows that no longer parse are skipped and logged."""
        cursor = await conn.execute("SELECT guild_id, policy FROM guild_policies")
        rows = await cursor.fetchall()
        policies: List[GuildPolicy] = []
        for row in rows:
            try:
                policies.append(GuildPolicy.from_dict(json.loads(row["policy"])))
            except (ConfigurationError, json.JSONDecodeError) as exc:
                logger.error("[POLICY REPO] Skipping unreadable policy for guild %s: %s", row["guild_id"], exc)
        return policies
