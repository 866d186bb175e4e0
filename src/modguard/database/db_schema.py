"""
Database schema creation and version tracking.

Timestamps are stored as REAL unix seconds (UTC); JSON columns hold the
serialized policy and the per-record action details.
"""

import aiosqlite

from modguard.util.logger import get_logger

logger = get_logger("database_schema")

SCHEMA_VERSION = 1


class SchemaManager:
    """Creates tables and indexes; safe to run on every startup."""

    @staticmethod
    async def initialize_schema(db: aiosqlite.Connection) -> None:
        await SchemaManager._create_tables(db)
        await SchemaManager._create_indexes(db)
        await db.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        await db.commit()
        logger.info("[SCHEMA] Database schema initialized (version %d)", SCHEMA_VERSION)

    @staticmethod
    async def _create_tables(db: aiosqlite.Connection) -> None:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS guild_policies (
                guild_id INTEGER PRIMARY KEY,
                policy TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Append-only; only `overridden` is ever updated
        await db.execute("""
            CREATE TABLE IF NOT EXISTS violation_records (
                id TEXT PRIMARY KEY,
                guild_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                category TEXT NOT NULL,
                action TEXT NOT NULL,
                reason TEXT NOT NULL DEFAULT '',
                timestamp REAL NOT NULL,
                overridden INTEGER NOT NULL DEFAULT 0,
                details TEXT NOT NULL DEFAULT '{}'
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS appeals (
                id TEXT PRIMARY KEY,
                guild_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                violation_record_id TEXT NOT NULL,
                category TEXT NOT NULL,
                status TEXT NOT NULL,
                submitted_at REAL NOT NULL,
                updated_at REAL,
                resolved_at REAL,
                resolver_id INTEGER,
                resolution_reason TEXT,
                statement TEXT NOT NULL DEFAULT '',
                FOREIGN KEY (violation_record_id) REFERENCES violation_records(id)
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    @staticmethod
    async def _create_indexes(db: aiosqlite.Connection) -> None:
        await db.execute("CREATE INDEX IF NOT EXISTS idx_violations_user ON violation_records(guild_id, user_id, timestamp)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_violations_recent ON violation_records(guild_id, timestamp DESC)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_appeals_status ON appeals(guild_id, status)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_appeals_user ON appeals(guild_id, user_id, category)")
