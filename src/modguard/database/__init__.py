"""
Persistence for ModGuard.

- **db_connection.py**: Single long-lived aiosqlite connection with serialized writes.
- **db_schema.py**: Table and index creation.
- **sqlite_store.py**: ModerationStore on top of the repositories.
- **memory_store.py**: In-process ModerationStore.
"""
