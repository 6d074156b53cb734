"""Versioned schema migrations for the memory store.

Each entry in ``MIGRATIONS`` moves the database from version ``i`` to
``i + 1``. The current version lives in ``PRAGMA user_version``, so applying
migrations twice is a no-op.
"""

from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger(__name__)

_V1 = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS apps (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        owner_id TEXT NOT NULL REFERENCES users(id),
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memories (
        id TEXT PRIMARY KEY,
        content TEXT NOT NULL,
        app_name TEXT NOT NULL REFERENCES apps(name),
        user_name TEXT NOT NULL REFERENCES users(name),
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS categories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memory_categories (
        memory_id TEXT NOT NULL REFERENCES memories(id),
        category_id INTEGER NOT NULL REFERENCES categories(id),
        PRIMARY KEY (memory_id, category_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_memories_created_at ON memories(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_memories_app_name ON memories(app_name)",
    "CREATE INDEX IF NOT EXISTS idx_memory_categories_category ON memory_categories(category_id)",
]

MIGRATIONS: list[list[str]] = [_V1]

SCHEMA_VERSION = len(MIGRATIONS)


async def get_version(db: aiosqlite.Connection) -> int:
    cursor = await db.execute("PRAGMA user_version")
    row = await cursor.fetchone()
    return int(row[0]) if row else 0


async def migrate(db: aiosqlite.Connection) -> int:
    """Apply pending migrations. Returns the resulting schema version."""
    version = await get_version(db)
    if version > SCHEMA_VERSION:
        logger.warning(
            "Database schema v%d is newer than this build (v%d)", version, SCHEMA_VERSION
        )
        return version

    for target, statements in enumerate(MIGRATIONS[version:], start=version + 1):
        await db.execute("BEGIN")
        try:
            for statement in statements:
                await db.execute(statement)
            # PRAGMA does not accept bound parameters
            await db.execute(f"PRAGMA user_version = {target}")
        except Exception:
            await db.rollback()
            raise
        await db.commit()
        logger.info("Applied schema migration v%d", target)

    return max(version, SCHEMA_VERSION)
