"""SQLite-backed memory store.

One ``aiosqlite`` connection is shared by every tool call for the lifetime of
the process. The connection runs in autocommit mode: each write below is a
single statement, so every statement is its own transaction and concurrent
callers can never leave each other's work half-committed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from memoer.errors import IntegrityError, StoreUnavailableError, ValidationError
from memoer.store import schema
from memoer.store.models import App, Category, Memory, User, normalize_app_name

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class MemoryStore:
    """Read/write access to users, apps, memories and categories."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._db: aiosqlite.Connection | None = None

    # ── Connection lifecycle ─────────────────────────────────

    async def open(self) -> None:
        if self._db is not None:
            return
        self._db = await aiosqlite.connect(self.path, isolation_level=None)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.execute("PRAGMA journal_mode = WAL")
        logger.info("Opened memory store at %s", self.path)

    async def close(self) -> None:
        if self._db is None:
            return
        await self._db.close()
        self._db = None
        logger.info("Closed memory store")

    async def __aenter__(self) -> MemoryStore:
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._db is not None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreUnavailableError(f"memory store at {self.path} is not open")
        return self._db

    async def migrate(self) -> int:
        """Bring the schema up to date. Idempotent."""
        return await schema.migrate(self.db)

    # ── Users & apps ─────────────────────────────────────────

    async def ensure_user(self, name: str) -> User:
        """Get-or-create a user by its unique name.

        The insert is a single ``ON CONFLICT DO NOTHING`` statement, so two
        callers racing on the same name still end up with one row.
        """
        if not name or not name.strip():
            raise ValidationError("user name must be a non-empty string")
        cursor = await self.db.execute(
            "INSERT INTO users (id, name, created_at) VALUES (?, ?, ?) "
            "ON CONFLICT(name) DO NOTHING",
            (str(uuid.uuid4()), name, _now()),
        )
        if cursor.rowcount:
            logger.info("Created user %s", name)
        row = await self._fetchone("SELECT id, name FROM users WHERE name = ?", (name,))
        return User.from_row(row)

    async def ensure_app(self, name: str, owner_name: str) -> App:
        """Get-or-create an app; creates the owning user first if needed.

        An existing app is returned unchanged, even if ``owner_name`` differs.
        """
        app_name = normalize_app_name(name)
        if not app_name:
            raise ValidationError("app name must be a non-empty string")
        owner = await self.ensure_user(owner_name)
        cursor = await self.db.execute(
            "INSERT INTO apps (name, owner_id, created_at) VALUES (?, ?, ?) "
            "ON CONFLICT(name) DO NOTHING",
            (app_name, owner.id, _now()),
        )
        if cursor.rowcount:
            logger.info("Created app %s (owner=%s)", app_name, owner.name)
        row = await self._fetchone(
            "SELECT id, name, owner_id FROM apps WHERE name = ?", (app_name,)
        )
        return App.from_row(row)

    async def get_app(self, name: str) -> App | None:
        cursor = await self.db.execute(
            "SELECT id, name, owner_id FROM apps WHERE name = ?", (normalize_app_name(name),)
        )
        row = await cursor.fetchone()
        return App.from_row(row) if row else None

    async def count_apps(self) -> int:
        row = await self._fetchone("SELECT COUNT(*) AS n FROM apps")
        return int(row["n"])

    # ── Memories ─────────────────────────────────────────────

    async def create_memory(self, content: str, app_name: str, user_name: str) -> Memory:
        """Insert a memory for an existing app and user.

        Does not create the app: callers run ``ensure_app`` first. A missing
        app or user fails the foreign-key check and raises ``IntegrityError``.
        """
        memory = Memory(
            id=str(uuid.uuid4()),
            content=content,
            app_name=normalize_app_name(app_name),
            user_name=user_name,
            created_at=_now(),
        )
        try:
            await self.db.execute(
                "INSERT INTO memories (id, content, app_name, user_name, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (memory.id, memory.content, memory.app_name, memory.user_name, memory.created_at),
            )
        except aiosqlite.IntegrityError as e:
            raise IntegrityError(
                f"cannot attach memory to app {memory.app_name!r} and user "
                f"{memory.user_name!r}: {e}"
            ) from e
        logger.debug("Created memory %s for app %s", memory.id, memory.app_name)
        return memory

    async def list_memories(
        self,
        app_name: str | None = None,
        category_name: str | None = None,
        limit: int = DEFAULT_LIMIT,
    ) -> list[Memory]:
        """Most recent memories matching every supplied filter, newest first."""
        if limit < 1:
            raise ValidationError(f"limit must be a positive integer, got {limit}")

        # Inner joins drop any memory whose app or user does not resolve.
        sql = (
            "SELECT m.id, m.content, m.app_name, m.user_name, m.created_at "
            "FROM memories m "
            "JOIN apps a ON a.name = m.app_name "
            "JOIN users u ON u.name = m.user_name"
        )
        clauses: list[str] = []
        params: list = []

        if app_name:
            clauses.append("m.app_name = ?")
            params.append(normalize_app_name(app_name))

        if category_name:
            clauses.append(
                "EXISTS (SELECT 1 FROM memory_categories mc "
                "JOIN categories c ON c.id = mc.category_id "
                "WHERE mc.memory_id = m.id AND c.name = ?)"
            )
            params.append(category_name)

        if clauses:
            sql += " WHERE " + " AND ".join(clauses)

        # rowid breaks ties between memories created in the same microsecond
        sql += " ORDER BY m.created_at DESC, m.rowid DESC LIMIT ?"
        params.append(limit)

        cursor = await self.db.execute(sql, params)
        rows = await cursor.fetchall()
        categories = await self._categories_for([row["id"] for row in rows])
        return [Memory.from_row(row, categories.get(row["id"])) for row in rows]

    async def _categories_for(self, memory_ids: list[str]) -> dict[str, list[str]]:
        if not memory_ids:
            return {}
        placeholders = ", ".join("?" for _ in memory_ids)
        cursor = await self.db.execute(
            "SELECT mc.memory_id, c.name FROM memory_categories mc "
            "JOIN categories c ON c.id = mc.category_id "
            f"WHERE mc.memory_id IN ({placeholders}) ORDER BY c.name",
            memory_ids,
        )
        result: dict[str, list[str]] = {}
        for row in await cursor.fetchall():
            result.setdefault(row["memory_id"], []).append(row["name"])
        return result

    # ── Categories ───────────────────────────────────────────

    async def ensure_category(self, name: str) -> Category:
        if not name or not name.strip():
            raise ValidationError("category name must be a non-empty string")
        await self.db.execute(
            "INSERT INTO categories (name) VALUES (?) ON CONFLICT(name) DO NOTHING", (name,)
        )
        row = await self._fetchone("SELECT id, name FROM categories WHERE name = ?", (name,))
        return Category.from_row(row)

    async def add_category(self, memory_id: str, category_name: str) -> Category:
        """Label a memory, creating the category if needed. Idempotent."""
        category = await self.ensure_category(category_name)
        try:
            await self.db.execute(
                "INSERT INTO memory_categories (memory_id, category_id) VALUES (?, ?) "
                "ON CONFLICT(memory_id, category_id) DO NOTHING",
                (memory_id, category.id),
            )
        except aiosqlite.IntegrityError as e:
            raise IntegrityError(f"memory {memory_id!r} does not exist: {e}") from e
        return category

    # ── Helpers ──────────────────────────────────────────────

    async def _fetchone(self, sql: str, params: tuple = ()) -> aiosqlite.Row:
        cursor = await self.db.execute(sql, params)
        row = await cursor.fetchone()
        if row is None:
            raise IntegrityError(f"expected a row for: {sql}")
        return row
