"""Tests for the SQLite memory store."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
import pytest_asyncio

from memoer.errors import IntegrityError, StoreUnavailableError, ValidationError
from memoer.store import schema
from memoer.store.db import MemoryStore
from memoer.store.models import normalize_app_name


@pytest_asyncio.fixture
async def store(tmp_path: Path):
    async with MemoryStore(tmp_path / "memoer.db") as s:
        await s.migrate()
        yield s


async def _count(store: MemoryStore, table: str) -> int:
    cursor = await store.db.execute(f"SELECT COUNT(*) FROM {table}")
    row = await cursor.fetchone()
    return row[0]


class TestSchema:
    @pytest.mark.asyncio
    async def test_creates_tables(self, store: MemoryStore):
        cursor = await store.db.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        tables = {row["name"] for row in await cursor.fetchall()}
        assert {"users", "apps", "memories", "categories", "memory_categories"} <= tables

    @pytest.mark.asyncio
    async def test_sets_user_version(self, store: MemoryStore):
        assert await schema.get_version(store.db) == schema.SCHEMA_VERSION

    @pytest.mark.asyncio
    async def test_idempotent(self, store: MemoryStore):
        await store.ensure_user("default-user")
        assert await store.migrate() == schema.SCHEMA_VERSION
        assert await store.migrate() == schema.SCHEMA_VERSION
        # Existing rows survive a second migration
        assert await _count(store, "users") == 1

    @pytest.mark.asyncio
    async def test_foreign_keys_enabled(self, store: MemoryStore):
        cursor = await store.db.execute("PRAGMA foreign_keys")
        assert (await cursor.fetchone())[0] == 1


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_not_open_raises_unavailable(self, tmp_path: Path):
        s = MemoryStore(tmp_path / "memoer.db")
        assert not s.is_open
        with pytest.raises(StoreUnavailableError):
            await s.ensure_user("default-user")

    @pytest.mark.asyncio
    async def test_open_twice_is_noop(self, tmp_path: Path):
        s = MemoryStore(tmp_path / "memoer.db")
        await s.open()
        db = s.db
        await s.open()
        assert s.db is db
        await s.close()
        await s.close()
        assert not s.is_open

    @pytest.mark.asyncio
    async def test_data_persists_across_connections(self, tmp_path: Path):
        path = tmp_path / "memoer.db"
        async with MemoryStore(path) as s:
            await s.migrate()
            await s.ensure_app("keeper", "default-user")
            await s.create_memory("persisted", "keeper", "default-user")
        async with MemoryStore(path) as s:
            memories = await s.list_memories()
        assert [m.content for m in memories] == ["persisted"]


class TestEnsureUser:
    @pytest.mark.asyncio
    async def test_creates_once(self, store: MemoryStore):
        first = await store.ensure_user("default-user")
        second = await store.ensure_user("default-user")
        assert first == second
        assert first.name == "default-user"
        assert len(first.id) == 36  # uuid4
        assert await _count(store, "users") == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_create_one_row(self, store: MemoryStore):
        users = await asyncio.gather(*(store.ensure_user("default-user") for _ in range(10)))
        assert len({u.id for u in users}) == 1
        assert await _count(store, "users") == 1

    @pytest.mark.asyncio
    async def test_rejects_blank_name(self, store: MemoryStore):
        with pytest.raises(ValidationError):
            await store.ensure_user("  ")


class TestEnsureApp:
    @pytest.mark.asyncio
    async def test_idempotent(self, store: MemoryStore):
        first = await store.ensure_app("notes", "default-user")
        second = await store.ensure_app("notes", "default-user")
        assert first == second
        assert await store.count_apps() == 1

    @pytest.mark.asyncio
    async def test_creates_owner(self, store: MemoryStore):
        app = await store.ensure_app("notes", "alice")
        owner = await store.ensure_user("alice")
        assert app.owner_id == owner.id

    @pytest.mark.asyncio
    async def test_existing_app_keeps_owner(self, store: MemoryStore):
        original = await store.ensure_app("notes", "alice")
        again = await store.ensure_app("notes", "bob")
        assert again.owner_id == original.owner_id

    @pytest.mark.asyncio
    async def test_normalizes_name(self, store: MemoryStore):
        app = await store.ensure_app("  My   Notes ", "default-user")
        assert app.name == "my_notes"
        assert await store.get_app("MY NOTES") == app

    @pytest.mark.asyncio
    async def test_concurrent_first_write(self, store: MemoryStore):
        apps = await asyncio.gather(
            store.ensure_app("Fresh App", "default-user"),
            store.ensure_app("fresh_app", "default-user"),
        )
        assert apps[0] == apps[1]
        assert await store.count_apps() == 1
        assert await _count(store, "users") == 1

    @pytest.mark.asyncio
    async def test_get_app_missing(self, store: MemoryStore):
        assert await store.get_app("nope") is None


class TestCreateMemory:
    @pytest.mark.asyncio
    async def test_returns_id_and_timestamp(self, store: MemoryStore):
        await store.ensure_app("notes", "default-user")
        memory = await store.create_memory("hello", "notes", "default-user")
        assert len(memory.id) == 36
        assert memory.created_at.endswith("+00:00")
        assert memory.app_name == "notes"
        assert memory.categories == []

    @pytest.mark.asyncio
    async def test_missing_app_fails(self, store: MemoryStore):
        await store.ensure_user("default-user")
        with pytest.raises(IntegrityError, match="ghost"):
            await store.create_memory("hello", "ghost", "default-user")
        assert await _count(store, "memories") == 0

    @pytest.mark.asyncio
    async def test_missing_user_fails(self, store: MemoryStore):
        await store.ensure_app("notes", "default-user")
        with pytest.raises(IntegrityError):
            await store.create_memory("hello", "notes", "nobody")

    @pytest.mark.asyncio
    async def test_unmigrated_store_raises_operational_error(self, tmp_path: Path):
        import aiosqlite

        async with MemoryStore(tmp_path / "empty.db") as s:
            with pytest.raises(aiosqlite.OperationalError):
                await s.ensure_user("default-user")


@pytest_asyncio.fixture
async def seeded(store: MemoryStore) -> dict[str, str]:
    """Memories A (app x, c1), B (app x, c2), C (app y, c1)."""
    ids = {}
    for label, app, category in [("A", "x", "c1"), ("B", "x", "c2"), ("C", "y", "c1")]:
        await store.ensure_app(app, "default-user")
        memory = await store.create_memory(f"memory {label}", app, "default-user")
        await store.add_category(memory.id, category)
        ids[memory.id] = label
    return ids


class TestListMemories:
    @staticmethod
    def _labels(memories, ids) -> set[str]:
        return {ids[m.id] for m in memories}

    @pytest.mark.asyncio
    async def test_no_filter(self, store: MemoryStore, seeded):
        assert self._labels(await store.list_memories(), seeded) == {"A", "B", "C"}

    @pytest.mark.asyncio
    async def test_filter_by_app(self, store: MemoryStore, seeded):
        assert self._labels(await store.list_memories(app_name="x"), seeded) == {"A", "B"}

    @pytest.mark.asyncio
    async def test_filter_by_category(self, store: MemoryStore, seeded):
        result = await store.list_memories(category_name="c1")
        assert self._labels(result, seeded) == {"A", "C"}

    @pytest.mark.asyncio
    async def test_filter_by_both(self, store: MemoryStore, seeded):
        result = await store.list_memories(app_name="x", category_name="c1")
        assert self._labels(result, seeded) == {"A"}

    @pytest.mark.asyncio
    async def test_unknown_filters_return_empty(self, store: MemoryStore, seeded):
        assert await store.list_memories(app_name="zzz") == []
        assert await store.list_memories(category_name="zzz") == []

    @pytest.mark.asyncio
    async def test_includes_category_names(self, store: MemoryStore, seeded):
        by_label = {seeded[m.id]: m for m in await store.list_memories()}
        assert by_label["A"].categories == ["c1"]
        assert by_label["B"].categories == ["c2"]

    @pytest.mark.asyncio
    async def test_multiple_categories_sorted(self, store: MemoryStore):
        await store.ensure_app("x", "default-user")
        memory = await store.create_memory("tagged", "x", "default-user")
        await store.add_category(memory.id, "zeta")
        await store.add_category(memory.id, "alpha")
        await store.add_category(memory.id, "alpha")
        [listed] = await store.list_memories()
        assert listed.categories == ["alpha", "zeta"]

    @pytest.mark.asyncio
    async def test_newest_first_and_limit(self, store: MemoryStore):
        await store.ensure_app("x", "default-user")
        for i in range(1, 8):
            await store.create_memory(f"m{i}", "x", "default-user")

        result = await store.list_memories(limit=3)
        assert [m.content for m in result] == ["m7", "m6", "m5"]

    @pytest.mark.asyncio
    async def test_default_limit_is_ten(self, store: MemoryStore):
        await store.ensure_app("x", "default-user")
        for i in range(12):
            await store.create_memory(f"m{i}", "x", "default-user")
        assert len(await store.list_memories()) == 10

    @pytest.mark.asyncio
    async def test_rejects_non_positive_limit(self, store: MemoryStore):
        with pytest.raises(ValidationError):
            await store.list_memories(limit=0)

    @pytest.mark.asyncio
    async def test_skips_orphaned_rows(self, store: MemoryStore):
        await store.ensure_app("x", "default-user")
        await store.create_memory("kept", "x", "default-user")
        # Bypass the foreign keys to plant a row no app resolves to
        await store.db.execute("PRAGMA foreign_keys = OFF")
        await store.db.execute(
            "INSERT INTO memories (id, content, app_name, user_name, created_at) "
            "VALUES ('orphan', 'lost', 'ghost', 'default-user', '2999-01-01T00:00:00+00:00')"
        )
        await store.db.execute("PRAGMA foreign_keys = ON")

        assert [m.content for m in await store.list_memories()] == ["kept"]


class TestCategories:
    @pytest.mark.asyncio
    async def test_ensure_category_idempotent(self, store: MemoryStore):
        first = await store.ensure_category("work")
        second = await store.ensure_category("work")
        assert first == second

    @pytest.mark.asyncio
    async def test_add_category_to_missing_memory(self, store: MemoryStore):
        with pytest.raises(IntegrityError):
            await store.add_category("no-such-memory", "work")


class TestNormalizeAppName:
    @pytest.mark.parametrize("raw", ["My App", "my_app", "MY   APP", " my\tapp "])
    def test_variants_collapse(self, raw: str):
        assert normalize_app_name(raw) == "my_app"

    def test_idempotent(self):
        once = normalize_app_name("Grocery  Bot")
        assert normalize_app_name(once) == once == "grocery_bot"
