"""Plain records for the rows the store hands back."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import aiosqlite

_WHITESPACE = re.compile(r"\s+")


def normalize_app_name(name: str) -> str:
    """Lowercase, trim, and collapse whitespace runs into single underscores.

    Idempotent: ``normalize_app_name(normalize_app_name(x)) == normalize_app_name(x)``.
    """
    return _WHITESPACE.sub("_", name.strip().lower())


@dataclass(frozen=True)
class User:
    id: str
    name: str

    @classmethod
    def from_row(cls, row: aiosqlite.Row) -> User:
        return cls(id=row["id"], name=row["name"])


@dataclass(frozen=True)
class App:
    id: int
    name: str
    owner_id: str

    @classmethod
    def from_row(cls, row: aiosqlite.Row) -> App:
        return cls(id=row["id"], name=row["name"], owner_id=row["owner_id"])


@dataclass(frozen=True)
class Category:
    id: int
    name: str

    @classmethod
    def from_row(cls, row: aiosqlite.Row) -> Category:
        return cls(id=row["id"], name=row["name"])


@dataclass
class Memory:
    id: str
    content: str
    app_name: str
    user_name: str
    created_at: str
    categories: list[str] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: aiosqlite.Row, categories: list[str] | None = None) -> Memory:
        return cls(
            id=row["id"],
            content=row["content"],
            app_name=row["app_name"],
            user_name=row["user_name"],
            created_at=row["created_at"],
            categories=list(categories or []),
        )

    def to_dict(self) -> dict[str, Any]:
        """Wire shape used by the getMemories tool."""
        return {
            "id": self.id,
            "content": self.content,
            "appName": self.app_name,
            "userName": self.user_name,
            "createdAt": self.created_at,
            "categories": self.categories,
        }
