"""MCP tools for agent memory access.

Both tools always return a ``ToolResult``. Failures are reported through
``ToolResult.error`` (kind + message) and a readable text, never by raising.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from memoer.errors import ToolError, ValidationError, classify
from memoer.store.db import DEFAULT_LIMIT
from memoer.store.models import normalize_app_name

if TYPE_CHECKING:
    from memoer.store.db import MemoryStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolResult:
    text: str
    error: ToolError | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


ToolHandler = Callable[..., Awaitable[ToolResult]]


def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be a non-empty string")
    return value


def _optional_text(value: Any, field: str) -> str | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    # a blank filter would otherwise silently match everything
    if not value.strip():
        raise ValidationError(f"{field} must not be blank")
    return value


def _limit(value: Any, default: int) -> int:
    if value is None:
        return default
    # bool is an int subclass; JSON floats like 5.0 are accepted
    if (
        isinstance(value, bool)
        or not isinstance(value, (int, float))
        or (isinstance(value, float) and not value.is_integer())
    ):
        raise ValidationError(f"limit must be an integer, got {value!r}")
    if value < 1:
        raise ValidationError(f"limit must be at least 1, got {int(value)}")
    return int(value)


def _failure(prefix: str, exc: Exception) -> ToolResult:
    error = classify(exc)
    if error.kind == "internal":
        logger.exception("%s", prefix)
    else:
        logger.warning("%s: %s", prefix, error)
    return ToolResult(text=f"{prefix}: {error}", error=error)


def get_memory_tools(
    store: MemoryStore,
    default_user: str = "default-user",
    default_limit: int = DEFAULT_LIMIT,
) -> dict[str, ToolHandler]:
    """Return a dict of tool_name -> coroutine function for memory operations.

    These are registered as MCP tools by the server or called directly.
    """

    async def create_memory(content: Any = None, appName: Any = None, **extra: Any) -> ToolResult:
        """Store a memory under the calling app, creating the app on first use."""
        if extra:
            logger.debug("createMemory ignoring unknown arguments: %s", sorted(extra))
        try:
            content = _require_text(content, "content")
            app_name = normalize_app_name(_require_text(appName, "appName"))
            await store.ensure_app(app_name, default_user)
            memory = await store.create_memory(content, app_name, default_user)
        except Exception as e:
            return _failure("Error creating memory", e)
        logger.info("Memory %s stored for app %s", memory.id, app_name)
        return ToolResult(text=f"Memory created successfully with ID: {memory.id}")

    async def get_memories(
        appName: Any = None, category: Any = None, limit: Any = None, **extra: Any
    ) -> ToolResult:
        """List the most recent memories, optionally filtered by app and category."""
        if extra:
            logger.debug("getMemories ignoring unknown arguments: %s", sorted(extra))
        try:
            app_name = _optional_text(appName, "appName")
            memories = await store.list_memories(
                app_name=normalize_app_name(app_name) if app_name else None,
                category_name=_optional_text(category, "category"),
                limit=_limit(limit, default_limit),
            )
        except Exception as e:
            return _failure("Error retrieving memories", e)
        return ToolResult(
            text=json.dumps([m.to_dict() for m in memories], indent=2, ensure_ascii=False)
        )

    return {
        "createMemory": create_memory,
        "getMemories": get_memories,
    }
