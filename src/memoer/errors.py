"""Error taxonomy shared by the store and the tool handlers.

Every failure that reaches a tool boundary is reduced to a ``ToolError`` with
one of four kinds. The handlers return it; they never raise it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import aiosqlite

ErrorKind = Literal["validation", "integrity", "availability", "internal"]


@dataclass(frozen=True)
class ToolError:
    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"


class MemoerError(Exception):
    """Base class for errors raised by memoer itself."""

    kind: ErrorKind = "internal"


class ValidationError(MemoerError):
    """Tool arguments are missing or malformed."""

    kind = "validation"


class IntegrityError(MemoerError):
    """A referenced row is missing or a unique key would be violated."""

    kind = "integrity"


class StoreUnavailableError(MemoerError):
    """The database is not open, not migrated yet, or unreachable."""

    kind = "availability"


def classify(exc: BaseException) -> ToolError:
    """Map an exception onto the error taxonomy."""
    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, MemoerError):
        return ToolError(exc.kind, message)
    if isinstance(exc, aiosqlite.IntegrityError):
        return ToolError("integrity", message)
    # "no such table", "database is locked", "unable to open database file"
    if isinstance(exc, aiosqlite.OperationalError):
        return ToolError("availability", message)
    return ToolError("internal", f"{exc.__class__.__name__}: {message}")
