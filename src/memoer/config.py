"""Configuration loading from environment variables and memoer.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_DB_PATH = "./memoer.db"
_CONFIG_FILENAME = "memoer.toml"
_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class DatabaseConfig:
    """SQLite database location and migration behaviour."""

    path: Path = field(default_factory=lambda: Path(_DEFAULT_DB_PATH).resolve())
    defer_migration: bool = False


@dataclass
class MemoerConfig:
    """Top-level memoer configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    default_user: str = "default-user"
    default_limit: int = 10
    log_level: str = "INFO"


def _strip_file_scheme(url: str) -> str:
    """DATABASE_URL is written as ``file:<path>``; keep only the path."""
    return url[len("file:"):] if url.startswith("file:") else url


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


def resolve_db_path(db_path: str | Path | None, file_value: str | None = None) -> Path:
    """Pick the database file: explicit argument > env > memoer.toml > default.

    The result is absolute and its parent directory exists.
    """
    raw = (
        (str(db_path) if db_path else None)
        or os.getenv("MEMOER_DB_PATH")
        or (_strip_file_scheme(os.environ["DATABASE_URL"]) if os.getenv("DATABASE_URL") else None)
        or file_value
        or _DEFAULT_DB_PATH
    )
    path = Path(raw).expanduser().resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def load_config(config_path: Path | None = None, db_path: str | Path | None = None) -> MemoerConfig:
    """Load configuration from environment variables and optional memoer.toml.

    Priority: explicit db_path > environment variables > memoer.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.memoer/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".memoer" / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    database_data = file_data.get("database", {})

    config = MemoerConfig(
        database=DatabaseConfig(
            path=resolve_db_path(db_path, database_data.get("path")),
            defer_migration=_as_bool(
                os.getenv("MEMOER_DEFER_MIGRATION", database_data.get("defer_migration", False))
            ),
        ),
        default_user=os.getenv("MEMOER_DEFAULT_USER", file_data.get("default_user", "default-user")),
        default_limit=int(os.getenv("MEMOER_DEFAULT_LIMIT", file_data.get("default_limit", 10))),
        log_level=os.getenv("MEMOER_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    if config.default_limit < 1:
        raise ValueError(f"default_limit must be at least 1, got {config.default_limit}")
    return config
