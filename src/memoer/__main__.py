"""Entry point: python -m memoer [serve|migrate] [DB_PATH]

- No args / "serve": MCP server over stdio
- "migrate":         Apply schema migrations, create the default user, exit
"""

from __future__ import annotations

import asyncio
import logging
import sys

from memoer.config import MemoerConfig, load_config


def _setup_logging(level: str) -> None:
    # stdout is the MCP channel; keep every log line on stderr
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _run_serve(config: MemoerConfig) -> None:
    """MCP stdio server mode."""
    from memoer.server import run_stdio

    try:
        asyncio.run(run_stdio(config))
    except KeyboardInterrupt:
        pass


async def _migrate(config: MemoerConfig) -> int:
    from memoer.store.db import MemoryStore

    async with MemoryStore(config.database.path) as store:
        version = await store.migrate()
        await store.ensure_user(config.default_user)
    return version


def _run_migrate(config: MemoerConfig) -> None:
    """Provision the database file and exit."""
    version = asyncio.run(_migrate(config))
    print(f"{config.database.path}: schema v{version}", file=sys.stderr)


def main(argv: list[str] | None = None) -> None:
    args = sys.argv[1:] if argv is None else argv
    cmd = args[0] if args else "serve"
    db_path = args[1] if len(args) > 1 else None

    if cmd not in ("serve", "migrate"):
        print("Usage: python -m memoer [serve|migrate] [DB_PATH]", file=sys.stderr)
        print("  serve    — MCP server over stdio (default)", file=sys.stderr)
        print("  migrate  — Create/upgrade the database schema and exit", file=sys.stderr)
        sys.exit(1)

    try:
        config = load_config(db_path=db_path)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)
    _setup_logging(config.log_level)
    logging.getLogger(__name__).info("Using database: %s", config.database.path)

    try:
        if cmd == "serve":
            _run_serve(config)
        else:
            _run_migrate(config)
    except Exception as e:
        logging.getLogger(__name__).error("Fatal error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
