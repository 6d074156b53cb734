"""MCP server: memoer-mcp — persistent memories for agents.

Exposes two tools, ``createMemory`` and ``getMemories``, backed by a local
SQLite file.

Protocol: JSON-RPC 2.0 over stdio (NDJSON). stdout carries protocol frames
only; logs go to stderr.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Callable

from memoer import __version__
from memoer.config import MemoerConfig
from memoer.errors import ToolError, classify
from memoer.store.db import MemoryStore
from memoer.tools.memory_tools import ToolHandler, ToolResult, get_memory_tools

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────

SERVER_NAME = "memoer-mcp"
PROTOCOL_VERSION = "2024-11-05"

METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Largest NDJSON frame accepted on stdin; memories can be long documents
MAX_FRAME_BYTES = 16 * 1024 * 1024

# ── Tool definitions ─────────────────────────────────────────

TOOLS = [
    {
        "name": "createMemory",
        "description": "Store a new memory in memoer-mcp local storage.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "content": {
                    "type": "string",
                    "description": "the content/memory to store into memoer-mcp local storage",
                },
                "appName": {
                    "type": "string",
                    "description": "the name of the app/agent you are",
                },
            },
            "required": ["content", "appName"],
        },
    },
    {
        "name": "getMemories",
        "description": (
            "Retrieve stored memories, most recent first. "
            "Optionally filter by app name and category."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "appName": {"type": "string", "description": "only memories of this app/agent"},
                "category": {"type": "string", "description": "only memories with this category"},
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "maximum number of memories to return (default 10)",
                },
            },
        },
    },
]

# ── JSON-RPC 2.0 helpers ─────────────────────────────────────


def jsonrpc_result(req_id, result):
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def jsonrpc_error(req_id, code, message):
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": code, "message": message}}


def tool_content(result: ToolResult) -> dict:
    payload: dict = {"content": [{"type": "text", "text": result.text}]}
    if result.is_error:
        payload["isError"] = True
    return payload


# ── Server ───────────────────────────────────────────────────


class MemoerServer:
    """Owns the store, runs the bootstrap, and answers JSON-RPC requests."""

    def __init__(self, config: MemoerConfig, store: MemoryStore | None = None) -> None:
        self.config = config
        self.store = store or MemoryStore(config.database.path)
        self.handlers: dict[str, ToolHandler] = get_memory_tools(
            self.store,
            default_user=config.default_user,
            default_limit=config.default_limit,
        )
        self._ready = asyncio.Event()
        self._bootstrap_error: BaseException | None = None
        self._bootstrap_task: asyncio.Task | None = None

    # ── Bootstrap ────────────────────────────────────────────

    async def bootstrap(self) -> None:
        """Open the store, apply migrations, and create the default user.

        Runs once; tool calls are rejected until it has completed.
        """
        try:
            await self.store.open()
            version = await self.store.migrate()
            await self.store.ensure_user(self.config.default_user)
        except Exception as e:
            self._bootstrap_error = e
            raise
        logger.info(
            "Store ready (schema v%d, default user %r)", version, self.config.default_user
        )
        self._ready.set()

    async def start(self) -> None:
        """Bootstrap inline, or in the background when migration is deferred."""
        if not self.config.database.defer_migration:
            await self.bootstrap()
            return
        logger.info("Deferring schema migration; serving requests immediately")
        self._bootstrap_task = asyncio.create_task(self._bootstrap_in_background())

    async def _bootstrap_in_background(self) -> None:
        try:
            await self.bootstrap()
        except Exception as e:
            # tool calls report it as an availability error from here on
            logger.error("Deferred store bootstrap failed: %s", e)

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    async def wait_ready(self) -> None:
        await self._ready.wait()

    async def close(self) -> None:
        if self._bootstrap_task and not self._bootstrap_task.done():
            self._bootstrap_task.cancel()
        await self.store.close()

    def _not_ready(self, tool_name: str) -> ToolResult:
        if self._bootstrap_error is not None:
            error = classify(self._bootstrap_error)
            error = ToolError("availability", f"store failed to initialize: {error.message}")
        else:
            error = ToolError("availability", "store is still initializing, retry shortly")
        return ToolResult(text=f"Error calling {tool_name}: {error}", error=error)

    # ── Request handler ──────────────────────────────────────

    async def call_tool(self, name: str, args: dict) -> ToolResult:
        if not self.ready:
            return self._not_ready(name)
        return await self.handlers[name](**args)

    async def handle_request(self, req: dict) -> dict | None:
        req_id = req.get("id")
        method = req.get("method", "")

        # Notifications (no id) — no response
        if req_id is None:
            if method == "notifications/initialized":
                logger.info("Client initialized")
            return None

        if method == "initialize":
            return jsonrpc_result(req_id, {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "serverInfo": {"name": SERVER_NAME, "version": __version__},
            })

        if method == "ping":
            return jsonrpc_result(req_id, {})

        if method == "tools/list":
            return jsonrpc_result(req_id, {"tools": TOOLS})

        if method == "tools/call":
            params = req.get("params") or {}
            if not isinstance(params, dict):
                return jsonrpc_error(req_id, INVALID_PARAMS, "params must be an object")
            tool_name = params.get("name", "")
            args = params.get("arguments") or {}
            if not isinstance(args, dict):
                return jsonrpc_error(req_id, INVALID_PARAMS, "arguments must be an object")

            if tool_name in self.handlers:
                try:
                    result = await self.call_tool(tool_name, args)
                except Exception as e:
                    logger.exception("Tool %s crashed", tool_name)
                    error = classify(e)
                    result = ToolResult(text=f"Error calling {tool_name}: {error}", error=error)
                return jsonrpc_result(req_id, tool_content(result))

            return jsonrpc_result(req_id, {
                "content": [{"type": "text", "text": f"Unknown tool: {tool_name}"}],
                "isError": True,
            })

        return jsonrpc_error(req_id, METHOD_NOT_FOUND, f"Method not found: {method}")

    # ── Stdio transport (NDJSON) ─────────────────────────────

    async def serve(self, reader: asyncio.StreamReader, write: Callable[[str], None]) -> None:
        """Read one JSON request per line until EOF, writing one response per line."""
        while True:
            try:
                raw = await reader.readline()
            except ValueError as e:
                # Frame exceeded the reader limit; its id is unknown, so no reply
                logger.warning("Dropping oversized frame: %s", e)
                continue
            if not raw:
                break

            try:
                line = raw.decode("utf-8").strip()
                if not line:
                    continue
                req = json.loads(line)
            except UnicodeDecodeError as e:
                logger.warning("Dropping frame that is not UTF-8: %s", e)
                continue
            except json.JSONDecodeError as e:
                logger.warning("Parse error: %s", e)
                continue

            if not isinstance(req, dict):
                logger.warning("Ignoring non-object request: %s", line[:200])
                continue

            logger.debug("<- %s", req.get("method", "?"))
            try:
                response = await self.handle_request(req)
            except Exception as e:
                logger.exception("Handler error")
                response = None
                if req.get("id") is not None:
                    response = jsonrpc_error(req["id"], INTERNAL_ERROR, f"Internal error: {e}")
            if response:
                write(json.dumps(response, ensure_ascii=False) + "\n")


def new_stdin_reader() -> asyncio.StreamReader:
    return asyncio.StreamReader(limit=MAX_FRAME_BYTES)


def _write_stdout(frame: str) -> None:
    sys.stdout.write(frame)
    sys.stdout.flush()


async def run_stdio(config: MemoerConfig) -> None:
    """Serve MCP over this process's stdin/stdout until stdin closes."""
    logger.info("Starting %s %s (database=%s)", SERVER_NAME, __version__, config.database.path)
    server = MemoerServer(config)
    await server.start()

    reader = new_stdin_reader()
    protocol = asyncio.StreamReaderProtocol(reader)
    await asyncio.get_running_loop().connect_read_pipe(lambda: protocol, sys.stdin)

    try:
        await server.serve(reader, _write_stdout)
    finally:
        await server.close()
        logger.info("Stopped.")
