"""memoer-mcp — a persistent memory store for agents, served over MCP."""

__version__ = "1.0.0"
