"""mcpdx: resolution pattern store for MCP server diagnostics."""

__version__ = "0.4.0"
