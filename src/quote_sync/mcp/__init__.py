"""MCP server exposing the quote sync engine over stdio."""
