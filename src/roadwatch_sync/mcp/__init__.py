"""MCP server exposing the sync control surface over stdio."""
