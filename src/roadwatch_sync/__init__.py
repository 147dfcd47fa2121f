"""Bidirectional reconciliation engine for road-damage reports.

Keeps the primary (relational) store and the secondary (mobile-facing)
store convergent, records divergences as conflicts, and exposes the
control surface through an MCP server and a CLI.
"""

__version__ = "0.3.0"
