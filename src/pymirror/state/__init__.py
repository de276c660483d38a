"""State/store layer.

This package is the single source of truth for how server responses, realtime
events and local edits are merged into the per-service record tables, and for
how those tables are queried.
"""
