"""Ingestion layer.

Adapters that turn server responses into records for the state/store layer.
"""

__all__: list[str] = []
