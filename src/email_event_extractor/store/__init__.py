"""Persistent store for messages, senders, events and the ignore ledger.

Everything lives in a local SQLite database. Each call opens its own
connection and commits before returning, so individual calls are atomic but
there are no transactions spanning several calls.
"""

from .repository import EventStore, StoreStats

__all__ = ["EventStore", "StoreStats"]
