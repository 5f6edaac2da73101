"""Durable storage for page identity records."""

from __future__ import annotations

from .schema import metadata as db_metadata
from .sqlite_store import SQLitePageIdentityStore, StoreUnavailableError, StoreWriteError

__all__ = ["SQLitePageIdentityStore", "StoreUnavailableError", "StoreWriteError", "db_metadata"]
