"""valora.storage: Persistence of instruments, quotes and fetch state."""

from valora.storage.store import QuoteStore, SqliteStore, create_store

__all__ = ["QuoteStore", "SqliteStore", "create_store"]
