"""Record store singleton: lazily created from the environment, injectable for tests."""

from __future__ import annotations

import os

from haggle_mcp.data.store import RecordStore, SqliteRecordStore

_store: RecordStore | None = None

_DEFAULT_DB_PATH = os.path.join(os.path.dirname(__file__), "hagglehub.db")


def get_store() -> RecordStore:
    """Return the active RecordStore singleton, creating + seeding if needed."""
    global _store  # noqa: PLW0603
    if _store is None:
        db_path = os.environ.get("HAGGLEHUB_DB_PATH", _DEFAULT_DB_PATH)
        store = SqliteRecordStore(db_path)
        from haggle_mcp.data.seed import seed_zip_tax_rates
        seed_zip_tax_rates(store)
        _store = store
    return _store


def set_store(store: RecordStore | None) -> None:
    """Inject a store instance for testing (mirrors ``set_cip_override``)."""
    global _store  # noqa: PLW0603
    _store = store
