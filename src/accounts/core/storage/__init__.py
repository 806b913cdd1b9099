"""User record storage backends."""

from .record_store import (
    InMemoryRecordStore,
    RecordStore,
    TimeoutRecordStore,
    get_record_store,
)

__all__ = ["InMemoryRecordStore", "RecordStore", "TimeoutRecordStore", "get_record_store"]
