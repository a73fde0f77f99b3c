from storage.base import RecordStore
from storage.memory import MemoryDatabase, MemoryRecordStore
from storage.sql import SqlRecordStore

__all__ = [
    "RecordStore",
    "MemoryDatabase",
    "MemoryRecordStore",
    "SqlRecordStore",
]
