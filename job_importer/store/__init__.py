"""Job/log store SPI and implementations."""

from .base import ImportStore, JobStore, LogFilter, LogStore
from .mongo_store import MongoImportStore
from .sqlite_store import SQLiteImportStore

__all__ = [
    "ImportStore",
    "JobStore",
    "LogFilter",
    "LogStore",
    "MongoImportStore",
    "SQLiteImportStore",
]
