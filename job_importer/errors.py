"""Exception taxonomy shared by the import pipeline."""

from __future__ import annotations


class ImporterError(Exception):
    """Base class for all importer failures."""


class FetchError(ImporterError):
    """Feed could not be retrieved (network, timeout or HTTP status)."""

    def __init__(self, message: str, *, url: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class RunTimeoutError(FetchError):
    """An import run exceeded its global time budget."""


class ParseError(ImporterError):
    """The whole feed document is unparseable."""


class JobValidationError(ImporterError):
    """A single candidate failed validation; never retried."""


class StorageError(ImporterError):
    """A store read/write failed."""


class DuplicateKeyError(StorageError):
    """Insert lost a race against another writer for the same natural key."""


__all__ = [
    "DuplicateKeyError",
    "FetchError",
    "ImporterError",
    "JobValidationError",
    "ParseError",
    "RunTimeoutError",
    "StorageError",
]
