"""Fatal errors raised by the import storage pipeline.

Duplicate skips are never raised; they are reported through the job's
error messages instead.
"""

from __future__ import annotations


class ImportStorageError(Exception):
    """Base class for errors that abort a store() call."""


class FingerprintEncodingError(ImportStorageError):
    """Raised when a record cannot be canonically encoded for hashing."""

    def __init__(self, record, reason: str):
        self.record = record
        self.reason = reason
        super().__init__(f"Could not encode import record for hashing: {reason}")


class CommitError(ImportStorageError):
    """Raised when the ledger store rejects a record that survived dedup."""

    def __init__(self, index: int, description: str, reason: str):
        self.index = index
        self.description = description
        super().__init__(
            f'Entry #{index} ("{description}") could not be stored: {reason}'
        )


class TagCreationError(ImportStorageError):
    """Raised when the import tag cannot be created or linked."""
