"""Exact-duplicate detection for import batches.

Every committed journal carries the SHA256 fingerprint of the record it was
imported from (journal meta "importHashV2"). A record whose fingerprint is
already present for the same user is an exact repeat and is skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from importstore.records import TransactionRecord, compute_fingerprint
from importstore.storage.interfaces import FingerprintIndex

logger = logging.getLogger(__name__)


class DuplicateReason(str, Enum):
    EXACT = "exact"
    FUZZY_TRANSFER = "fuzzy-transfer"


@dataclass
class DuplicateReport:
    """Why one batch entry was skipped."""
    index: int             # 0-based position in the original batch
    reason: DuplicateReason
    description: str
    amount: str
    date: str
    existing_journal_id: int | None = None  # exact duplicates only

    @classmethod
    def for_record(
        cls,
        index: int,
        record: TransactionRecord,
        reason: DuplicateReason,
        existing_journal_id: int | None = None,
    ) -> DuplicateReport:
        return cls(
            index=index,
            reason=reason,
            description=record.description,
            amount=record.splits[0].amount if record.splits else "0",
            date=record.date,
            existing_journal_id=existing_journal_id,
        )

    @property
    def message(self) -> str:
        """Job error message, as shown to the user."""
        if self.reason == DuplicateReason.EXACT:
            tail = "It already exists."
        else:
            tail = "Such a transfer already exists."
        return f'Entry #{self.index} ("{self.description}") could not be imported. {tail}'


class ExactDuplicateIndex:
    """Look up record fingerprints among the user's committed journals."""

    def __init__(self, index: FingerprintIndex, user_id: int):
        self.index = index
        self.user_id = user_id

    def fingerprint(self, record: TransactionRecord) -> str:
        return compute_fingerprint(record)

    def lookup(self, import_hash: str) -> int | None:
        """Return the existing journal id for this fingerprint, or None.

        Lookup errors propagate.
        """
        journal_id = self.index.find_journal_by_import_hash(self.user_id, import_hash)
        if journal_id is not None:
            logger.info("Found a journal with an existing hash: %s", import_hash)
        return journal_id
