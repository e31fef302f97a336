"""Fuzzy duplicate detection for imported transfers.

Each split of a candidate transfer is compared to every leg in the
snapshot of the user's existing transfers, scoring one point per matching
field family:

  amount       absolute split amount == leg amount (exact Decimal)
  description  split description (or record description) == leg description
  date         record date == leg date (YYYY-MM-DD)
  account ids  sorted {source_id, destination_id} == sorted leg id pair
  account names  sorted {source_name, destination_name} == sorted leg name pair

Points accumulate over all split x leg comparisons into one total. The
record is a duplicate once the total reaches hits_per_split x split count.

Every point counts on its own, and a stored transfer between two asset
accounts appears in the snapshot as two legs. With the default of 4 hits
per split, two unrelated stored transfers that only share the amount are
enough to mark a one-split transfer as a duplicate. Older importers only
counted a leg once its amount, description and date all matched.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Sequence

from importstore.config import DEFAULT_HITS_PER_SPLIT
from importstore.database.models import TransferSnapshotEntry
from importstore.records import SplitRecord, TransactionRecord
from importstore.storage.interfaces import TransferSource

logger = logging.getLogger(__name__)


def has_transfers(records: Sequence[TransactionRecord]) -> bool:
    return any(r.is_transfer for r in records)


class TransferSnapshot:
    """The user's existing transfer legs, loaded once per batch."""

    def __init__(self, entries: Sequence[TransferSnapshotEntry]):
        self._entries = tuple(entries)

    @classmethod
    def load(cls, source: TransferSource, user_id: int) -> TransferSnapshot:
        entries = source.get_transfer_snapshot(user_id)
        logger.debug("Loaded %d transfer legs for user %s", len(entries), user_id)
        return cls(entries)

    def __iter__(self):
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


def score_split(
    record: TransactionRecord,
    split: SplitRecord,
    entry: TransferSnapshotEntry,
) -> int:
    """Points awarded for one split compared to one snapshot leg."""
    hits = 0

    amount = abs(Decimal(split.amount))
    if amount == entry.amount:
        hits += 1

    description = split.description or record.description
    if description == entry.description:
        hits += 1

    if record.date == entry.date.strftime("%Y-%m-%d"):
        hits += 1

    split_ids = sorted([int(split.source_id), int(split.destination_id)])
    entry_ids = sorted([int(entry.account_id), int(entry.opposing_account_id)])
    if split_ids == entry_ids:
        hits += 1

    split_names = sorted([str(split.source_name), str(split.destination_name)])
    entry_names = sorted([str(entry.account_name), str(entry.opposing_account_name)])
    if split_names == entry_names:
        hits += 1

    return hits


class TransferMatcher:
    """Decide whether a transfer record already exists in the snapshot."""

    def __init__(
        self,
        snapshot: TransferSnapshot,
        hits_per_split: int = DEFAULT_HITS_PER_SPLIT,
    ):
        self.snapshot = snapshot
        self.hits_per_split = hits_per_split

    def required_hits(self, record: TransactionRecord) -> int:
        return len(record.splits) * self.hits_per_split

    def is_duplicate_transfer(self, record: TransactionRecord) -> bool:
        if not record.is_transfer:
            logger.debug("Is a %s, not a transfer so no.", record.type.value)
            return False

        required = self.required_hits(record)
        total = 0
        logger.debug("Required hits for transfer comparison is %d", required)

        for split in record.splits:
            for entry in self.snapshot:
                hits = score_split(record, split, entry)
                if hits:
                    logger.debug(
                        "Journal #%d scored %d against '%s'",
                        entry.journal_id, hits, record.description,
                    )
                total += hits
                if total >= required:
                    return True

        logger.debug("Total hits: %d, required: %d", total, required)
        return False
