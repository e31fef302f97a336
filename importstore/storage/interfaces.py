"""Collaborator contracts consumed by the import storage pipeline.

The SQLite Repository implements all of them; tests substitute mocks.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from typing import Sequence

from importstore.database.models import Rule, Tag, TransferSnapshotEntry
from importstore.records import TransactionRecord

IMPORT_HASH_META = "importHashV2"


class LedgerStore(ABC):
    @abstractmethod
    def create_journal(
        self,
        user_id: int,
        record: TransactionRecord,
        journal_date: date,
        import_hash: str,
    ) -> int:
        """Commit one record and its import fingerprint. Returns the journal id."""


class FingerprintIndex(ABC):
    @abstractmethod
    def find_journal_by_import_hash(self, user_id: int, import_hash: str) -> int | None:
        """Return the journal previously committed with this fingerprint, if any."""


class TransferSource(ABC):
    @abstractmethod
    def get_transfer_snapshot(self, user_id: int) -> list[TransferSnapshotEntry]:
        """All legs of the user's transfers, opposing accounts resolved."""


class TagStore(ABC):
    @abstractmethod
    def create_tag(self, user_id: int, tag: str, tag_date: date, tag_mode: str) -> Tag:
        """Create and return a tag."""

    @abstractmethod
    def link_journals_to_tag(self, tag_id: int, journal_ids: Sequence[int]) -> None:
        """Associate every journal with the tag, in the given order."""


class RuleSource(ABC):
    @abstractmethod
    def get_store_rules(self, user_id: int) -> list[Rule]:
        """Active rules triggered on journal store."""


class JobStatusSink(ABC):
    @abstractmethod
    def set_job_status(self, job_key: str, status: str) -> None:
        ...

    @abstractmethod
    def add_job_error(self, job_key: str, message: str) -> None:
        ...

    @abstractmethod
    def set_job_tag(self, job_key: str, tag_id: int) -> None:
        ...


class RuleEngine(ABC):
    @abstractmethod
    def handle_journal(self, rule: Rule, journal_id: int) -> bool:
        """Apply one rule to one journal. Returns True if its actions ran."""
