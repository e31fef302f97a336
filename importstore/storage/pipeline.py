"""Import storage pipeline: dedup, commit, tag, apply rules.

Stages (in order, each reported through the job status sink):
1. Filter duplicates: exact fingerprint matches, then fuzzy transfer
   matches (only when the batch holds at least one transfer)
2. Commit survivors: one journal per record, in batch order
3. Link to tag: one tag per job, linked to every committed journal
4. Apply rules: only when the job's configuration enables it

Duplicates are skipped and reported as job error messages; they never
abort the batch. Encoding, commit and tagging failures do.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

from importstore.config import (
    DEFAULT_HITS_PER_SPLIT,
    DEFAULT_TAG_LABEL,
    DEFAULT_TAG_MODE,
    BatchConfig,
)
from importstore.database.models import ImportJob, Tag
from importstore.records import TransactionRecord, parse_record_date
from importstore.storage.dedup import DuplicateReason, DuplicateReport, ExactDuplicateIndex
from importstore.storage.errors import CommitError
from importstore.storage.interfaces import (
    FingerprintIndex,
    JobStatusSink,
    LedgerStore,
    RuleEngine,
    RuleSource,
    TagStore,
    TransferSource,
)
from importstore.storage.rules import RuleApplicationStage
from importstore.storage.tagging import TaggingStage
from importstore.storage.transfer_match import TransferMatcher, TransferSnapshot, has_transfers

logger = logging.getLogger(__name__)


class BatchStatus(str, Enum):
    STORING_DATA = "storing_data"
    STORED_DATA = "stored_data"
    LINKING_TO_TAG = "linking_to_tag"
    LINKED_TO_TAG = "linked_to_tag"
    APPLYING_RULES = "applying_rules"
    RULES_APPLIED = "rules_applied"


@dataclass
class CommitResult:
    """Journals committed by one store() call, in commit order."""
    journal_ids: list[int] = field(default_factory=list)
    duplicates: list[DuplicateReport] = field(default_factory=list)
    tag: Tag | None = None
    rules_fired: int = 0

    def __len__(self) -> int:
        return len(self.journal_ids)

    def __iter__(self):
        return iter(self.journal_ids)


@dataclass
class FilteredBatch:
    """Records that survived dedup, each with its batch index and fingerprint."""
    survivors: list[tuple[int, TransactionRecord, str]]
    duplicates: list[DuplicateReport]
    has_transfers: bool


class ImportStorage:
    """Store one import job's batch of records as journals."""

    def __init__(
        self,
        ledger: LedgerStore,
        fingerprints: FingerprintIndex,
        transfers: TransferSource,
        tags: TagStore,
        rules: RuleSource,
        jobs: JobStatusSink,
        rule_engine: RuleEngine | None = None,
        hits_per_split: int = DEFAULT_HITS_PER_SPLIT,
        tag_label: str = DEFAULT_TAG_LABEL,
        tag_mode: str = DEFAULT_TAG_MODE,
    ):
        self.ledger = ledger
        self.fingerprints = fingerprints
        self.transfers = transfers
        self.jobs = jobs
        self.hits_per_split = hits_per_split
        self.tagging = TaggingStage(tags, jobs, label_template=tag_label, tag_mode=tag_mode)
        self.rule_stage = (
            RuleApplicationStage(rules, rule_engine) if rule_engine is not None else None
        )

    def store(
        self,
        job: ImportJob,
        batch: Sequence[TransactionRecord],
        config: BatchConfig | None = None,
    ) -> CommitResult:
        """Run the whole pipeline for one job. Not resumable."""
        config = config or BatchConfig()
        if config.apply_rules and self.rule_stage is None:
            raise ValueError("apply_rules is enabled but no rule engine was given")

        self._set_status(job, BatchStatus.STORING_DATA)
        filtered = self.filter_duplicates(job, batch)
        if not filtered.survivors:
            logger.info("No transactions to store left!")
            self._set_status(job, BatchStatus.STORED_DATA)
            return CommitResult(duplicates=filtered.duplicates)

        result = CommitResult(duplicates=filtered.duplicates)
        result.journal_ids = self.commit(job, filtered.survivors)
        self._set_status(job, BatchStatus.STORED_DATA)

        self._set_status(job, BatchStatus.LINKING_TO_TAG)
        result.tag = self.tagging.link_to_tag(job.user_id, job.key, result.journal_ids)
        self._set_status(job, BatchStatus.LINKED_TO_TAG)

        if config.apply_rules:
            self._set_status(job, BatchStatus.APPLYING_RULES)
            result.rules_fired = self.rule_stage.apply_rules(job.user_id, result.journal_ids)
            self._set_status(job, BatchStatus.RULES_APPLIED)

        logger.info(
            "Import job %s: stored %d journals, skipped %d duplicates",
            job.key, len(result.journal_ids), len(result.duplicates),
        )
        return result

    def filter_duplicates(
        self, job: ImportJob, batch: Sequence[TransactionRecord]
    ) -> FilteredBatch:
        """Drop exact repeats and, if the batch has transfers, fuzzy transfer repeats."""
        index = ExactDuplicateIndex(self.fingerprints, job.user_id)
        check_transfers = has_transfers(batch)
        matcher = None
        if check_transfers:
            snapshot = TransferSnapshot.load(self.transfers, job.user_id)
            matcher = TransferMatcher(snapshot, self.hits_per_split)

        count = len(batch)
        logger.debug("Now in store(). Count of items is %d", count)
        survivors: list[tuple[int, TransactionRecord, str]] = []
        duplicates: list[DuplicateReport] = []

        for i, record in enumerate(batch):
            logger.debug("Now at item %d out of %d", i + 1, count)
            import_hash = index.fingerprint(record)

            existing_id = index.lookup(import_hash)
            if existing_id is not None:
                report = DuplicateReport.for_record(
                    i, record, DuplicateReason.EXACT, existing_journal_id=existing_id
                )
                logger.info(
                    "Transaction is a duplicate, and will not be imported (the hash exists)."
                    " existing=%d description=%s amount=%s date=%s",
                    existing_id, report.description, report.amount, report.date,
                )
                self._report(job, report, duplicates)
                continue

            if matcher is not None and matcher.is_duplicate_transfer(record):
                report = DuplicateReport.for_record(i, record, DuplicateReason.FUZZY_TRANSFER)
                logger.info(
                    "Transaction is a duplicate transfer, and will not be imported."
                    " description=%s amount=%s date=%s",
                    report.description, report.amount, report.date,
                )
                self._report(job, report, duplicates)
                continue

            survivors.append((i, record, import_hash))

        return FilteredBatch(
            survivors=survivors, duplicates=duplicates, has_transfers=check_transfers
        )

    def commit(
        self, job: ImportJob, survivors: Sequence[tuple[int, TransactionRecord, str]]
    ) -> list[int]:
        """Commit survivors one at a time. Any rejection aborts the call."""
        logger.debug("Going to store...")
        journal_ids: list[int] = []
        for i, record, import_hash in survivors:
            try:
                journal_date = parse_record_date(record.date)
                journal_id = self.ledger.create_journal(
                    job.user_id, record, journal_date, import_hash
                )
            except Exception as e:
                raise CommitError(i, record.description, str(e)) from e
            journal_ids.append(journal_id)
        logger.debug("DONE storing!")
        return journal_ids

    def _report(
        self, job: ImportJob, report: DuplicateReport, duplicates: list[DuplicateReport]
    ) -> None:
        duplicates.append(report)
        self.jobs.add_job_error(job.key, report.message)

    def _set_status(self, job: ImportJob, status: BatchStatus) -> None:
        job.status = status.value
        self.jobs.set_job_status(job.key, status.value)
