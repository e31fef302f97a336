"""Repository: CRUD operations against SQLite using raw SQL.

Implements every collaborator the import storage pipeline consumes
(ledger store, fingerprint index, transfer source, tag store, rule source
and job status sink). Amounts are stored as TEXT decimal strings.
Connection management uses a single connection with WAL mode and
foreign keys enabled.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Sequence

from importstore.records import TransactionRecord, parse_record_date
from importstore.storage.interfaces import (
    IMPORT_HASH_META,
    FingerprintIndex,
    JobStatusSink,
    LedgerStore,
    RuleSource,
    TagStore,
    TransferSource,
)

from .models import (
    Account,
    ImportJob,
    Journal,
    Rule,
    RuleAction,
    RuleTrigger,
    Split,
    Tag,
    TransferSnapshotEntry,
    _now,
)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

STORE_TRIGGER_TYPE = "user_action"
STORE_TRIGGER_VALUE = "store-journal"


class Repository(
    LedgerStore, FingerprintIndex, TransferSource, TagStore, RuleSource, JobStatusSink
):
    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
        return self._conn

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ── Migrations ──────────────────────────────────────────

    def apply_migrations(self, migrations_dir: Path = MIGRATIONS_DIR):
        """Apply all pending SQL migrations in order.

        Each migration runs in a transaction: if the SQL fails, the
        schema_version row is not inserted, allowing retry on next startup.
        """
        self.conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_version ("
            "  version INTEGER PRIMARY KEY,"
            "  description TEXT,"
            "  applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP"
            ")"
        )
        self.conn.commit()

        row = self.conn.execute(
            "SELECT MAX(version) FROM schema_version"
        ).fetchone()
        current = row[0] or 0

        for sql_file in sorted(migrations_dir.glob("*.sql")):
            version = int(sql_file.name.split("_")[0])
            if version > current:
                try:
                    self.conn.execute("BEGIN")
                    # executescript auto-commits, so we split statements manually
                    for statement in sql_file.read_text().split(";"):
                        statement = statement.strip()
                        if statement:
                            self.conn.execute(statement)
                    self.conn.execute(
                        "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                        (version, sql_file.stem),
                    )
                    self.conn.commit()
                except Exception:
                    self.conn.rollback()
                    raise

    # ── Accounts ────────────────────────────────────────────

    def insert_account(self, account: Account) -> Account:
        cur = self.conn.execute(
            "INSERT INTO accounts (user_id, name, account_type) VALUES (?, ?, ?)",
            (account.user_id, account.name, account.account_type),
        )
        self.conn.commit()
        account.id = cur.lastrowid
        return account

    def get_account(self, account_id: int) -> Account | None:
        row = self.conn.execute(
            "SELECT * FROM accounts WHERE id = ?", (account_id,)
        ).fetchone()
        if row is None:
            return None
        return Account(
            id=row["id"], user_id=row["user_id"],
            name=row["name"], account_type=row["account_type"],
        )

    # ── Journals (ledger store) ─────────────────────────────

    def create_journal(
        self,
        user_id: int,
        record: TransactionRecord,
        journal_date: date,
        import_hash: str,
    ) -> int:
        """Insert journal, splits and import hash atomically."""
        try:
            self.conn.execute("BEGIN")
            cur = self.conn.execute(
                "INSERT INTO journals"
                " (user_id, transaction_type, description, date, created_at)"
                " VALUES (?, ?, ?, ?, ?)",
                (user_id, record.type.value, record.description,
                 journal_date.isoformat(), _now()),
            )
            journal_id = cur.lastrowid
            self.conn.executemany(
                "INSERT INTO splits"
                " (journal_id, amount, description, source_id, destination_id)"
                " VALUES (?, ?, ?, ?, ?)",
                [
                    (journal_id, s.amount, s.description, s.source_id, s.destination_id)
                    for s in record.splits
                ],
            )
            self.conn.execute(
                "INSERT INTO journal_meta (journal_id, name, data) VALUES (?, ?, ?)",
                (journal_id, IMPORT_HASH_META, import_hash),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return journal_id

    def get_journal(self, journal_id: int) -> Journal | None:
        row = self.conn.execute(
            "SELECT * FROM journals WHERE id = ?", (journal_id,)
        ).fetchone()
        return self._row_to_journal(row) if row else None

    def get_journals_for_user(self, user_id: int) -> list[Journal]:
        rows = self.conn.execute(
            "SELECT * FROM journals WHERE user_id = ? ORDER BY id", (user_id,)
        ).fetchall()
        return [self._row_to_journal(r) for r in rows]

    def get_splits(self, journal_id: int) -> list[Split]:
        rows = self.conn.execute(
            "SELECT * FROM splits WHERE journal_id = ? ORDER BY id", (journal_id,)
        ).fetchall()
        return [
            Split(
                id=r["id"], journal_id=r["journal_id"], amount=r["amount"],
                description=r["description"], source_id=r["source_id"],
                destination_id=r["destination_id"],
            )
            for r in rows
        ]

    def update_journal_description(self, journal_id: int, description: str) -> None:
        self.conn.execute(
            "UPDATE journals SET description = ? WHERE id = ?",
            (description, journal_id),
        )
        self.conn.commit()

    # ── Fingerprint index ───────────────────────────────────

    def find_journal_by_import_hash(self, user_id: int, import_hash: str) -> int | None:
        row = self.conn.execute(
            "SELECT m.journal_id FROM journal_meta m"
            " JOIN journals j ON j.id = m.journal_id"
            " WHERE m.name = ? AND m.data = ? AND j.user_id = ?"
            " ORDER BY m.journal_id LIMIT 1",
            (IMPORT_HASH_META, import_hash, user_id),
        ).fetchone()
        return int(row["journal_id"]) if row else None

    # ── Transfer snapshot ───────────────────────────────────

    def get_transfer_snapshot(self, user_id: int) -> list[TransferSnapshotEntry]:
        """Both legs of every transfer split, seen from each asset account."""
        rows = self.conn.execute(
            "SELECT j.id AS journal_id, j.description AS journal_description,"
            "  j.date, s.amount, s.description AS split_description,"
            "  src.id AS source_id, src.name AS source_name,"
            "  src.account_type AS source_type,"
            "  dst.id AS destination_id, dst.name AS destination_name,"
            "  dst.account_type AS destination_type"
            " FROM journals j"
            " JOIN splits s ON s.journal_id = j.id"
            " JOIN accounts src ON src.id = s.source_id"
            " JOIN accounts dst ON dst.id = s.destination_id"
            " WHERE j.user_id = ? AND j.transaction_type = 'transfer'"
            " ORDER BY j.id, s.id",
            (user_id,),
        ).fetchall()
        entries: list[TransferSnapshotEntry] = []
        for r in rows:
            amount = abs(Decimal(r["amount"]))
            description = r["split_description"] or r["journal_description"]
            journal_date = parse_record_date(r["date"])
            legs = (
                (r["source_id"], r["source_name"], r["source_type"],
                 r["destination_id"], r["destination_name"]),
                (r["destination_id"], r["destination_name"], r["destination_type"],
                 r["source_id"], r["source_name"]),
            )
            for acct_id, acct_name, acct_type, opp_id, opp_name in legs:
                if acct_type != "asset":
                    continue
                entries.append(TransferSnapshotEntry(
                    journal_id=r["journal_id"], amount=amount,
                    description=description, date=journal_date,
                    account_id=acct_id, opposing_account_id=opp_id,
                    account_name=acct_name, opposing_account_name=opp_name,
                ))
        return entries

    # ── Tags ────────────────────────────────────────────────

    def create_tag(self, user_id: int, tag: str, tag_date: date, tag_mode: str) -> Tag:
        cur = self.conn.execute(
            "INSERT INTO tags (user_id, tag, date, tag_mode) VALUES (?, ?, ?, ?)",
            (user_id, tag, tag_date.isoformat(), tag_mode),
        )
        self.conn.commit()
        return Tag(id=cur.lastrowid, user_id=user_id, tag=tag,
                   date=tag_date.isoformat(), tag_mode=tag_mode)

    def find_or_create_tag(self, user_id: int, tag: str, tag_date: date) -> Tag:
        row = self.conn.execute(
            "SELECT * FROM tags WHERE user_id = ? AND tag = ? ORDER BY id LIMIT 1",
            (user_id, tag),
        ).fetchone()
        if row is not None:
            return self._row_to_tag(row)
        return self.create_tag(user_id, tag, tag_date, "nothing")

    def link_journals_to_tag(self, tag_id: int, journal_ids: Sequence[int]) -> None:
        """Insert tag links atomically."""
        try:
            self.conn.execute("BEGIN")
            self.conn.executemany(
                "INSERT OR IGNORE INTO tag_journal (tag_id, journal_id) VALUES (?, ?)",
                [(tag_id, j) for j in journal_ids],
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def get_tag(self, tag_id: int) -> Tag | None:
        row = self.conn.execute(
            "SELECT * FROM tags WHERE id = ?", (tag_id,)
        ).fetchone()
        return self._row_to_tag(row) if row else None

    def get_tags_for_user(self, user_id: int) -> list[Tag]:
        rows = self.conn.execute(
            "SELECT * FROM tags WHERE user_id = ? ORDER BY id", (user_id,)
        ).fetchall()
        return [self._row_to_tag(r) for r in rows]

    def get_journal_ids_for_tag(self, tag_id: int) -> list[int]:
        rows = self.conn.execute(
            "SELECT journal_id FROM tag_journal WHERE tag_id = ? ORDER BY rowid",
            (tag_id,),
        ).fetchall()
        return [r["journal_id"] for r in rows]

    def get_tag_names_for_journal(self, journal_id: int) -> list[str]:
        rows = self.conn.execute(
            "SELECT t.tag FROM tags t JOIN tag_journal tj ON tj.tag_id = t.id"
            " WHERE tj.journal_id = ? ORDER BY t.id",
            (journal_id,),
        ).fetchall()
        return [r["tag"] for r in rows]

    # ── Rules ───────────────────────────────────────────────

    def insert_rule_group(
        self, user_id: int, title: str, order: int = 0, active: bool = True
    ) -> int:
        cur = self.conn.execute(
            'INSERT INTO rule_groups (user_id, title, "order", active) VALUES (?, ?, ?, ?)',
            (user_id, title, order, int(active)),
        )
        self.conn.commit()
        return cur.lastrowid

    def insert_rule(self, rule: Rule) -> Rule:
        """Insert a rule with its triggers and actions atomically."""
        try:
            self.conn.execute("BEGIN")
            cur = self.conn.execute(
                "INSERT INTO rules"
                ' (user_id, rule_group_id, title, "order", active, stop_processing)'
                " VALUES (?, ?, ?, ?, ?, ?)",
                (rule.user_id, rule.rule_group_id, rule.title, rule.order,
                 int(rule.active), int(rule.stop_processing)),
            )
            rule.id = cur.lastrowid
            self.conn.executemany(
                'INSERT INTO rule_triggers (rule_id, trigger_type, trigger_value, "order")'
                " VALUES (?, ?, ?, ?)",
                [(rule.id, t.trigger_type, t.trigger_value, t.order) for t in rule.triggers],
            )
            self.conn.executemany(
                'INSERT INTO rule_actions (rule_id, action_type, action_value, "order")'
                " VALUES (?, ?, ?, ?)",
                [(rule.id, a.action_type, a.action_value, a.order) for a in rule.actions],
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return rule

    def get_store_rules(self, user_id: int) -> list[Rule]:
        """Active rules in active groups that trigger on journal store.

        Ordered by group order, then rule order.
        """
        rows = self.conn.execute(
            'SELECT DISTINCT r.*, g."order" AS group_order FROM rules r'
            " JOIN rule_groups g ON g.id = r.rule_group_id"
            " JOIN rule_triggers t ON t.rule_id = r.id"
            " WHERE r.user_id = ? AND g.active = 1 AND r.active = 1"
            "   AND t.trigger_type = ? AND t.trigger_value = ?"
            ' ORDER BY g."order" ASC, r."order" ASC, r.id ASC',
            (user_id, STORE_TRIGGER_TYPE, STORE_TRIGGER_VALUE),
        ).fetchall()
        rules = [self._row_to_rule(r) for r in rows]
        for rule in rules:
            rule.triggers = [
                RuleTrigger(trigger_type=t["trigger_type"],
                            trigger_value=t["trigger_value"], order=t["order"])
                for t in self.conn.execute(
                    'SELECT * FROM rule_triggers WHERE rule_id = ? ORDER BY "order", id',
                    (rule.id,),
                ).fetchall()
            ]
            rule.actions = [
                RuleAction(action_type=a["action_type"],
                           action_value=a["action_value"], order=a["order"])
                for a in self.conn.execute(
                    'SELECT * FROM rule_actions WHERE rule_id = ? ORDER BY "order", id',
                    (rule.id,),
                ).fetchall()
            ]
        return rules

    # ── Import jobs (job status sink) ───────────────────────

    def insert_job(self, job: ImportJob) -> ImportJob:
        self.conn.execute(
            "INSERT INTO import_jobs"
            " (key, user_id, status, configuration, transactions, tag_id, created_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?)",
            (job.key, job.user_id, job.status, json.dumps(job.configuration),
             json.dumps(job.transactions), job.tag_id, job.created_at),
        )
        self.conn.commit()
        return job

    def get_job(self, job_key: str) -> ImportJob | None:
        row = self.conn.execute(
            "SELECT * FROM import_jobs WHERE key = ?", (job_key,)
        ).fetchone()
        return self._row_to_job(row) if row else None

    def set_job_status(self, job_key: str, status: str) -> None:
        self._update_job(job_key, "status", status)

    def set_job_tag(self, job_key: str, tag_id: int) -> None:
        self._update_job(job_key, "tag_id", tag_id)

    _JOB_UPDATE_COLS = frozenset({"status", "tag_id"})

    def _update_job(self, job_key: str, column: str, value) -> None:
        if column not in self._JOB_UPDATE_COLS:
            raise ValueError(f"Unknown column for import job update: {column}")
        cur = self.conn.execute(
            f"UPDATE import_jobs SET {column} = ? WHERE key = ?", (value, job_key)
        )
        self.conn.commit()
        if cur.rowcount == 0:
            raise KeyError(job_key)

    def add_job_error(self, job_key: str, message: str) -> None:
        self.conn.execute(
            "INSERT INTO import_job_errors (job_key, message) VALUES (?, ?)",
            (job_key, message),
        )
        self.conn.commit()

    def get_job_errors(self, job_key: str) -> list[str]:
        rows = self.conn.execute(
            "SELECT message FROM import_job_errors WHERE job_key = ? ORDER BY id",
            (job_key,),
        ).fetchall()
        return [r["message"] for r in rows]

    # ── Row Converters ──────────────────────────────────────

    @staticmethod
    def _row_to_journal(row: sqlite3.Row) -> Journal:
        return Journal(
            id=row["id"], user_id=row["user_id"],
            transaction_type=row["transaction_type"],
            description=row["description"], date=row["date"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_tag(row: sqlite3.Row) -> Tag:
        return Tag(
            id=row["id"], user_id=row["user_id"], tag=row["tag"],
            date=row["date"], tag_mode=row["tag_mode"],
        )

    @staticmethod
    def _row_to_rule(row: sqlite3.Row) -> Rule:
        return Rule(
            id=row["id"], user_id=row["user_id"],
            rule_group_id=row["rule_group_id"], title=row["title"],
            order=row["order"], group_order=row["group_order"],
            stop_processing=bool(row["stop_processing"]),
            active=bool(row["active"]),
        )

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> ImportJob:
        return ImportJob(
            key=row["key"], user_id=row["user_id"], status=row["status"],
            configuration=json.loads(row["configuration"]),
            transactions=json.loads(row["transactions"]),
            tag_id=row["tag_id"], created_at=row["created_at"],
        )
