"""Dataclass models matching the SQLite schema.

Each dataclass corresponds to one table, except TransferSnapshotEntry,
which is a flattened read-only view of one leg of a transfer split.
Primary keys are INTEGER (SQLite rowids); import jobs are keyed by a
short random string.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal


JOB_STATUS_NEW = "new"
JOB_STATUS_ERROR = "error"


def _new_key() -> str:
    return secrets.token_hex(6)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Account:
    user_id: int
    name: str
    account_type: str = "asset"
    id: int | None = None


@dataclass
class Journal:
    user_id: int
    transaction_type: str
    description: str
    date: str
    id: int | None = None
    created_at: str = field(default_factory=_now)


@dataclass
class Split:
    journal_id: int
    amount: str
    source_id: int
    destination_id: int
    description: str | None = None
    id: int | None = None


@dataclass
class Tag:
    user_id: int
    tag: str
    date: str
    tag_mode: str = "nothing"
    id: int | None = None


@dataclass
class RuleTrigger:
    trigger_type: str
    trigger_value: str
    order: int = 0


@dataclass
class RuleAction:
    action_type: str
    action_value: str
    order: int = 0


@dataclass
class Rule:
    user_id: int
    rule_group_id: int
    title: str
    order: int = 0
    group_order: int = 0
    stop_processing: bool = False
    active: bool = True
    id: int | None = None
    triggers: list[RuleTrigger] = field(default_factory=list)
    actions: list[RuleAction] = field(default_factory=list)


@dataclass
class ImportJob:
    user_id: int
    key: str = field(default_factory=_new_key)
    status: str = JOB_STATUS_NEW
    configuration: dict = field(default_factory=dict)
    transactions: list[dict] = field(default_factory=list)
    tag_id: int | None = None
    created_at: str = field(default_factory=_now)


@dataclass(frozen=True)
class TransferSnapshotEntry:
    journal_id: int
    amount: Decimal        # sign-normalized, never negative
    description: str
    date: date
    account_id: int
    opposing_account_id: int
    account_name: str
    opposing_account_name: str
