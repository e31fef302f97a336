"""Import records: the in-memory shape of one decoded importer entry.

Also holds the content hasher used for exact-duplicate detection.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum

from importstore.storage.errors import FingerprintEncodingError


class TransactionType(str, Enum):
    WITHDRAWAL = "withdrawal"
    DEPOSIT = "deposit"
    TRANSFER = "transfer"
    OPENING_BALANCE = "opening-balance"
    RECONCILIATION = "reconciliation"


@dataclass
class SplitRecord:
    """One leg of an imported transaction."""
    amount: str            # signed decimal string, e.g. "-42.50"
    source_id: int
    destination_id: int
    source_name: str = ""
    destination_name: str = ""
    description: str | None = None

    @property
    def decimal_amount(self) -> Decimal:
        return Decimal(self.amount)


@dataclass
class TransactionRecord:
    """Untrusted transaction produced by an upstream importer."""
    type: TransactionType
    description: str
    date: str              # YYYY-MM-DD
    splits: list[SplitRecord] = field(default_factory=list)

    @property
    def is_transfer(self) -> bool:
        return self.type == TransactionType.TRANSFER

    def to_dict(self) -> dict:
        """Canonical mapping, fields in declared order, splits in given order."""
        return {
            "type": self.type.value,
            "description": self.description,
            "date": self.date,
            "transactions": [
                {
                    "amount": s.amount,
                    "description": s.description,
                    "source_id": s.source_id,
                    "destination_id": s.destination_id,
                    "source_name": s.source_name,
                    "destination_name": s.destination_name,
                }
                for s in self.splits
            ],
        }


def record_from_dict(data: dict) -> TransactionRecord:
    """Build a TransactionRecord from an importer mapping.

    Accepts splits under either "transactions" (importer array format) or
    "splits". Raises ValueError on anything that would break dedup or commit.
    """
    try:
        txn_type = TransactionType(str(data["type"]).lower())
    except KeyError:
        raise ValueError("Record has no 'type'") from None
    except ValueError:
        raise ValueError(f"Unknown transaction type: {data['type']!r}") from None

    raw_splits = data.get("transactions", data.get("splits"))
    if not raw_splits:
        raise ValueError("Record must have at least one split")

    splits = []
    for i, raw in enumerate(raw_splits):
        try:
            amount = str(raw["amount"])
            if not Decimal(amount).is_finite():
                raise ValueError(f"amount must be a finite decimal, got {amount!r}")
            split = SplitRecord(
                amount=amount,
                source_id=int(raw["source_id"]),
                destination_id=int(raw["destination_id"]),
                source_name=str(raw.get("source_name") or ""),
                destination_name=str(raw.get("destination_name") or ""),
                description=raw.get("description"),
            )
        except KeyError as e:
            raise ValueError(f"Split {i} is missing {e.args[0]!r}") from None
        except (InvalidOperation, TypeError, ValueError) as e:
            raise ValueError(f"Split {i} is invalid: {e}") from e
        splits.append(split)

    return TransactionRecord(
        type=txn_type,
        description=str(data.get("description") or ""),
        date=str(data.get("date", "")),
        splits=splits,
    )


def canonical_encoding(record: TransactionRecord) -> str:
    """JSON encoding of the whole record. Raises TypeError/ValueError."""
    return json.dumps(
        record.to_dict(),
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    )


def compute_fingerprint(record: TransactionRecord) -> str:
    """SHA256 of the canonical encoding (stored as importHashV2)."""
    try:
        encoded = canonical_encoding(record)
    except (TypeError, ValueError) as e:
        raise FingerprintEncodingError(record, str(e)) from e
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def parse_record_date(value: str) -> date:
    """Parse a YYYY-MM-DD record date into a calendar date."""
    return datetime.strptime(value, "%Y-%m-%d").date()
