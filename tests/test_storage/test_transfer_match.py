"""Tests for the fuzzy transfer duplicate matcher."""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from importstore.database.models import TransferSnapshotEntry
from importstore.records import SplitRecord, TransactionRecord, TransactionType
from importstore.storage.transfer_match import (
    TransferMatcher,
    TransferSnapshot,
    has_transfers,
    score_split,
)


def _split(**kw) -> SplitRecord:
    defaults = dict(
        amount="50.00", source_id=3, destination_id=7,
        source_name="Checking", destination_name="Savings",
    )
    defaults.update(kw)
    return SplitRecord(**defaults)


def _transfer(splits=None, **kw) -> TransactionRecord:
    defaults = dict(
        type=TransactionType.TRANSFER,
        description="Rent",
        date="2024-02-01",
        splits=splits or [_split()],
    )
    defaults.update(kw)
    return TransactionRecord(**defaults)


def _entry(**kw) -> TransferSnapshotEntry:
    defaults = dict(
        journal_id=11, amount=Decimal("50.00"), description="Rent",
        date=date(2024, 2, 1), account_id=7, opposing_account_id=3,
        account_name="Savings", opposing_account_name="Checking",
    )
    defaults.update(kw)
    return TransferSnapshotEntry(**defaults)


def _matcher(*entries, hits_per_split=4) -> TransferMatcher:
    return TransferMatcher(TransferSnapshot(entries), hits_per_split=hits_per_split)


class TestScoreSplit:
    def test_full_match_scores_five(self):
        record = _transfer()
        assert score_split(record, record.splits[0], _entry()) == 5

    def test_negative_amount_is_normalized(self):
        record = _transfer(splits=[_split(amount="-50.00")])
        assert score_split(record, record.splits[0], _entry(description="x")) == 4

    def test_amount_equality_is_numeric(self):
        record = _transfer(splits=[_split(amount="50")])
        assert score_split(record, record.splits[0], _entry()) == 5

    def test_amount_has_no_tolerance(self):
        record = _transfer(splits=[_split(amount="50.01")])
        assert score_split(record, record.splits[0], _entry()) == 4

    def test_split_description_overrides_record_description(self):
        record = _transfer(splits=[_split(description="Monthly rent")])
        assert score_split(record, record.splits[0], _entry()) == 4
        assert score_split(
            record, record.splits[0], _entry(description="Monthly rent")
        ) == 5

    def test_empty_split_description_falls_back(self):
        record = _transfer(splits=[_split(description="")])
        assert score_split(record, record.splits[0], _entry()) == 5

    def test_date_mismatch(self):
        record = _transfer(date="2024-02-02")
        assert score_split(record, record.splits[0], _entry()) == 4

    def test_id_pair_and_name_pair_score_independently(self):
        record = _transfer()
        renamed = _entry(opposing_account_name="Old checking")
        assert score_split(record, record.splits[0], renamed) == 4
        moved = _entry(account_id=8)
        assert score_split(record, record.splits[0], moved) == 4
        both = _entry(account_id=8, opposing_account_name="Old checking")
        assert score_split(record, record.splits[0], both) == 3

    def test_nothing_matches(self):
        record = _transfer()
        other = _entry(
            amount=Decimal("1"), description="Other", date=date(2020, 1, 1),
            account_id=1, opposing_account_id=2,
            account_name="A", opposing_account_name="B",
        )
        assert score_split(record, record.splits[0], other) == 0


class TestTransferMatcher:
    def test_identical_transfer_with_swapped_accounts_is_duplicate(self):
        # amount, description, date and the sorted account pair {3,7} all match
        entry = _entry(account_name="X", opposing_account_name="Y")
        assert _matcher(entry).is_duplicate_transfer(_transfer()) is True

    def test_one_below_threshold_is_not_duplicate(self):
        # amount + description + date = 3, one short of 4
        entry = _entry(account_id=1, opposing_account_id=2,
                       account_name="X", opposing_account_name="Y")
        assert _matcher(entry).is_duplicate_transfer(_transfer()) is False

    def test_exactly_threshold_is_duplicate(self):
        entry = _entry(account_id=1, opposing_account_id=2)
        assert _matcher(entry).is_duplicate_transfer(_transfer()) is True

    def test_points_accumulate_across_entries(self):
        # partial scores from different legs add up to the threshold
        a = _entry(description="a", date=date(2020, 1, 1),
                   account_id=1, opposing_account_id=2)
        b = _entry(journal_id=12, amount=Decimal("1"), date=date(2020, 1, 1),
                   account_id=1, opposing_account_id=2,
                   account_name="X", opposing_account_name="Y")
        assert score_split(_transfer(), _split(), a) == 2
        assert score_split(_transfer(), _split(), b) == 1
        assert _matcher(a, b).is_duplicate_transfer(_transfer()) is False
        assert _matcher(a, b, a).is_duplicate_transfer(_transfer()) is True

    def test_amount_only_legs_add_up(self):
        # each stored transfer contributes two legs that only share the amount
        def legs(journal_id):
            other = dict(journal_id=journal_id, description="Other",
                         date=date(2020, 1, 1), account_name="A",
                         opposing_account_name="B")
            return [
                _entry(account_id=1, opposing_account_id=2, **other),
                _entry(account_id=2, opposing_account_id=1, **other),
            ]

        assert score_split(_transfer(), _split(), legs(20)[0]) == 1
        assert _matcher(*legs(20)).is_duplicate_transfer(_transfer()) is False
        assert _matcher(*legs(20), *legs(21)).is_duplicate_transfer(_transfer()) is True

    def test_required_hits_scale_with_splits(self):
        record = _transfer(splits=[_split(), _split(amount="20.00")])
        matcher = _matcher(_entry(account_id=1, opposing_account_id=2,
                                  account_name="X", opposing_account_name="Y"))
        assert matcher.required_hits(record) == 8
        # first split scores 3, second split scores 2 (description + date)
        assert matcher.is_duplicate_transfer(record) is False

    def test_multi_split_reaches_threshold(self):
        record = _transfer(splits=[_split(), _split(amount="20.00")])
        second = _entry(journal_id=12, amount=Decimal("20.00"))
        assert _matcher(_entry(), second).is_duplicate_transfer(record) is True

    def test_custom_hits_per_split(self):
        entry = _entry(account_id=1, opposing_account_id=2)
        assert _matcher(entry, hits_per_split=5).is_duplicate_transfer(_transfer()) is False

    def test_empty_snapshot_never_matches(self):
        assert _matcher().is_duplicate_transfer(_transfer()) is False

    @pytest.mark.parametrize("txn_type", [
        TransactionType.WITHDRAWAL,
        TransactionType.DEPOSIT,
        TransactionType.OPENING_BALANCE,
        TransactionType.RECONCILIATION,
    ])
    def test_non_transfer_never_consults_snapshot(self, txn_type):
        snapshot = MagicMock()
        matcher = TransferMatcher(snapshot)
        assert matcher.is_duplicate_transfer(_transfer(type=txn_type)) is False
        snapshot.__iter__.assert_not_called()

    def test_short_circuits_once_threshold_is_reached(self):
        entries = [_entry(), _entry(journal_id=12)]
        seen = []

        class Recording(TransferSnapshot):
            def __iter__(self):
                for e in entries:
                    seen.append(e.journal_id)
                    yield e

        matcher = TransferMatcher(Recording(entries))
        assert matcher.is_duplicate_transfer(_transfer()) is True
        assert seen == [11]


class TestSnapshot:
    def test_load_calls_source_once(self):
        source = MagicMock()
        source.get_transfer_snapshot.return_value = [_entry()]
        snapshot = TransferSnapshot.load(source, user_id=5)
        source.get_transfer_snapshot.assert_called_once_with(5)
        assert len(snapshot) == 1

    def test_has_transfers(self):
        withdrawal = _transfer(type=TransactionType.WITHDRAWAL)
        assert has_transfers([withdrawal]) is False
        assert has_transfers([withdrawal, _transfer()]) is True
        assert has_transfers([]) is False
