"""Tests for rule ordering, stop-processing and the bundled rule processor."""

from datetime import date
from unittest.mock import MagicMock

import pytest

from importstore.database.models import Account, Rule, RuleAction, RuleTrigger
from importstore.database.repository import Repository
from importstore.records import SplitRecord, TransactionRecord, TransactionType
from importstore.storage.rules import RuleApplicationStage, RuleProcessor, order_rules


def _rule(rule_id, group_order=0, order=0, stop=False, **kw) -> Rule:
    return Rule(
        id=rule_id, user_id=1, rule_group_id=group_order + 1,
        title=f"rule {rule_id}", order=order, group_order=group_order,
        stop_processing=stop, **kw,
    )


class TestOrdering:
    def test_orders_by_group_then_rule(self):
        rules = [_rule(1, 2, 0), _rule(2, 1, 5), _rule(3, 1, 1)]
        assert [r.id for r in order_rules(rules)] == [3, 2, 1]

    def test_stable_for_ties(self):
        rules = [_rule(1), _rule(2)]
        assert [r.id for r in order_rules(rules)] == [1, 2]


class TestRuleApplicationStage:
    def _stage(self, rules, fired=True):
        source = MagicMock()
        source.get_store_rules.return_value = rules
        engine = MagicMock()
        engine.handle_journal.return_value = fired
        return RuleApplicationStage(source, engine), engine

    def test_applies_every_rule_to_every_journal(self):
        stage, engine = self._stage([_rule(1), _rule(2, order=1)])
        assert stage.apply_rules(1, [10, 11]) == 4
        calls = [(c.args[0].id, c.args[1]) for c in engine.handle_journal.call_args_list]
        assert calls == [(1, 10), (2, 10), (1, 11), (2, 11)]

    def test_applies_in_priority_order(self):
        stage, engine = self._stage([_rule(1, group_order=2), _rule(2, group_order=1)])
        stage.apply_rules(1, [10])
        assert [c.args[0].id for c in engine.handle_journal.call_args_list] == [2, 1]

    def test_stop_processing_is_per_journal(self):
        stage, engine = self._stage([_rule(1, stop=True), _rule(2, order=1)])
        stage.apply_rules(1, [10, 11])
        calls = [(c.args[0].id, c.args[1]) for c in engine.handle_journal.call_args_list]
        assert calls == [(1, 10), (1, 11)]

    def test_stop_processing_applies_even_if_rule_did_not_fire(self):
        stage, engine = self._stage([_rule(1, stop=True), _rule(2, order=1)], fired=False)
        assert stage.apply_rules(1, [10]) == 0
        assert engine.handle_journal.call_count == 1

    def test_no_rules(self):
        stage, engine = self._stage([])
        assert stage.apply_rules(1, [10]) == 0
        engine.handle_journal.assert_not_called()


@pytest.fixture
def repo():
    r = Repository(":memory:")
    r.apply_migrations()
    yield r
    r.close()


@pytest.fixture
def journal_id(repo):
    checking = repo.insert_account(Account(user_id=1, name="Checking"))
    shop = repo.insert_account(Account(user_id=1, name="Shop", account_type="expense"))
    record = TransactionRecord(
        type=TransactionType.WITHDRAWAL, description="AMAZON MKTP", date="2024-01-01",
        splits=[SplitRecord(amount="-25.00", source_id=checking.id, destination_id=shop.id)],
    )
    return repo.create_journal(1, record, date(2024, 1, 1), "hash-1")


def _store_rule(triggers=(), actions=()) -> Rule:
    return Rule(
        id=1, user_id=1, rule_group_id=1, title="r",
        triggers=[RuleTrigger("user_action", "store-journal")] + list(triggers),
        actions=list(actions),
    )


class TestRuleProcessor:
    def test_set_description(self, repo, journal_id):
        rule = _store_rule(
            [RuleTrigger("description_contains", "amazon")],
            [RuleAction("set_description", "Amazon")],
        )
        assert RuleProcessor(repo).handle_journal(rule, journal_id) is True
        assert repo.get_journal(journal_id).description == "Amazon"

    def test_prepend_and_append_in_action_order(self, repo, journal_id):
        rule = _store_rule(actions=[
            RuleAction("append_description", "]", order=2),
            RuleAction("prepend_description", "[", order=1),
        ])
        RuleProcessor(repo).handle_journal(rule, journal_id)
        assert repo.get_journal(journal_id).description == "[AMAZON MKTP]"

    def test_add_tag(self, repo, journal_id):
        rule = _store_rule(actions=[RuleAction("add_tag", "shopping")])
        RuleProcessor(repo).handle_journal(rule, journal_id)
        assert repo.get_tag_names_for_journal(journal_id) == ["shopping"]

    def test_add_tag_reuses_existing_tag(self, repo, journal_id):
        rule = _store_rule(actions=[RuleAction("add_tag", "shopping")])
        RuleProcessor(repo).handle_journal(rule, journal_id)
        RuleProcessor(repo).handle_journal(rule, journal_id)
        assert len(repo.get_tags_for_user(1)) == 1

    @pytest.mark.parametrize("trigger,expected", [
        (RuleTrigger("description_is", "amazon mktp"), True),
        (RuleTrigger("description_is", "amazon"), False),
        (RuleTrigger("description_starts", "AMAZON"), True),
        (RuleTrigger("description_ends", "mktp"), True),
        (RuleTrigger("description_contains", "ebay"), False),
        (RuleTrigger("amount_exactly", "25"), True),
        (RuleTrigger("amount_less", "30"), True),
        (RuleTrigger("amount_more", "30"), False),
        (RuleTrigger("amount_more", "lots"), False),
        (RuleTrigger("from_account_is", "Checking"), False),
    ])
    def test_triggers(self, repo, journal_id, trigger, expected):
        rule = _store_rule([trigger], [RuleAction("set_description", "changed")])
        assert RuleProcessor(repo).handle_journal(rule, journal_id) is expected
        changed = repo.get_journal(journal_id).description == "changed"
        assert changed is expected

    def test_unknown_action_is_skipped(self, repo, journal_id):
        rule = _store_rule(actions=[
            RuleAction("convert_to_deposit", ""),
            RuleAction("set_description", "after"),
        ])
        assert RuleProcessor(repo).handle_journal(rule, journal_id) is True
        assert repo.get_journal(journal_id).description == "after"

    def test_missing_journal(self, repo):
        with pytest.raises(LookupError):
            RuleProcessor(repo).handle_journal(_store_rule(), 999)
