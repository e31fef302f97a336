"""Apply the user's store-journal rules to freshly imported journals.

The stage owns ordering (group order, then rule order) and the per-journal
stop-processing short-circuit. Evaluating a rule against a journal is the
processor's job; RuleProcessor is a small SQLite-backed implementation.

Supported triggers (all must match; "user_action" is the store trigger
itself and always matches):
  description_is, description_contains, description_starts,
  description_ends, amount_exactly, amount_less, amount_more

Supported actions (run in action order):
  set_description, prepend_description, append_description, add_tag
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Sequence

from importstore.database.models import Rule, RuleAction, RuleTrigger
from importstore.storage.interfaces import RuleEngine, RuleSource

if TYPE_CHECKING:
    from importstore.database.repository import Repository

logger = logging.getLogger(__name__)


def order_rules(rules: Sequence[Rule]) -> list[Rule]:
    return sorted(rules, key=lambda r: (r.group_order, r.order))


class RuleApplicationStage:
    def __init__(self, rules: RuleSource, processor: RuleEngine):
        self.rules = rules
        self.processor = processor

    def apply_rules(self, user_id: int, journal_ids: Sequence[int]) -> int:
        """Run every store rule over every journal, in commit order.

        Returns the number of (rule, journal) applications where actions ran.
        Processor errors propagate; journals already committed stay committed.
        """
        rules = order_rules(self.rules.get_store_rules(user_id))
        logger.debug("Found %d user rules.", len(rules))
        if not rules:
            return 0

        fired = 0
        for journal_id in journal_ids:
            for rule in rules:
                logger.debug("Going to apply rule #%s to journal %d.", rule.id, journal_id)
                if self.processor.handle_journal(rule, journal_id):
                    fired += 1
                if rule.stop_processing:
                    logger.debug(
                        "Rule #%s stops processing for journal %d.", rule.id, journal_id
                    )
                    break
        return fired


class RuleProcessor(RuleEngine):
    """Evaluate triggers and run actions against journals in the Repository."""

    def __init__(self, repo: Repository):
        self.repo = repo

    def handle_journal(self, rule: Rule, journal_id: int) -> bool:
        journal = self.repo.get_journal(journal_id)
        if journal is None:
            raise LookupError(f"Journal {journal_id} not found")
        splits = self.repo.get_splits(journal_id)
        amount = sum((abs(Decimal(s.amount)) for s in splits), Decimal("0"))

        for trigger in rule.triggers:
            if not self._trigger_matches(trigger, journal.description, amount):
                return False

        for action in sorted(rule.actions, key=lambda a: a.order):
            self._run_action(action, journal.user_id, journal_id)
        return True

    def _trigger_matches(
        self, trigger: RuleTrigger, description: str, amount: Decimal
    ) -> bool:
        kind = trigger.trigger_type
        value = trigger.trigger_value
        desc = description.lower()
        needle = value.lower()

        if kind == "user_action":
            return True
        if kind == "description_is":
            return desc == needle
        if kind == "description_contains":
            return needle in desc
        if kind == "description_starts":
            return desc.startswith(needle)
        if kind == "description_ends":
            return desc.endswith(needle)
        if kind in ("amount_exactly", "amount_less", "amount_more"):
            try:
                limit = Decimal(value)
            except InvalidOperation:
                logger.warning("Rule trigger %s has a non-numeric value '%s'", kind, value)
                return False
            if kind == "amount_exactly":
                return amount == limit
            if kind == "amount_less":
                return amount < limit
            return amount > limit

        logger.warning("Unknown rule trigger type '%s'", kind)
        return False

    def _run_action(self, action: RuleAction, user_id: int, journal_id: int) -> None:
        kind = action.action_type
        value = action.action_value

        if kind == "add_tag":
            tag = self.repo.find_or_create_tag(user_id, value, date.today())
            self.repo.link_journals_to_tag(tag.id, [journal_id])
            return

        if kind in ("set_description", "prepend_description", "append_description"):
            journal = self.repo.get_journal(journal_id)
            if kind == "set_description":
                new = value
            elif kind == "prepend_description":
                new = value + journal.description
            else:
                new = journal.description + value
            self.repo.update_journal_description(journal_id, new)
            return

        logger.warning("Unknown rule action type '%s', skipped", kind)
