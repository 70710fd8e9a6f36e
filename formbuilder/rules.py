import logging
from typing import Dict, Iterable, List, Optional

from .errors import RuleConfigError, RuleNotFound
from .schemas import InteractionRule

logger = logging.getLogger(__name__)


def is_orphaned(rule: InteractionRule, element_ids) -> bool:
    return rule.source_element_id not in element_ids or rule.target_element_id not in element_ids


def is_self_referential(rule: InteractionRule) -> bool:
    return rule.source_element_id == rule.target_element_id


class RuleGraph:
    """Ordered set of interaction rules with source/target lookups.

    Declaration order is evaluation order, so rules are kept in a list and
    the indexes are rebuilt on every change.
    """

    def __init__(self, rules: Optional[Iterable[InteractionRule]] = None):
        self._rules: List[InteractionRule] = list(rules or [])
        self._reindex()

    def _reindex(self):
        self._by_source: Dict[int, List[InteractionRule]] = {}
        self._by_target: Dict[int, List[InteractionRule]] = {}
        for rule in self._rules:
            self._by_source.setdefault(rule.source_element_id, []).append(rule)
            self._by_target.setdefault(rule.target_element_id, []).append(rule)

    def __iter__(self):
        return iter(self._rules)

    def __len__(self):
        return len(self._rules)

    @property
    def rules(self) -> List[InteractionRule]:
        return list(self._rules)

    def get(self, rule_id: int) -> Optional[InteractionRule]:
        for rule in self._rules:
            if rule.interaction_rule_id == rule_id:
                return rule
        return None

    def rules_by_source(self, element_id: int) -> List[InteractionRule]:
        return list(self._by_source.get(element_id, []))

    def rules_by_target(self, element_id: int) -> List[InteractionRule]:
        return list(self._by_target.get(element_id, []))

    def add(self, rule: InteractionRule, element_ids=None) -> InteractionRule:
        if is_self_referential(rule):
            raise RuleConfigError(f'Element {rule.source_element_id} cannot target itself')
        if element_ids is not None and is_orphaned(rule, element_ids):
            raise RuleConfigError('Both rule endpoints must be elements of the form')
        if self.get(rule.interaction_rule_id) is not None:
            raise RuleConfigError(f'Interaction rule {rule.interaction_rule_id} already exists')
        self._rules.append(rule)
        self._reindex()
        return rule

    def replace(self, rule: InteractionRule, element_ids=None) -> InteractionRule:
        if is_self_referential(rule):
            raise RuleConfigError(f'Element {rule.source_element_id} cannot target itself')
        if element_ids is not None and is_orphaned(rule, element_ids):
            raise RuleConfigError('Both rule endpoints must be elements of the form')
        for idx, existing in enumerate(self._rules):
            if existing.interaction_rule_id == rule.interaction_rule_id:
                self._rules[idx] = rule
                self._reindex()
                return rule
        raise RuleNotFound(rule.interaction_rule_id)

    def remove(self, rule_id: int) -> bool:
        before = len(self._rules)
        self._rules = [r for r in self._rules if r.interaction_rule_id != rule_id]
        self._reindex()
        return len(self._rules) != before

    def remove_element(self, element_id: int) -> List[InteractionRule]:
        """Remove every rule touching ``element_id`` and return them."""
        dropped = [r for r in self._rules if element_id in (r.source_element_id, r.target_element_id)]
        if dropped:
            self._rules = [r for r in self._rules if r not in dropped]
            self._reindex()
        return dropped

    def prune(self, element_ids) -> List[InteractionRule]:
        """Drop orphaned and self-referential rules, returning what was removed."""
        dropped = [r for r in self._rules if is_orphaned(r, element_ids) or is_self_referential(r)]
        if dropped:
            for rule in dropped:
                logger.warning('pruning invalid interaction rule %s (%s -> %s)',
                               rule.interaction_rule_id, rule.source_element_id, rule.target_element_id)
            self._rules = [r for r in self._rules if r not in dropped]
            self._reindex()
        return dropped
