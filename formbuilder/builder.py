import itertools
import logging
from datetime import datetime, timezone
from typing import List, Optional

from . import ordering, serializer
from .errors import ElementNotFound, RuleNotFound
from .rules import RuleGraph
from .schemas import (
    TYPE_SPECIFIC_MODELS,
    ConditionOperator,
    Element,
    ElementKind,
    Form,
    InteractionRule,
    RuleAction,
    ValidationRule,
    ValidationRuleKind,
    default_type_specific,
)

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


class FormBuilder:
    def __init__(self, form: Optional[Form] = None, rules: Optional[List[InteractionRule]] = None):
        self.form = form or Form(created_date=_now(), updated_date=_now())
        self.graph = RuleGraph(rules)
        self._ids = itertools.count(self._next_free_id())

    def _next_free_id(self) -> int:
        used = [0]
        for element in self.form.elements:
            used.append(element.element_id)
            used.extend(r.validation_rule_id for r in element.validation_rules)
        used.extend(r.interaction_rule_id for r in self.graph)
        return max(used) + 1

    def _new_id(self) -> int:
        return next(self._ids)

    def _touch(self):
        self.form.updated_date = _now()

    @property
    def rules(self) -> List[InteractionRule]:
        return self.graph.rules

    def sorted_elements(self) -> List[Element]:
        return ordering.sorted_elements(self.form.elements)

    def get_element(self, element_id: int) -> Element:
        element = self.form.get_element(element_id)
        if element is None:
            raise ElementNotFound(element_id)
        return element

    # elements

    def add_element(self, kind: ElementKind, index: Optional[int] = None,
                    label: Optional[str] = None, placeholder: Optional[str] = None) -> Element:
        kind = ElementKind(kind)
        element = Element(
            element_id=self._new_id(),
            form_id=self.form.form_id,
            kind=kind,
            label=label if label is not None else f'New {kind.name}',
            placeholder=placeholder if placeholder is not None else f'Enter {kind.name}',
            type_specific=default_type_specific(kind),
        )
        self.form.elements = ordering.insert_element(self.form.elements, element, index)
        self._touch()
        return self.get_element(element.element_id)

    def update_element(self, element_id: int, /, **changes) -> Element:
        element = self.get_element(element_id)
        changes.pop('element_id', None)
        changes.pop('order', None)
        data = element.model_dump()
        if 'kind' in changes and ElementKind(changes['kind']) != element.kind:
            changes['kind'] = ElementKind(changes['kind'])
            data['type_specific'] = None
        payload = changes.pop('type_specific', None)
        data.update(changes)
        if payload is not None:
            if not isinstance(payload, dict):
                payload = payload.model_dump()
            model = TYPE_SPECIFIC_MODELS[ElementKind(data['kind'])]
            names = {info.alias or name: name for name, info in model.model_fields.items()}
            payload = {names.get(k, k): v for k, v in payload.items()}
            data['type_specific'] = dict(data.get('type_specific') or {}, **payload)
        updated = Element.model_validate(data)
        self.form.elements = [updated if e.element_id == element_id else e for e in self.form.elements]
        self._touch()
        return updated

    def delete_element(self, element_id: int) -> List[InteractionRule]:
        """Remove an element and every interaction rule touching it."""
        self.get_element(element_id)
        self.form.elements = ordering.remove_element(self.form.elements, element_id)
        dropped = self.graph.remove_element(element_id)
        if dropped:
            logger.info('removed %s interaction rule(s) with deleted element %s', len(dropped), element_id)
        self._touch()
        return dropped

    def move_element(self, drag_index: int, hover_index: int):
        self.form.elements = ordering.move_element(self.form.elements, drag_index, hover_index)
        self._touch()

    # validation rules

    def add_validation_rule(self, element_id: int, kind: ValidationRuleKind,
                            error_message: str, value: str = '') -> ValidationRule:
        element = self.get_element(element_id)
        rule = ValidationRule(
            validation_rule_id=self._new_id(),
            element_id=element_id,
            kind=ValidationRuleKind(kind),
            value=value or '',
            error_message=error_message,
        )
        element.validation_rules.append(rule)
        self._touch()
        return rule

    def remove_validation_rule(self, element_id: int, rule_id: int) -> bool:
        element = self.get_element(element_id)
        before = len(element.validation_rules)
        element.validation_rules = [r for r in element.validation_rules if r.validation_rule_id != rule_id]
        self._touch()
        return len(element.validation_rules) != before

    # interaction rules

    def add_interaction_rule(self, source_element_id: int, target_element_id: int,
                             operator: ConditionOperator, action: RuleAction,
                             condition_value: str = '') -> InteractionRule:
        rule = InteractionRule(
            interaction_rule_id=self._new_id(),
            source_element_id=source_element_id,
            target_element_id=target_element_id,
            operator=ConditionOperator(operator),
            condition_value=condition_value or '',
            action=RuleAction(action),
        )
        self.graph.add(rule, self.form.element_ids())
        return rule

    def update_interaction_rule(self, rule: InteractionRule) -> InteractionRule:
        return self.graph.replace(rule, self.form.element_ids())

    def remove_interaction_rule(self, rule_id: int):
        if not self.graph.remove(rule_id):
            raise RuleNotFound(rule_id)

    def prune_orphaned_rules(self) -> List[InteractionRule]:
        return self.graph.prune(self.form.element_ids())

    # import / export

    def export_json(self) -> str:
        return serializer.to_json(self.form, self.rules)

    def export_portable(self) -> dict:
        return serializer.to_portable(self.form, self.rules)

    def import_json(self, document, dedupe: Optional[bool] = None) -> serializer.ImportResult:
        """Replace the edited form with an imported one.

        On failure the builder keeps its current form and rules.
        """
        result = serializer.from_portable(document, dedupe=dedupe)
        if not result.ok:
            return result
        self.form = result.form
        self.graph = RuleGraph(result.rules)
        self._ids = itertools.count(self._next_free_id())
        return result

