import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Set

from . import config
from .errors import (
    EvaluationWarning,
    MALFORMED_RULE_CONFIG,
    ORPHANED_RULE_REFERENCE,
    REENTRANCY_OVERRUN,
)
from .rules import is_self_referential
from .schemas import (
    BooleanInputData,
    ConditionOperator,
    Element,
    ElementKind,
    Form,
    InteractionRule,
    RuleAction,
)
from .validation import value_as_text

logger = logging.getLogger(__name__)

TRUE_INPUTS = ('true', '1')
FALSE_INPUTS = ('false', '0')


@dataclass
class ElementState:
    value: Any = None
    is_visible: bool = True
    is_enabled: bool = True


EvaluationState = Dict[int, ElementState]


@dataclass
class EvaluationResult:
    state: EvaluationState
    changed_values: Set[int] = field(default_factory=set)
    changed_flags: Set[int] = field(default_factory=set)
    warnings: List[EvaluationWarning] = field(default_factory=list)
    passes: int = 1


def initial_state(form: Form) -> EvaluationState:
    return {
        e.element_id: ElementState(value=e.default_value, is_visible=e.is_visible, is_enabled=e.is_enabled)
        for e in form.elements
    }


def normalize_boolean_value(value: Any, element: Element) -> Optional[str]:
    """Map a raw BooleanInput value onto the element's true/false strings."""
    data = element.type_specific
    true_value = data.true_value if isinstance(data, BooleanInputData) and data.true_value else 'true'
    false_value = data.false_value if isinstance(data, BooleanInputData) and data.false_value else 'false'

    if value is None:
        return None
    if isinstance(value, str) and value in (true_value, false_value):
        return value
    if isinstance(value, bool):
        return true_value if value else false_value
    if isinstance(value, (int, float)):
        if value == 1:
            return true_value
        if value == 0:
            return false_value
        return value_as_text(value)
    text = value_as_text(value)
    if text in TRUE_INPUTS:
        return true_value
    if text in FALSE_INPUTS:
        return false_value
    return text


def normalize_value(value: Any, element: Element) -> Optional[str]:
    if element.kind == ElementKind.BooleanInput:
        return normalize_boolean_value(value, element)
    if element.kind in (ElementKind.TextInput, ElementKind.ChoiceInput, ElementKind.DateInput):
        return None if value is None else value_as_text(value)
    raise ValueError(f'Unhandled element kind: {element.kind!r}')


def _as_number(text: Optional[str]) -> Optional[float]:
    if text is None:
        return None
    try:
        return float(text.strip())
    except ValueError:
        return None


def condition_holds(operator: ConditionOperator, source: Optional[str], condition: Optional[str],
                    rule_id: Optional[int] = None) -> bool:
    """Test ``operator`` against normalized source and condition values.

    Never raises for bad data: an unparsable number makes the predicate false.
    """
    if operator == ConditionOperator.Equals:
        return source == condition
    if operator == ConditionOperator.NotEquals:
        return source != condition
    if operator == ConditionOperator.Contains:
        if source is None:
            return False
        return (condition or '') in source
    if operator in (ConditionOperator.GreaterThan, ConditionOperator.LessThan):
        left, right = _as_number(source), _as_number(condition)
        if right is None:
            logger.warning('interaction rule %s compares against non-numeric value %r', rule_id, condition)
            return False
        if left is None:
            return False
        # NaN compares false either way
        if operator == ConditionOperator.GreaterThan:
            return left > right
        return left < right
    if operator == ConditionOperator.IsEmpty:
        return source is None or source == ''
    if operator == ConditionOperator.IsNotEmpty:
        return not (source is None or source == '')
    raise ValueError(f'Unhandled condition operator: {operator!r}')


def _apply_action(rule: InteractionRule, entry: ElementState) -> str:
    """Apply ``rule.action`` to ``entry``; report 'value', 'flag' or '' for no change."""
    action = rule.action
    if action == RuleAction.Show:
        if not entry.is_visible:
            entry.is_visible = True
            return 'flag'
    elif action == RuleAction.Hide:
        if entry.is_visible:
            entry.is_visible = False
            return 'flag'
    elif action == RuleAction.Enable:
        if not entry.is_enabled:
            entry.is_enabled = True
            return 'flag'
    elif action == RuleAction.Disable:
        if entry.is_enabled:
            entry.is_enabled = False
            return 'flag'
    elif action == RuleAction.SetValue:
        if entry.value != rule.condition_value:
            entry.value = rule.condition_value
            return 'value'
    else:
        raise ValueError(f'Unhandled rule action: {action!r}')
    return ''


def evaluate(form: Form, rules: Iterable[InteractionRule], state: EvaluationState) -> EvaluationResult:
    """Run one full pass of ``rules`` over ``state`` and return the new state.

    ``state`` is not modified. Values carry over from it; visibility and
    enabled flags are re-derived from the element defaults before the rules
    apply, so a condition that stops holding releases its effect.
    """
    if form is None:
        raise ValueError('evaluate() requires a form')

    elements = {e.element_id: e for e in form.elements}
    new_state: EvaluationState = {}
    for element_id, element in elements.items():
        current = state.get(element_id)
        value = current.value if current is not None else element.default_value
        new_state[element_id] = ElementState(value=value, is_visible=element.is_visible, is_enabled=element.is_enabled)

    result = EvaluationResult(state=new_state)

    for rule in rules:
        source = elements.get(rule.source_element_id)
        target_entry = new_state.get(rule.target_element_id)
        if source is None or target_entry is None:
            logger.warning('skipping interaction rule %s: endpoint missing', rule.interaction_rule_id)
            result.warnings.append(EvaluationWarning(
                ORPHANED_RULE_REFERENCE,
                f'Rule {rule.interaction_rule_id} references a missing element',
                rule.interaction_rule_id,
            ))
            continue
        if is_self_referential(rule):
            logger.warning('skipping self-referential interaction rule %s', rule.interaction_rule_id)
            result.warnings.append(EvaluationWarning(
                MALFORMED_RULE_CONFIG,
                f'Rule {rule.interaction_rule_id} targets its own source',
                rule.interaction_rule_id,
            ))
            continue

        source_entry = state.get(rule.source_element_id)
        raw_value = source_entry.value if source_entry is not None else source.default_value
        source_value = normalize_value(raw_value, source)
        condition_value = normalize_value(rule.condition_value, source)

        if not condition_holds(rule.operator, source_value, condition_value, rule.interaction_rule_id):
            continue

        if _apply_action(rule, target_entry) == 'value':
            result.changed_values.add(rule.target_element_id)

    # flags are compared with the incoming state, not with the defaults
    result.changed_flags = {
        element_id for element_id, entry in new_state.items()
        if element_id in state and (
            entry.is_visible != state[element_id].is_visible
            or entry.is_enabled != state[element_id].is_enabled
        )
    }
    result.changed_values = {
        element_id for element_id in result.changed_values
        if element_id not in state or new_state[element_id].value != state[element_id].value
    }
    return result


def evaluate_until_stable(form: Form, rules: Iterable[InteractionRule], state: EvaluationState,
                          max_passes: Optional[int] = None) -> EvaluationResult:
    """Re-run ``evaluate`` while SetValue actions keep changing values.

    Stops after ``max_passes`` passes; a rule set that is still changing
    values then is reported with a ``reentrancy_overrun`` warning and the
    last computed state is kept.
    """
    if max_passes is None:
        max_passes = config.MAX_EVALUATION_PASSES
    max_passes = max(1, max_passes)
    rules = list(rules)

    start = {k: replace(v) for k, v in state.items()}
    changed_values: Set[int] = set()
    warnings: List[EvaluationWarning] = []
    current = start
    result = None
    for passes in range(1, max_passes + 1):
        result = evaluate(form, rules, current)
        changed_values |= result.changed_values
        for warning in result.warnings:
            if warning not in warnings:
                warnings.append(warning)
        current = result.state
        if not result.changed_values:
            break
    else:
        logger.warning('interaction rules for form %s still changing values after %s passes',
                       form.form_id, max_passes)
        warnings.append(EvaluationWarning(
            REENTRANCY_OVERRUN,
            f'SetValue rules did not settle within {max_passes} passes',
        ))

    changed_flags = {
        element_id for element_id, entry in current.items()
        if element_id in start and (
            entry.is_visible != start[element_id].is_visible
            or entry.is_enabled != start[element_id].is_enabled
        )
    }
    return EvaluationResult(
        state=current,
        changed_values={k for k in changed_values if k not in start or current[k].value != start[k].value},
        changed_flags=changed_flags,
        warnings=warnings,
        passes=passes,
    )
