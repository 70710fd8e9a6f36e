import logging
import re
from typing import Any, Callable, Dict, Optional

from .schemas import Element, ValidationRule, ValidationRuleKind

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

_custom_validators: Dict[str, Callable[[str], bool]] = {}


def register_custom_validator(name: str, func: Callable[[str], bool]):
    """Register ``func`` for Custom rules whose value is ``name``.

    ``func`` receives the field value as text and returns True when valid.
    """
    _custom_validators[name] = func


def unregister_custom_validator(name: str):
    _custom_validators.pop(name, None)


def is_empty(value: Any) -> bool:
    return value is None or value == '' or value == [] or value == ()


def value_as_text(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (list, tuple)):
        return ','.join(value_as_text(v) for v in value)
    return str(value)


def _parse_int(raw: str, rule: ValidationRule) -> Optional[int]:
    try:
        return int(str(raw).strip())
    except ValueError:
        logger.warning('validation rule %s has a non-integer value %r', rule.validation_rule_id, raw)
        return None


def _parse_float(raw: str) -> Optional[float]:
    try:
        return float(str(raw).strip())
    except ValueError:
        return None


def is_violated(rule: ValidationRule, value: Any) -> bool:
    text = value_as_text(value)
    kind = rule.kind

    if kind == ValidationRuleKind.Required:
        return is_empty(value)

    if kind == ValidationRuleKind.Regex:
        try:
            pattern = re.compile(rule.value)
        except re.error as e:
            logger.warning('invalid regex pattern %r in validation rule %s: %s', rule.value, rule.validation_rule_id, e)
            return False
        return pattern.search(text) is None

    if kind in (ValidationRuleKind.MaxLength, ValidationRuleKind.MinLength):
        limit = _parse_int(rule.value, rule)
        if limit is None:
            return False
        length = len(value) if isinstance(value, (list, tuple)) else len(text)
        if kind == ValidationRuleKind.MaxLength:
            return length > limit
        return length < limit

    if kind == ValidationRuleKind.Range:
        parts = str(rule.value).split(',')
        if len(parts) != 2:
            logger.warning('range rule %s expects "min,max", got %r', rule.validation_rule_id, rule.value)
            return False
        low, high = _parse_float(parts[0]), _parse_float(parts[1])
        if low is None or high is None:
            logger.warning('range rule %s has unparsable bounds %r', rule.validation_rule_id, rule.value)
            return False
        number = _parse_float(text)
        if number is None:
            # non-numeric input is the Numeric rule's concern
            return False
        return number < low or number > high

    if kind == ValidationRuleKind.Email:
        return EMAIL_PATTERN.match(text) is None

    if kind == ValidationRuleKind.Numeric:
        return _parse_float(text) is None

    if kind == ValidationRuleKind.Custom:
        func = _custom_validators.get(rule.value)
        if func is None:
            logger.warning('no custom validator registered as %r (rule %s)', rule.value, rule.validation_rule_id)
            return False
        try:
            return not func(text)
        except Exception:
            logger.warning('custom validator %r failed on rule %s', rule.value, rule.validation_rule_id, exc_info=True)
            return False

    raise ValueError(f'Unhandled validation rule kind: {kind!r}')


def required_message(element: Element) -> str:
    for rule in element.validation_rules:
        if rule.kind == ValidationRuleKind.Required and rule.error_message:
            return rule.error_message
    return f'{element.label} is required'


def validate(element: Element, value: Any, is_visible: bool = True) -> Optional[str]:
    """Return the error message of the first violated rule, or None."""
    if not is_visible:
        return None

    if is_empty(value):
        if element.is_required:
            return required_message(element)
        return None

    for rule in element.validation_rules:
        if is_violated(rule, value):
            return rule.error_message
    return None
