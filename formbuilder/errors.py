from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SerializationError:
    code: str
    message: str


@dataclass(frozen=True)
class EvaluationWarning:
    code: str
    message: str
    rule_id: Optional[int] = None


# warning codes
MALFORMED_RULE_CONFIG = 'malformed_rule_config'
ORPHANED_RULE_REFERENCE = 'orphaned_rule_reference'
REENTRANCY_OVERRUN = 'reentrancy_overrun'


class FormBuilderError(Exception):
    pass


class ElementNotFound(FormBuilderError):
    def __init__(self, element_id):
        super().__init__(f'Element {element_id} not found')
        self.element_id = element_id


class RuleNotFound(FormBuilderError):
    def __init__(self, rule_id):
        super().__init__(f'Interaction rule {rule_id} not found')
        self.rule_id = rule_id


class RuleConfigError(FormBuilderError):
    """Raised when an interaction rule edit would break the form invariants."""
