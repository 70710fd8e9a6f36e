import enum
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class ElementKind(int, enum.Enum):
    TextInput = 0
    ChoiceInput = 1
    DateInput = 2
    BooleanInput = 3


class ValidationRuleKind(int, enum.Enum):
    Required = 0
    Regex = 1
    MaxLength = 2
    MinLength = 3
    Range = 4
    Email = 5
    Numeric = 6
    Custom = 7


class ConditionOperator(int, enum.Enum):
    Equals = 0
    NotEquals = 1
    Contains = 2
    GreaterThan = 3
    LessThan = 4
    IsEmpty = 5
    IsNotEmpty = 6


class RuleAction(int, enum.Enum):
    Show = 0
    Hide = 1
    Enable = 2
    Disable = 3
    SetValue = 4


class PortableModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# type-specific payloads, one per ElementKind

class TextInputData(PortableModel):
    field_type: str = 'text'
    max_length: Optional[int] = None
    regex_pattern: Optional[str] = None


class ChoiceInputData(PortableModel):
    items_source_id: Optional[int] = None
    allow_multi_select: bool = False


class DateInputData(PortableModel):
    date_format: str = 'yyyy-MM-dd'
    min_date: Optional[str] = None
    max_date: Optional[str] = None


class BooleanInputData(PortableModel):
    true_value: str = 'true'
    false_value: str = 'false'


TypeSpecificData = Union[TextInputData, ChoiceInputData, DateInputData, BooleanInputData]

TYPE_SPECIFIC_MODELS = {
    ElementKind.TextInput: TextInputData,
    ElementKind.ChoiceInput: ChoiceInputData,
    ElementKind.DateInput: DateInputData,
    ElementKind.BooleanInput: BooleanInputData,
}


def default_type_specific(kind: ElementKind) -> TypeSpecificData:
    return TYPE_SPECIFIC_MODELS[ElementKind(kind)]()


class ValidationRule(PortableModel):
    validation_rule_id: int
    element_id: int
    kind: ValidationRuleKind = Field(alias='ruleType')
    value: str = Field(default='', alias='ruleValue')
    error_message: str = ''

    @field_validator('value', mode='before')
    @classmethod
    def _value_as_text(cls, v):
        return '' if v is None else str(v)


class Element(PortableModel):
    element_id: int
    form_id: Optional[int] = None
    kind: ElementKind = Field(alias='type')
    label: str = ''
    placeholder: str = ''
    default_value: str = ''
    order: int = Field(default=0, ge=0)
    is_required: bool = False
    is_visible: bool = True
    is_enabled: bool = True
    type_specific: Optional[TypeSpecificData] = Field(default=None, alias='typeSpecificData')
    validation_rules: List[ValidationRule] = Field(default_factory=list)

    @field_validator('default_value', mode='before')
    @classmethod
    def _default_as_text(cls, v):
        return '' if v is None else str(v)

    @model_validator(mode='before')
    @classmethod
    def _parse_type_specific(cls, data):
        # the payload shape is chosen by the element kind, not by guessing from its keys
        if not isinstance(data, dict):
            return data
        kind = data.get('type', data.get('kind'))
        if kind is None:
            return data
        model = TYPE_SPECIFIC_MODELS[ElementKind(kind)]
        key = 'typeSpecificData' if 'typeSpecificData' in data else 'type_specific'
        payload = data.get(key)
        if payload is None or isinstance(payload, dict):
            data = dict(data)
            data[key] = model.model_validate(payload or {})
        return data

    @model_validator(mode='after')
    def _check_type_specific(self):
        model = TYPE_SPECIFIC_MODELS[self.kind]
        if self.type_specific is None:
            self.type_specific = model()
        elif not isinstance(self.type_specific, model):
            raise ValueError(f'{type(self.type_specific).__name__} does not match element type {self.kind.name}')
        return self


class InteractionRule(PortableModel):
    interaction_rule_id: int
    source_element_id: int
    target_element_id: int
    operator: ConditionOperator
    condition_value: str = ''
    action: RuleAction

    @field_validator('condition_value', mode='before')
    @classmethod
    def _condition_as_text(cls, v):
        return '' if v is None else str(v)


class Form(PortableModel):
    form_id: Optional[int] = None
    database_id: Optional[int] = None
    name: str = 'New Form'
    description: str = ''
    is_active: bool = True
    created_date: Optional[datetime] = None
    updated_date: Optional[datetime] = None
    elements: List[Element] = Field(default_factory=list)

    def get_element(self, element_id: int) -> Optional[Element]:
        for element in self.elements:
            if element.element_id == element_id:
                return element
        return None

    def element_ids(self) -> set:
        return {e.element_id for e in self.elements}


class ItemsSourceItem(PortableModel):
    value: str
    display_text: str = ''


class ItemsSource(PortableModel):
    items_source_id: Optional[int] = None
    name: str = ''
    parent_id: Optional[int] = None
    items: List[ItemsSourceItem] = Field(default_factory=list)


# request payloads

class FormCreate(PortableModel):
    name: str
    description: Optional[str] = ''
    database_id: Optional[int] = None
    is_active: Optional[bool] = True


class FormUpdate(PortableModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class ElementCreate(PortableModel):
    kind: ElementKind = Field(alias='type')
    index: Optional[int] = Field(default=None, ge=0)
    label: Optional[str] = None
    placeholder: Optional[str] = None


class MovePayload(PortableModel):
    drag_index: int
    hover_index: int


class ValidationRuleCreate(PortableModel):
    kind: ValidationRuleKind = Field(alias='ruleType')
    value: Optional[str] = Field(default='', alias='ruleValue')
    error_message: str


class InteractionRuleCreate(PortableModel):
    source_element_id: int
    target_element_id: int
    operator: ConditionOperator
    condition_value: Optional[str] = ''
    action: RuleAction


class SetValuePayload(PortableModel):
    value: Any = None


class ImportPayload(PortableModel):
    document: Union[str, Dict[str, Any]]
