import json

import pytest

from conftest import make_element, make_rule
from formbuilder.schemas import (
    BooleanInputData,
    ChoiceInputData,
    ConditionOperator as Op,
    DateInputData,
    ElementKind,
    Form,
    RuleAction as Act,
    TextInputData,
    ValidationRule,
    ValidationRuleKind,
)
from formbuilder.serializer import FORMAT_VERSION, from_portable, to_json, to_portable


@pytest.fixture
def form_and_rules():
    elements = [
        make_element(1, label="Name", placeholder="Your name", is_required=True,
                     type_specific=TextInputData(field_type="text", max_length=40),
                     validation_rules=[ValidationRule(validation_rule_id=7, element_id=1,
                                                      kind=ValidationRuleKind.MaxLength, value="40",
                                                      error_message="Too long")]),
        make_element(2, kind=ElementKind.ChoiceInput, label="Country",
                     type_specific=ChoiceInputData(items_source_id=3, allow_multi_select=True)),
        make_element(3, kind=ElementKind.DateInput, label="Born", default_value="2000-01-01",
                     type_specific=DateInputData(min_date="1900-01-01")),
        make_element(4, kind=ElementKind.BooleanInput, label="Subscribe", is_visible=False,
                     type_specific=BooleanInputData(true_value="Y", false_value="N")),
    ]
    form = Form(form_id=5, name="Signup", description="Sign up", elements=elements)
    rules = [
        make_rule(100, 1, 2, Op.IsNotEmpty, Act.Enable),
        make_rule(101, 4, 3, Op.Equals, Act.Show, "Y"),
        make_rule(102, 2, 1, Op.Contains, Act.SetValue, "x"),
    ]
    return form, rules


def test_export_layout(form_and_rules):
    form, rules = form_and_rules
    doc = to_portable(form, rules)

    assert doc["formatVersion"] == FORMAT_VERSION
    assert doc["name"] == "Signup"
    assert [r["interactionRuleId"] for r in doc["interactionRules"]] == [100, 101, 102]

    name, country, born, subscribe = doc["elements"]
    assert name["type"] == 0
    assert name["typeSpecificData"] == {"fieldType": "text", "maxLength": 40, "regexPattern": None}
    assert country["typeSpecificData"] == {"itemsSourceId": 3, "allowMultiSelect": True}
    assert set(born["typeSpecificData"]) == {"dateFormat", "minDate", "maxDate"}
    assert subscribe["typeSpecificData"] == {"trueValue": "Y", "falseValue": "N"}

    assert name["validationRules"][0]["ruleType"] == int(ValidationRuleKind.MaxLength)
    assert [r["interactionRuleId"] for r in name["sourceInteractionRules"]] == [100]
    assert [r["interactionRuleId"] for r in name["targetInteractionRules"]] == [102]
    assert [r["interactionRuleId"] for r in subscribe["sourceInteractionRules"]] == [101]
    assert subscribe["targetInteractionRules"] == []


def test_round_trip_reproduces_elements_and_rules(form_and_rules):
    form, rules = form_and_rules
    result = from_portable(to_json(form, rules))

    assert result.ok
    assert result.form.name == form.name
    expected = {e.element_id: e for e in form.elements}
    for element in result.form.elements:
        assert element == expected[element.element_id]
    assert [r.interaction_rule_id for r in result.rules] == [100, 101, 102]
    assert result.rules == rules
    # each rule is listed once at top level and twice across the elements
    assert result.duplicates_removed == 6


def test_round_trip_is_independent_of_element_order(form_and_rules):
    form, rules = form_and_rules
    doc = to_portable(form, rules)
    doc["elements"].reverse()
    del doc["interactionRules"]

    result = from_portable(doc)
    assert result.ok
    assert {r.interaction_rule_id for r in result.rules} == {100, 101, 102}
    assert len(result.rules) == 3


def test_compatibility_mode_keeps_duplicated_rules(form_and_rules):
    # without de-duplication every rule appears once under its source and once under its target
    form, rules = form_and_rules
    result = from_portable(to_portable(form, rules), dedupe=False)
    assert result.ok
    assert len(result.rules) == 2 * len(rules)
    assert sorted(r.interaction_rule_id for r in result.rules) == [100, 100, 101, 101, 102, 102]


def test_legacy_type_specific_key_and_flat_fields():
    doc = {
        "formId": 1,
        "name": "Legacy",
        "elements": [
            {"elementId": 1, "type": 3, "label": "Agree", "order": 0,
             "elementTypeSpecificData": {"trueValue": "yes", "falseValue": "no"}},
            {"elementId": 2, "type": 0, "label": "Code", "order": 1, "fieldType": "password", "maxLength": 8},
        ],
    }
    result = from_portable(json.dumps(doc))
    assert result.ok
    agree, code = result.form.elements
    assert agree.type_specific == BooleanInputData(true_value="yes", false_value="no")
    assert code.type_specific == TextInputData(field_type="password", max_length=8)
    assert result.rules == []


@pytest.mark.parametrize("document,code", [
    ("{not json", "invalid_json"),
    ("[]", "invalid_document"),
    ('{"name": "x"}', "missing_elements"),
    ('{"elements": {}}', "missing_elements"),
    ('{"elements": [{"elementId": 1}]}', "invalid_element"),
    ('{"elements": [{"elementId": 1, "type": 9}]}', "invalid_element"),
    ('{"elements": [{"elementId": "abc", "type": 0}]}', "invalid_element"),
    ('{"formatVersion": 99, "elements": []}', "unsupported_version"),
    ('{"elements": [{"elementId": 1, "type": 0}, {"elementId": 1, "type": 0, "order": 1}]}', "duplicate_element"),
    ('{"elements": [], "interactionRules": 5}', "invalid_document"),
    ('{"elements": [], "interactionRules": {"a": 1}}', "invalid_document"),
    ('{"elements": [{"elementId": 1, "type": 0, "sourceInteractionRules": true}]}', "invalid_element"),
    ('{"elements": [{"elementId": 1, "type": 0, "targetInteractionRules": "x"}]}', "invalid_element"),
    ('{"elements": [], "interactionRules": [5]}', "invalid_element"),
])
def test_import_failures_are_reported_not_raised(document, code):
    result = from_portable(document)
    assert not result.ok
    assert result.error.code == code
    assert result.form is None


def test_duplicate_orders_are_renumbered():
    doc = {"elements": [
        {"elementId": 1, "type": 0, "order": 0},
        {"elementId": 2, "type": 0, "order": 0},
    ]}
    result = from_portable(doc)
    assert result.ok
    assert sorted(e.order for e in result.form.elements) == [0, 1]


def test_orphaned_rules_survive_import():
    doc = {
        "elements": [{"elementId": 1, "type": 0, "order": 0}],
        "interactionRules": [{"interactionRuleId": 5, "sourceElementId": 1, "targetElementId": 99,
                              "operator": 0, "conditionValue": "a", "action": 1}],
    }
    result = from_portable(doc)
    assert result.ok
    assert [r.interaction_rule_id for r in result.rules] == [5]
