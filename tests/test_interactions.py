from conftest import make_element, make_rule
from formbuilder.errors import ORPHANED_RULE_REFERENCE, REENTRANCY_OVERRUN
from formbuilder.interactions import (
    condition_holds,
    evaluate,
    evaluate_until_stable,
    initial_state,
    normalize_boolean_value,
)
from formbuilder.schemas import BooleanInputData, ConditionOperator as Op, ElementKind, Form, RuleAction as Act


def _set(state, element_id, value):
    state[element_id].value = value
    return state


def test_hide_then_show_again(two_field_form, hide_rule):
    state = initial_state(two_field_form)
    state = evaluate(two_field_form, [hide_rule], _set(state, 1, "yes")).state
    assert state[2].is_visible is False

    state = evaluate(two_field_form, [hide_rule], _set(state, 1, "no")).state
    assert state[2].is_visible is True


def test_evaluate_does_not_mutate_input(two_field_form, hide_rule):
    state = _set(initial_state(two_field_form), 1, "yes")
    evaluate(two_field_form, [hide_rule], state)
    assert state[2].is_visible is True


def test_enable_disable(two_field_form):
    rules = [make_rule(1, 1, 2, Op.IsEmpty, Act.Disable)]
    state = evaluate(two_field_form, rules, initial_state(two_field_form)).state
    assert state[2].is_enabled is False
    state = evaluate(two_field_form, rules, _set(state, 1, "filled")).state
    assert state[2].is_enabled is True


def test_show_overrides_hidden_default():
    form = Form(form_id=1, elements=[make_element(1), make_element(2, is_visible=False)])
    rules = [make_rule(1, 1, 2, Op.IsNotEmpty, Act.Show)]
    state = initial_state(form)
    assert evaluate(form, rules, state).state[2].is_visible is False
    assert evaluate(form, rules, _set(state, 1, "x")).state[2].is_visible is True


def test_later_rule_wins_on_conflict(two_field_form):
    rules = [
        make_rule(1, 1, 2, Op.IsNotEmpty, Act.Hide),
        make_rule(2, 1, 2, Op.Equals, Act.Show, "special"),
    ]
    state = _set(initial_state(two_field_form), 1, "special")
    assert evaluate(two_field_form, rules, state).state[2].is_visible is True


def test_checkbox_normalization_against_custom_true_value():
    flag = make_element(1, kind=ElementKind.BooleanInput, type_specific=BooleanInputData(true_value="Y", false_value="N"))
    form = Form(form_id=1, elements=[flag, make_element(2)])
    rules = [make_rule(1, 1, 2, Op.Equals, Act.Hide, "Y")]
    state = _set(initial_state(form), 1, True)
    assert evaluate(form, rules, state).state[2].is_visible is False


def test_normalize_boolean_value_defaults_and_passthrough():
    flag = make_element(1, kind=ElementKind.BooleanInput)
    assert normalize_boolean_value(True, flag) == "true"
    assert normalize_boolean_value(0, flag) == "false"
    assert normalize_boolean_value("1", flag) == "true"
    assert normalize_boolean_value("maybe", flag) == "maybe"
    assert normalize_boolean_value(None, flag) is None


def test_condition_operators():
    assert condition_holds(Op.Equals, "a", "a")
    assert condition_holds(Op.NotEquals, "a", "b")
    assert condition_holds(Op.Contains, "hello world", "lo w")
    assert not condition_holds(Op.Contains, None, "x")
    assert condition_holds(Op.GreaterThan, "10", "9.5")
    assert condition_holds(Op.LessThan, "-1", "0")
    assert condition_holds(Op.IsEmpty, "", "")
    assert condition_holds(Op.IsEmpty, None, "")
    assert condition_holds(Op.IsNotEmpty, "x", "")


def test_unparsable_numbers_are_false_and_do_not_raise():
    assert not condition_holds(Op.GreaterThan, "abc", "1")
    assert not condition_holds(Op.LessThan, "1", "not-a-number")
    assert not condition_holds(Op.GreaterThan, "nan", "1")


def test_orphaned_rule_is_skipped(two_field_form, hide_rule):
    rules = [make_rule(99, 1, 42, Op.IsEmpty, Act.Hide), hide_rule]
    result = evaluate(two_field_form, rules, _set(initial_state(two_field_form), 1, "yes"))
    assert result.state[2].is_visible is False
    assert [w.code for w in result.warnings] == [ORPHANED_RULE_REFERENCE]


def test_set_value_applies_to_target_and_is_reported(two_field_form):
    rules = [make_rule(1, 1, 2, Op.Equals, Act.SetValue, "copied")]
    result = evaluate(two_field_form, rules, _set(initial_state(two_field_form), 1, "copied"))
    assert result.state[2].value == "copied"
    assert result.changed_values == {2}


def test_set_value_is_seen_on_next_pass_only():
    form = Form(form_id=1, elements=[make_element(1), make_element(2), make_element(3)])
    rules = [
        make_rule(1, 2, 3, Op.Equals, Act.Hide, "go"),
        make_rule(2, 1, 2, Op.IsNotEmpty, Act.SetValue, "go"),
    ]
    state = _set(initial_state(form), 1, "x")
    first = evaluate(form, rules, state)
    assert first.state[2].value == "go"
    assert first.state[3].is_visible is True

    settled = evaluate_until_stable(form, rules, state)
    assert settled.state[3].is_visible is False
    assert settled.passes == 2


def test_mutual_set_value_settles():
    form = Form(form_id=1, elements=[make_element(1), make_element(2)])
    rules = [
        make_rule(1, 1, 2, Op.IsNotEmpty, Act.SetValue, "b"),
        make_rule(2, 2, 1, Op.IsNotEmpty, Act.SetValue, "a"),
    ]
    result = evaluate_until_stable(form, rules, _set(initial_state(form), 1, "q"))
    assert result.state[1].value == "a"
    assert result.state[2].value == "b"
    assert result.passes == 3
    assert result.warnings == []


def test_set_value_cycle_is_bounded_and_deterministic():
    form = Form(form_id=1, elements=[make_element(1), make_element(2)])
    # A and B keep flipping each other between "" and "1"
    rules = [
        make_rule(1, 1, 2, Op.IsEmpty, Act.SetValue, "1"),
        make_rule(2, 1, 2, Op.IsNotEmpty, Act.SetValue, ""),
        make_rule(3, 2, 1, Op.IsEmpty, Act.SetValue, "1"),
        make_rule(4, 2, 1, Op.IsNotEmpty, Act.SetValue, ""),
    ]
    first = evaluate_until_stable(form, rules, initial_state(form), max_passes=10)
    second = evaluate_until_stable(form, rules, initial_state(form), max_passes=10)

    assert first.passes == 10
    assert [w.code for w in first.warnings] == [REENTRANCY_OVERRUN]
    assert (first.state[1].value, first.state[2].value) == ("", "")
    assert (second.state[1].value, second.state[2].value) == ("", "")
