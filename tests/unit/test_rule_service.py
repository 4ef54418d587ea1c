"""
Unit tests for rules/service.py

Line items are mocked: the service only reads `config`, `id` and the
resolver behind `entities`.
"""

import pytest
from unittest.mock import Mock

from bidcascade.rules.service import LineItemRuleService


def make_line_item(rules, rule_inclusion="all", values=None, entity=None):
    line_item = Mock()
    line_item.id = 7
    line_item.config = {"rules": rules, "rule_inclusion": rule_inclusion}
    line_item.entities.resolve_value.side_effect = list(values or [])
    line_item.entities.resolve_entity.return_value = entity
    return line_item


def always(activate_on=True):
    return {"type": "always_include", "activate_on": activate_on}


def expression(formula, activate_on=True):
    return {
        "type": "value_expression",
        "activate_on": activate_on,
        "expression": formula,
        "dependencies": {
            "a": {"type": "metric", "bid_entity_id": 1},
            "b": {"type": "metric", "bid_entity_id": 2},
        },
    }


def toggle(activate_on=True):
    return {
        "type": "toggle_field",
        "activate_on": activate_on,
        "dependencies": {"toggle_field": {"type": "field", "bid_entity_id": 2}},
    }


def list_rule(options, activate_on=True):
    return {
        "type": "list_field",
        "activate_on": activate_on,
        "list_options": options,
        "dependencies": {"list_field": {"type": "field", "bid_entity_id": 1}},
    }


@pytest.fixture
def service():
    return LineItemRuleService()


class TestInclusionPolicy:
    """Test how rule outcomes combine."""

    def test_no_rules_excluded(self, service):
        assert service.is_included(make_line_item([])) is False
        assert service.is_included(make_line_item(None)) is False

    def test_always_include(self, service):
        assert service.is_included(make_line_item([always(True)])) is True
        assert service.is_included(make_line_item([always(False)])) is False

    def test_all_mode(self, service):
        assert service.is_included(make_line_item([always(True), always(False)], "all")) is False
        assert service.is_included(make_line_item([always(True), always(True)], "all")) is True

    def test_any_mode(self, service):
        assert service.is_included(make_line_item([always(False), always(True)], "any")) is True
        assert service.is_included(make_line_item([always(False), always(False)], "any")) is False

    def test_any_mode_stops_at_first_true(self, service):
        line_item = make_line_item([always(True), expression("a > b")], "any")
        assert service.is_included(line_item) is True
        line_item.entities.resolve_value.assert_not_called()

    def test_all_mode_evaluates_every_rule(self, service):
        line_item = make_line_item([always(True), expression("a > b")], "all", values=[2, 1])
        assert service.is_included(line_item) is True
        assert line_item.entities.resolve_value.call_count == 2

    def test_missing_mode_excludes(self, service):
        line_item = make_line_item([always(True)], rule_inclusion=None)
        assert service.is_included(line_item) is False
        line_item.entities.resolve_value.assert_not_called()

    def test_unknown_mode_excludes(self, service):
        assert service.is_included(make_line_item([always(True)], rule_inclusion="most")) is False
        assert service.is_included(make_line_item([always(True)], rule_inclusion="ALL")) is False

    def test_unknown_rule_type_skipped(self, service):
        assert service.is_included(make_line_item([{"type": "weather"}, always(True)])) is True
        assert service.is_included(make_line_item([{"type": "weather"}], "any")) is False

    def test_rules_keyed_by_id(self, service):
        line_item = make_line_item({"1": always(True), "2": always(True)})
        assert service.is_included(line_item) is True


class TestValueExpressionRule:
    """Test expression rules."""

    def test_true_expression(self, service):
        assert service.is_included(make_line_item([expression("a > b")], values=[5, 3])) is True

    def test_inverted(self, service):
        assert service.is_included(make_line_item([expression("a > b", False)], values=[5, 3])) is False

    def test_non_boolean_result_is_false(self, service):
        assert service.is_included(make_line_item([expression("a + b")], values=[5, 3])) is False

    def test_missing_values_default_to_zero(self, service):
        assert service.is_included(make_line_item([expression("a = b")], values=[None, None])) is True

    def test_boolean_values_coerced(self, service):
        assert service.is_included(make_line_item([expression("a = 1")], values=[True, None])) is True

    def test_failed_evaluation_is_false(self, service):
        assert service.is_included(make_line_item([expression("a / b > 1")], values=[1, 0])) is False
        assert service.is_included(make_line_item([expression("a / b > 1", False)], values=[1, 0])) is True


class TestToggleFieldRule:
    """Test toggle rules."""

    @pytest.mark.parametrize("value, expected", [
        (True, True),
        (False, False),
        ("1", True),
        ("0", False),
        (None, False),
        ("yes", False),
        (3, False),
    ])
    def test_activate_on_true(self, service, value, expected):
        assert service.is_included(make_line_item([toggle(True)], values=[value])) is expected

    @pytest.mark.parametrize("value, expected", [
        (True, False),
        ("0", True),
        (None, True),
        ("yes", True),
    ])
    def test_activate_on_false_flips(self, service, value, expected):
        assert service.is_included(make_line_item([toggle(False)], values=[value])) is expected


class TestListFieldRule:
    """Test list rules."""

    def test_selected_option(self, service):
        field = Mock(value="r2")
        assert service.is_included(make_line_item([list_rule(["r1", "r2"])], entity=field)) is True

    def test_ids_compared_as_text(self, service):
        field = Mock(value=2)
        assert service.is_included(make_line_item([list_rule(["2"])], entity=field)) is True

    def test_not_selected(self, service):
        field = Mock(value="r3")
        assert service.is_included(make_line_item([list_rule(["r1"])], entity=field)) is False
        assert service.is_included(make_line_item([list_rule(["r1"], False)], entity=field)) is True

    def test_missing_field(self, service):
        assert service.is_included(make_line_item([list_rule(["r1"])], entity=None)) is False

    def test_unset_value(self, service):
        field = Mock(value=None)
        assert service.is_included(make_line_item([list_rule(["r1"])], entity=field)) is False
