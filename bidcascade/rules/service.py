"""
rules/service.py - Line item inclusion rules

A line item is included in its bid when its rules say so. Rules are
combined with the item's `rule_inclusion` policy:

    all  - included when no rule evaluates False
    any  - included when some rule evaluates True; evaluation stops at the
           first True

Every rule's raw outcome is flipped when `activate_on` is false. A line item
without rules, or without a known policy, is never included.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, List, Optional

from bidcascade.core.contracts import LineItemRule, rules_from_config
from bidcascade.core.enums import RuleInclusion, RuleType
from bidcascade.core.values import confirm_number
from bidcascade.formula.evaluator import evaluate_boolean

if TYPE_CHECKING:
    from bidcascade.domain.line_item import LineItem

logger = logging.getLogger(__name__)


class LineItemRuleService:
    """
    Evaluates the inclusion rules of a line item against its bid.

    Usage:
        service = LineItemRuleService()
        if service.is_included(line_item):
            ...
    """

    def is_included(self, line_item: "LineItem") -> bool:
        rules = rules_from_config(line_item.config.get("rules"))
        if not rules:
            return False

        mode = _inclusion_mode(line_item.config.get("rule_inclusion"))
        if mode is None:
            logger.debug(f"Line item {line_item.id} has no rule inclusion policy")
            return False
        statuses: List[bool] = []

        for rule in rules:
            if mode is RuleInclusion.ANY and True in statuses:
                break
            status = self.evaluate_rule(rule, line_item)
            if status is not None:
                statuses.append(status)

        if mode is RuleInclusion.ALL:
            included = False not in statuses
        else:
            included = True in statuses

        logger.debug(
            f"Line item {line_item.id} rules ({mode.value}): {statuses} -> {included}"
        )
        return included

    def evaluate_rule(self, rule: LineItemRule, line_item: "LineItem") -> Optional[bool]:
        """
        Evaluate one rule.

        Returns:
            The rule's outcome, or None for an unknown rule type
        """
        rule_type = rule.rule_type
        if rule_type is RuleType.ALWAYS_INCLUDE:
            return True
        elif rule_type is RuleType.VALUE_EXPRESSION:
            return self._eval_expression_rule(rule, line_item)
        elif rule_type is RuleType.TOGGLE_FIELD:
            return self._eval_toggle_field_rule(rule, line_item)
        elif rule_type is RuleType.LIST_FIELD:
            return self._eval_list_field_rule(rule, line_item)

        logger.debug(f"Skipping unknown rule type '{rule.type}' on line item {line_item.id}")
        return None

    # =========================================================================
    # Rule types
    # =========================================================================

    def _eval_expression_rule(self, rule: LineItemRule, line_item: "LineItem") -> bool:
        resolver = line_item.entities
        values = {
            "a": confirm_number(resolver.resolve_value(rule.dependency("a")), 0),
            "b": confirm_number(resolver.resolve_value(rule.dependency("b")), 0),
        }
        result = evaluate_boolean(rule.expression, values)
        return _apply_activation(rule, result)

    def _eval_toggle_field_rule(self, rule: LineItemRule, line_item: "LineItem") -> bool:
        value: Any = line_item.entities.resolve_value(rule.dependency("toggle_field"))
        if value is None:
            value = False
        if value in ("0", "1"):
            value = value == "1"
        if not isinstance(value, bool):
            value = False
        return _apply_activation(rule, value)

    def _eval_list_field_rule(self, rule: LineItemRule, line_item: "LineItem") -> bool:
        field = line_item.entities.resolve_entity(rule.dependency("list_field"))
        selected = field is not None and _in_options(field.value, rule.list_options)
        return _apply_activation(rule, selected)


def _apply_activation(rule: LineItemRule, outcome: bool) -> bool:
    return outcome if rule.activate_on else not outcome


def _in_options(value: Any, options: List[Any]) -> bool:
    if value is None:
        return False
    return str(value) in {str(option) for option in options}


def _inclusion_mode(value: Any) -> Optional[RuleInclusion]:
    if isinstance(value, RuleInclusion):
        return value
    try:
        return RuleInclusion(value)
    except ValueError:
        return None
