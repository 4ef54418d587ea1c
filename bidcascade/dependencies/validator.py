"""
dependencies/validator.py - Bid structure validation

Walks a bid and reports configuration problems that the cascade would
otherwise absorb silently: dependency contracts that resolve to nothing,
rules missing their inputs, formulas that cannot evaluate over their
declared dependencies, and broken component or assembly references.

Validation never raises and never changes the bid. A malformed entity
config is reported as an `unknown_error` issue for that entity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from bidcascade.core.contracts import (
    SCALAR_PREFIX,
    DependencyContract,
    LineItemRule,
    contracts_from_mapping,
    rules_from_config,
)
from bidcascade.core.enums import EntityType, FieldType, RuleType
from bidcascade.errors import BidCascadeError
from bidcascade.formula.evaluator import validate as validate_formula

if TYPE_CHECKING:
    from bidcascade.domain.bid import Bid
    from bidcascade.domain.entity import BidEntity

logger = logging.getLogger(__name__)


# Contract targets whose value is read through `field`
_NAMED_FIELD_TYPES = (EntityType.LINE_ITEM, EntityType.COMPONENT, EntityType.BID, EntityType.BID_VARIABLE)

# Targets that may not live inside an assembly other than the reader's
_UNSCOPED_TYPES = (EntityType.BID, EntityType.BID_VARIABLE)

# Assembly config key -> (bid collection, dependency type reported)
_ASSEMBLY_MEMBERS = {
    "line_items": ("line_items", "line_item"),
    "components": ("components", "component"),
    "metrics": ("metrics", "metric"),
    "fields": ("fields", "field"),
    "manipulated_metrics": ("metrics", "manipulated_metric"),
}


class IssueType(str, Enum):
    """Kinds of problems the validator reports."""
    INVALID_DEPENDENCY = "invalid_dependency"
    EMPTY_FIELD = "empty_field"
    INVALID_DATATABLE_KEY = "invalid_datatable_key"
    INVALID_ASSEMBLY_REFERENCE = "invalid_assembly_reference"
    ASSEMBLY_DOES_NOT_EXIST = "assembly_does_not_exist"
    INCOMPLETE_LINE_ITEM_RULE = "incomplete_line_item_rule"
    INVALID_LINE_ITEM_RULE_EXPRESSION = "invalid_line_item_rule_expression"
    RULE_UNDEFINED_DEPENDENCY = "rule_undefined_dependency"
    INVALID_LINE_ITEM_FORMULA_DEPENDENCY = "invalid_line_item_formula_dependency"
    INVALID_METRIC_FORMULA_DEPENDENCY = "invalid_metric_formula_dependency"
    INVALID_METRIC_MANIPULATION_DEPENDENCY = "invalid_metric_manipulation_dependency"
    INVALID_METRIC_MANIPULATION_FORMULA_DEPENDENCY = "invalid_metric_manipulation_formula_dependency"
    INVALID_METRIC_MANIPULATION_ASSEMBLY_REFERENCE = "invalid_metric_manipulation_assembly_reference"
    INVALID_COMPONENT_LINE_ITEM_REFERENCE = "invalid_component_line_item_reference"
    INVALID_COMPONENT_SUB_COMPONENT_REFERENCE = "invalid_component_sub_component_reference"
    INVALID_PARENT_COMPONENT_REFERENCE = "invalid_parent_component_reference"
    INVALID_COMPONENT_GROUP_REFERENCE = "invalid_component_group_reference"
    INVALID_ASSEMBLY_ENTITY_REFERENCE = "invalid_assembly_entity_reference"
    UNKNOWN_ERROR = "unknown_error"


@dataclass
class ValidationIssue:
    """A single problem found in a bid."""
    issue_type: IssueType
    source_type: str
    source_id: Any
    source_title: Optional[str] = None
    source_assembly_id: Any = None
    dependency_type: Optional[str] = None
    dependency_id: Any = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.issue_type.value,
            "source_bid_entity_type": self.source_type,
            "source_bid_entity_id": self.source_id,
            "source_bid_entity_title": self.source_title,
            "source_bid_entity_assembly_id": self.source_assembly_id,
            "dependency_type": self.dependency_type,
            "dependency_id": self.dependency_id,
            "meta": self.meta or None,
        }


class BidValidator:
    """
    Structural checks over one bid.

    Usage:
        issues = BidValidator().validate(bid)
        for issue in issues:
            print(issue.issue_type.value, issue.source_id)
    """

    def __init__(self):
        self._bid: Optional["Bid"] = None
        self._issues: List[ValidationIssue] = []

    def validate(self, bid: "Bid") -> List[ValidationIssue]:
        """
        Validate a bid.

        Args:
            bid: Bid to check

        Returns:
            Issues found, in entity order (empty when the bid is sound)
        """
        self._bid = bid
        self._issues = []

        checks = (
            ("line_items", self._check_line_item),
            ("fields", self._check_entity),
            ("metrics", self._check_metric),
            ("components", self._check_component),
            ("assemblies", self._check_assembly),
        )
        for collection, check in checks:
            for entity in bid.collections[collection].values():
                try:
                    check(entity)
                except BidCascadeError as e:
                    self._log_issue(IssueType.UNKNOWN_ERROR, entity, meta={"error": str(e)})

        if self._issues:
            logger.warning(f"Bid {bid.id} validation found {len(self._issues)} issues")
        else:
            logger.debug(f"Bid {bid.id} validation passed")
        return self._issues

    # =========================================================================
    # Entity checks
    # =========================================================================

    def _check_entity(self, entity: "BidEntity") -> None:
        """Contract and assembly checks shared by every entity kind."""
        for key, contract in contracts_from_mapping(entity.config.get("dependencies")).items():
            if contract.type is None:
                continue
            self._check_contract(entity, contract, key)
        self._check_assembly_exists(entity)

    def _check_line_item(self, line_item: "BidEntity") -> None:
        self._check_entity(line_item)
        self._check_scalar_formula(line_item)

        for rule in rules_from_config(line_item.config.get("rules")):
            self._check_rule(line_item, rule)

    def _check_metric(self, metric: "BidEntity") -> None:
        self._check_entity(metric)

        dependencies = contracts_from_mapping(metric.config.get("dependencies"))
        formula = metric.config.get("formula")
        if formula and not validate_formula(formula, {key: 1 for key in dependencies}):
            self._log_issue(
                IssueType.INVALID_METRIC_FORMULA_DEPENDENCY,
                metric,
                meta={"formula": formula, "formula_dependencies": sorted(dependencies)},
            )

        for manipulation in metric.config.get("manipulations") or []:
            self._check_manipulation(metric, manipulation)

    def _check_manipulation(self, metric: "BidEntity", manipulation: Dict[str, Any]) -> None:
        assembly_id = manipulation.get("assembly_id")
        if assembly_id and self._bid.assemblies(assembly_id) is None:
            self._log_issue(
                IssueType.INVALID_METRIC_MANIPULATION_ASSEMBLY_REFERENCE,
                metric,
                meta={"metric_manipulation": manipulation},
            )

        params = {"original": 1}
        for key, contract in contracts_from_mapping(manipulation.get("dependencies")).items():
            params[key] = 1
            if not self._bid.entities.dependency_exists(contract):
                self._log_issue(
                    IssueType.INVALID_METRIC_MANIPULATION_DEPENDENCY,
                    metric,
                    contract,
                    meta={"source_bid_entity_dependency_key": key},
                )

        formula = manipulation.get("formula")
        if formula and not validate_formula(formula, params):
            self._log_issue(
                IssueType.INVALID_METRIC_MANIPULATION_FORMULA_DEPENDENCY,
                metric,
                meta={"formula": formula, "manipulation_metric_id": manipulation.get("id")},
            )

    def _check_component(self, component: "BidEntity") -> None:
        self._check_entity(component)

        for item_id in component.line_item_ids():
            if self._bid.line_items(item_id) is None:
                self._log_issue(
                    IssueType.INVALID_COMPONENT_LINE_ITEM_REFERENCE,
                    component,
                    dependency_type=EntityType.LINE_ITEM.value,
                    dependency_id=item_id,
                )

        for component_id in component.sub_component_ids():
            if self._bid.components(component_id) is None:
                self._log_issue(
                    IssueType.INVALID_COMPONENT_SUB_COMPONENT_REFERENCE,
                    component,
                    dependency_type=EntityType.COMPONENT.value,
                    dependency_id=component_id,
                )

        parent_id = component.parent_component_id
        if parent_id and self._bid.components(parent_id) is None:
            self._log_issue(
                IssueType.INVALID_PARENT_COMPONENT_REFERENCE,
                component,
                dependency_type=EntityType.COMPONENT.value,
                dependency_id=parent_id,
            )

        group_id = component.component_group_id
        if group_id is not None and self._bid.component_groups(group_id) is None:
            self._log_issue(
                IssueType.INVALID_COMPONENT_GROUP_REFERENCE,
                component,
                dependency_type=EntityType.COMPONENT_GROUP.value,
                dependency_id=group_id,
            )

    def _check_assembly(self, assembly: "BidEntity") -> None:
        for key, (collection, dependency_type) in _ASSEMBLY_MEMBERS.items():
            members = self._bid.collections[collection]
            for member_id in assembly.config.get(key) or []:
                if str(member_id) not in members:
                    self._log_issue(
                        IssueType.INVALID_ASSEMBLY_ENTITY_REFERENCE,
                        assembly,
                        meta={"dependency_type": dependency_type, "dependency_id": member_id},
                    )

    # =========================================================================
    # Contracts
    # =========================================================================

    def _check_contract(self, source: "BidEntity", contract: DependencyContract, key: str) -> None:
        meta = {"source_bid_entity_dependency_key": key}
        kind = contract.entity_type

        dependency = self._bid.entities.resolve_entity(contract)
        if dependency is None and kind is not EntityType.BID:
            self._log_issue(IssueType.INVALID_DEPENDENCY, source, contract, meta=meta)
            return

        if kind in _NAMED_FIELD_TYPES and contract.field in (None, ""):
            self._log_issue(IssueType.EMPTY_FIELD, source, contract, meta=meta)
        elif kind is EntityType.DATATABLE and source.type is not EntityType.FIELD:
            cell = contract.field if isinstance(contract.field, Mapping) else {}
            if not dependency.find_row(cell.get("row")) or dependency.column_index(cell.get("column")) is None:
                self._log_issue(IssueType.INVALID_DATATABLE_KEY, source, contract, meta=meta)
        elif kind is EntityType.FIELD and dependency.field_type == FieldType.LIST.value:
            self._check_list_column(source, dependency, contract, meta)

        if kind not in _UNSCOPED_TYPES:
            self._check_assembly_scope(source, dependency, contract, meta)

    def _check_list_column(
        self,
        source: "BidEntity",
        list_field: "BidEntity",
        contract: DependencyContract,
        meta: Dict[str, Any],
    ) -> None:
        # List field readers name the datatable column they want
        if source.type not in (EntityType.LINE_ITEM, EntityType.METRIC):
            return
        datatable = list_field.get_datatable()
        if contract.field in (None, ""):
            self._log_issue(IssueType.EMPTY_FIELD, source, contract, meta=meta)
        elif datatable is None or datatable.column_index(contract.field) is None:
            self._log_issue(IssueType.INVALID_DATATABLE_KEY, source, contract, meta=meta)

    def _check_assembly_scope(
        self,
        source: "BidEntity",
        dependency: Any,
        contract: DependencyContract,
        meta: Dict[str, Any],
    ) -> None:
        dependency_assembly = dependency.config.get("assembly_id")
        if not dependency_assembly:
            return
        if source.type is EntityType.ASSEMBLY:
            source_assembly = source.id
        else:
            source_assembly = source.config.get("assembly_id")
        if str(dependency_assembly) != str(source_assembly):
            self._log_issue(IssueType.INVALID_ASSEMBLY_REFERENCE, source, contract, meta=meta)

    def _check_assembly_exists(self, entity: "BidEntity") -> None:
        assembly_id = entity.config.get("assembly_id")
        if assembly_id and self._bid.assemblies(assembly_id) is None:
            self._log_issue(IssueType.ASSEMBLY_DOES_NOT_EXIST, entity)

    # =========================================================================
    # Line items
    # =========================================================================

    def _check_scalar_formula(self, line_item: "BidEntity") -> None:
        formula = line_item.config.get("formula")
        if not formula:
            return
        dependencies = line_item.config.get("dependencies") or {}
        params = {
            key[len(SCALAR_PREFIX)]: 1
            for key in contracts_from_mapping(dependencies)
            if key.startswith(SCALAR_PREFIX) and len(key) > len(SCALAR_PREFIX)
        }
        params["x"] = 1
        if not validate_formula(formula, params):
            self._log_issue(
                IssueType.INVALID_LINE_ITEM_FORMULA_DEPENDENCY,
                line_item,
                meta={"formula": formula, "formula_dependencies": sorted(params)},
            )

    def _check_rule(self, line_item: "BidEntity", rule: LineItemRule) -> None:
        rule_type = rule.rule_type
        contracts = contracts_from_mapping(rule.dependencies)

        if rule_type is RuleType.VALUE_EXPRESSION:
            if not rule.expression or not contracts:
                self._log_issue(IssueType.INCOMPLETE_LINE_ITEM_RULE, line_item, meta={"rule": rule.model_dump()})
            elif not validate_formula(rule.expression, {key: 1 for key in contracts}):
                self._log_issue(
                    IssueType.INVALID_LINE_ITEM_RULE_EXPRESSION,
                    line_item,
                    meta={"expression": rule.expression, "rule": rule.model_dump()},
                )
        elif rule_type is RuleType.TOGGLE_FIELD:
            toggle = rule.dependency("toggle_field")
            if toggle is None or not self._bid.entities.dependency_exists(toggle):
                self._log_issue(IssueType.INCOMPLETE_LINE_ITEM_RULE, line_item, meta={"rule": rule.model_dump()})
        elif rule_type is RuleType.LIST_FIELD and not contracts:
            self._log_issue(IssueType.RULE_UNDEFINED_DEPENDENCY, line_item, meta={"rule": rule.model_dump()})

        for key, contract in contracts.items():
            if contract.type is None or (rule_type is RuleType.TOGGLE_FIELD and key == "toggle_field"):
                continue
            if not self._bid.entities.dependency_exists(contract):
                self._log_issue(
                    IssueType.INVALID_DEPENDENCY,
                    line_item,
                    contract,
                    meta={"source_bid_entity_dependency_key": key, "rule_type": rule.type},
                )

    # =========================================================================
    # Reporting
    # =========================================================================

    def _log_issue(
        self,
        issue_type: IssueType,
        source: "BidEntity",
        contract: Optional[DependencyContract] = None,
        dependency_type: Optional[str] = None,
        dependency_id: Any = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> None:
        if contract is not None:
            dependency_type = contract.type
            dependency_id = contract.bid_entity_id
        issue = ValidationIssue(
            issue_type=issue_type,
            source_type=source.type.value,
            source_id=source.id,
            source_title=source.title,
            source_assembly_id=source.config.get("assembly_id") or None,
            dependency_type=dependency_type,
            dependency_id=dependency_id,
            meta=meta or {},
        )
        self._issues.append(issue)
        logger.debug(f"Validation issue {issue_type.value} on {source.type.value} {source.id}")
