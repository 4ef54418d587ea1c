"""
domain/metric.py - Metric entity

A metric is a derived number: a formula over named dependency contracts,
optionally followed by a chain of manipulations. Each manipulation is a
formula of its own which sees the running value as `original`.

Setting `value` by hand overrides the metric until reset() is called.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from bidcascade.core.contracts import DependencyContract, contracts_from_mapping
from bidcascade.core.enums import EntityEvent, EntityType
from bidcascade.core.values import confirm_number, is_number, round_to
from bidcascade.domain.entity import BidEntity
from bidcascade.formula.evaluator import evaluate

logger = logging.getLogger(__name__)


class Metric(BidEntity):
    """Formula-driven number with manual override."""

    entity_type = EntityType.METRIC

    @property
    def value(self) -> Any:
        return self._data.get("value")

    @value.setter
    def value(self, value: Any) -> None:
        if not is_number(value):
            return
        number = confirm_number(value)
        if number == self._data.get("value"):
            return
        self.config["override"] = True
        self._data["value"] = number
        self.dirty()
        self.events.publish(EntityEvent.UPDATED, self)

    @property
    def actual_value(self) -> Any:
        return self._data.get("actual_value")

    @actual_value.setter
    def actual_value(self, value: Any) -> None:
        if confirm_number(value, 0):
            self._data["actual_value"] = value
            self.dirty()

    @property
    def is_overridden(self) -> bool:
        return bool(self.config.get("override", False))

    @property
    def manipulations(self) -> List[Dict[str, Any]]:
        return self.config.get("manipulations") or []

    # -------------------------------------------------------------------------
    # Calculation
    # -------------------------------------------------------------------------

    def _resolve_values(self, dependencies: Any) -> Dict[str, float]:
        return {
            name: confirm_number(self.entities.resolve_value(contract), 0)
            for name, contract in contracts_from_mapping(dependencies).items()
        }

    def _get_base_value(self) -> float:
        formula = self.config.get("formula")
        if not formula:
            return 0
        values = self._resolve_values(self.config.get("dependencies"))
        return confirm_number(evaluate(formula, values), 0)

    def _apply_manipulations(self, base_value: float) -> float:
        value = base_value
        for manipulation in self.manipulations:
            formula = manipulation.get("formula")
            if not formula:
                continue
            values = self._resolve_values(manipulation.get("dependencies"))
            values["original"] = value
            value = confirm_number(evaluate(formula, values), 0)
        return confirm_number(value, 0)

    def calculate(self) -> float:
        """Formula value followed by every manipulation, ignoring overrides."""
        return self._apply_manipulations(self._get_base_value())

    def assess(self, force: bool = False) -> None:
        """Recompute unless overridden; publish `updated` on a change."""
        if not self.is_assessable():
            return
        self._begin_assessment()
        changed = False
        if not self.is_overridden:
            final_value = self.calculate()
            current = confirm_number(self._data.get("value"), 0)
            if round_to(current, 7) != round_to(final_value, 7):
                self._data["value"] = final_value
                changed = True
                logger.debug(f"Metric {self.id} '{self.title}': {current} -> {final_value}")
        self._finish_assessment(changed, force)

    def reset(self) -> None:
        """Drop the manual override and recompute."""
        self.config["override"] = False
        self.dirty()
        self.assess()

    # -------------------------------------------------------------------------
    # Binding
    # -------------------------------------------------------------------------

    def dependency_contracts(self) -> List[DependencyContract]:
        contracts = super().dependency_contracts()
        for manipulation in self.manipulations:
            contracts.extend(contracts_from_mapping(manipulation.get("dependencies")).values())
        return contracts

    def bind(self) -> None:
        super().bind()
        resolver = self.entities
        for contract in contracts_from_mapping(self.config.get("dependencies")).values():
            dependency = resolver.resolve_entity(contract)
            if isinstance(dependency, BidEntity):
                self.listen(dependency, EntityEvent.UPDATED, lambda *_: self.assess())
            else:
                logger.debug(f"Metric {self.id}: unresolved dependency {contract.model_dump()}")

        for manipulation in self.manipulations:
            for contract in contracts_from_mapping(manipulation.get("dependencies")).values():
                dependency = resolver.resolve_entity(contract)
                if isinstance(dependency, BidEntity):
                    self.listen(
                        dependency,
                        EntityEvent.UPDATED,
                        lambda *_: self.assess(),
                        suffix=".manipulation",
                    )
