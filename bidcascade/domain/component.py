"""
domain/component.py - Component entity

A component rolls up a set of line items and nested sub-components into
totals (cost, price, markup, tax, labor) plus per-item averages. It
recomputes on a short shared debounce whenever any child publishes
`updated`, so a burst of child edits costs one roll-up.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from bidcascade.core.enums import EntityEvent, EntityType
from bidcascade.core.values import confirm_number, round_to
from bidcascade.domain.entity import BidEntity

if TYPE_CHECKING:
    from bidcascade.domain.component_group import ComponentGroup
    from bidcascade.domain.line_item import LineItem

logger = logging.getLogger(__name__)


# Totals summed over children, then averages derived from them
SUMMED_PROPERTIES = (
    "cost",
    "price",
    "taxable_cost",
    "tax",
    "markup",
    "base",
    "wage",
    "burden",
    "quantity",
    "per_quantity",
    "non_labor_cost",
    "labor_hours",
    "labor_cost",
    "included_count",
    "included_labor_count",
)


class Component(BidEntity):
    """Roll-up of line items and sub-components."""

    entity_type = EntityType.COMPONENT

    def __init__(self, data: Dict[str, Any], bid=None, **kwargs):
        super().__init__(data, bid=bid, **kwargs)
        self._in_assessment = False

    # -------------------------------------------------------------------------
    # Totals
    # -------------------------------------------------------------------------

    @property
    def cost(self) -> float:
        return confirm_number(self._data.get("cost"))

    @property
    def price(self) -> float:
        return confirm_number(self._data.get("price"))

    @property
    def markup(self) -> float:
        return confirm_number(self._data.get("markup"))

    @property
    def tax(self) -> float:
        return confirm_number(self._data.get("tax"))

    @property
    def taxable_cost(self) -> float:
        return confirm_number(self._data.get("taxable_cost"))

    @property
    def tax_percent(self) -> float:
        return confirm_number(self._data.get("tax_percent"))

    @property
    def markup_percent(self) -> float:
        return confirm_number(self._data.get("markup_percent"))

    @property
    def labor_hours(self) -> float:
        return confirm_number(self._data.get("labor_hours"))

    @property
    def labor_cost(self) -> float:
        return confirm_number(self._data.get("labor_cost"))

    @property
    def non_labor_cost(self) -> float:
        return confirm_number(self._data.get("non_labor_cost"))

    @property
    def actual_cost(self) -> Any:
        return self._data.get("actual_cost")

    @actual_cost.setter
    def actual_cost(self, value: Any) -> None:
        self._data["actual_cost"] = value
        self.dirty()

    @property
    def actual_hours(self) -> Any:
        return self._data.get("actual_hours")

    @actual_hours.setter
    def actual_hours(self, value: Any) -> None:
        self._data["actual_hours"] = value
        self.dirty()

    @property
    def parent_component_id(self) -> Any:
        return self.config.get("parent_component_id")

    @property
    def component_group_id(self) -> Any:
        return self.config.get("component_group_id")

    def get_component_group(self) -> Optional["ComponentGroup"]:
        if self.component_group_id is None:
            return None
        return self.bid.component_groups(self.component_group_id)

    def compare(self) -> Dict[str, float]:
        """Difference between the loaded totals and the current ones."""
        return {
            name: round_to(
                confirm_number(self._original.get(name)) - confirm_number(self._data.get(name)), 4
            )
            for name in ("cost", "price", "labor_hours")
        }

    # -------------------------------------------------------------------------
    # Children
    # -------------------------------------------------------------------------

    def line_item_ids(self) -> List[str]:
        return [str(item_id) for item_id in self.config.get("line_items") or []]

    def sub_component_ids(self) -> List[str]:
        return [str(component_id) for component_id in self.config.get("components") or []]

    def get_line_items(self, include_sub_components: bool = False) -> List["LineItem"]:
        """Line items of this component, optionally including nested ones."""
        line_items = []
        for item_id in self.line_item_ids():
            line_item = self.bid.line_items(item_id)
            if line_item is not None:
                line_items.append(line_item)
        if include_sub_components:
            for sub_component in self.get_sub_components():
                line_items.extend(sub_component.get_line_items(True))
        return line_items

    def get_sub_components(self) -> List["Component"]:
        components = []
        for component_id in self.sub_component_ids():
            component = self.bid.components(component_id)
            if component is not None:
                components.append(component)
        return components

    def add_line_item(self, line_item_id: Any) -> None:
        line_items = self.config.setdefault("line_items", [])
        if str(line_item_id) not in self.line_item_ids():
            line_items.append(line_item_id)
            self.dirty()

    def remove_line_item(self, line_item_id: Any) -> bool:
        """Remove a line item from this component; True if it was listed."""
        line_items = self.config.get("line_items") or []
        kept = [item_id for item_id in line_items if str(item_id) != str(line_item_id)]
        if len(kept) == len(line_items):
            return False
        self.config["line_items"] = kept
        self.dirty()
        return True

    # -------------------------------------------------------------------------
    # Cascade
    # -------------------------------------------------------------------------

    def _apply(self, name: str, value: float) -> bool:
        """Store a total; True when it differs at 4 places."""
        number = confirm_number(value)
        current = self._data.get(name)
        if current is not None and round_to(confirm_number(current), 4) == round_to(number, 4):
            return False
        self._data[name] = number
        return True

    def _collect(self) -> Dict[str, float]:
        totals = dict.fromkeys(SUMMED_PROPERTIES, 0.0)

        for line_item in self.get_line_items():
            if not line_item.contributes:
                continue
            totals["included_count"] += 1
            if line_item.is_labor():
                totals["included_labor_count"] += 1
                totals["labor_cost"] += line_item.cost
                totals["labor_hours"] += line_item.labor_hours
            else:
                totals["non_labor_cost"] += line_item.cost
                totals["taxable_cost"] += line_item.cost
            totals["cost"] += line_item.cost
            totals["price"] += line_item.price
            totals["markup"] += line_item.markup
            totals["tax"] += line_item.tax
            totals["base"] += line_item.base
            totals["wage"] += line_item.wage
            totals["burden"] += line_item.burden
            totals["quantity"] += line_item.quantity
            totals["per_quantity"] += line_item.per_quantity

        for sub_component in self.get_sub_components():
            sub_component.assess()
            for name in SUMMED_PROPERTIES:
                totals[name] += sub_component.number_of(name)

        return totals

    def assess(self, force: bool = False) -> None:
        """Recompute totals from children; sub-components are assessed first."""
        if self._in_assessment or not self.is_assessable():
            return
        self._in_assessment = True
        try:
            self._begin_assessment()
            totals = self._collect()

            count = totals["included_count"]
            labor_count = totals["included_labor_count"]
            if self.bid.include_tax_in_markup():
                basis = totals["cost"] + totals["tax"]
            else:
                basis = totals["cost"]
            derived = {
                "markup_percent": totals["markup"] / basis * 100 if basis > 0 else 0,
                "tax_percent": totals["tax"] / totals["taxable_cost"] * 100 if totals["taxable_cost"] > 0 else 0,
                "base_avg": totals["base"] / count if count > 0 else 0,
                "wage_avg": totals["wage"] / labor_count if labor_count > 0 else 0,
                "burden_avg": totals["burden"] / labor_count if labor_count > 0 else 0,
                "quantity_avg": totals["quantity"] / count if count > 0 else 0,
                "per_quantity_avg": totals["per_quantity"] / count if count > 0 else 0,
            }

            changed = False
            for name, value in list(totals.items()) + list(derived.items()):
                changed = self._apply(name, value) or changed

            self._finish_assessment(changed, force)
        finally:
            self._in_assessment = False

    def bind(self) -> None:
        super().bind()
        delay = self.settings.component_delay_ms
        key = f"bid.{self.bid.id}.component.{self.id}.children"
        for line_item in self.get_line_items():
            self.listen(line_item, EntityEvent.UPDATED, lambda *_: self.assess(), delay_ms=delay, debounce_key=key)
        for sub_component in self.get_sub_components():
            self.listen(sub_component, EntityEvent.UPDATED, lambda *_: self.assess(), delay_ms=delay, debounce_key=key)
