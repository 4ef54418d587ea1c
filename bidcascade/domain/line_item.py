"""
domain/line_item.py - Line item entity

A line item is one priced row of a bid. Its pricing pipeline runs in a
fixed order, each step reading the values the previous steps produced:

    base, burden, wage, quantity, per_quantity (x scalar), escalator,
    labor_hours, cost, tax_percent, tax, markup_percent, markup, price,
    is_included

Every value is either derived (from config constants and dependency
contracts) or overridden by the user. Setting a value through its property
records an override, marks the item dirty and publishes `property.updated`;
a short self-debounce then runs assess(force=True) once per burst of edits.

Values are stored rounded to 6 places and compared at 3, so float noise
does not count as a change.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from bidcascade.core.contracts import SCALAR_PREFIX, DependencyContract, contracts_from_mapping, rules_from_config
from bidcascade.core.enums import EntityEvent, EntityType, FieldType
from bidcascade.core.values import confirm_number, is_number, round_to
from bidcascade.domain.entity import BidEntity
from bidcascade.formula.evaluator import evaluate
from bidcascade.rules.service import LineItemRuleService

if TYPE_CHECKING:
    from bidcascade.domain.component import Component

logger = logging.getLogger(__name__)


LABOR_TYPE = "labor"


class LineItem(BidEntity):
    """Priced row of a bid."""

    entity_type = EntityType.LINE_ITEM

    def __init__(self, data: Dict[str, Any], bid=None, **kwargs):
        super().__init__(data, bid=bid, **kwargs)
        self._rule_service = LineItemRuleService()
        self.events.subscribe_delayed(
            EntityEvent.PROPERTY_UPDATED,
            self.settings.line_item_self_delay_ms,
            "self",
            lambda *_: self.assess(True),
            level=self.level,
        )

    # =========================================================================
    # Overrides
    # =========================================================================

    def _overrides(self) -> Dict[str, Any]:
        """Writable overrides mapping, normalised in the config."""
        overrides = self.config.get("overrides")
        if not isinstance(overrides, dict):
            overrides = self.config["overrides"] = self._current_overrides()
        return overrides

    def override(self, name: str, value: bool) -> None:
        """Flag a property as user-set (True) or derived (False)."""
        bid = self.bid
        if bid is not None and bid.is_read_only():
            return
        self._overrides()[name] = value

    def _current_overrides(self) -> Dict[str, Any]:
        """Overrides as a mapping, without touching the stored config."""
        overrides = self.config.get("overrides")
        # Backends serialise an empty mapping as []
        if isinstance(overrides, list):
            merged: Dict[str, Any] = {}
            for item in overrides:
                if isinstance(item, dict):
                    merged.update(item)
            return merged
        return overrides if isinstance(overrides, dict) else {}

    def is_overridden(self, name: str) -> bool:
        return self._current_overrides().get(name) is True

    def reset_property(self, name: str) -> None:
        """Return one property to its derived value."""
        if not self.is_assessable():
            return
        if name not in self._current_overrides():
            return
        del self._overrides()[name]
        self.dirty()
        self.events.publish(EntityEvent.PROPERTY_UPDATED, name)

    def reset_markup(self) -> None:
        if self.is_assessable():
            self.reset_property("markup")
            self.reset_property("markup_percent")

    def reset(self) -> None:
        """Drop every override and recompute."""
        if not self.is_assessable():
            return
        self.config["overrides"] = {}
        self._data["multiplier"] = 1
        self.assess(True)

    def _accept(self, name: str, value: Any) -> Optional[float]:
        """Numeric reading of a new value, or None if it is not a number or unchanged."""
        if not is_number(value):
            return None
        number = confirm_number(value)
        if self._data.get(name) == number:
            return None
        return number

    def _edited(self) -> None:
        self.is_included = True
        self.dirty()
        self.events.publish(EntityEvent.PROPERTY_UPDATED, self)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def base(self) -> float:
        return confirm_number(self._data.get("base"))

    @base.setter
    def base(self, value: Any) -> None:
        if not is_number(value):
            return
        self._data["base"] = confirm_number(value)
        self.override("base", True)
        for name in ("cost", "price", "markup", "multiplier"):
            self.override(name, False)
        self._data["multiplier"] = 1
        self._edited()

    @property
    def wage(self) -> float:
        return confirm_number(self._data.get("wage"))

    @wage.setter
    def wage(self, value: Any) -> None:
        if not is_number(value):
            return
        self._data["wage"] = confirm_number(value)
        self.override("wage", True)
        self._edited()

    @property
    def burden(self) -> float:
        return confirm_number(self._data.get("burden"))

    @burden.setter
    def burden(self, value: Any) -> None:
        number = self._accept("burden", value)
        if number is None:
            return
        self._data["burden"] = number
        self.override("burden", True)
        self._edited()

    @property
    def labor_hours(self) -> float:
        return confirm_number(self._data.get("labor_hours"))

    @labor_hours.setter
    def labor_hours(self, value: Any) -> None:
        number = self._accept("labor_hours", value)
        if number is None:
            return
        self._data["labor_hours"] = number
        self.override("labor_hours", True)
        self._edited()

    @property
    def quantity(self) -> float:
        return confirm_number(self._data.get("quantity"))

    @quantity.setter
    def quantity(self, value: Any) -> None:
        number = self._accept("quantity", value)
        if number is None:
            return
        self._data["quantity"] = number
        self.override("quantity", True)
        for name in ("cost", "price", "markup", "multiplier"):
            self.override(name, False)
        self._data["multiplier"] = 1
        self._edited()

    @property
    def per_quantity(self) -> float:
        return confirm_number(self._data.get("per_quantity"))

    @per_quantity.setter
    def per_quantity(self, value: Any) -> None:
        number = self._accept("per_quantity", value)
        if number is None:
            return
        self._data["per_quantity"] = number
        self.override("per_quantity", True)
        for name in ("cost", "price", "markup", "multiplier"):
            self.override(name, False)
        self._data["multiplier"] = 1
        self._edited()

    @property
    def escalator(self) -> float:
        return confirm_number(self._data.get("escalator"), 1)

    @escalator.setter
    def escalator(self, value: Any) -> None:
        number = self._accept("escalator", value)
        if number is None:
            return
        self._data["escalator"] = number
        self.override("cost", False)
        self.override("price", False)
        self.override("escalator", True)
        self._edited()

    @property
    def multiplier(self) -> float:
        return confirm_number(self._data.get("multiplier"), 1)

    @multiplier.setter
    def multiplier(self, value: Any) -> None:
        number = self._accept("multiplier", value)
        if number is None:
            return
        self._data["multiplier"] = number
        self.override("multiplier", True)
        self.override("cost", False)
        self.override("price", False)
        self._edited()

    @property
    def cost(self) -> float:
        return confirm_number(self._data.get("cost"))

    @cost.setter
    def cost(self, value: Any) -> None:
        number = self._accept("cost", value)
        if number is None:
            return
        self._data["cost"] = number
        self._data["escalator"] = 1
        self.override("cost", True)
        self.override("escalator", True)
        self.override("price", False)
        self.is_included = True
        self.dirty()
        self._apply_cost_change()
        self.events.publish(EntityEvent.PROPERTY_UPDATED, self)

    @property
    def tax(self) -> float:
        return confirm_number(self._data.get("tax"))

    @tax.setter
    def tax(self, value: Any) -> None:
        number = self._accept("tax", value)
        if number is None:
            return
        self._data["tax"] = number
        self.override("tax", True)
        self.override("tax_percent", True)
        self.override("price", False)
        self.is_included = True
        self.dirty()

        cost = self.cost
        self._data["tax_percent"] = confirm_number(self.tax / cost) * 100 if cost > 0 else 0

        if self._include_tax_in_markup():
            self.markup = confirm_number(cost + self.tax) * (self.markup_percent / 100)
        else:
            self.assess()

    @property
    def tax_percent(self) -> float:
        return confirm_number(self._data.get("tax_percent"))

    @tax_percent.setter
    def tax_percent(self, value: Any) -> None:
        number = self._accept("tax_percent", value)
        if number is None:
            return
        self._data["tax_percent"] = number
        self.override("tax_percent", True)
        self.override("price", False)
        self._data["tax"] = self.cost * (number / 100)
        self._edited()

    @property
    def markup(self) -> float:
        return confirm_number(self._data.get("markup"))

    @markup.setter
    def markup(self, value: Any) -> None:
        number = self._accept("markup", value)
        if number is None:
            return
        self._data["markup"] = round_to(number, 4)
        self.override("price", False)
        self._apply_markup_change()
        self._edited()

    @property
    def markup_percent(self) -> float:
        return round_to(confirm_number(self._data.get("markup_percent")), 4)

    @markup_percent.setter
    def markup_percent(self, value: Any) -> None:
        number = self._accept("markup_percent", value)
        if number is None:
            return
        self._data["markup_percent"] = round_to(number, 4)
        self.override("markup_percent", True)
        self.override("price", False)
        self._apply_markup_percent()
        self._edited()

    @property
    def price(self) -> float:
        return round_to(confirm_number(self._data.get("price")), 4)

    @price.setter
    def price(self, value: Any) -> None:
        number = self._accept("price", value)
        if number is None:
            return
        self._data["price"] = number
        self._apply_price_change()
        self.is_included = True
        self.dirty()
        self.override("price", True)
        self.events.publish(EntityEvent.PROPERTY_UPDATED, self)

    @property
    def is_included(self) -> bool:
        return bool(self._data.get("is_included"))

    @is_included.setter
    def is_included(self, value: Any) -> None:
        if not isinstance(value, bool) or self._data.get("is_included") == value:
            return
        self._data["is_included"] = value
        self.override("is_included", True)
        self.dirty()
        self.events.publish(EntityEvent.PROPERTY_UPDATED, self)

    @property
    def is_active(self) -> bool:
        """Inactive line items keep their values but contribute nothing upward."""
        return self._data.get("is_active", True) is not False

    @is_active.setter
    def is_active(self, value: Any) -> None:
        if not isinstance(value, bool) or self.is_active == value:
            return
        self._data["is_active"] = value
        self.dirty()
        self.events.publish(EntityEvent.PROPERTY_UPDATED, self)

    @property
    def contributes(self) -> bool:
        """Counted in component and bid totals."""
        return self.is_active and self.is_included

    @property
    def subtotal(self) -> float:
        return confirm_number(self.quantity * self.per_quantity + self.base)

    @property
    def scalar(self) -> float:
        """Per-quantity scale factor from the scalar formula (1 without one)."""
        resolver = self.entities
        dependencies = self.config.get("dependencies") or {}
        values: Dict[str, Any] = {}
        for name, contract in contracts_from_mapping(dependencies).items():
            if name.startswith(SCALAR_PREFIX) and len(name) > len(SCALAR_PREFIX):
                values[name[len(SCALAR_PREFIX)]] = confirm_number(resolver.resolve_value(contract), 0)
        values["x"] = confirm_number(resolver.resolve_value(dependencies.get("scalar")), 1)
        return confirm_number(evaluate(self.config.get("formula"), values), 1)

    def is_labor(self) -> bool:
        return self.config.get("type") == LABOR_TYPE

    # =========================================================================
    # Setter side effects
    # =========================================================================

    def _include_tax_in_markup(self) -> bool:
        bid = self.bid
        return bid is not None and bid.include_tax_in_markup()

    def _apply_markup_change(self) -> None:
        self.override("markup_percent", True)
        basis = self.cost + self.tax if self._include_tax_in_markup() else self.cost
        ratio = self.markup / basis if basis else 0
        self._data["markup_percent"] = round_to(confirm_number(ratio) * 100, 4)

    def _apply_markup_percent(self) -> None:
        basis = self.cost + self.tax if self._include_tax_in_markup() else self.cost
        self._data["markup"] = basis * (self.markup_percent / 100)

    def _apply_cost_change(self) -> None:
        subtotal = self.subtotal
        self._data["multiplier"] = self.cost / subtotal if subtotal > 0 else 1

    def _apply_price_change(self) -> None:
        if self.cost == 0:
            rate = (self.tax_percent + self.markup_percent) / 100
            new_cost = confirm_number(self.price / (1 + rate)) if rate != -1 else 0
            if self.is_labor():
                self.base = _reverse_labor_hours(new_cost, self.wage, self.burden)
            else:
                self.base = new_cost
        else:
            change = self.price - (self.cost + self.tax + self.markup)
            self.markup = confirm_number(self.markup + change)

    # =========================================================================
    # Derived values
    # =========================================================================

    def _dependency_value(self, name: str) -> Any:
        contract = (self.config.get("dependencies") or {}).get(name)
        return self.entities.resolve_value(contract)

    def _get_base_value(self) -> float:
        if self.is_overridden("base"):
            return self.base
        if self.config.get("base") is None:
            return 0
        return round_to(confirm_number(self.config.get("base")), 4)

    def _get_burden_value(self) -> float:
        if self.is_overridden("burden"):
            return self.burden
        return confirm_number(self._dependency_value("burden"))

    def _get_wage_value(self) -> float:
        if self.is_overridden("wage"):
            return round_to(self.wage, 4)
        return round_to(confirm_number(self._dependency_value("wage")), 4)

    def _get_quantity_value(self) -> float:
        if self.is_overridden("quantity"):
            return round_to(self.quantity, 4)
        setting = self.config.get("quantity")
        if isinstance(setting, dict) and setting.get("type") == "value":
            value = setting.get("value")
        else:
            value = self._dependency_value("quantity")
        return round_to(confirm_number(value), 4)

    def _get_per_quantity_value(self) -> float:
        if self.is_overridden("per_quantity"):
            return round_to(self.per_quantity, 4)
        setting = self.config.get("per_quantity")
        if isinstance(setting, dict) and setting.get("type") == "value":
            value = setting.get("value")
        else:
            value = self._dependency_value("per_quantity")
        scaled = confirm_number(value) * round_to(self.scalar, 7)
        return round_to(confirm_number(scaled), 4)

    def _get_escalator_value(self) -> float:
        if self.is_overridden("escalator"):
            return round_to(self.escalator, 4)
        return round_to(confirm_number(self._dependency_value("escalator"), 1), 4)

    def _get_labor_hours_value(self) -> float:
        if self.is_overridden("labor_hours"):
            return round_to(self.labor_hours, 4)
        hours = self.subtotal * self.multiplier if self.is_labor() else 0
        return round_to(confirm_number(hours), 4)

    def _get_cost_value(self) -> float:
        if self.is_overridden("cost"):
            return round_to(self.cost, 4)
        if self.is_labor():
            cost = self.labor_hours * (self.wage + self.burden)
        else:
            cost = self.subtotal * self.multiplier
        return round_to(confirm_number(cost * self.escalator), 4)

    def _get_tax_percent_value(self) -> float:
        if self.is_overridden("tax_percent"):
            return round_to(self.tax_percent, 4)
        return round_to(confirm_number(self._dependency_value("tax")), 4)

    def _get_tax_value(self) -> float:
        if self.is_overridden("tax"):
            return round_to(self.tax, 4)
        if self.is_labor() or self.cost <= 0:
            return 0
        return round_to(confirm_number(self.cost * (self.tax_percent / 100)), 4)

    def _get_markup_percent_value(self) -> float:
        if self.is_overridden("markup_percent"):
            return round_to(self.markup_percent, 4)
        return round_to(confirm_number(self._dependency_value("markup")), 4)

    def _get_markup_value(self) -> float:
        if self.is_overridden("markup"):
            return round_to(self.markup, 4)
        basis = self.cost + self.tax if self._include_tax_in_markup() else self.cost
        return round_to(basis * (self.markup_percent / 100), 4)

    def _get_price_value(self) -> float:
        if self.is_overridden("price"):
            return self.price
        return round_to(confirm_number(self.cost + self.tax + self._get_markup_value()), 4)

    def _get_is_included_value(self) -> bool:
        if self.is_overridden("is_included"):
            return self.is_included
        return self._rule_service.is_included(self)

    def _apply_property(self, name: str, value: Any) -> bool:
        """Store a derived value; True when it differs at 3 places."""
        current = self._data.get(name)
        if isinstance(value, bool):
            if current == value:
                return False
            self._data[name] = value
            return True
        old = round_to(confirm_number(current), 3) if current is not None else None
        if old == round_to(value, 3):
            return False
        self._data[name] = round_to(value, 6)
        return True

    # =========================================================================
    # Cascade
    # =========================================================================

    def _begin_assessment(self) -> None:
        super()._begin_assessment()
        bid = self.bid
        if bid is not None:
            bid.events.publish(EntityEvent.ASSESSING, bid)

    def assess(self, force: bool = False) -> None:
        """Run the pricing pipeline; publish `updated` if anything changed."""
        if not self.is_assessable():
            return
        self._begin_assessment()

        pipeline = (
            ("base", self._get_base_value),
            ("burden", self._get_burden_value),
            ("wage", self._get_wage_value),
            ("quantity", self._get_quantity_value),
            ("per_quantity", self._get_per_quantity_value),
            ("escalator", self._get_escalator_value),
            ("labor_hours", self._get_labor_hours_value),
            ("cost", self._get_cost_value),
            ("tax_percent", self._get_tax_percent_value),
            ("tax", self._get_tax_value),
            ("markup_percent", self._get_markup_percent_value),
            ("markup", self._get_markup_value),
            ("price", self._get_price_value),
            ("is_included", self._get_is_included_value),
        )
        changed = False
        for name, derive in pipeline:
            changed = self._apply_property(name, derive()) or changed

        if changed:
            logger.debug(
                f"Line item {self.id} '{self.title}': cost={self.cost} price={self.price} "
                f"included={self.is_included}"
            )
        self._finish_assessment(changed, force)

    def dependency_contracts(self) -> List[DependencyContract]:
        contracts = super().dependency_contracts()
        for rule in rules_from_config(self.config.get("rules")):
            contracts.extend(rule.contracts())
        return contracts

    def bind(self) -> None:
        super().bind()
        if not self.is_assessable():
            return
        resolver = self.entities
        for contract in self.dependency_contracts():
            dependency = resolver.resolve_entity(contract)
            if not isinstance(dependency, BidEntity):
                continue
            self.listen(dependency, EntityEvent.UPDATED, lambda *_: self.assess())
            # A list field's value is a datatable row; cell edits matter too
            if dependency.entity_type is EntityType.FIELD and dependency.field_type == FieldType.LIST.value:
                for field_dependency in dependency.dependencies():
                    self.listen(field_dependency, EntityEvent.UPDATED, lambda *_: self.assess())

    def is_dirty(self) -> bool:
        return self._is_dirty or self._config_changed()

    def export_data(self) -> Dict[str, Any]:
        data = super().export_data()
        if not self._config_changed():
            data.pop("config", None)
        return data

    # =========================================================================
    # Components
    # =========================================================================

    def components(self) -> List["Component"]:
        """Components listing this line item."""
        return [
            component for component in self.bid.components().values()
            if str(self.id) in component.line_item_ids()
        ]

    def move_to_component(self, component: "Component") -> None:
        """Move this line item into a component, leaving its siblings in the same group."""
        group_id = component.config.get("component_group_id")
        for current in self.bid.components().values():
            if current is component or current.config.get("component_group_id") != group_id:
                continue
            if current.remove_line_item(self.id):
                current.assess()
        component.add_line_item(self.id)
        component.bind()
        component.assess()


def _reverse_labor_hours(cost: float, wage: float, burden: float) -> float:
    rate = wage + burden
    return confirm_number(cost / rate) if rate else 0
