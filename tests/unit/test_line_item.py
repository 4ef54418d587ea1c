"""
Unit tests for domain/line_item.py

Tests the pricing pipeline, user overrides and the self-debounced
reassessment after property edits.
"""

import pytest
from unittest.mock import Mock

from bidcascade.core.enums import AssessmentState, EntityEvent


@pytest.fixture
def modules(assessed_bid):
    return assessed_bid.line_items(1)


@pytest.fixture
def labor(assessed_bid):
    return assessed_bid.line_items(2)


class TestPricingPipeline:
    """Test derived values after a full assessment."""

    def test_material_item(self, modules):
        assert modules.quantity == 100
        assert modules.per_quantity == 180
        assert modules.subtotal == 18000
        assert modules.cost == 18000
        assert modules.tax_percent == 8
        assert modules.tax == 1440
        assert modules.markup_percent == 20
        assert modules.markup == 3600
        assert modules.price == 23040
        assert modules.is_included is True
        assert modules.contributes is True

    def test_labor_item(self, labor):
        assert labor.is_labor()
        assert labor.per_quantity == 0.5
        assert labor.labor_hours == 50
        assert labor.wage == 40
        assert labor.burden == 10
        assert labor.cost == 2500
        assert labor.tax == 0
        assert labor.markup == 500
        assert labor.price == 3000

    def test_base_priced_item(self, assessed_bid):
        monitoring = assessed_bid.line_items(3)
        assert monitoring.base == 500
        assert monitoring.cost == 500
        assert monitoring.price == 600

    def test_excluded_item_still_priced(self, assessed_bid):
        warranty = assessed_bid.line_items(4)
        assert warranty.is_included is False
        assert warranty.contributes is False
        assert warranty.cost == 1000

    def test_escalator_defaults_to_one(self, modules):
        assert modules.escalator == 1
        assert modules.multiplier == 1

    def test_assess_is_idempotent(self, modules):
        handler = Mock()
        modules.events.subscribe(EntityEvent.UPDATED, "test", handler)

        modules.assess()
        modules.assess()

        handler.assert_not_called()
        assert modules.assessment_state is AssessmentState.ASSESSED

    def test_scalar_formula(self, bid_record, build_bid):
        config = bid_record["line_items"][0]["config"]
        config["formula"] = "x * 2 + a"
        config["dependencies"]["scalar"] = {"type": "bid_variable", "field": "burden"}
        config["dependencies"]["scalar_a"] = {"type": "bid_variable", "field": "tax"}
        bid = build_bid(bid_record)
        bid.reassess_all(force=True)

        line_item = bid.line_items(1)
        assert line_item.scalar == 28
        assert line_item.per_quantity == 180 * 28

    def test_escalator_dependency(self, bid_record, build_bid):
        bid_record["variables"]["escalator"] = {"type": "number", "value": 1.1}
        bid_record["line_items"][0]["config"]["dependencies"]["escalator"] = {
            "type": "bid_variable", "field": "escalator",
        }
        bid = build_bid(bid_record)
        bid.reassess_all(force=True)

        assert bid.line_items(1).cost == pytest.approx(19800)

    def test_read_only_bid_is_not_assessed(self, assessed_bid, modules):
        assessed_bid.lock()
        handler = Mock()
        modules.events.subscribe(EntityEvent.ASSESSING, "test", handler)
        modules.assess(True)
        handler.assert_not_called()


class TestPropertyEdits:
    """Test setters, overrides and the self-debounce."""

    def test_quantity_override(self, assessed_bid, modules):
        modules.quantity = 50

        assert modules.is_overridden("quantity")
        assert modules.is_dirty()
        assert modules.cost == 18000

        assessed_bid.scheduler.settle()
        assert modules.cost == 9000
        assert modules.tax == 720
        assert modules.price == 11520

    def test_burst_of_edits_assesses_once(self, assessed_bid, modules):
        handler = Mock()
        modules.events.subscribe(EntityEvent.ASSESSED, "test", handler)

        modules.quantity = 10
        modules.quantity = 20
        modules.quantity = 30
        assessed_bid.scheduler.settle()

        handler.assert_called_once()
        assert modules.cost == 5400

    def test_non_numeric_edit_ignored(self, assessed_bid, modules):
        modules.quantity = "many"
        assert not modules.is_overridden("quantity")
        assert assessed_bid.scheduler.pending_count == 0

    def test_cost_override(self, assessed_bid, modules):
        modules.cost = 20000
        assert modules.multiplier == pytest.approx(20000 / 18000)

        assessed_bid.scheduler.settle()
        assert modules.is_overridden("cost")
        assert modules.cost == 20000
        assert modules.tax == 1600
        assert modules.markup == 4000
        assert modules.price == 25600

    def test_markup_percent_edit(self, assessed_bid, modules):
        modules.markup_percent = 25
        assert modules.markup == 4500

        assessed_bid.scheduler.settle()
        assert modules.price == 23940

    def test_markup_edit_sets_percent(self, assessed_bid, modules):
        modules.markup = 5400
        assert modules.markup_percent == 30
        assert modules.is_overridden("markup_percent")

        assessed_bid.scheduler.settle()
        assert modules.markup == 5400
        assert modules.price == 24840

    def test_price_edit_moves_markup(self, assessed_bid, modules):
        modules.price = 24040
        assert modules.markup == 4600

        assessed_bid.scheduler.settle()
        assert modules.is_overridden("price")
        assert modules.price == 24040
        assert modules.markup_percent == pytest.approx(25.5556)

    def test_price_edit_without_cost_sets_base(self, line_item_record, build_bid):
        record = {"id": 9, "line_items": [line_item_record(1, 0)], "variables": {}}
        bid = build_bid(record)
        bid.reassess_all(force=True)
        line_item = bid.line_items(1)

        line_item.price = 250
        bid.scheduler.settle()

        assert line_item.base == 250
        assert line_item.cost == 250

    def test_tax_edit(self, assessed_bid, modules):
        modules.tax = 900
        assert modules.tax_percent == pytest.approx(5)

        assessed_bid.scheduler.settle()
        assert modules.tax == 900
        assert modules.price == 18000 + 900 + 3600

    def test_tax_percent_edit(self, assessed_bid, modules):
        modules.tax_percent = 10
        assert modules.tax == 1800

        assessed_bid.scheduler.settle()
        assert modules.price == 18000 + 1800 + 3600

    def test_wage_edit(self, assessed_bid, labor):
        labor.wage = 50
        assessed_bid.scheduler.settle()
        assert labor.cost == 3000

    def test_labor_hours_edit(self, assessed_bid, labor):
        labor.labor_hours = 10
        assessed_bid.scheduler.settle()
        assert labor.cost == 500

    def test_escalator_edit(self, assessed_bid, modules):
        modules.escalator = 1.5
        assessed_bid.scheduler.settle()
        assert modules.cost == 27000

    def test_edit_on_read_only_bid(self, assessed_bid, modules):
        assessed_bid.lock()
        modules.quantity = 50
        assessed_bid.scheduler.settle()

        assert not modules.is_overridden("quantity")
        assert modules.cost == 18000

    def test_include_override(self, assessed_bid):
        warranty = assessed_bid.line_items(4)
        warranty.is_included = True
        assessed_bid.scheduler.settle()

        assert warranty.is_overridden("is_included")
        assert warranty.is_included is True

    def test_is_active(self, assessed_bid, modules):
        modules.is_active = False
        assert modules.contributes is False
        assert modules.is_dirty()


class TestReset:
    """Test returning to derived values."""

    def test_reset_property(self, assessed_bid, modules):
        modules.quantity = 50
        assessed_bid.scheduler.settle()

        modules.reset_property("quantity")
        assessed_bid.scheduler.settle()

        assert not modules.is_overridden("quantity")
        assert modules.cost == 18000

    def test_reset_property_not_overridden(self, assessed_bid, modules):
        modules.reset_property("quantity")
        assert not modules.is_dirty()

    def test_reset(self, assessed_bid, modules):
        modules.cost = 20000
        assessed_bid.scheduler.settle()

        modules.reset()

        assert modules.multiplier == 1
        assert modules.cost == 18000
        assert not modules.is_overridden("cost")

    def test_reset_markup(self, assessed_bid, modules):
        modules.markup_percent = 25
        assessed_bid.scheduler.settle()

        modules.reset_markup()
        assessed_bid.scheduler.settle()

        assert modules.markup_percent == 20
        assert modules.markup == 3600

    def test_list_shaped_overrides(self, modules):
        modules.config["overrides"] = [{"quantity": True}, {"cost": False}]
        assert modules.is_overridden("quantity")
        assert not modules.is_overridden("cost")
        assert modules.config["overrides"] == [{"quantity": True}, {"cost": False}]


class TestDependencies:
    """Test dependency wiring."""

    def test_field_update_reassesses(self, assessed_bid, modules):
        assessed_bid.fields(3).value = 50
        assert modules.cost == 9000

    def test_datatable_backed_field_selection(self, assessed_bid, modules):
        assessed_bid.fields(1).value = "r2"
        assert modules.per_quantity == 210
        assert modules.cost == 21000

    def test_variable_update_reassesses(self, assessed_bid, modules, labor):
        assessed_bid.variables["markup"].value = 10
        assert modules.markup == 1800
        assert labor.markup == 250

    def test_toggle_rule_follows_field(self, assessed_bid):
        monitoring = assessed_bid.line_items(3)
        assessed_bid.fields(2).value = False
        assert monitoring.is_included is False

    def test_dependencies(self, assessed_bid, modules):
        dependencies = modules.dependencies()
        assert assessed_bid.fields(1) in dependencies
        assert assessed_bid.fields(3) in dependencies
        assert assessed_bid.variables["tax"] in dependencies

    def test_rule_contracts_are_dependencies(self, assessed_bid):
        assert assessed_bid.fields(2) in assessed_bid.line_items(3).dependencies()

    def test_listens_to_list_field_datatable(self, assessed_bid):
        requesters = {
            sub.requester_id for sub in assessed_bid.datatables(1).events.subscriptions(EntityEvent.UPDATED)
        }
        assert "line_item.1" in requesters


class TestComponents:
    """Test component membership."""

    def test_components(self, assessed_bid, modules):
        assert modules.components() == [assessed_bid.components(1)]

    def test_move_to_component(self, assessed_bid, modules):
        array = assessed_bid.components(1)
        monitoring = assessed_bid.components(2)

        modules.move_to_component(monitoring)

        assert "1" not in array.line_item_ids()
        assert "1" in monitoring.line_item_ids()
        assert array.cost == 2500
        assert monitoring.cost == 18500


class TestPersistence:
    """Test dirty tracking and export."""

    def test_clean_after_pristine(self, modules):
        assert not modules.is_dirty()
        assert "config" not in modules.export_data()

    def test_override_dirties_config(self, assessed_bid, modules):
        modules.quantity = 40
        data = modules.export_data()
        assert data["config"]["overrides"]["quantity"] is True
        assert data["quantity"] == 40
