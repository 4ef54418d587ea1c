"""
bidcascade Test Configuration and Fixtures

Provides a manual clock and scheduler, and a representative bid record:

    Modules        material, 100 x 180 (datatable price), 8% tax, 20% markup
    Install labor  labor, 100 x 0.5 hours at 40 wage + 10 burden, 20% markup
    Monitoring     material, base 500, included while field 2 is true
    Warranty       material, base 1000, excluded by its rule

Settled totals: cost 21000, tax 1440, markup 4200, price 26640.
"""

import copy

import pytest

from bidcascade.bootstrap.config import CascadeConfig, reset_config
from bidcascade.domain.bid import Bid
from bidcascade.domain.project import Project
from bidcascade.kernel.scheduler import DebounceScheduler, ManualClock


ALWAYS = {"type": "always_include", "activate_on": True}
NEVER = {"type": "always_include", "activate_on": False}


BID_RECORD = {
    "id": 1,
    "project_id": 10,
    "title": "Rooftop PV",
    "variables": {
        "wage": {"type": "number", "value": 40},
        "burden": {"type": "number", "value": 10},
        "tax": {"type": "number", "value": 8},
        "markup": {"type": "number", "value": 20},
        "markup_strategy": {"type": "boolean", "value": False},
    },
    "datatables": [
        {
            "id": 1,
            "title": "Modules",
            "config": {
                "columns": [
                    {"id": "model", "title": "Model", "is_key": True},
                    {"id": "watts", "title": "Watts"},
                    {"id": "price", "title": "Price"},
                ],
                "rows": [
                    {"id": "r1", "values": ["M-400", "400", "180"]},
                    {"id": "r2", "values": ["M-450", "450", "210"]},
                ],
            },
        },
    ],
    "fields": [
        {
            "id": 1,
            "title": "Module",
            "definition_id": 10,
            "value": "r1",
            "config": {
                "type": "list",
                "dependencies": {"datatable": {"type": "datatable", "bid_entity_id": 1}},
            },
        },
        {
            "id": 2,
            "title": "Include monitoring",
            "definition_id": 20,
            "value": True,
            "config": {"type": "boolean"},
        },
        {
            "id": 3,
            "title": "Module count",
            "definition_id": 30,
            "value": 100,
            "config": {"type": "number"},
        },
    ],
    "metrics": [
        {
            "id": 1,
            "title": "Watts",
            "definition_id": 40,
            "value": 0,
            "config": {
                "formula": "a * b",
                "dependencies": {
                    "a": {"type": "field", "bid_entity_id": 3},
                    "b": {"type": "field", "bid_entity_id": 1, "field": "watts"},
                },
            },
        },
    ],
    "line_items": [
        {
            "id": 1,
            "title": "Modules",
            "config": {
                "type": "material",
                "rule_inclusion": "all",
                "rules": [ALWAYS],
                "dependencies": {
                    "quantity": {"type": "field", "bid_entity_id": 3},
                    "per_quantity": {"type": "field", "bid_entity_id": 1, "field": "price"},
                    "tax": {"type": "bid_variable", "field": "tax"},
                    "markup": {"type": "bid_variable", "field": "markup"},
                },
            },
        },
        {
            "id": 2,
            "title": "Install labor",
            "config": {
                "type": "labor",
                "rule_inclusion": "all",
                "rules": [ALWAYS],
                "per_quantity": {"type": "value", "value": 0.5},
                "dependencies": {
                    "quantity": {"type": "field", "bid_entity_id": 3},
                    "wage": {"type": "bid_variable", "field": "wage"},
                    "burden": {"type": "bid_variable", "field": "burden"},
                    "markup": {"type": "bid_variable", "field": "markup"},
                },
            },
        },
        {
            "id": 3,
            "title": "Monitoring",
            "config": {
                "type": "material",
                "base": 500,
                "rule_inclusion": "all",
                "rules": [
                    {
                        "type": "toggle_field",
                        "activate_on": True,
                        "dependencies": {"toggle_field": {"type": "field", "bid_entity_id": 2}},
                    },
                ],
                "dependencies": {
                    "markup": {"type": "bid_variable", "field": "markup"},
                },
            },
        },
        {
            "id": 4,
            "title": "Warranty",
            "config": {
                "type": "material",
                "base": 1000,
                "rule_inclusion": "all",
                "rules": [NEVER],
            },
        },
    ],
    "components": [
        {
            "id": 1,
            "title": "Array",
            "definition_id": 100,
            "config": {"line_items": [1, 2]},
        },
        {
            "id": 2,
            "title": "Monitoring",
            "definition_id": 200,
            "config": {"line_items": [3]},
        },
    ],
    "assemblies": [],
}


def make_bid_record(**overrides):
    """Deep copy of the shared bid record with top-level overrides."""
    record = copy.deepcopy(BID_RECORD)
    record.update(overrides)
    return record


def make_line_item(item_id, base, rules=None, **extra):
    """Minimal material line item record priced by its base."""
    record = {
        "id": item_id,
        "title": f"Item {item_id}",
        "config": {
            "type": "material",
            "base": base,
            "rule_inclusion": "all",
            "rules": [ALWAYS] if rules is None else rules,
        },
    }
    record.update(extra)
    return record


@pytest.fixture(autouse=True)
def fresh_config():
    """Every test starts from the default configuration."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def scheduler(clock):
    return DebounceScheduler(clock=clock)


@pytest.fixture
def settings():
    return CascadeConfig()


@pytest.fixture
def bid_record():
    return make_bid_record()


@pytest.fixture
def bid(bid_record, scheduler, settings):
    """Unbound, unassessed bid built from the shared record."""
    return Bid.from_record(bid_record, scheduler=scheduler, settings=settings)


@pytest.fixture
def build_bid(scheduler, settings):
    """Factory building a bid on the test scheduler from any record."""
    def _build(record, bind=True):
        bid = Bid.from_record(record, scheduler=scheduler, settings=settings)
        if bind:
            bid.bind()
        return bid
    return _build


@pytest.fixture
def line_item_record():
    """Factory for minimal line item records."""
    return make_line_item


@pytest.fixture
def assessed_bid(bid):
    """Bound bid with every entity assessed, settled and marked clean."""
    bid.bind()
    bid.reassess_all(force=True)
    bid.scheduler.settle()
    bid.pristine()
    return bid


@pytest.fixture
def project(scheduler, settings):
    return Project({"id": 10, "title": "Warehouse"}, scheduler=scheduler, settings=settings)
