"""
End-to-end cascade tests: field edits flowing through line items and
components to the bid and its project, on a manual clock.
"""

import pytest
from unittest.mock import Mock

from bidcascade.core.enums import EntityEvent
from bidcascade.domain.bid import Bid


pytestmark = pytest.mark.integration

NEVER = {"type": "always_include", "activate_on": False}


@pytest.fixture
def portfolio(project, bid_record, scheduler, settings):
    """Project with the shared bid attached, bound and settled."""
    bid = Bid.from_record(bid_record, scheduler=scheduler, settings=settings)
    project.attach_bid(bid)
    project.bind()
    bid.reassess_all(force=True)
    scheduler.settle()
    project.pristine()
    return project, bid


class TestInclusion:
    """Only active, included line items reach the totals."""

    def test_excluded_and_inactive_items(self, project, scheduler, settings, line_item_record):
        bid = Bid.from_record(
            {
                "id": 5,
                "project_id": 10,
                "line_items": [
                    line_item_record(1, 100),
                    line_item_record(2, 50, rules=[NEVER]),
                    line_item_record(3, 1000, is_active=False),
                ],
                "components": [
                    {"id": 1, "definition_id": 1, "config": {"line_items": [1, 2, 3]}},
                ],
            },
            scheduler=scheduler,
            settings=settings,
        )
        project.attach_bid(bid)
        project.bind()
        bid.reassess_all(force=True)
        scheduler.settle()

        assert bid.cost == 100
        assert bid.components(1).cost == 100
        assert project.cost == 100

        bid.line_items(1).base = 300
        scheduler.settle()

        assert bid.cost == 300
        assert bid.components(1).cost == 300
        assert project.cost == 300


class TestPropagation:
    """A field edit reaches every level."""

    def test_field_edit(self, portfolio):
        project, bid = portfolio
        assert project.cost == 21000

        bid.fields(3).value = 120
        bid.scheduler.settle()

        assert bid.line_items(1).cost == 21600
        assert bid.line_items(2).cost == 3000
        assert bid.metrics(1).value == 48000
        assert bid.components(1).cost == 24600
        assert bid.cost == 25100
        assert bid.price == 31848
        assert project.cost == 25100
        assert project.watts == 48000
        assert project.component_summary["100"].price_per_watt == pytest.approx(31248 / 48000)

    def test_burst_assesses_each_level_once(self, portfolio):
        project, bid = portfolio
        bid_handler = Mock()
        project_handler = Mock()
        bid.events.subscribe(EntityEvent.ASSESSED, "test", bid_handler)
        project.events.subscribe(EntityEvent.ASSESSED, "test", project_handler)

        for count in (110, 120, 130, 140):
            bid.fields(3).value = count
        bid.scheduler.settle()

        bid_handler.assert_called_once()
        project_handler.assert_called_once()
        assert bid.line_items(1).quantity == 140
        assert project.cost == 140 * 180 + 140 * 0.5 * 50 + 500

    def test_toggle_rule_removes_item(self, portfolio):
        project, bid = portfolio
        bid.fields(2).value = False
        bid.scheduler.settle()

        assert bid.components(2).cost == 0
        assert project.cost == 20500

    def test_list_selection_changes_price_and_watts(self, portfolio):
        project, bid = portfolio
        bid.fields(1).value = "r2"
        bid.scheduler.settle()

        assert bid.line_items(1).cost == 21000
        assert bid.watts == 45000
        assert project.cost == 24000


class TestLifecycle:
    """Saving, closing and detaching."""

    def test_auto_save_once_after_edits(self, portfolio):
        project, bid = portfolio
        saver = Mock()
        project.enable_auto_save(saver)

        bid.fields(3).value = 120
        bid.line_items(2).wage = 45
        bid.scheduler.settle()

        saver.assert_called_once_with(project)

    def test_closed_project_freezes_bids(self, portfolio):
        project, bid = portfolio
        project._data["closed_at"] = "2026-03-01"

        bid.fields(3).value = 120
        bid.scheduler.settle()

        assert bid.fields(3).value == 100
        assert bid.cost == 21000

    def test_detached_bid_no_longer_counts(self, portfolio):
        project, bid = portfolio
        project.detach_bid(bid)

        bid.fields(3).value = 120
        bid.scheduler.settle()

        assert project.cost == 0
        assert bid.line_items(1).cost == 18000
