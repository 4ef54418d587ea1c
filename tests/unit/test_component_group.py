"""
Unit tests for domain/component_group.py
"""

import pytest


@pytest.fixture
def grouped_record(bid_record):
    bid_record["component_groups"] = [
        {"id": 1, "title": "Electrical"},
        {"id": 2, "title": "Civil"},
    ]
    bid_record["components"][0]["config"]["component_group_id"] = 1
    bid_record["components"][1]["config"]["component_group_id"] = 2
    return bid_record


class TestComponentGroup:
    """Test component group membership."""

    def test_collection(self, grouped_record, build_bid):
        bid = build_bid(grouped_record, bind=False)
        assert set(bid.component_groups()) == {"1", "2"}
        assert bid.component_groups(1).title == "Electrical"
        assert bid.auxiliary("component_groups") is None

    def test_get_components(self, grouped_record, build_bid):
        bid = build_bid(grouped_record, bind=False)
        assert list(bid.component_groups(1).get_components()) == ["1"]
        assert list(bid.component_groups("2").get_components()) == ["2"]

    def test_top_level_only(self, grouped_record, build_bid):
        grouped_record["components"][1]["config"]["component_group_id"] = 1
        grouped_record["components"][1]["config"]["parent_component_id"] = 1
        group = build_bid(grouped_record, bind=False).component_groups(1)

        assert set(group.get_components()) == {"1", "2"}
        assert set(group.get_components(top_level_only=True)) == {"1"}

    def test_component_lookup(self, grouped_record, build_bid):
        bid = build_bid(grouped_record, bind=False)
        assert bid.components(1).component_group_id == 1
        assert bid.components(1).get_component_group() is bid.component_groups(1)

    def test_component_without_group(self, bid):
        assert bid.components(1).get_component_group() is None

    def test_dirty_marks_bid(self, grouped_record, build_bid):
        bid = build_bid(grouped_record, bind=False)
        bid.component_groups(2).title = "Structural"

        assert bid.component_groups(2).is_dirty()
        assert bid.is_dirty()
