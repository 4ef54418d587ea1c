"""
Unit tests for domain/field.py
"""

from unittest.mock import Mock

from bidcascade.core.enums import EntityEvent


class TestFieldValue:
    """Test value assignment."""

    def test_setting_value(self, assessed_bid):
        field = assessed_bid.fields(3)
        events = []
        field.events.subscribe(EntityEvent.ASSESSED, "test", lambda *_: events.append("assessed"))
        field.events.subscribe(EntityEvent.UPDATED, "test", lambda *_: events.append("updated"))

        field.value = 120

        assert field.value == 120
        assert field.is_dirty()
        assert field.is_auto_selected is False
        assert events == ["assessed", "updated"]

    def test_same_value_is_ignored(self, assessed_bid):
        field = assessed_bid.fields(3)
        handler = Mock()
        field.events.subscribe(EntityEvent.UPDATED, "test", handler)

        field.value = 100

        handler.assert_not_called()
        assert not field.is_dirty()

    def test_read_only_bid_ignores_changes(self, assessed_bid):
        assessed_bid.lock()
        field = assessed_bid.fields(3)

        field.value = 500

        assert field.value == 100

    def test_auto_selection_cleared(self, assessed_bid):
        field = assessed_bid.fields(1)
        field.config["is_auto_selected"] = True

        field.value = "r2"

        assert field.config["is_auto_selected"] is False

    def test_actual_value(self, assessed_bid):
        field = assessed_bid.fields(3)
        field.actual_value = 95
        assert field.actual_value == 95
        assert field.is_dirty()

    def test_field_type(self, bid):
        assert bid.fields(1).field_type == "list"
        assert bid.fields(2).field_type == "boolean"


class TestListField:
    """Test datatable-backed fields."""

    def test_get_datatable(self, bid):
        assert bid.fields(1).get_datatable() is bid.datatables(1)
        assert bid.fields(3).get_datatable() is None

    def test_list_options(self, bid):
        assert bid.fields(1).get_list_options() == [
            {"row_id": "r1", "title": "M-400"},
            {"row_id": "r2", "title": "M-450"},
        ]
        assert bid.fields(3).get_list_options() == []

    def test_selected_option(self, bid):
        assert bid.fields(1).get_selected_option() == {"row_id": "r1", "title": "M-400"}

    def test_selected_option_missing(self, bid):
        field = bid.fields(1)
        field._data["value"] = "r9"
        assert field.get_selected_option() is None
        field._data["value"] = None
        assert field.get_selected_option() is None


class TestFieldPersistence:
    """Test dirty tracking and export."""

    def test_export_omits_unchanged_config(self, assessed_bid):
        data = assessed_bid.fields(3).export_data()
        assert "config" not in data
        assert data["value"] == 100

    def test_config_change_is_dirty_and_exported(self, assessed_bid):
        field = assessed_bid.fields(3)
        field.config["placeholder"] = "Count"

        assert field.is_dirty()
        assert field.export_data()["config"]["placeholder"] == "Count"

    def test_pristine(self, assessed_bid):
        field = assessed_bid.fields(3)
        field.value = 150
        field.pristine()
        assert not field.is_dirty()


class TestFieldBinding:
    """Test subscriptions to dependencies."""

    def test_list_field_listens_to_datatable(self, assessed_bid):
        datatable = assessed_bid.datatables(1)
        requesters = [sub.requester_id for sub in datatable.events.subscriptions(EntityEvent.UPDATED)]
        assert "field.1" in requesters

    def test_unbind(self, assessed_bid):
        field = assessed_bid.fields(1)
        field.unbind()
        requesters = [sub.requester_id for sub in assessed_bid.datatables(1).events.subscriptions(EntityEvent.UPDATED)]
        assert "field.1" not in requesters
