"""
Unit tests for domain/datatable.py
"""

import pytest

from bidcascade.core.enums import AssessmentState, EntityEvent
from bidcascade.domain.datatable import Datatable


@pytest.fixture
def datatable():
    return Datatable({
        "id": 5,
        "title": "Inverters",
        "config": {
            "columns": [
                {"id": "brand", "title": "Brand", "is_key": True},
                {"id": "model", "title": "Model", "is_key": True},
                {"id": "kw", "title": "kW"},
            ],
            "rows": [
                {"id": "a", "values": ["Acme", "X1", "7.6"]},
                {"id": "b", "values": ["Volt", "Z2"]},
            ],
        },
    })


class TestCellLookup:
    """Test single-cell reads."""

    def test_get_value(self, datatable):
        assert datatable.get_value("kw", "a") == "7.6"
        assert datatable.get_value("brand", "b") == "Volt"

    def test_short_row(self, datatable):
        assert datatable.get_value("kw", "b") is None

    def test_missing_row_or_column(self, datatable):
        assert datatable.get_value("kw", "z") is None
        assert datatable.get_value("price", "a") is None
        assert datatable.get_value("kw", None) is None
        assert datatable.get_value("kw", "") is None

    def test_column_index(self, datatable):
        assert datatable.column_index("model") == 1
        assert datatable.column_index("nope") is None

    def test_find_row(self, datatable):
        assert datatable.find_row("b")["values"][0] == "Volt"
        assert datatable.find_row("z") is None


class TestColumns:
    """Test column reads."""

    def test_get_column_values(self, datatable):
        assert datatable.get_column_values("kw") == ["7.6", None]
        assert datatable.get_column_values("nope") == []

    def test_get_column_rows(self, datatable):
        assert datatable.get_column_rows("brand") == [
            {"id": "a", "value": "Acme"},
            {"id": "b", "value": "Volt"},
        ]


class TestOptions:
    """Test list field options."""

    def test_titles_join_key_columns(self, datatable):
        assert datatable.get_options() == [
            {"row_id": "a", "title": "Acme | X1"},
            {"row_id": "b", "title": "Volt | Z2"},
        ]

    def test_without_key_columns(self):
        table = Datatable({
            "id": 1,
            "config": {"columns": [{"id": "c"}], "rows": [{"id": "r", "values": ["Only", "x"]}]},
        })
        assert table.get_options() == [{"row_id": "r", "title": "Only"}]

    def test_empty_table(self):
        table = Datatable({"id": 2})
        assert table.columns == []
        assert table.rows == []
        assert table.get_options() == []


class TestAssess:
    """Datatables hold no derived values."""

    def test_assess_publishes_assessed_only(self, datatable):
        received = []
        datatable.events.subscribe(EntityEvent.UPDATED, "test", lambda *_: received.append("updated"))
        datatable.events.subscribe(EntityEvent.ASSESSED, "test", lambda *_: received.append("assessed"))

        datatable.assess()

        assert received == ["assessed"]
        assert datatable.assessment_state is AssessmentState.ASSESSED
        assert datatable.is_dirty() is False
