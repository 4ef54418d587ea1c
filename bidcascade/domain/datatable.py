"""
domain/datatable.py - Datatable entity

A datatable is a small lookup table inside a bid. Its config holds

    columns: [{"id": "c1", "title": "Size", "is_key": true}, ...]
    rows:    [{"id": "r1", "values": ["10kW", "42.5", ...]}, ...]

where each row's values line up positionally with the columns. List fields
select a row; dependency contracts address a cell by (column, row).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from bidcascade.core.enums import EntityType
from bidcascade.domain.entity import BidEntity

logger = logging.getLogger(__name__)


class Datatable(BidEntity):
    """Lookup table of rows addressed by column and row id."""

    entity_type = EntityType.DATATABLE

    @property
    def columns(self) -> List[Dict[str, Any]]:
        return self.config.get("columns") or []

    @property
    def rows(self) -> List[Dict[str, Any]]:
        return self.config.get("rows") or []

    def column_index(self, column_id: Any) -> Optional[int]:
        for index, column in enumerate(self.columns):
            if str(column.get("id")) == str(column_id):
                return index
        return None

    def find_row(self, row_id: Any) -> Optional[Dict[str, Any]]:
        for row in self.rows:
            if str(row.get("id")) == str(row_id):
                return row
        return None

    def get_value(self, column_id: Any, row_id: Any) -> Any:
        """
        Value of a single cell.

        Returns:
            The cell value, or None when the row, column or cell is absent
        """
        if column_id is None or row_id is None or row_id == "":
            return None
        row = self.find_row(row_id)
        index = self.column_index(column_id)
        if row is None or index is None:
            return None
        values = row.get("values") or []
        return values[index] if index < len(values) else None

    def get_column_values(self, column_id: Any) -> List[Any]:
        """Every row's value in one column, in row order."""
        index = self.column_index(column_id)
        if index is None:
            return []
        return [_cell(row, index) for row in self.rows]

    def get_column_rows(self, column_id: Any) -> List[Dict[str, Any]]:
        """Rows of one column as {"id": row_id, "value": cell} pairs."""
        index = self.column_index(column_id)
        return [
            {"id": row.get("id"), "value": _cell(row, index) if index is not None else None}
            for row in self.rows
        ]

    def get_options(self) -> List[Dict[str, Any]]:
        """
        Selectable rows for list fields.

        The title joins the row's key columns with " | "; a table without
        key columns uses the first value.
        """
        key_count = sum(1 for column in self.columns if column.get("is_key"))
        options = []
        for row in self.rows:
            values = row.get("values") or []
            parts = [str(value) for value in values[:max(key_count, 1)]]
            options.append({"row_id": row.get("id"), "title": " | ".join(parts)})
        return options

    def assess(self, force: bool = False) -> None:
        self._begin_assessment()
        self._finish_assessment(False, force)


def _cell(row: Dict[str, Any], index: int) -> Any:
    values = row.get("values") or []
    return values[index] if index < len(values) else None
