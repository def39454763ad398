"""Join attribute rows onto spatial units by identifier."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from .attributes import normalize_identifier
from .models import AttributeRow, GeometryStore, MergedUnit, MergeResult

_LOGGER = logging.getLogger("zipmap.merge")

ON_DUPLICATE_FIRST = "first"
ON_DUPLICATE_ERROR = "error"


class DuplicateKeyError(ValueError):
    """Raised when the attribute table repeats an identifier and duplicates are disallowed."""


class SpatialMerge:
    """Inner join of an attribute table onto a geometry store.

    Geometry order is preserved. Rows and units without a partner are dropped
    and listed on the result so callers can report them.
    """

    def __init__(self, *, on_duplicate: str = ON_DUPLICATE_FIRST, pad_width: int | None = None) -> None:
        if on_duplicate not in (ON_DUPLICATE_FIRST, ON_DUPLICATE_ERROR):
            raise ValueError(f"Unknown duplicate policy '{on_duplicate}'")
        self.on_duplicate = on_duplicate
        self.pad_width = pad_width

    def merge(
        self,
        geometry: GeometryStore,
        attributes: Sequence[AttributeRow],
        key: str,
    ) -> MergeResult:
        by_id: dict[str, AttributeRow] = {}
        duplicates: list[str] = []
        unmatched_attributes: list[str] = []
        rows_without_key = 0
        for row in attributes:
            identifier = self._row_identifier(row, key)
            if identifier is None:
                rows_without_key += 1
                continue
            if identifier in by_id:
                if self.on_duplicate == ON_DUPLICATE_ERROR:
                    raise DuplicateKeyError(
                        f"Attribute table has more than one row for '{identifier}' in '{key}'"
                    )
                if identifier not in duplicates:
                    duplicates.append(identifier)
                continue
            by_id[identifier] = row
            if identifier not in geometry:
                unmatched_attributes.append(identifier)

        merged: list[MergedUnit] = []
        unmatched_geometry: list[str] = []
        for unit in geometry:
            row = by_id.get(unit.identifier)
            if row is None:
                unmatched_geometry.append(unit.identifier)
                continue
            fields = {name: value for name, value in row.fields.items() if name != key}
            merged.append(MergedUnit(unit=unit, fields=fields))

        _LOGGER.info(
            "Merged %d of %d units (%d attribute rows unmatched, %d without a key, %d units without data, "
            "%d duplicate keys)",
            len(merged),
            len(geometry),
            len(unmatched_attributes),
            rows_without_key,
            len(unmatched_geometry),
            len(duplicates),
        )
        return MergeResult(
            units=tuple(merged),
            unmatched_attribute_ids=tuple(unmatched_attributes),
            unmatched_geometry_ids=tuple(unmatched_geometry),
            duplicate_attribute_ids=tuple(duplicates),
            rows_without_key=rows_without_key,
        )

    def _row_identifier(self, row: AttributeRow, key: str) -> str | None:
        raw: Any = row.fields.get(key, row.identifier) if row.fields else row.identifier
        return normalize_identifier(raw, pad_width=self.pad_width)


def merge(
    geometry: GeometryStore,
    attributes: Sequence[AttributeRow],
    key: str,
    *,
    on_duplicate: str = ON_DUPLICATE_FIRST,
    pad_width: int | None = None,
) -> MergeResult:
    return SpatialMerge(on_duplicate=on_duplicate, pad_width=pad_width).merge(
        geometry,
        attributes,
        key,
    )
