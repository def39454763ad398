"""Flatten merged polygons into a vertex table for path rendering."""

from __future__ import annotations

from typing import Any, Sequence

from .models import FilteredSet, MergedUnit, VertexRecord

FRAME_COLUMNS = ("group", "piece", "ring", "hole", "order", "long", "lat")


def fortify(units: FilteredSet | Sequence[MergedUnit]) -> list[VertexRecord]:
    """Emit one record per ring vertex, in boundary order.

    ``ring_index`` counts rings across the whole unit, ``piece`` counts
    polygon parts, and ``order`` is the running vertex number within the
    group. Nothing is deduplicated or simplified here.
    """
    source = units.units if isinstance(units, FilteredSet) else units
    records: list[VertexRecord] = []
    for unit in source:
        order = 0
        ring_index = 0
        for piece, part in enumerate(unit.unit.parts):
            for ring_pos, ring in enumerate(part.rings):
                for lon, lat in ring:
                    order += 1
                    records.append(
                        VertexRecord(
                            group_id=unit.identifier,
                            piece=piece,
                            ring_index=ring_index,
                            is_hole=ring_pos > 0,
                            order=order,
                            lon=lon,
                            lat=lat,
                            fields=unit.fields,
                        )
                    )
                ring_index += 1
    return records


def vertices_to_frame(vertices: Sequence[VertexRecord]) -> Any:
    """Vertex table as a pandas DataFrame, attribute fields after the geometry columns."""
    pd = _require_pandas()
    field_names: list[str] = []
    for vertex in vertices:
        for name in vertex.fields:
            if name not in field_names and name not in FRAME_COLUMNS:
                field_names.append(name)
    rows = []
    for vertex in vertices:
        row: dict[str, Any] = {
            "group": vertex.group_id,
            "piece": vertex.piece,
            "ring": vertex.ring_index,
            "hole": vertex.is_hole,
            "order": vertex.order,
            "long": vertex.lon,
            "lat": vertex.lat,
        }
        for name in field_names:
            row[name] = vertex.fields.get(name)
        rows.append(row)
    return pd.DataFrame(rows, columns=[*FRAME_COLUMNS, *field_names])


def _require_pandas() -> Any:
    try:
        import pandas as pd
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("pandas is required for vertex tables") from exc
    return pd
