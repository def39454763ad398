from __future__ import annotations

from zipmap.fortify import FRAME_COLUMNS, fortify, vertices_to_frame
from zipmap.models import FilteredSet, MergedUnit, PolygonPart, SpatialUnit


def _holed_multi_unit() -> MergedUnit:
    outer = PolygonPart.from_rings(
        [(0, 0), (4, 0), (4, 4), (0, 4)],
        [[(1, 1), (2, 1), (2, 2), (1, 2)]],
    )
    island = PolygonPart.from_rings([(10, 0), (11, 0), (11, 1)])
    unit = SpatialUnit(identifier="02134", parts=(outer, island))
    return MergedUnit(unit=unit, fields={"value": 7.5, "name": "Allston"})


def _plain_unit(identifier: str) -> MergedUnit:
    return MergedUnit(
        unit=SpatialUnit.from_rings(identifier, [(20, 20), (21, 20), (21, 21), (20, 21)]),
        fields={"value": 1.0},
    )


def test_vertex_count_matches_ring_points() -> None:
    units = [_holed_multi_unit(), _plain_unit("02135")]
    records = fortify(units)
    assert len(records) == sum(unit.unit.vertex_count for unit in units)
    assert {record.group_id for record in records} == {"02134", "02135"}


def test_pieces_rings_and_holes() -> None:
    records = fortify([_holed_multi_unit()])
    # 5 exterior + 5 hole + 4 island points
    assert [record.piece for record in records] == [0] * 10 + [1] * 4
    assert [record.ring_index for record in records] == [0] * 5 + [1] * 5 + [2] * 4
    assert [record.is_hole for record in records] == [False] * 5 + [True] * 5 + [False] * 4
    assert [record.order for record in records] == list(range(1, 15))


def test_vertices_follow_ring_order() -> None:
    unit = _holed_multi_unit()
    records = fortify([unit])
    assert [(record.lon, record.lat) for record in records] == list(unit.unit.iter_points())


def test_fields_are_replicated() -> None:
    records = fortify([_holed_multi_unit()])
    assert all(record.fields == {"value": 7.5, "name": "Allston"} for record in records)


def test_order_restarts_per_group() -> None:
    records = fortify([_plain_unit("a"), _plain_unit("b")])
    assert [record.order for record in records] == [1, 2, 3, 4, 5] * 2


def test_accepts_filtered_set() -> None:
    units = (_plain_unit("a"), _plain_unit("b"))
    filtered = FilteredSet(units=units, excluded_ids=(), threshold=None, distances={}, metric="planar", skipped=True)
    assert len(fortify(filtered)) == 10


def test_vertices_to_frame_columns() -> None:
    frame = vertices_to_frame(fortify([_holed_multi_unit()]))
    assert list(frame.columns) == [*FRAME_COLUMNS, "value", "name"]
    assert len(frame) == 14
    assert frame["hole"].sum() == 5
    assert frame["group"].unique().tolist() == ["02134"]
