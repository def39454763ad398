from __future__ import annotations

import pytest

from zipmap.models import (
    BoundingBox,
    GeometryStore,
    PolygonPart,
    SpatialUnit,
    area_weighted_centroid,
    close_ring,
    ring_signed_area,
)


def test_close_ring_appends_first_point() -> None:
    ring = close_ring([(0, 0), (1, 0), (1, 1)])
    assert ring[0] == ring[-1] == (0.0, 0.0)
    assert len(ring) == 4


def test_close_ring_keeps_closed_ring() -> None:
    ring = close_ring([(0, 0), (1, 0), (1, 1), (0, 0)])
    assert len(ring) == 4


def test_close_ring_rejects_too_few_distinct_points() -> None:
    with pytest.raises(ValueError, match="three distinct"):
        close_ring([(0, 0), (1, 1), (0, 0)])


def test_close_ring_rejects_bad_coordinates() -> None:
    with pytest.raises(ValueError, match="Invalid coordinate"):
        close_ring([(0, 0), ("x", 1), (1, 1)])


def test_ring_signed_area_orientation() -> None:
    ccw = close_ring([(0, 0), (2, 0), (2, 2), (0, 2)])
    assert ring_signed_area(ccw) == pytest.approx(4.0)
    assert ring_signed_area(tuple(reversed(ccw))) == pytest.approx(-4.0)


def test_area_weighted_centroid_prefers_larger_part() -> None:
    small = PolygonPart.from_rings([(0, 0), (1, 0), (1, 1), (0, 1)])
    large = PolygonPart.from_rings([(10, 0), (13, 0), (13, 3), (10, 3)])
    cx, cy = area_weighted_centroid([small, large])
    # areas 1 and 9: (0.5 * 1 + 11.5 * 9) / 10
    assert cx == pytest.approx(10.4)
    assert cy == pytest.approx((0.5 + 1.5 * 9) / 10)


def test_spatial_unit_rings_and_vertex_count() -> None:
    unit = SpatialUnit.from_rings(
        "02134",
        [(0, 0), (4, 0), (4, 4), (0, 4)],
        interiors=[[(1, 1), (2, 1), (2, 2), (1, 2)]],
    )
    assert len(unit.rings) == 2
    assert unit.vertex_count == 10
    assert unit.resolved_centroid == pytest.approx((2.0, 2.0))


def test_spatial_unit_supplied_centroid_wins() -> None:
    unit = SpatialUnit.from_rings("1", [(0, 0), (1, 0), (1, 1)], centroid=(5.0, 6.0))
    assert unit.resolved_centroid == (5.0, 6.0)


def test_spatial_unit_requires_identifier_and_parts() -> None:
    with pytest.raises(ValueError):
        SpatialUnit(identifier=" ", parts=(PolygonPart.from_rings([(0, 0), (1, 0), (1, 1)]),))
    with pytest.raises(ValueError, match="no polygon parts"):
        SpatialUnit(identifier="02134", parts=())


def test_geometry_store_rejects_duplicate_identifiers() -> None:
    ring = [(0, 0), (1, 0), (1, 1)]
    store = GeometryStore([SpatialUnit.from_rings("a", ring)])
    with pytest.raises(ValueError, match="Duplicate"):
        store.add(SpatialUnit.from_rings("a", ring))
    assert "a" in store
    assert store.get("b") is None
    assert store.identifiers == ("a",)


def test_bounding_box_center_and_degenerate() -> None:
    bbox = BoundingBox.from_points([(-71.0, 42.0), (-70.0, 43.0)])
    assert bbox.center == (-70.5, 42.5)
    assert not bbox.is_degenerate
    single = BoundingBox.from_points([(-71.0, 42.0)])
    assert single.is_degenerate


def test_bounding_box_validation() -> None:
    with pytest.raises(ValueError):
        BoundingBox.from_points([])
    with pytest.raises(ValueError, match="finite"):
        BoundingBox(min_lon=float("nan"), max_lon=0.0, min_lat=0.0, max_lat=0.0)
    with pytest.raises(ValueError, match="exceeds"):
        BoundingBox(min_lon=1.0, max_lon=0.0, min_lat=0.0, max_lat=0.0)
