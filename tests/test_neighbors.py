from __future__ import annotations

import math

import numpy as np
import pytest

from zipmap.merge import merge
from zipmap.models import MergedUnit, SpatialUnit
from zipmap.neighbors import (
    EARTH_RADIUS_KM,
    NearestNeighborFilter,
    haversine_km,
    nearest_neighbor_distances,
)
from zipmap.sample import SAMPLE_KEY_FIELD, generate_sample_dataset


def _point_unit(identifier: str, lon: float, lat: float) -> MergedUnit:
    ring = [(lon - 0.001, lat - 0.001), (lon + 0.001, lat - 0.001), (lon + 0.001, lat + 0.001), (lon - 0.001, lat + 0.001)]
    return MergedUnit(unit=SpatialUnit.from_rings(identifier, ring, centroid=(lon, lat)), fields={})


def _sample_units(seed: int = 3) -> tuple[MergedUnit, ...]:
    store, rows = generate_sample_dataset(seed)
    return merge(store, rows, SAMPLE_KEY_FIELD).units


@pytest.mark.parametrize("metric", ["planar", "haversine"])
def test_far_outlier_is_the_only_exclusion(metric: str) -> None:
    units = _sample_units()
    assert len(units) == 29
    outlier = units[-1].identifier

    result = NearestNeighborFilter(metric=metric).filter(units)

    assert result.excluded_ids == (outlier,)
    assert len(result.units) == 28
    assert not result.skipped
    assert result.metric == metric


def test_outlier_is_about_1100_km_away() -> None:
    units = _sample_units()
    result = NearestNeighborFilter(metric="haversine").filter(units)
    assert 1000.0 < result.distances[units[-1].identifier] < 1200.0


@pytest.mark.parametrize("metric", ["planar", "haversine"])
def test_threshold_partitions_distances(metric: str) -> None:
    rng = np.random.default_rng(11)
    units = tuple(
        _point_unit(f"{idx:05d}", float(lon), float(lat))
        for idx, (lon, lat) in enumerate(
            zip(rng.uniform(-72.0, -70.0, size=40), rng.uniform(41.0, 43.0, size=40))
        )
    )

    result = NearestNeighborFilter(quantile=0.6, multiplier=1.1, metric=metric).filter(units)

    assert result.threshold is not None
    kept = set(result.identifiers)
    for identifier, distance in result.distances.items():
        if identifier in kept:
            assert distance <= result.threshold * (1 + 1e-9)
        else:
            assert distance > result.threshold
    assert len(kept) + len(result.excluded_ids) == len(units)


def test_equilateral_triangle_keeps_everyone() -> None:
    height = math.sqrt(3.0) / 2.0
    units = (
        _point_unit("a", 0.0, 0.0),
        _point_unit("b", 1.0, 0.0),
        _point_unit("c", 0.5, height),
    )
    result = NearestNeighborFilter().filter(units)
    assert result.excluded_ids == ()
    assert result.identifiers == ("a", "b", "c")


def test_identical_locations_give_zero_threshold() -> None:
    units = tuple(_point_unit(str(idx), -71.0, 42.0) for idx in range(4))
    result = NearestNeighborFilter().filter(units)
    assert result.threshold == 0.0
    assert result.excluded_ids == ()


@pytest.mark.parametrize("count", [0, 1])
def test_fewer_than_two_units_skips(count: int) -> None:
    units = tuple(_point_unit(str(idx), -71.0, 42.0) for idx in range(count))
    result = NearestNeighborFilter().filter(units)
    assert result.skipped
    assert result.threshold is None
    assert len(result.units) == count
    assert result.distances == {}


def test_filter_is_repeatable() -> None:
    units = _sample_units(seed=9)
    first = NearestNeighborFilter().filter(units)
    second = NearestNeighborFilter().filter(units)
    assert first.excluded_ids == second.excluded_ids
    assert first.threshold == second.threshold


def test_blocked_distances_match_single_block() -> None:
    rng = np.random.default_rng(5)
    points = rng.uniform(0.0, 1.0, size=(50, 2))
    whole = nearest_neighbor_distances(points, block_size=1000)
    blocked = nearest_neighbor_distances(points, block_size=7)
    np.testing.assert_allclose(whole, blocked)


def test_nearest_neighbor_distances_needs_two_points() -> None:
    with pytest.raises(ValueError):
        nearest_neighbor_distances(np.array([[0.0, 0.0]]))


def test_haversine_quarter_meridian() -> None:
    assert haversine_km(0.0, 0.0, 0.0, 90.0) == pytest.approx(math.pi * EARTH_RADIUS_KM / 2.0)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"quantile": 0.0},
        {"quantile": 1.5},
        {"multiplier": 0.0},
        {"metric": "manhattan"},
    ],
)
def test_invalid_arguments(kwargs: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        NearestNeighborFilter(**kwargs)
