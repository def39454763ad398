"""Seeded synthetic boundaries and attributes for demos and tests."""

from __future__ import annotations

from typing import Any, Sequence

from .models import AttributeRow, GeometryStore, SpatialUnit

SAMPLE_KEY_FIELD = "zip"


def square_ring(lon: float, lat: float, size: float) -> list[tuple[float, float]]:
    """Counter-clockwise closed square with its lower-left corner at (lon, lat)."""
    return [
        (lon, lat),
        (lon + size, lat),
        (lon + size, lat + size),
        (lon, lat + size),
        (lon, lat),
    ]


def generate_sample_dataset(
    seed: int,
    *,
    rows: int = 4,
    cols: int = 7,
    cell_deg: float = 0.02,
    origin: tuple[float, float] = (-71.10, 42.30),
    outliers: Sequence[tuple[float, float]] = ((0.0, -10.0),),
    value_field: str = "value",
    id_start: int = 2101,
) -> tuple[GeometryStore, list[AttributeRow]]:
    """Grid of square units plus far-away strays, with values from a seeded generator.

    ``outliers`` holds (dlon, dlat) offsets from ``origin`` in degrees; the
    default puts one unit about 1100 km south of the grid.
    """
    if rows < 1 or cols < 1:
        raise ValueError("rows and cols must be >= 1")
    if cell_deg <= 0:
        raise ValueError("cell_deg must be > 0")
    rng = _require_numpy().random.default_rng(seed)
    side = cell_deg * 0.9
    origin_lon, origin_lat = origin

    corners: list[tuple[float, float]] = []
    for row in range(rows):
        for col in range(cols):
            corners.append((origin_lon + col * cell_deg, origin_lat + row * cell_deg))
    for dlon, dlat in outliers:
        corners.append((origin_lon + dlon, origin_lat + dlat))

    store = GeometryStore()
    attributes: list[AttributeRow] = []
    values = rng.gamma(shape=2.0, scale=50.0, size=len(corners))
    for idx, (lon, lat) in enumerate(corners):
        identifier = f"{id_start + idx:05d}"
        store.add(SpatialUnit.from_rings(identifier, square_ring(lon, lat, side)))
        attributes.append(
            AttributeRow(
                identifier=identifier,
                fields={SAMPLE_KEY_FIELD: identifier, value_field: round(float(values[idx]), 3)},
            )
        )
    return (store, attributes)


def _require_numpy() -> Any:
    try:
        import numpy as np
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("numpy is required for sample data generation") from exc
    return np
