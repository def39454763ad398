"""Nearest-neighbor-distance outlier filter.

Units far from every other unit stretch the map extent without adding much to
the picture. Each unit's distance to its closest sibling centroid (NND) is
compared to a quantile of the NND distribution; units above it are left out
of the frame. This is a heuristic tuned for many tightly clustered units with
a few strays, not a general outlier test.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from .models import FilteredSet, MergedUnit

_LOGGER = logging.getLogger("zipmap.neighbors")

METRIC_PLANAR = "planar"
METRIC_HAVERSINE = "haversine"
EARTH_RADIUS_KM = 6371.0088

# Relative slack so float noise between equal distances still counts as a tie.
_TIE_REL_TOL = 1e-9
_BLOCK_SIZE = 512


class NearestNeighborFilter:
    def __init__(
        self,
        *,
        quantile: float = 0.75,
        multiplier: float = 1.0,
        metric: str = METRIC_PLANAR,
    ) -> None:
        if not 0.0 < quantile <= 1.0:
            raise ValueError("quantile must be in (0, 1]")
        if multiplier <= 0.0:
            raise ValueError("multiplier must be > 0")
        if metric not in (METRIC_PLANAR, METRIC_HAVERSINE):
            raise ValueError(f"Unknown distance metric '{metric}'")
        self.quantile = quantile
        self.multiplier = multiplier
        self.metric = metric

    def filter(self, units: Sequence[MergedUnit]) -> FilteredSet:
        units = tuple(units)
        if len(units) < 2:
            _LOGGER.info("Skipping nearest-neighbor filter: %d unit(s) is not enough", len(units))
            return FilteredSet(
                units=units,
                excluded_ids=(),
                threshold=None,
                distances={},
                metric=self.metric,
                skipped=True,
            )

        np = _require_numpy()
        centroids = np.array([unit.centroid for unit in units], dtype=float)
        nnd = nearest_neighbor_distances(centroids, metric=self.metric)
        threshold = float(np.percentile(nnd, self.quantile * 100.0)) * self.multiplier

        kept: list[MergedUnit] = []
        excluded: list[str] = []
        for unit, distance in zip(units, nnd):
            if _within_threshold(float(distance), threshold):
                kept.append(unit)
            else:
                excluded.append(unit.identifier)

        _LOGGER.info(
            "Nearest-neighbor filter kept %d of %d units (threshold=%.6g, metric=%s)",
            len(kept),
            len(units),
            threshold,
            self.metric,
        )
        if excluded:
            _LOGGER.info("Excluded isolated units: %s", ", ".join(excluded))
        return FilteredSet(
            units=tuple(kept),
            excluded_ids=tuple(excluded),
            threshold=threshold,
            distances={unit.identifier: float(distance) for unit, distance in zip(units, nnd)},
            metric=self.metric,
        )


def nearest_neighbor_distances(
    centroids: Any,
    *,
    metric: str = METRIC_PLANAR,
    block_size: int = _BLOCK_SIZE,
) -> Any:
    """Distance from each (lon, lat) row to the closest other row.

    Pairwise distances are evaluated one block of rows at a time, so memory
    grows with ``n * block_size`` rather than ``n**2``. Rows only read the
    shared centroid array and write their own slot of the result.
    """
    np = _require_numpy()
    points = np.asarray(centroids, dtype=float)
    n = points.shape[0]
    if n < 2:
        raise ValueError("At least two centroids are required for nearest-neighbor distances")
    out = np.empty(n, dtype=float)
    for start in range(0, n, block_size):
        stop = min(start + block_size, n)
        block = _pairwise_distances(points[start:stop], points, metric=metric)
        rows = np.arange(stop - start)
        block[rows, rows + start] = np.inf
        out[start:stop] = block.min(axis=1)
    return out


def haversine_km(lon1: float, lat1: float, lon2: float, lat2: float) -> float:
    np = _require_numpy()
    return float(
        _pairwise_distances(
            np.array([[lon1, lat1]], dtype=float),
            np.array([[lon2, lat2]], dtype=float),
            metric=METRIC_HAVERSINE,
        )[0, 0]
    )


def _pairwise_distances(left: Any, right: Any, *, metric: str) -> Any:
    np = _require_numpy()
    if metric == METRIC_PLANAR:
        dx = left[:, 0][:, None] - right[:, 0][None, :]
        dy = left[:, 1][:, None] - right[:, 1][None, :]
        return np.hypot(dx, dy)
    if metric == METRIC_HAVERSINE:
        lon1 = np.radians(left[:, 0])[:, None]
        lat1 = np.radians(left[:, 1])[:, None]
        lon2 = np.radians(right[:, 0])[None, :]
        lat2 = np.radians(right[:, 1])[None, :]
        a = (
            np.sin((lat2 - lat1) / 2.0) ** 2
            + np.cos(lat1) * np.cos(lat2) * np.sin((lon2 - lon1) / 2.0) ** 2
        )
        return 2.0 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))
    raise ValueError(f"Unknown distance metric '{metric}'")


def _within_threshold(distance: float, threshold: float) -> bool:
    return distance <= threshold or distance - threshold <= _TIE_REL_TOL * max(abs(threshold), 1e-300)


def _require_numpy() -> Any:
    try:
        import numpy as np
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("numpy is required for nearest-neighbor distances") from exc
    return np
