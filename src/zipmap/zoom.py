"""Map viewport selection under the Web Mercator tile projection."""

from __future__ import annotations

import logging
import math
from functools import lru_cache
from typing import Any, Iterable, Sequence

from .models import BoundingBox, FilteredSet, LonLat, MergedUnit, Viewport

_LOGGER = logging.getLogger("zipmap.zoom")

BBOX_FROM_CENTROIDS = "centroids"
BBOX_FROM_BOUNDARIES = "boundaries"

MAX_MERCATOR_LAT = 85.05112878
WEB_MERCATOR_RADIUS_M = 6378137.0
_WORLD_SPAN_M = 2.0 * math.pi * WEB_MERCATOR_RADIUS_M


@lru_cache(maxsize=2)
def mercator_transformer(inverse: bool = False) -> Any:
    """Cached EPSG:4326 -> EPSG:3857 transformer, or the reverse when ``inverse``."""
    try:
        from pyproj import Transformer
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("pyproj is required for Web Mercator projection") from exc
    if inverse:
        return Transformer.from_crs("EPSG:3857", "EPSG:4326", always_xy=True)
    return Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)


def mercator_meters(lon: float, lat: float) -> tuple[float, float]:
    """EPSG:3857 metres for a lon/lat pair; latitude is clamped to the tile range."""
    lat = max(min(float(lat), MAX_MERCATOR_LAT), -MAX_MERCATOR_LAT)
    x, y = mercator_transformer().transform(float(lon), lat)
    return (float(x), float(y))


def lonlat_from_meters(x: float, y: float) -> LonLat:
    lon, lat = mercator_transformer(inverse=True).transform(float(x), float(y))
    return (float(lon), float(lat))


def mercator_unit_xy(lon: float, lat: float) -> tuple[float, float]:
    """Normalized Web Mercator coordinates; (0, 0) is the north-west corner of the world."""
    x, y = mercator_meters(lon, lat)
    return (x / _WORLD_SPAN_M + 0.5, 0.5 - y / _WORLD_SPAN_M)


def meters_per_pixel(zoom: int, tile_size: int = 256) -> float:
    return _WORLD_SPAN_M / (tile_size * 2**zoom)


def projected_bounds(bbox: BoundingBox) -> tuple[float, float, float, float]:
    """(x0, x1, y0, y1) in EPSG:3857 metres for a lon/lat box."""
    x0, y0 = mercator_meters(bbox.min_lon, bbox.min_lat)
    x1, y1 = mercator_meters(bbox.max_lon, bbox.max_lat)
    return (x0, x1, y0, y1)


def viewport_mercator_bounds(viewport: Viewport, tile_size: int = 256) -> tuple[float, float, float, float]:
    """(x0, x1, y0, y1) in EPSG:3857 metres covered by the viewport."""
    cx, cy = mercator_meters(*viewport.center)
    resolution = meters_per_pixel(viewport.zoom, tile_size)
    half_w = viewport.width_px * resolution / 2.0
    half_h = viewport.height_px * resolution / 2.0
    return (cx - half_w, cx + half_w, cy - half_h, cy + half_h)


def projected_extent_px(bbox: BoundingBox, zoom: int, tile_size: int = 256) -> tuple[float, float]:
    """Pixel width and height of ``bbox`` at ``zoom``."""
    x0, x1, y0, y1 = projected_bounds(bbox)
    resolution = meters_per_pixel(zoom, tile_size)
    return (abs(x1 - x0) / resolution, abs(y1 - y0) / resolution)


def bounding_box(
    units: FilteredSet | Sequence[MergedUnit],
    *,
    source: str = BBOX_FROM_BOUNDARIES,
) -> BoundingBox:
    """Bounding box of every boundary vertex, or of the units' centroids."""
    members = units.units if isinstance(units, FilteredSet) else units
    if not members:
        raise ValueError("Cannot compute a bounding box for zero units")
    points: Iterable[LonLat]
    if source == BBOX_FROM_CENTROIDS:
        points = [unit.centroid for unit in members]
    elif source == BBOX_FROM_BOUNDARIES:
        points = [point for unit in members for point in unit.unit.iter_points()]
    else:
        raise ValueError(f"Unknown bounding box source '{source}'")
    return BoundingBox.from_points(points)


class ZoomCalculator:
    """Largest tile zoom level at which a bounding box fits a pixel viewport.

    The viewport is centred on the middle of the projected box, so the whole
    box is inside the frame at the chosen zoom. A box built from centroids
    guarantees nothing about the polygons around them.
    """

    def __init__(
        self,
        *,
        min_zoom: int = 1,
        max_zoom: int = 21,
        default_zoom: int = 10,
        tile_size: int = 256,
        padding_px: int = 0,
    ) -> None:
        if not 0 <= min_zoom <= default_zoom <= max_zoom:
            raise ValueError("Zoom levels must satisfy 0 <= min_zoom <= default_zoom <= max_zoom")
        if tile_size < 1:
            raise ValueError("tile_size must be >= 1")
        if padding_px < 0:
            raise ValueError("padding_px must be >= 0")
        self.min_zoom = min_zoom
        self.max_zoom = max_zoom
        self.default_zoom = default_zoom
        self.tile_size = tile_size
        self.padding_px = padding_px

    def fits(self, bbox: BoundingBox, viewport: Viewport) -> bool:
        """True when every corner of ``bbox`` lies inside ``viewport``."""
        vx0, vx1, vy0, vy1 = viewport_mercator_bounds(viewport, self.tile_size)
        bx0, bx1, by0, by1 = projected_bounds(bbox)
        tol = meters_per_pixel(viewport.zoom, self.tile_size) * 1e-3
        return vx0 - tol <= bx0 and bx1 <= vx1 + tol and vy0 - tol <= by0 and by1 <= vy1 + tol

    def zoom(self, bbox: BoundingBox, width_px: int, height_px: int) -> Viewport:
        avail_w = width_px - 2 * self.padding_px
        avail_h = height_px - 2 * self.padding_px
        if avail_w <= 0 or avail_h <= 0:
            raise ValueError(
                f"Viewport {width_px}x{height_px}px leaves no room after {self.padding_px}px padding"
            )
        if bbox.is_degenerate:
            center = bbox.center
            _LOGGER.info(
                "Degenerate bounding box at (%.5f, %.5f); using default zoom %d",
                center[0],
                center[1],
                self.default_zoom,
            )
            return Viewport(center=center, zoom=self.default_zoom, width_px=width_px, height_px=height_px)

        x0, x1, y0, y1 = projected_bounds(bbox)
        center = lonlat_from_meters((x0 + x1) / 2.0, (y0 + y1) / 2.0)
        span_x, span_y = abs(x1 - x0), abs(y1 - y0)
        chosen = self.min_zoom
        for level in range(self.max_zoom, self.min_zoom - 1, -1):
            resolution = meters_per_pixel(level, self.tile_size)
            if span_x / resolution <= avail_w and span_y / resolution <= avail_h:
                chosen = level
                break
        else:
            _LOGGER.warning(
                "Bounding box does not fit %dx%dpx even at zoom %d; clamping",
                width_px,
                height_px,
                self.min_zoom,
            )
        _LOGGER.debug("Selected zoom %d for bbox %s", chosen, bbox.to_dict())
        return Viewport(center=center, zoom=chosen, width_px=width_px, height_px=height_px)
