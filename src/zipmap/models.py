"""Domain models shared across pipeline modules."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping, Sequence

LonLat = tuple[float, float]
Ring = tuple[LonLat, ...]


def _require_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


def _coerce_point(point: Any, field_name: str) -> LonLat:
    try:
        lon, lat = point[0], point[1]
        return (float(lon), float(lat))
    except (TypeError, ValueError, IndexError) as exc:
        raise ValueError(f"Invalid coordinate pair in '{field_name}': {point!r}") from exc


def close_ring(points: Iterable[Any], field_name: str = "ring") -> Ring:
    """Return a closed ring of float pairs, appending the first point if needed."""
    ring = [_coerce_point(point, field_name) for point in points]
    if ring and ring[0] != ring[-1]:
        ring.append(ring[0])
    if len(set(ring)) < 3:
        raise ValueError(f"'{field_name}' needs at least three distinct points")
    return tuple(ring)


def ring_signed_area(ring: Sequence[LonLat]) -> float:
    """Shoelace area; positive for counter-clockwise rings."""
    total = 0.0
    for (x0, y0), (x1, y1) in zip(ring, ring[1:]):
        total += x0 * y1 - x1 * y0
    return total / 2.0


def ring_centroid(ring: Sequence[LonLat]) -> tuple[LonLat, float]:
    """Area-weighted centroid and absolute area of a closed ring."""
    area2 = 0.0
    cx = 0.0
    cy = 0.0
    for (x0, y0), (x1, y1) in zip(ring, ring[1:]):
        cross = x0 * y1 - x1 * y0
        area2 += cross
        cx += (x0 + x1) * cross
        cy += (y0 + y1) * cross
    if abs(area2) < 1e-18:
        distinct = list(dict.fromkeys(ring))
        mean_x = sum(point[0] for point in distinct) / len(distinct)
        mean_y = sum(point[1] for point in distinct) / len(distinct)
        return ((mean_x, mean_y), 0.0)
    return ((cx / (3.0 * area2), cy / (3.0 * area2)), abs(area2) / 2.0)


@dataclass(frozen=True, slots=True)
class PolygonPart:
    """One polygon: an exterior ring plus zero or more holes."""

    exterior: Ring
    interiors: tuple[Ring, ...] = ()

    @classmethod
    def from_rings(
        cls,
        exterior: Iterable[Any],
        interiors: Iterable[Iterable[Any]] = (),
    ) -> PolygonPart:
        return cls(
            exterior=close_ring(exterior, "exterior"),
            interiors=tuple(
                close_ring(ring, f"interiors[{idx}]") for idx, ring in enumerate(interiors)
            ),
        )

    @property
    def rings(self) -> tuple[Ring, ...]:
        return (self.exterior, *self.interiors)


@dataclass(frozen=True, slots=True)
class SpatialUnit:
    """Boundary of one postal-code-like unit."""

    identifier: str
    parts: tuple[PolygonPart, ...]
    centroid: LonLat | None = None

    def __post_init__(self) -> None:
        _require_str(self.identifier, "identifier")
        if not self.parts:
            raise ValueError(f"Spatial unit '{self.identifier}' has no polygon parts")

    @classmethod
    def from_rings(
        cls,
        identifier: str,
        exterior: Iterable[Any],
        interiors: Iterable[Iterable[Any]] = (),
        *,
        centroid: LonLat | None = None,
    ) -> SpatialUnit:
        return cls(
            identifier=identifier,
            parts=(PolygonPart.from_rings(exterior, interiors),),
            centroid=centroid,
        )

    @property
    def rings(self) -> tuple[Ring, ...]:
        out: list[Ring] = []
        for part in self.parts:
            out.extend(part.rings)
        return tuple(out)

    @property
    def vertex_count(self) -> int:
        return sum(len(ring) for ring in self.rings)

    @property
    def resolved_centroid(self) -> LonLat:
        if self.centroid is not None:
            return self.centroid
        return area_weighted_centroid(self.parts)

    def iter_points(self) -> Iterator[LonLat]:
        for ring in self.rings:
            yield from ring


def area_weighted_centroid(parts: Sequence[PolygonPart]) -> LonLat:
    """Centroid of the exterior rings, weighted by ring area."""
    weighted_x = 0.0
    weighted_y = 0.0
    total_area = 0.0
    fallback: list[LonLat] = []
    for part in parts:
        (cx, cy), area = ring_centroid(part.exterior)
        fallback.append((cx, cy))
        weighted_x += cx * area
        weighted_y += cy * area
        total_area += area
    if total_area <= 0.0:
        return (
            sum(point[0] for point in fallback) / len(fallback),
            sum(point[1] for point in fallback) / len(fallback),
        )
    return (weighted_x / total_area, weighted_y / total_area)


class GeometryStore:
    """Ordered collection of spatial units keyed by identifier."""

    def __init__(self, units: Iterable[SpatialUnit] = ()) -> None:
        self._units: list[SpatialUnit] = []
        self._index: dict[str, SpatialUnit] = {}
        for unit in units:
            self.add(unit)

    def add(self, unit: SpatialUnit) -> None:
        if unit.identifier in self._index:
            raise ValueError(f"Duplicate spatial unit identifier '{unit.identifier}'")
        self._units.append(unit)
        self._index[unit.identifier] = unit

    def get(self, identifier: str) -> SpatialUnit | None:
        return self._index.get(identifier)

    @property
    def identifiers(self) -> tuple[str, ...]:
        return tuple(unit.identifier for unit in self._units)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._index

    def __iter__(self) -> Iterator[SpatialUnit]:
        return iter(self._units)

    def __len__(self) -> int:
        return len(self._units)


@dataclass(frozen=True, slots=True)
class AttributeRow:
    """One row of the caller's attribute table."""

    identifier: str
    fields: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class MergedUnit:
    """Spatial unit with its matched attribute fields spliced in."""

    unit: SpatialUnit
    fields: Mapping[str, Any]

    @property
    def identifier(self) -> str:
        return self.unit.identifier

    @property
    def centroid(self) -> LonLat:
        return self.unit.resolved_centroid

    def value(self, field_name: str) -> Any:
        return self.fields.get(field_name)


@dataclass(frozen=True, slots=True)
class MergeResult:
    units: tuple[MergedUnit, ...]
    unmatched_attribute_ids: tuple[str, ...] = ()
    unmatched_geometry_ids: tuple[str, ...] = ()
    duplicate_attribute_ids: tuple[str, ...] = ()
    rows_without_key: int = 0


@dataclass(frozen=True, slots=True)
class FilteredSet:
    """Units kept by the nearest-neighbor filter, plus diagnostics."""

    units: tuple[MergedUnit, ...]
    excluded_ids: tuple[str, ...]
    threshold: float | None
    distances: Mapping[str, float]
    metric: str
    skipped: bool = False

    @property
    def identifiers(self) -> tuple[str, ...]:
        return tuple(unit.identifier for unit in self.units)


@dataclass(frozen=True, slots=True)
class VertexRecord:
    group_id: str
    piece: int
    ring_index: int
    is_hole: bool
    order: int
    lon: float
    lat: float
    fields: Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class BoundingBox:
    min_lon: float
    max_lon: float
    min_lat: float
    max_lat: float

    def __post_init__(self) -> None:
        values = (self.min_lon, self.max_lon, self.min_lat, self.max_lat)
        if not all(math.isfinite(value) for value in values):
            raise ValueError("Bounding box coordinates must be finite")
        if self.min_lon > self.max_lon or self.min_lat > self.max_lat:
            raise ValueError("Bounding box minimum exceeds maximum")

    @classmethod
    def from_points(cls, points: Iterable[LonLat]) -> BoundingBox:
        lons: list[float] = []
        lats: list[float] = []
        for lon, lat in points:
            lons.append(float(lon))
            lats.append(float(lat))
        if not lons:
            raise ValueError("Cannot build a bounding box from zero points")
        return cls(min_lon=min(lons), max_lon=max(lons), min_lat=min(lats), max_lat=max(lats))

    @property
    def center(self) -> LonLat:
        return ((self.min_lon + self.max_lon) / 2.0, (self.min_lat + self.max_lat) / 2.0)

    @property
    def is_degenerate(self) -> bool:
        return self.max_lon <= self.min_lon or self.max_lat <= self.min_lat

    def to_dict(self) -> dict[str, float]:
        return {
            "min_lon": self.min_lon,
            "max_lon": self.max_lon,
            "min_lat": self.min_lat,
            "max_lat": self.max_lat,
        }


@dataclass(frozen=True, slots=True)
class Viewport:
    center: LonLat
    zoom: int
    width_px: int
    height_px: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "center": {"lon": self.center[0], "lat": self.center[1]},
            "zoom": self.zoom,
            "width_px": self.width_px,
            "height_px": self.height_px,
        }
