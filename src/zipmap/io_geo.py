"""Boundary file loading into a GeometryStore."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Sequence

from .attributes import normalize_identifier
from .models import GeometryStore, PolygonPart, SpatialUnit

_LOGGER = logging.getLogger("zipmap.io_geo")

_GEOGRAPHIC_CRS = "EPSG:4326"


def _first_existing_column(columns: Iterable[str], candidates: Sequence[str]) -> str | None:
    existing = {str(col).lower(): str(col) for col in columns}
    for candidate in candidates:
        match = existing.get(candidate.lower())
        if match:
            return match
    return None


@dataclass(frozen=True, slots=True)
class BoundaryLoadStats:
    rows_total: int
    units_loaded: int
    rows_skipped_empty: int
    rows_skipped_non_polygon: int
    rows_skipped_missing_id: int


class BoundaryRepository:
    """Thin wrapper around a polygon boundary file (shapefile, GeoPackage, GeoJSON)."""

    ID_COLUMNS = (
        "ZCTA5CE20",
        "ZCTA5CE10",
        "GEOID20",
        "GEOID10",
        "GEOID",
        "ZCTA5",
        "ZCTA",
        "ZIP",
        "ZIPCODE",
        "POSTCODE",
        "id",
    )

    def __init__(self, path: Path, *, id_column: str | None = None, pad_width: int | None = None) -> None:
        self.path = path
        self.id_column = id_column
        self.pad_width = pad_width
        self.last_stats: BoundaryLoadStats | None = None

    def load_frame(self) -> Any:
        """Read the boundary file via GeoPandas, reprojected to lon/lat."""
        if not self.path.exists():
            raise FileNotFoundError(f"Boundary file not found: {self.path}")
        gpd = _require_geopandas()
        frame = gpd.read_file(self.path)
        if frame.crs is not None and not _is_geographic_wgs84(frame.crs):
            _LOGGER.info("Reprojecting boundaries from %s to %s", frame.crs, _GEOGRAPHIC_CRS)
            frame = frame.to_crs(_GEOGRAPHIC_CRS)
        return frame

    def detect_id_column(self, frame: Any) -> str:
        if self.id_column is not None:
            if self.id_column not in frame.columns:
                cols = ", ".join(str(c) for c in frame.columns)
                raise ValueError(
                    f"Configured id column '{self.id_column}' not in boundary data. Available columns: {cols}"
                )
            return self.id_column
        col = _first_existing_column(frame.columns, self.ID_COLUMNS)
        if col is None:
            cols = ", ".join(str(c) for c in frame.columns)
            raise ValueError(
                "Could not detect unit identifier column in boundary data. "
                f"Available columns: {cols}"
            )
        return col

    def load_store(self) -> GeometryStore:
        frame = self.load_frame()
        return self.store_from_frame(frame)

    def store_from_frame(self, frame: Any) -> GeometryStore:
        """Convert polygon rows into spatial units; other rows are counted and skipped."""
        id_col = self.detect_id_column(frame)
        store = GeometryStore()
        skipped_empty = 0
        skipped_non_polygon = 0
        skipped_missing_id = 0
        for raw_id, geometry in zip(frame[id_col], frame.geometry):
            if geometry is None or bool(getattr(geometry, "is_empty", True)):
                skipped_empty += 1
                continue
            identifier = normalize_identifier(raw_id, pad_width=self.pad_width)
            if identifier is None:
                skipped_missing_id += 1
                continue
            parts = polygon_parts(geometry)
            if not parts:
                skipped_non_polygon += 1
                continue
            centroid = geometry.centroid
            store.add(
                SpatialUnit(
                    identifier=identifier,
                    parts=parts,
                    centroid=(float(centroid.x), float(centroid.y)),
                )
            )

        self.last_stats = BoundaryLoadStats(
            rows_total=len(frame),
            units_loaded=len(store),
            rows_skipped_empty=skipped_empty,
            rows_skipped_non_polygon=skipped_non_polygon,
            rows_skipped_missing_id=skipped_missing_id,
        )
        _LOGGER.info(
            "Loaded %d units from %d boundary rows (id column %s; skipped empty=%d, non-polygon=%d, missing id=%d)",
            len(store),
            len(frame),
            id_col,
            skipped_empty,
            skipped_non_polygon,
            skipped_missing_id,
        )
        return store


def polygon_parts(geometry: Any) -> tuple[PolygonPart, ...]:
    """Explode a shapely Polygon/MultiPolygon/GeometryCollection into polygon parts."""
    geom_type = getattr(geometry, "geom_type", "")
    if geom_type == "Polygon":
        if geometry.is_empty:
            return ()
        return (
            PolygonPart.from_rings(
                geometry.exterior.coords,
                [interior.coords for interior in geometry.interiors],
            ),
        )
    if geom_type in ("MultiPolygon", "GeometryCollection"):
        out: list[PolygonPart] = []
        for part in geometry.geoms:
            out.extend(polygon_parts(part))
        return tuple(out)
    return ()


def units_to_geodataframe(store: GeometryStore, *, id_column: str = "ZCTA5CE10") -> Any:
    """Inverse of ``store_from_frame`` for writing boundary files."""
    gpd = _require_geopandas()
    polygon_cls, multipolygon_cls = _require_shapely_polygon_factories()
    ids: list[str] = []
    geometries: list[Any] = []
    for unit in store:
        polygons = [polygon_cls(part.exterior, list(part.interiors)) for part in unit.parts]
        ids.append(unit.identifier)
        geometries.append(polygons[0] if len(polygons) == 1 else multipolygon_cls(polygons))
    return gpd.GeoDataFrame({id_column: ids}, geometry=geometries, crs=_GEOGRAPHIC_CRS)


def _is_geographic_wgs84(crs: Any) -> bool:
    try:
        return int(crs.to_epsg() or 0) == 4326
    except (AttributeError, TypeError, ValueError):
        return False


def _require_geopandas() -> Any:
    try:
        import geopandas as gpd
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("geopandas is required for boundary file loading") from exc
    return gpd


def _require_shapely_polygon_factories() -> tuple[Any, Any]:
    try:
        from shapely.geometry import MultiPolygon, Polygon
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("shapely is required for boundary geometry") from exc
    return (Polygon, MultiPolygon)
