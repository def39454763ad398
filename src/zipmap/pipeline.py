"""End-to-end choropleth pipeline: merge, filter, fortify, frame, draw."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

from .basemap import BasemapFetchError, BasemapImage, BasemapRequest
from .config import AppConfig, ExtentConfig, FilterConfig, MergeConfig, RenderConfig
from .fortify import fortify
from .merge import SpatialMerge
from .models import (
    AttributeRow,
    BoundingBox,
    FilteredSet,
    GeometryStore,
    MergeResult,
    VertexRecord,
    Viewport,
)
from .neighbors import NearestNeighborFilter
from .render import ChoroplethPlot, ChoroplethRenderer
from .util import format_id_list
from .zoom import BBOX_FROM_CENTROIDS, ZoomCalculator, bounding_box

_LOGGER = logging.getLogger("zipmap.pipeline")


class BasemapClient(Protocol):
    def fetch(self, req: BasemapRequest) -> BasemapImage: ...


@dataclass(slots=True)
class PipelineReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    infos: list[str] = field(default_factory=list)
    summary: dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def add_info(self, msg: str) -> None:
        self.infos.append(msg)


@dataclass(frozen=True, slots=True)
class PipelineDiagnostics:
    """Why units are missing from the map."""

    unmatched_attribute_ids: tuple[str, ...] = ()
    unmatched_geometry_ids: tuple[str, ...] = ()
    duplicate_attribute_ids: tuple[str, ...] = ()
    rows_without_key: int = 0
    excluded_ids: tuple[str, ...] = ()
    threshold: float | None = None
    filter_skipped: bool = False
    basemap_warning: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "unmatched_attribute_ids": list(self.unmatched_attribute_ids),
            "unmatched_geometry_ids": list(self.unmatched_geometry_ids),
            "duplicate_attribute_ids": list(self.duplicate_attribute_ids),
            "rows_without_key": self.rows_without_key,
            "excluded_ids": list(self.excluded_ids),
            "threshold": self.threshold,
            "filter_skipped": self.filter_skipped,
            "basemap_warning": self.basemap_warning,
        }


@dataclass(frozen=True, slots=True)
class PreparedMap:
    merge: MergeResult
    filtered: FilteredSet | None
    vertices: tuple[VertexRecord, ...]
    bbox: BoundingBox | None
    viewport: Viewport | None
    diagnostics: PipelineDiagnostics
    report: PipelineReport


@dataclass(slots=True)
class ChoroplethResult:
    plot: ChoroplethPlot | None
    viewport: Viewport | None
    diagnostics: PipelineDiagnostics
    report: PipelineReport


class ChoroplethPipeline:
    """Single-threaded pipeline; every stage consumes the whole previous result."""

    def __init__(
        self,
        *,
        merge_cfg: MergeConfig | None = None,
        filter_cfg: FilterConfig | None = None,
        extent_cfg: ExtentConfig | None = None,
        render_cfg: RenderConfig | None = None,
        pad_width: int | None = None,
    ) -> None:
        self.merge_cfg = merge_cfg or MergeConfig()
        self.filter_cfg = filter_cfg or FilterConfig()
        self.extent_cfg = extent_cfg or ExtentConfig()
        self.render_cfg = render_cfg or RenderConfig()
        self._merger = SpatialMerge(on_duplicate=self.merge_cfg.on_duplicate, pad_width=pad_width)
        self._filter = NearestNeighborFilter(
            quantile=self.filter_cfg.quantile,
            multiplier=self.filter_cfg.multiplier,
            metric=self.filter_cfg.metric,
        )
        self._zoom = ZoomCalculator(
            min_zoom=self.extent_cfg.min_zoom,
            max_zoom=self.extent_cfg.max_zoom,
            default_zoom=self.extent_cfg.default_zoom,
            tile_size=self.extent_cfg.tile_size,
            padding_px=self.extent_cfg.padding_px,
        )
        self._renderer = ChoroplethRenderer(self.render_cfg, tile_size=self.extent_cfg.tile_size)

    @classmethod
    def from_config(cls, cfg: AppConfig) -> ChoroplethPipeline:
        return cls(
            merge_cfg=cfg.merge,
            filter_cfg=cfg.filter,
            extent_cfg=cfg.extent,
            render_cfg=cfg.render,
            pad_width=cfg.data.id_pad_width,
        )

    def prepare(
        self,
        geometry: GeometryStore,
        attributes: Sequence[AttributeRow],
        *,
        key: str,
    ) -> PreparedMap:
        """Everything up to the viewport; nothing is drawn or fetched."""
        report = PipelineReport()
        merged = self._merger.merge(geometry, attributes, key)
        report.add_info(f"Merged {len(merged.units)} of {len(geometry)} units on '{key}'")
        if merged.unmatched_attribute_ids:
            report.add_warning(
                "Attribute rows with no matching geometry: "
                + format_id_list(list(merged.unmatched_attribute_ids))
            )
        if merged.rows_without_key:
            report.add_warning(f"Attribute rows with no usable '{key}' value: {merged.rows_without_key}")
        if merged.unmatched_geometry_ids:
            report.add_warning(
                "Units with no attribute row: " + format_id_list(list(merged.unmatched_geometry_ids))
            )
        if merged.duplicate_attribute_ids:
            report.add_warning(
                "Duplicate attribute keys (first row kept): "
                + format_id_list(list(merged.duplicate_attribute_ids))
            )

        if not merged.units:
            report.add_error("No units left after merging attributes onto geometry.")
            diagnostics = _diagnostics(merged, None)
            _finish_summary(report, geometry, merged, None)
            return PreparedMap(merged, None, (), None, None, diagnostics, report)

        filtered = self._run_filter(merged)
        if filtered.skipped:
            report.add_info(f"Nearest-neighbor filter skipped for {len(filtered.units)} unit(s).")
        else:
            report.add_info(
                f"Nearest-neighbor filter kept {len(filtered.units)} of {len(merged.units)} units "
                f"(threshold={filtered.threshold:.6g}, metric={filtered.metric})"
            )
        if filtered.excluded_ids:
            report.add_warning(
                "Isolated units left out of the frame: " + format_id_list(list(filtered.excluded_ids))
            )

        vertices = tuple(fortify(filtered))
        bbox = bounding_box(filtered, source=self.extent_cfg.bbox_source)
        viewport, used_default = self._frame(filtered, bbox)
        if used_default:
            report.add_info(f"Single unit or degenerate bounding box; default zoom {viewport.zoom} used.")
        report.add_info(
            f"Viewport center=({viewport.center[0]:.5f}, {viewport.center[1]:.5f}) zoom={viewport.zoom}"
        )
        _finish_summary(report, geometry, merged, filtered)
        return PreparedMap(
            merge=merged,
            filtered=filtered,
            vertices=vertices,
            bbox=bbox,
            viewport=viewport,
            diagnostics=_diagnostics(merged, filtered),
            report=report,
        )

    def run(
        self,
        geometry: GeometryStore,
        attributes: Sequence[AttributeRow],
        *,
        key: str,
        value_field: str,
        basemap_client: BasemapClient | None = None,
        credential: str | None = None,
    ) -> ChoroplethResult:
        """Prepare, fetch the basemap if a client is given, and draw.

        A failed basemap fetch is downgraded to a warning. A missing or
        non-numeric ``value_field`` raises ``InvalidValueFieldError``.
        """
        prepared = self.prepare(geometry, attributes, key=key)
        report = prepared.report
        if prepared.viewport is None or not prepared.vertices:
            return ChoroplethResult(None, prepared.viewport, prepared.diagnostics, report)

        basemap: BasemapImage | None = None
        basemap_warning: str | None = None
        if basemap_client is not None:
            try:
                basemap = basemap_client.fetch(
                    BasemapRequest.from_viewport(prepared.viewport, credential=credential)
                )
            except BasemapFetchError as exc:
                basemap_warning = f"Basemap unavailable; rendering polygons only: {exc}"
                _LOGGER.warning(basemap_warning)
                report.add_warning(basemap_warning)

        plot = self._renderer.render(
            prepared.vertices,
            value_field,
            self.render_cfg.bins,
            basemap,
            viewport=prepared.viewport,
        )
        report.add_info(f"Rendered {len(plot.group_categories)} units in {len(plot.categories)} categories")
        diagnostics = prepared.diagnostics
        if basemap_warning is not None:
            diagnostics = PipelineDiagnostics(
                unmatched_attribute_ids=diagnostics.unmatched_attribute_ids,
                unmatched_geometry_ids=diagnostics.unmatched_geometry_ids,
                duplicate_attribute_ids=diagnostics.duplicate_attribute_ids,
                rows_without_key=diagnostics.rows_without_key,
                excluded_ids=diagnostics.excluded_ids,
                threshold=diagnostics.threshold,
                filter_skipped=diagnostics.filter_skipped,
                basemap_warning=basemap_warning,
            )
        return ChoroplethResult(plot, prepared.viewport, diagnostics, report)

    def _frame(self, filtered: FilteredSet, bbox: BoundingBox) -> tuple[Viewport, bool]:
        """Viewport for the surviving units, and whether the default zoom was used.

        A lone unit is shown at the default zoom around its centroid unless its
        outline would not fit there.
        """
        width_px, height_px = self.render_cfg.width_px, self.render_cfg.height_px
        if len(filtered.units) == 1:
            point = bounding_box(filtered, source=BBOX_FROM_CENTROIDS)
            viewport = self._zoom.zoom(point, width_px, height_px)
            if self._zoom.fits(bbox, viewport):
                return (viewport, True)
        viewport = self._zoom.zoom(bbox, width_px, height_px)
        return (viewport, bbox.is_degenerate)

    def _run_filter(self, merged: MergeResult) -> FilteredSet:
        if not self.filter_cfg.enabled:
            return FilteredSet(
                units=merged.units,
                excluded_ids=(),
                threshold=None,
                distances={},
                metric=self.filter_cfg.metric,
                skipped=True,
            )
        return self._filter.filter(merged.units)


def format_result_lines(report: PipelineReport) -> Sequence[str]:
    lines: list[str] = []
    lines.extend(f"[INFO] {msg}" for msg in report.infos)
    lines.extend(f"[WARN] {msg}" for msg in report.warnings)
    lines.extend(f"[ERROR] {msg}" for msg in report.errors)
    if report.ok:
        lines.append("[OK] Choropleth pipeline completed with no errors.")
    return lines


def _diagnostics(merged: MergeResult, filtered: FilteredSet | None) -> PipelineDiagnostics:
    return PipelineDiagnostics(
        unmatched_attribute_ids=merged.unmatched_attribute_ids,
        unmatched_geometry_ids=merged.unmatched_geometry_ids,
        duplicate_attribute_ids=merged.duplicate_attribute_ids,
        rows_without_key=merged.rows_without_key,
        excluded_ids=filtered.excluded_ids if filtered is not None else (),
        threshold=filtered.threshold if filtered is not None else None,
        filter_skipped=filtered.skipped if filtered is not None else False,
    )


def _finish_summary(
    report: PipelineReport,
    geometry: GeometryStore,
    merged: MergeResult,
    filtered: FilteredSet | None,
) -> None:
    report.summary = {
        "units_total": len(geometry),
        "units_merged": len(merged.units),
        "attribute_rows_unmatched": len(merged.unmatched_attribute_ids),
        "attribute_rows_without_key": merged.rows_without_key,
        "units_without_data": len(merged.unmatched_geometry_ids),
        "units_excluded": len(filtered.excluded_ids) if filtered is not None else 0,
        "units_rendered": len(filtered.units) if filtered is not None else 0,
    }
