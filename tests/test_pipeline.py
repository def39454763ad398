from __future__ import annotations

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from zipmap.attributes import rows_from_records
from zipmap.basemap import BasemapFetchError, BasemapImage, BasemapRequest
from zipmap.config import FilterConfig, RenderConfig
from zipmap.models import GeometryStore, SpatialUnit
from zipmap.pipeline import ChoroplethPipeline, format_result_lines
from zipmap.render import InvalidValueFieldError
from zipmap.sample import SAMPLE_KEY_FIELD, generate_sample_dataset
from zipmap.zoom import ZoomCalculator, mercator_meters, viewport_mercator_bounds


class _FailingClient:
    def __init__(self) -> None:
        self.requests: list[BasemapRequest] = []

    def fetch(self, req: BasemapRequest) -> BasemapImage:
        self.requests.append(req)
        raise BasemapFetchError("Static basemap request failed: read timed out")


class _BlankClient:
    def fetch(self, req: BasemapRequest) -> BasemapImage:
        return BasemapImage(
            image=np.full((req.height_px, req.width_px, 4), 255, dtype=np.uint8),
            extent=viewport_mercator_bounds(req.viewport),
            center=req.center,
            zoom=req.zoom,
        )


def test_sample_dataset_end_to_end() -> None:
    store, rows = generate_sample_dataset(seed=42)
    outlier = store.identifiers[-1]

    result = ChoroplethPipeline().run(store, rows, key=SAMPLE_KEY_FIELD, value_field="value")

    try:
        assert result.report.ok
        assert result.diagnostics.excluded_ids == (outlier,)
        assert result.viewport is not None
        assert result.viewport.zoom > 5
        assert result.plot is not None
        assert len(result.plot.group_categories) == 28
        assert outlier not in result.plot.group_categories
        assert result.report.summary["units_rendered"] == 28
        assert result.diagnostics.basemap_warning is None
    finally:
        if result.plot is not None:
            result.plot.close()


def test_same_seed_gives_same_viewport_and_exclusions() -> None:
    pipeline = ChoroplethPipeline()
    first = pipeline.prepare(*generate_sample_dataset(seed=5), key=SAMPLE_KEY_FIELD)
    second = pipeline.prepare(*generate_sample_dataset(seed=5), key=SAMPLE_KEY_FIELD)
    assert first.viewport == second.viewport
    assert first.diagnostics.excluded_ids == second.diagnostics.excluded_ids
    assert first.diagnostics.threshold == second.diagnostics.threshold


def test_partial_merge_is_reported() -> None:
    store, _ = generate_sample_dataset(seed=1, rows=1, cols=3, outliers=())
    ids = store.identifiers
    rows = rows_from_records([{"zip": ids[0], "value": 1.0}, {"zip": "99999", "value": 2.0}], "zip")

    prepared = ChoroplethPipeline().prepare(store, rows, key="zip")

    assert len(prepared.merge.units) == 1
    assert prepared.diagnostics.unmatched_geometry_ids == ids[1:]
    assert prepared.diagnostics.unmatched_attribute_ids == ("99999",)
    assert prepared.filtered is not None and prepared.filtered.skipped
    assert prepared.report.ok
    assert any("99999" in line for line in prepared.report.warnings)


def test_single_unit_uses_default_zoom() -> None:
    store = GeometryStore(
        [SpatialUnit.from_rings("02134", [(-71.16, 42.35), (-71.15, 42.35), (-71.15, 42.36), (-71.16, 42.36)])]
    )
    rows = rows_from_records([{"zip": "02134", "value": 12.0}], "zip")

    result = ChoroplethPipeline().run(store, rows, key="zip", value_field="value")

    try:
        assert result.viewport is not None
        assert result.viewport.zoom == 10
        assert result.diagnostics.filter_skipped
        assert result.diagnostics.threshold is None
        assert result.plot is not None
    finally:
        if result.plot is not None:
            result.plot.close()


def test_no_overlap_is_an_error_without_plot() -> None:
    store, _ = generate_sample_dataset(seed=1, rows=1, cols=2, outliers=())
    rows = rows_from_records([{"zip": "99999", "value": 1.0}], "zip")

    result = ChoroplethPipeline().run(store, rows, key="zip", value_field="value")

    assert not result.report.ok
    assert result.plot is None
    assert result.viewport is None
    assert format_result_lines(result.report)[-1].startswith("[ERROR]")


def test_basemap_failure_degrades_to_polygons() -> None:
    store, rows = generate_sample_dataset(seed=2)
    client = _FailingClient()

    result = ChoroplethPipeline().run(
        store,
        rows,
        key=SAMPLE_KEY_FIELD,
        value_field="value",
        basemap_client=client,
        credential="k",
    )

    try:
        assert result.plot is not None
        assert not result.plot.has_basemap
        assert result.diagnostics.basemap_warning is not None
        assert "timed out" in result.diagnostics.basemap_warning
        assert result.report.ok
        assert len(client.requests) == 1
        assert client.requests[0].zoom == result.viewport.zoom
        assert client.requests[0].credential == "k"
    finally:
        if result.plot is not None:
            result.plot.close()


def test_basemap_is_drawn_when_available() -> None:
    store, rows = generate_sample_dataset(seed=2)
    pipeline = ChoroplethPipeline(render_cfg=RenderConfig(width_px=320, height_px=320))

    result = pipeline.run(store, rows, key=SAMPLE_KEY_FIELD, value_field="value", basemap_client=_BlankClient())

    try:
        assert result.plot is not None
        assert result.plot.has_basemap
        assert result.diagnostics.basemap_warning is None
    finally:
        if result.plot is not None:
            result.plot.close()


def test_disabled_filter_keeps_outlier() -> None:
    store, rows = generate_sample_dataset(seed=2)
    pipeline = ChoroplethPipeline(filter_cfg=FilterConfig(enabled=False))

    prepared = pipeline.prepare(store, rows, key=SAMPLE_KEY_FIELD)

    assert prepared.filtered is not None
    assert len(prepared.filtered.units) == len(store)
    assert prepared.diagnostics.excluded_ids == ()
    assert prepared.viewport is not None
    assert prepared.viewport.zoom < ChoroplethPipeline().prepare(store, rows, key=SAMPLE_KEY_FIELD).viewport.zoom


def test_invalid_value_field_propagates() -> None:
    store, rows = generate_sample_dataset(seed=2)
    with pytest.raises(InvalidValueFieldError):
        ChoroplethPipeline().run(store, rows, key=SAMPLE_KEY_FIELD, value_field="income")


def test_diagnostics_to_dict_is_json_ready() -> None:
    store, rows = generate_sample_dataset(seed=2)
    prepared = ChoroplethPipeline().prepare(store, rows, key=SAMPLE_KEY_FIELD)
    payload = prepared.diagnostics.to_dict()
    assert payload["excluded_ids"] == [store.identifiers[-1]]
    assert isinstance(payload["threshold"], float)
    assert payload["basemap_warning"] is None


def _strip(count: int, size: float = 0.012) -> GeometryStore:
    units = []
    for idx in range(count):
        lon = -71.1 + idx * size
        ring = [(lon, 42.3), (lon + size, 42.3), (lon + size, 42.3 + size), (lon, 42.3 + size)]
        units.append(SpatialUnit.from_rings(f"{idx:05d}", ring))
    return GeometryStore(units)


def test_every_rendered_vertex_is_inside_the_viewport() -> None:
    store = _strip(10)
    records = [{"zip": ident, "value": float(idx)} for idx, ident in enumerate(store.identifiers)]
    rows = rows_from_records(records, "zip")

    prepared = ChoroplethPipeline().prepare(store, rows, key="zip")

    assert prepared.viewport is not None
    x0, x1, y0, y1 = viewport_mercator_bounds(prepared.viewport)
    outside = set()
    for vertex in prepared.vertices:
        x, y = mercator_meters(vertex.lon, vertex.lat)
        if not (x0 - 1e-3 <= x <= x1 + 1e-3 and y0 - 1e-3 <= y <= y1 + 1e-3):
            outside.add(vertex.group_id)
    assert prepared.filtered is not None and len(prepared.filtered.units) == 10
    assert sorted(outside) == []


def test_single_large_unit_is_fitted_instead_of_default_zoom() -> None:
    ring = [(-75.0, 40.0), (-70.0, 40.0), (-70.0, 45.0), (-75.0, 45.0)]
    store = GeometryStore([SpatialUnit.from_rings("02134", ring)])
    rows = rows_from_records([{"zip": "02134", "value": 1.0}], "zip")

    prepared = ChoroplethPipeline().prepare(store, rows, key="zip")

    assert prepared.viewport is not None
    assert prepared.viewport.zoom < 10
    assert ZoomCalculator().fits(prepared.bbox, prepared.viewport)


def test_rows_without_key_are_reported() -> None:
    store, _ = generate_sample_dataset(seed=1, rows=1, cols=2, outliers=())
    records = [{"zip": ident, "value": 1.0} for ident in store.identifiers] + [{"zip": "", "value": 3.0}]
    rows = rows_from_records(records, "zip")

    prepared = ChoroplethPipeline().prepare(store, rows, key="zip")

    assert prepared.diagnostics.unmatched_attribute_ids == ()
    assert prepared.diagnostics.rows_without_key == 1
    assert prepared.diagnostics.to_dict()["rows_without_key"] == 1
    assert prepared.report.summary["attribute_rows_without_key"] == 1
    assert any("no usable 'zip' value: 1" in line for line in prepared.report.warnings)
