"""Typed configuration loader for `config.yaml`."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, cast

import yaml

_DISTANCE_METRICS = ("planar", "haversine")
_BBOX_SOURCES = ("boundaries", "centroids")
_DUPLICATE_POLICIES = ("first", "error")
_BASEMAP_MODES = ("none", "static", "tiles")
_DEFAULT_STATIC_URL = "https://maps.googleapis.com/maps/api/staticmap"


def _mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValueError(f"Expected mapping for '{field_name}'")
    return cast(Mapping[str, Any], value)


def _optional_mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    return _mapping(value, field_name)


def _str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


def _optional_str(value: Any, field_name: str) -> str | None:
    if value is None:
        return None
    return _str(value, field_name)


def _int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Expected integer for '{field_name}'")
    return value


def _float(value: Any, field_name: str) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    raise ValueError(f"Expected float for '{field_name}'")


def _bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"Expected bool for '{field_name}'")
    return value


def _choice(value: Any, field_name: str, allowed: tuple[str, ...]) -> str:
    chosen = _str(value, field_name).casefold()
    if chosen not in allowed:
        raise ValueError(f"{field_name} must be one of: " + ", ".join(allowed))
    return chosen


def _path_from_cfg(value: Any, field_name: str, root_dir: Path) -> Path:
    raw = _str(value, field_name)
    p = Path(raw)
    return p if p.is_absolute() else root_dir / p


@dataclass(frozen=True, slots=True)
class PathsConfig:
    boundaries: Path
    attributes: Path
    output_dir: Path
    logs_dir: Path

    @property
    def build_directories(self) -> tuple[Path, ...]:
        return (self.output_dir, self.logs_dir)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> PathsConfig:
        return cls(
            boundaries=_path_from_cfg(raw.get("boundaries"), "paths.boundaries", root_dir),
            attributes=_path_from_cfg(raw.get("attributes"), "paths.attributes", root_dir),
            output_dir=_path_from_cfg(
                raw.get("output_dir", "build"), "paths.output_dir", root_dir
            ),
            logs_dir=_path_from_cfg(raw.get("logs_dir", "build/logs"), "paths.logs_dir", root_dir),
        )


@dataclass(frozen=True, slots=True)
class DataConfig:
    key_field: str
    value_field: str
    id_column: str | None = None
    id_pad_width: int | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> DataConfig:
        pad_raw = raw.get("id_pad_width")
        id_pad_width = None if pad_raw is None else _int(pad_raw, "data.id_pad_width")
        if id_pad_width is not None and id_pad_width < 1:
            raise ValueError("data.id_pad_width must be >= 1")
        return cls(
            key_field=_str(raw.get("key_field"), "data.key_field"),
            value_field=_str(raw.get("value_field"), "data.value_field"),
            id_column=_optional_str(raw.get("id_column"), "data.id_column"),
            id_pad_width=id_pad_width,
        )


@dataclass(frozen=True, slots=True)
class MergeConfig:
    on_duplicate: str = "first"

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> MergeConfig:
        return cls(
            on_duplicate=_choice(
                raw.get("on_duplicate", "first"), "merge.on_duplicate", _DUPLICATE_POLICIES
            ),
        )


@dataclass(frozen=True, slots=True)
class FilterConfig:
    enabled: bool = True
    quantile: float = 0.75
    multiplier: float = 1.0
    metric: str = "planar"

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> FilterConfig:
        quantile = _float(raw.get("quantile", 0.75), "filter.quantile")
        multiplier = _float(raw.get("multiplier", 1.0), "filter.multiplier")
        if not 0.0 < quantile <= 1.0:
            raise ValueError("filter.quantile must be in (0, 1]")
        if multiplier <= 0.0:
            raise ValueError("filter.multiplier must be > 0")
        return cls(
            enabled=_bool(raw.get("enabled", True), "filter.enabled"),
            quantile=quantile,
            multiplier=multiplier,
            metric=_choice(raw.get("metric", "planar"), "filter.metric", _DISTANCE_METRICS),
        )


@dataclass(frozen=True, slots=True)
class ExtentConfig:
    bbox_source: str = "boundaries"
    min_zoom: int = 1
    max_zoom: int = 21
    default_zoom: int = 10
    tile_size: int = 256
    padding_px: int = 0

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ExtentConfig:
        min_zoom = _int(raw.get("min_zoom", 1), "extent.min_zoom")
        max_zoom = _int(raw.get("max_zoom", 21), "extent.max_zoom")
        default_zoom = _int(raw.get("default_zoom", 10), "extent.default_zoom")
        tile_size = _int(raw.get("tile_size", 256), "extent.tile_size")
        padding_px = _int(raw.get("padding_px", 0), "extent.padding_px")
        if min_zoom < 0:
            raise ValueError("extent.min_zoom must be >= 0")
        if not min_zoom <= default_zoom <= max_zoom:
            raise ValueError("extent zoom levels must satisfy min_zoom <= default_zoom <= max_zoom")
        if tile_size < 1:
            raise ValueError("extent.tile_size must be >= 1")
        if padding_px < 0:
            raise ValueError("extent.padding_px must be >= 0")
        return cls(
            bbox_source=_choice(
                raw.get("bbox_source", "boundaries"), "extent.bbox_source", _BBOX_SOURCES
            ),
            min_zoom=min_zoom,
            max_zoom=max_zoom,
            default_zoom=default_zoom,
            tile_size=tile_size,
            padding_px=padding_px,
        )


@dataclass(frozen=True, slots=True)
class RenderConfig:
    width_px: int = 640
    height_px: int = 640
    dpi: int = 100
    bins: int = 5
    palette: str = "YlOrRd"
    edge_color: str = "#333333"
    edge_width: float = 0.4
    fill_alpha: float = 0.75
    missing_color: str = "#bdbdbd"
    background: str = "white"
    legend: bool = True
    title: str | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> RenderConfig:
        width_px = _int(raw.get("width_px", 640), "render.width_px")
        height_px = _int(raw.get("height_px", 640), "render.height_px")
        dpi = _int(raw.get("dpi", 100), "render.dpi")
        bins = _int(raw.get("bins", 5), "render.bins")
        fill_alpha = _float(raw.get("fill_alpha", 0.75), "render.fill_alpha")
        if width_px < 1 or height_px < 1:
            raise ValueError("render.width_px and render.height_px must be >= 1")
        if dpi < 1:
            raise ValueError("render.dpi must be >= 1")
        if bins < 1:
            raise ValueError("render.bins must be >= 1")
        if not 0.0 <= fill_alpha <= 1.0:
            raise ValueError("render.fill_alpha must be between 0 and 1")
        return cls(
            width_px=width_px,
            height_px=height_px,
            dpi=dpi,
            bins=bins,
            palette=_str(raw.get("palette", "YlOrRd"), "render.palette"),
            edge_color=_str(raw.get("edge_color", "#333333"), "render.edge_color"),
            edge_width=_float(raw.get("edge_width", 0.4), "render.edge_width"),
            fill_alpha=fill_alpha,
            missing_color=_str(raw.get("missing_color", "#bdbdbd"), "render.missing_color"),
            background=_str(raw.get("background", "white"), "render.background"),
            legend=_bool(raw.get("legend", True), "render.legend"),
            title=_optional_str(raw.get("title"), "render.title"),
        )


@dataclass(frozen=True, slots=True)
class BasemapConfig:
    mode: str = "none"
    url: str = _DEFAULT_STATIC_URL
    maptype: str = "terrain"
    scale: int = 1
    provider: str = "CartoDB.Positron"
    credential_env: str | None = None
    timeout_s: float = 20.0

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> BasemapConfig:
        scale = _int(raw.get("scale", 1), "basemap.scale")
        timeout_s = _float(raw.get("timeout_s", 20.0), "basemap.timeout_s")
        if scale not in (1, 2):
            raise ValueError("basemap.scale must be 1 or 2")
        if timeout_s <= 0:
            raise ValueError("basemap.timeout_s must be > 0")
        return cls(
            mode=_choice(raw.get("mode", "none"), "basemap.mode", _BASEMAP_MODES),
            url=_str(raw.get("url", _DEFAULT_STATIC_URL), "basemap.url"),
            maptype=_str(raw.get("maptype", "terrain"), "basemap.maptype"),
            scale=scale,
            provider=_str(raw.get("provider", "CartoDB.Positron"), "basemap.provider"),
            credential_env=_optional_str(raw.get("credential_env"), "basemap.credential_env"),
            timeout_s=timeout_s,
        )


@dataclass(frozen=True, slots=True)
class AppConfig:
    source_path: Path
    paths: PathsConfig
    data: DataConfig
    merge: MergeConfig
    filter: FilterConfig
    extent: ExtentConfig
    render: RenderConfig
    basemap: BasemapConfig

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], source_path: Path) -> AppConfig:
        root_dir = source_path.parent.resolve()
        return cls(
            source_path=source_path.resolve(),
            paths=PathsConfig.from_mapping(_mapping(raw.get("paths"), "paths"), root_dir),
            data=DataConfig.from_mapping(_mapping(raw.get("data"), "data")),
            merge=MergeConfig.from_mapping(_optional_mapping(raw.get("merge"), "merge")),
            filter=FilterConfig.from_mapping(_optional_mapping(raw.get("filter"), "filter")),
            extent=ExtentConfig.from_mapping(_optional_mapping(raw.get("extent"), "extent")),
            render=RenderConfig.from_mapping(_optional_mapping(raw.get("render"), "render")),
            basemap=BasemapConfig.from_mapping(_optional_mapping(raw.get("basemap"), "basemap")),
        )


def load_config(path: str | Path) -> AppConfig:
    """Load and validate the YAML config file into typed settings."""
    cfg_path = Path(path).resolve()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")
    with cfg_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)
    if not isinstance(raw, Mapping):
        raise ValueError("Top-level config must be a YAML mapping")
    return AppConfig.from_mapping(cast(Mapping[str, Any], raw), cfg_path)
