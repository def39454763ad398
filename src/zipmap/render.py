"""Choropleth drawing of fortified vertex tables with matplotlib."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from .basemap import BasemapImage
from .config import RenderConfig
from .models import Viewport, VertexRecord, ring_signed_area
from .zoom import mercator_transformer, viewport_mercator_bounds

_LOGGER = logging.getLogger("zipmap.render")

_BACKGROUND_TRANSPARENT = "transparent"
_POLYGON_ZORDER = 2
_BASEMAP_ZORDER = 0
_FALLBACK_PAD_RATIO = 0.05


class InvalidValueFieldError(ValueError):
    """Raised when the value column is missing or cannot be binned numerically."""


@dataclass(frozen=True, slots=True)
class _Piece:
    group_id: str
    rings: tuple[tuple[tuple[float, float], ...], ...]


@dataclass(slots=True)
class ChoroplethPlot:
    """Figure and legend data produced by one render call. Nothing is written to disk."""

    figure: Any
    axes: Any
    value_field: str
    categories: tuple[str, ...]
    colors: tuple[str, ...]
    bin_edges: tuple[float, ...]
    group_categories: Mapping[str, int | None] = field(default_factory=dict)
    has_basemap: bool = False

    def close(self) -> None:
        plt = _require_matplotlib()
        plt.close(self.figure)


class ChoroplethRenderer:
    """Quantile-binned choropleth over an optional basemap image."""

    def __init__(self, cfg: RenderConfig | None = None, *, tile_size: int = 256) -> None:
        self.cfg = cfg or RenderConfig()
        self.tile_size = tile_size

    def render(
        self,
        vertices: Sequence[VertexRecord],
        value_field: str,
        bins: int | None = None,
        basemap: BasemapImage | None = None,
        *,
        viewport: Viewport | None = None,
    ) -> ChoroplethPlot:
        if not vertices:
            raise ValueError("No vertices to render")
        n_bins = self.cfg.bins if bins is None else bins
        if n_bins < 1:
            raise ValueError("bins must be >= 1")

        group_values = _group_values(vertices, value_field)
        group_categories, categories, bin_edges = _quantile_bins(group_values, value_field, n_bins)
        colors = _palette_colors(self.cfg.palette, len(categories))
        pieces = _collect_pieces(vertices)

        plt = _require_matplotlib()
        dpi = self.cfg.dpi
        fig, ax = plt.subplots(figsize=(self.cfg.width_px / dpi, self.cfg.height_px / dpi), dpi=dpi)
        fig.subplots_adjust(left=0.0, right=1.0, bottom=0.0, top=1.0)
        _apply_background(fig=fig, ax=ax, background=self.cfg.background)

        transformer = mercator_transformer()
        projected = [
            _Piece(
                group_id=piece.group_id,
                rings=tuple(_project_ring(ring, transformer) for ring in piece.rings),
            )
            for piece in pieces
        ]

        if basemap is not None:
            ax.imshow(
                basemap.image,
                extent=basemap.extent,
                interpolation="bilinear",
                zorder=_BASEMAP_ZORDER,
            )

        for piece in projected:
            category = group_categories.get(piece.group_id)
            face = colors[category] if category is not None else self.cfg.missing_color
            ax.add_patch(
                _piece_patch(
                    piece,
                    facecolor=face,
                    edgecolor=self.cfg.edge_color,
                    linewidth=self.cfg.edge_width,
                    alpha=self.cfg.fill_alpha,
                )
            )

        x0, x1, y0, y1 = self._resolve_limits(projected, basemap=basemap, viewport=viewport)
        ax.set_xlim(x0, x1)
        ax.set_ylim(y0, y1)
        ax.set_aspect("equal", adjustable="box")
        ax.axis("off")

        has_missing = any(category is None for category in group_categories.values())
        if self.cfg.legend:
            _draw_legend(
                ax=ax,
                categories=categories,
                colors=colors,
                missing_color=self.cfg.missing_color if has_missing else None,
                title=value_field,
            )
        if self.cfg.title:
            ax.set_title(self.cfg.title)

        _LOGGER.info(
            "Rendered %d groups (%d pieces) into %d categories%s",
            len(group_categories),
            len(projected),
            len(categories),
            " over basemap" if basemap is not None else "",
        )
        return ChoroplethPlot(
            figure=fig,
            axes=ax,
            value_field=value_field,
            categories=categories,
            colors=colors,
            bin_edges=bin_edges,
            group_categories=group_categories,
            has_basemap=basemap is not None,
        )

    def _resolve_limits(
        self,
        pieces: Sequence[_Piece],
        *,
        basemap: BasemapImage | None,
        viewport: Viewport | None,
    ) -> tuple[float, float, float, float]:
        # basemap tiles are snapped outwards, so the viewport decides the frame
        if viewport is not None:
            return viewport_mercator_bounds(viewport, self.tile_size)
        if basemap is not None:
            return basemap.extent
        xs = [x for piece in pieces for ring in piece.rings for x, _ in ring]
        ys = [y for piece in pieces for ring in piece.rings for _, y in ring]
        min_x, max_x, min_y, max_y = min(xs), max(xs), min(ys), max(ys)
        pad_x = max((max_x - min_x) * _FALLBACK_PAD_RATIO, 1.0)
        pad_y = max((max_y - min_y) * _FALLBACK_PAD_RATIO, 1.0)
        return (min_x - pad_x, max_x + pad_x, min_y - pad_y, max_y + pad_y)


def _group_values(vertices: Sequence[VertexRecord], value_field: str) -> dict[str, Any]:
    values: dict[str, Any] = {}
    seen_field = False
    for vertex in vertices:
        if vertex.group_id in values:
            continue
        if value_field in vertex.fields:
            seen_field = True
        values[vertex.group_id] = vertex.fields.get(value_field)
    if not seen_field:
        available = sorted({name for vertex in vertices for name in vertex.fields})
        raise InvalidValueFieldError(
            f"Value field '{value_field}' not found. Available fields: {', '.join(available) or '(none)'}"
        )
    return values


def _quantile_bins(
    group_values: Mapping[str, Any],
    value_field: str,
    bins: int,
) -> tuple[dict[str, int | None], tuple[str, ...], tuple[float, ...]]:
    """Equal-count categories per group; NaN groups map to None."""
    pd = _require_pandas()
    series = pd.Series(list(group_values.values()), index=list(group_values.keys()))
    if pd.api.types.is_bool_dtype(series):
        raise InvalidValueFieldError(f"Value field '{value_field}' is boolean, not numeric")
    if not pd.api.types.is_numeric_dtype(series):
        if any(isinstance(value, bool) for value in series):
            raise InvalidValueFieldError(f"Value field '{value_field}' contains boolean values")
        try:
            series = pd.to_numeric(series)
        except (TypeError, ValueError) as exc:
            raise InvalidValueFieldError(f"Value field '{value_field}' is not numeric: {exc}") from exc

    valid = series.dropna()
    if valid.empty:
        raise InvalidValueFieldError(f"Value field '{value_field}' has no numeric values to bin")

    if valid.nunique() == 1:
        only = float(valid.iloc[0])
        codes = {str(group): 0 for group in valid.index}
        categories: tuple[str, ...] = (_format_interval(only, only),)
        edges: tuple[float, ...] = (only, only)
    else:
        binned, raw_edges = pd.qcut(valid, bins, duplicates="drop", retbins=True)
        edges = tuple(float(edge) for edge in raw_edges)
        categories = tuple(
            _format_interval(edges[idx], edges[idx + 1]) for idx in range(len(edges) - 1)
        )
        codes = {str(group): int(code) for group, code in binned.cat.codes.items()}

    group_categories: dict[str, int | None] = {
        str(group): codes.get(str(group)) for group in series.index
    }
    return (group_categories, categories, edges)


def _format_interval(low: float, high: float) -> str:
    return f"{low:,.4g} - {high:,.4g}"


def _palette_colors(palette: str, count: int) -> tuple[str, ...]:
    plt = _require_matplotlib()
    to_hex = _require_matplotlib_to_hex()
    cmap = plt.get_cmap(palette, max(count, 2))
    if count == 1:
        return (to_hex(cmap(1)),)
    return tuple(to_hex(cmap(idx)) for idx in range(count))


def _collect_pieces(vertices: Sequence[VertexRecord]) -> list[_Piece]:
    """Rebuild polygon pieces from consecutive vertex records."""
    rings_by_piece: dict[tuple[str, int], list[list[tuple[float, float]]]] = {}
    ring_keys: dict[tuple[str, int], int] = {}
    for vertex in vertices:
        piece_key = (vertex.group_id, vertex.piece)
        rings = rings_by_piece.setdefault(piece_key, [])
        if ring_keys.get(piece_key) != vertex.ring_index:
            rings.append([])
            ring_keys[piece_key] = vertex.ring_index
        rings[-1].append((vertex.lon, vertex.lat))
    return [
        _Piece(group_id=group_id, rings=tuple(tuple(ring) for ring in rings))
        for (group_id, _), rings in rings_by_piece.items()
    ]


def _project_ring(ring: Sequence[tuple[float, float]], transformer: Any) -> tuple[tuple[float, float], ...]:
    lons = [point[0] for point in ring]
    lats = [point[1] for point in ring]
    xs, ys = transformer.transform(lons, lats)
    return tuple((float(x), float(y)) for x, y in zip(xs, ys))


def _piece_patch(
    piece: _Piece,
    *,
    facecolor: str,
    edgecolor: str,
    linewidth: float,
    alpha: float,
) -> Any:
    """One PathPatch per piece; holes are wound against the exterior so they stay unfilled."""
    path_cls, patch_cls = _require_matplotlib_path()
    exterior_sign = ring_signed_area(piece.rings[0]) >= 0.0
    vertices: list[tuple[float, float]] = []
    codes: list[int] = []
    for idx, ring in enumerate(piece.rings):
        points = list(ring)
        if idx > 0 and (ring_signed_area(points) >= 0.0) == exterior_sign:
            points.reverse()
        if points[0] != points[-1]:
            points.append(points[0])
        vertices.extend(points)
        codes.append(path_cls.MOVETO)
        codes.extend([path_cls.LINETO] * (len(points) - 2))
        codes.append(path_cls.CLOSEPOLY)
    return patch_cls(
        path_cls(vertices, codes),
        facecolor=facecolor,
        edgecolor=edgecolor,
        linewidth=linewidth,
        alpha=alpha,
        zorder=_POLYGON_ZORDER,
    )


def _draw_legend(
    *,
    ax: Any,
    categories: Sequence[str],
    colors: Sequence[str],
    missing_color: str | None,
    title: str,
) -> None:
    patch_cls = _require_matplotlib_patch()
    handles = [
        patch_cls(facecolor=color, edgecolor="#555555", label=label)
        for label, color in zip(categories, colors)
    ]
    if missing_color is not None:
        handles.append(patch_cls(facecolor=missing_color, edgecolor="#555555", label="No data"))
    ax.legend(handles=handles, title=title, loc="lower right", fontsize="small", framealpha=0.85)


def _apply_background(*, fig: Any, ax: Any, background: str) -> None:
    if background.casefold() == _BACKGROUND_TRANSPARENT:
        fig.patch.set_facecolor("white")
        fig.patch.set_alpha(0.0)
        ax.set_facecolor((1.0, 1.0, 1.0, 0.0))
    else:
        fig.patch.set_facecolor(background)
        ax.set_facecolor(background)


def _require_matplotlib() -> Any:
    try:
        import matplotlib

        matplotlib.use("Agg", force=False)
        import matplotlib.pyplot as plt
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for choropleth rendering") from exc
    return plt


def _require_matplotlib_to_hex() -> Any:
    try:
        from matplotlib.colors import to_hex
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for choropleth palettes") from exc
    return to_hex


def _require_matplotlib_path() -> tuple[Any, Any]:
    try:
        from matplotlib.patches import PathPatch
        from matplotlib.path import Path
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for polygon drawing") from exc
    return (Path, PathPatch)


def _require_matplotlib_patch() -> Any:
    try:
        from matplotlib.patches import Patch
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for legend drawing") from exc
    return Patch


def _require_pandas() -> Any:
    try:
        import pandas as pd
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("pandas is required for quantile binning") from exc
    return pd
