"""Basemap image retrieval for a computed viewport."""

from __future__ import annotations

import io
import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import requests
from PIL import Image

from .config import BasemapConfig
from .models import LonLat, Viewport
from .zoom import viewport_mercator_bounds

_LOGGER = logging.getLogger("zipmap.basemap")

MODE_NONE = "none"
MODE_STATIC = "static"
MODE_TILES = "tiles"


class BasemapFetchError(RuntimeError):
    """Raised when a basemap image cannot be retrieved or decoded."""


@dataclass(frozen=True, slots=True)
class BasemapRequest:
    center: LonLat
    zoom: int
    width_px: int
    height_px: int
    credential: str | None = None

    @classmethod
    def from_viewport(cls, viewport: Viewport, credential: str | None = None) -> BasemapRequest:
        return cls(
            center=viewport.center,
            zoom=viewport.zoom,
            width_px=viewport.width_px,
            height_px=viewport.height_px,
            credential=credential,
        )

    @property
    def viewport(self) -> Viewport:
        return Viewport(
            center=self.center,
            zoom=self.zoom,
            width_px=self.width_px,
            height_px=self.height_px,
        )


@dataclass(frozen=True, slots=True)
class BasemapImage:
    """Decoded image plus its EPSG:3857 extent ``(x0, x1, y0, y1)``."""

    image: Any
    extent: tuple[float, float, float, float]
    center: LonLat
    zoom: int
    attribution: str | None = None


class StaticMapClient:
    """Single-request static map client (Google Static Maps compatible parameters).

    No retries are attempted; the caller decides what to do on failure.
    """

    def __init__(
        self,
        *,
        url: str,
        maptype: str = "terrain",
        scale: int = 1,
        timeout_s: float = 20.0,
        tile_size: int = 256,
        session: requests.Session | None = None,
    ) -> None:
        self.url = url
        self.maptype = maptype
        self.scale = scale
        self.timeout_s = timeout_s
        self.tile_size = tile_size
        self._session = session or requests.Session()

    def fetch(self, req: BasemapRequest) -> BasemapImage:
        lon, lat = req.center
        params: dict[str, Any] = {
            "center": f"{lat:.6f},{lon:.6f}",
            "zoom": req.zoom,
            "size": f"{req.width_px}x{req.height_px}",
            "scale": self.scale,
            "maptype": self.maptype,
            "format": "png",
        }
        if req.credential:
            params["key"] = req.credential
        _LOGGER.info(
            "Fetching static basemap: center=(%.5f, %.5f), zoom=%d, size=%dx%d",
            lon,
            lat,
            req.zoom,
            req.width_px,
            req.height_px,
        )
        try:
            response = self._session.get(self.url, params=params, timeout=self.timeout_s)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise BasemapFetchError(f"Static basemap request failed: {_redact(str(exc), req.credential)}") from exc
        image = _decode_image(response.content)
        return BasemapImage(
            image=image,
            extent=viewport_mercator_bounds(req.viewport, self.tile_size),
            center=req.center,
            zoom=req.zoom,
        )


class TileBasemapClient:
    """Tile mosaic for the viewport bounds via contextily.

    contextily has no request timeout hook; ``max_retries=1`` keeps a dead
    tile server from stalling the render for long.
    """

    def __init__(self, *, provider: str, tile_size: int = 256) -> None:
        self.provider = provider
        self.tile_size = tile_size

    def fetch(self, req: BasemapRequest) -> BasemapImage:
        contextily = _require_contextily()
        source = resolve_provider(self.provider, credential=req.credential)
        x0, x1, y0, y1 = viewport_mercator_bounds(req.viewport, self.tile_size)
        _LOGGER.info("Fetching tile basemap '%s' at zoom %d", self.provider, req.zoom)
        try:
            image, extent = contextily.bounds2img(
                x0,
                y0,
                x1,
                y1,
                zoom=req.zoom,
                source=source,
                ll=False,
                use_cache=True,
                max_retries=1,
            )
        except Exception as exc:
            raise BasemapFetchError(
                f"Tile basemap request failed: {_redact(str(exc), req.credential)}"
            ) from exc
        return BasemapImage(
            image=image,
            extent=tuple(float(value) for value in extent),
            center=req.center,
            zoom=req.zoom,
            attribution=getattr(source, "attribution", None),
        )


def resolve_provider(name: str, *, credential: str | None = None) -> Any:
    """Look up a dotted xyzservices provider name such as ``CartoDB.Positron``."""
    providers = _require_xyzservices_providers()
    try:
        provider = providers.query_name(name)
    except ValueError as exc:
        raise BasemapFetchError(f"Unknown tile provider '{name}'") from exc
    if credential:
        provider = provider(apikey=credential)
    return provider


def build_basemap_client(cfg: BasemapConfig, *, tile_size: int = 256) -> StaticMapClient | TileBasemapClient | None:
    if cfg.mode == MODE_NONE:
        return None
    if cfg.mode == MODE_STATIC:
        return StaticMapClient(
            url=cfg.url,
            maptype=cfg.maptype,
            scale=cfg.scale,
            timeout_s=cfg.timeout_s,
            tile_size=tile_size,
        )
    if cfg.mode == MODE_TILES:
        return TileBasemapClient(provider=cfg.provider, tile_size=tile_size)
    raise ValueError(f"Unknown basemap mode '{cfg.mode}'")


def read_credential(cfg: BasemapConfig) -> str | None:
    if cfg.credential_env is None:
        return None
    value = os.environ.get(cfg.credential_env, "").strip()
    if not value:
        _LOGGER.warning("Basemap credential variable %s is not set", cfg.credential_env)
        return None
    return value


def _decode_image(payload: bytes) -> Any:
    np = _require_numpy()
    try:
        with Image.open(io.BytesIO(payload)) as image:
            rgba = image.convert("RGBA")
    except (OSError, ValueError) as exc:
        raise BasemapFetchError(f"Basemap response is not a readable image: {exc}") from exc
    return np.asarray(rgba)


def _redact(message: str, credential: str | None) -> str:
    if credential:
        return message.replace(credential, "***")
    return message


def _require_numpy() -> Any:
    try:
        import numpy as np
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("numpy is required for basemap images") from exc
    return np


@lru_cache(maxsize=1)
def _require_contextily() -> Any:
    try:
        import contextily as ctx
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("contextily is required for tile basemaps") from exc
    return ctx


@lru_cache(maxsize=1)
def _require_xyzservices_providers() -> Any:
    try:
        from xyzservices import providers
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("xyzservices is required for basemap source definitions") from exc
    return providers
