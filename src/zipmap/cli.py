"""CLI entrypoint for the zipmap choropleth builder."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Sequence

from .attributes import load_attribute_rows
from .basemap import build_basemap_client, read_credential
from .config import AppConfig, load_config
from .io_geo import BoundaryRepository, units_to_geodataframe
from .merge import DuplicateKeyError
from .models import AttributeRow, GeometryStore
from .pipeline import ChoroplethPipeline, format_result_lines
from .render import InvalidValueFieldError
from .sample import SAMPLE_KEY_FIELD, generate_sample_dataset
from .util import ensure_directories, setup_logging, write_json

LOGGER = logging.getLogger("zipmap.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zipmap",
        description="Choropleth maps over ZIP code tabulation areas.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", default="config.yaml", help="Path to YAML config.")
        p.add_argument("--verbose", action="store_true", help="Enable debug logs.")

    render_p = subparsers.add_parser("render", help="Merge, filter and render the choropleth PNG.")
    add_common(render_p)
    render_p.add_argument(
        "--output",
        default=None,
        help="PNG path. Defaults to <output_dir>/choropleth.png.",
    )
    render_p.add_argument(
        "--value-field",
        default=None,
        help="Attribute column to color by. Overrides data.value_field.",
    )
    render_p.add_argument(
        "--no-basemap",
        action="store_true",
        help="Skip the basemap fetch even when basemap.mode is set.",
    )

    extent_p = subparsers.add_parser("extent", help="Compute the viewport without drawing.")
    add_common(extent_p)

    sample_p = subparsers.add_parser(
        "sample",
        help="Write seeded sample boundaries and attributes to the configured paths.",
    )
    add_common(sample_p)
    sample_p.add_argument("--seed", type=int, default=7, help="Random seed for attribute values.")

    return parser


def _load_and_setup(args: argparse.Namespace) -> AppConfig:
    cfg = load_config(args.config)
    log_path = cfg.paths.logs_dir / "zipmap.log"
    setup_logging(log_path, verbose=args.verbose)
    ensure_directories(cfg.paths.build_directories)
    return cfg


def _load_inputs(cfg: AppConfig) -> tuple[GeometryStore, list[AttributeRow]]:
    repo = BoundaryRepository(
        cfg.paths.boundaries,
        id_column=cfg.data.id_column,
        pad_width=cfg.data.id_pad_width,
    )
    store = repo.load_store()
    rows = load_attribute_rows(
        cfg.paths.attributes,
        cfg.data.key_field,
        pad_width=cfg.data.id_pad_width,
    )
    return (store, rows)


def _run_render(
    cfg: AppConfig,
    *,
    output: str | None,
    value_field: str | None,
    no_basemap: bool,
) -> int:
    try:
        store, rows = _load_inputs(cfg)
    except (FileNotFoundError, ValueError) as exc:
        LOGGER.error("Failed loading inputs: %s", exc)
        return 1

    pipeline = ChoroplethPipeline.from_config(cfg)
    client = None if no_basemap else build_basemap_client(cfg.basemap, tile_size=cfg.extent.tile_size)
    credential = read_credential(cfg.basemap) if client is not None else None
    field = value_field or cfg.data.value_field
    try:
        result = pipeline.run(
            store,
            rows,
            key=cfg.data.key_field,
            value_field=field,
            basemap_client=client,
            credential=credential,
        )
    except (InvalidValueFieldError, DuplicateKeyError) as exc:
        LOGGER.error("Render aborted: %s", exc)
        return 1

    for line in format_result_lines(result.report):
        LOGGER.info(line)

    output_path = Path(output) if output else cfg.paths.output_dir / "choropleth.png"
    diagnostics_path = output_path.with_suffix(".json")
    payload = {
        "viewport": result.viewport.to_dict() if result.viewport is not None else None,
        "diagnostics": result.diagnostics.to_dict(),
        "summary": dict(result.report.summary),
        "errors": list(result.report.errors),
        "warnings": list(result.report.warnings),
    }
    write_json(diagnostics_path, payload)
    LOGGER.info("Diagnostics written to %s", diagnostics_path)

    if result.plot is None:
        return 1
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        result.plot.figure.savefig(output_path, dpi=cfg.render.dpi)
    finally:
        result.plot.close()
    LOGGER.info("Choropleth written to %s", output_path)
    return 0 if result.report.ok else 1


def _run_extent(cfg: AppConfig) -> int:
    try:
        store, rows = _load_inputs(cfg)
    except (FileNotFoundError, ValueError) as exc:
        LOGGER.error("Failed loading inputs: %s", exc)
        return 1

    try:
        prepared = ChoroplethPipeline.from_config(cfg).prepare(store, rows, key=cfg.data.key_field)
    except DuplicateKeyError as exc:
        LOGGER.error("Extent aborted: %s", exc)
        return 1
    for line in format_result_lines(prepared.report):
        LOGGER.info(line)
    if prepared.viewport is not None and prepared.bbox is not None:
        LOGGER.info("Bounding box: %s", prepared.bbox.to_dict())
        LOGGER.info("Viewport: %s", prepared.viewport.to_dict())
    return 0 if prepared.report.ok else 1


def _run_sample(cfg: AppConfig, *, seed: int) -> int:
    store, rows = generate_sample_dataset(seed, value_field=cfg.data.value_field)
    id_column = cfg.data.id_column or "ZCTA5CE10"
    boundaries_path = cfg.paths.boundaries
    attributes_path = cfg.paths.attributes
    ensure_directories([boundaries_path.parent, attributes_path.parent])

    frame = units_to_geodataframe(store, id_column=id_column)
    frame.to_file(boundaries_path, driver="GeoJSON")
    LOGGER.info("Sample boundaries (%d units) written to %s", len(store), boundaries_path)

    key = cfg.data.key_field
    table = _require_pandas().DataFrame(
        [
            {key: row.fields[SAMPLE_KEY_FIELD], cfg.data.value_field: row.fields[cfg.data.value_field]}
            for row in rows
        ]
    )
    table.to_csv(attributes_path, index=False)
    LOGGER.info("Sample attributes (%d rows, seed=%d) written to %s", len(table), seed, attributes_path)
    return 0


def _dispatch(args: argparse.Namespace) -> int:
    cfg = _load_and_setup(args)
    command = str(args.command)
    if command == "render":
        return _run_render(
            cfg,
            output=args.output,
            value_field=args.value_field,
            no_basemap=bool(args.no_basemap),
        )
    if command == "extent":
        return _run_extent(cfg)
    if command == "sample":
        return _run_sample(cfg, seed=int(args.seed))
    raise ValueError(f"Unknown command: {command}")


def _require_pandas() -> Any:
    try:
        import pandas as pd
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("pandas is required for writing sample attributes") from exc
    return pd


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    return _dispatch(args)


if __name__ == "__main__":
    raise SystemExit(main())
