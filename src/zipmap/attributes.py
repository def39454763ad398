"""Attribute table loading and identifier normalization."""

from __future__ import annotations

import math
from pathlib import Path
from typing import Any, Iterable, Mapping

from .models import AttributeRow


def normalize_identifier(value: Any, *, pad_width: int | None = None) -> str | None:
    """Return a canonical string identifier, or None for blank/missing values.

    Integral floats (``2134.0``) come out as ``"2134"`` so keys that went
    through a numeric column still match the boundary file. With
    ``pad_width`` set, all-digit identifiers are left padded with zeros.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            value = int(value)
    text = str(value).strip()
    if not text:
        return None
    if pad_width is not None and text.isdigit():
        text = text.zfill(pad_width)
    return text


def rows_from_records(
    records: Iterable[Mapping[str, Any]],
    key: str,
    *,
    pad_width: int | None = None,
) -> list[AttributeRow]:
    """Convert plain mappings into attribute rows.

    Records without a usable key keep an empty identifier so the merge can
    report them instead of losing them silently.
    """
    rows: list[AttributeRow] = []
    for record in records:
        identifier = normalize_identifier(record.get(key), pad_width=pad_width)
        rows.append(AttributeRow(identifier=identifier or "", fields=dict(record)))
    return rows


def rows_from_frame(frame: Any, key: str, *, pad_width: int | None = None) -> list[AttributeRow]:
    """Convert a pandas DataFrame into attribute rows keyed by ``key``."""
    if key not in frame.columns:
        cols = ", ".join(str(col) for col in frame.columns)
        raise ValueError(f"Key column '{key}' not found in attribute table. Available columns: {cols}")
    records = frame.to_dict(orient="records")
    return rows_from_records(records, key, pad_width=pad_width)


def load_attribute_rows(path: Path, key: str, *, pad_width: int | None = None) -> list[AttributeRow]:
    """Load a CSV attribute table; the key column is read as text."""
    if not path.exists():
        raise FileNotFoundError(f"Attribute table not found: {path}")
    pd = _require_pandas()
    frame = pd.read_csv(path, dtype={key: str})
    return rows_from_frame(frame, key, pad_width=pad_width)


def _require_pandas() -> Any:
    try:
        import pandas as pd
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("pandas is required for attribute table loading") from exc
    return pd
