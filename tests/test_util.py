from __future__ import annotations

import json
from pathlib import Path

from zipmap.sample import generate_sample_dataset
from zipmap.util import format_id_list, write_json


def test_format_id_list_truncates() -> None:
    assert format_id_list(["a", "b"]) == "a, b"
    values = [f"{idx:05d}" for idx in range(15)]
    assert format_id_list(values, limit=3) == "00000, 00001, 00002, ... (+12 more)"


def test_write_json_creates_parent(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "out.json"
    write_json(path, {"b": 1, "a": [1, 2]})
    assert json.loads(path.read_text(encoding="utf-8")) == {"a": [1, 2], "b": 1}


def test_sample_dataset_is_seeded() -> None:
    store_a, rows_a = generate_sample_dataset(seed=8)
    store_b, rows_b = generate_sample_dataset(seed=8)
    _, rows_c = generate_sample_dataset(seed=9)
    assert store_a.identifiers == store_b.identifiers
    assert [row.fields for row in rows_a] == [row.fields for row in rows_b]
    assert [row.fields for row in rows_a] != [row.fields for row in rows_c]
    assert len(store_a) == 29
