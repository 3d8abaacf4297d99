from __future__ import annotations

import dataclasses
import json
from typing import Any, Dict, Iterable, List, Mapping, Sequence

import pandas as pd

from .models import Record

OUTPUT_FORMATS: Sequence[str] = ("table", "json", "csv")
EMPTY_TABLE = "(no rows)"


def records_to_dataframe(records: Iterable[Record]) -> pd.DataFrame:
    rows: List[Dict[str, Any]] = []
    for record in records:
        row: Dict[str, Any] = {"id": record.id}
        row.update(record.fields)
        rows.append(row)
    if not rows:
        return pd.DataFrame()
    return pd.DataFrame(rows)


def to_plain(value: Any) -> Any:
    """Convert dataclasses (and containers of them) into JSON-ready values."""

    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        if hasattr(value, "to_dict"):
            return to_plain(value.to_dict())
        return {key: to_plain(item) for key, item in dataclasses.asdict(value).items()}
    if isinstance(value, Mapping):
        return {key: to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(item) for item in value]
    return value


def _flatten_cell(value: Any) -> Any:
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return value


def rows_to_dataframe(rows: Sequence[Any]) -> pd.DataFrame:
    plain_rows = [to_plain(row) for row in rows]
    if not plain_rows:
        return pd.DataFrame()
    frame = pd.DataFrame([row if isinstance(row, dict) else {"value": row} for row in plain_rows])
    return frame.apply(lambda column: column.map(_flatten_cell))


def render(rows: Sequence[Any], fmt: str = "table") -> str:
    """Render rows of records, dataclasses or dicts as ``table``, ``json`` or ``csv``."""

    if fmt not in OUTPUT_FORMATS:
        raise ValueError(f"Unknown output format {fmt!r}")
    if fmt == "json":
        return json.dumps(to_plain(list(rows)), indent=2, ensure_ascii=False)

    if rows and all(isinstance(row, Record) for row in rows):
        frame = records_to_dataframe(rows).apply(lambda column: column.map(_flatten_cell))
    else:
        frame = rows_to_dataframe(rows)

    if frame.empty:
        return EMPTY_TABLE if fmt == "table" else ""
    if fmt == "csv":
        return frame.to_csv(index=False)
    return frame.to_string(index=False)


__all__ = ["OUTPUT_FORMATS", "records_to_dataframe", "render", "to_plain"]
