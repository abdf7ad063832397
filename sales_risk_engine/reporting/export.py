"""
Export helpers for reporting collaborators and manual analysis.

All writers write to disk and return the written ``Path``.
They accept generic ``list[dict]`` rows to stay decoupled from specific
result shapes.

Exports are flat (no nested dicts) so they load directly in a BI tool,
Excel, or a dataframe library without any pre-processing step.

``flatten_results_for_export()`` is the main adapter: it turns a
``BatchResult`` into one row per entity with forecast fields, the risk
score and every factor contribution as separate columns.
"""

from __future__ import annotations

import csv
import json
import logging
import math
from pathlib import Path
from typing import Any

import pyarrow as pa
import pyarrow.parquet as pq

from sales_risk_engine.config import RISK_FACTOR_NAMES
from sales_risk_engine.pipeline.orchestrator import BatchResult

logger = logging.getLogger(__name__)

EXPORT_COLUMNS: list[str] = [
    "run_id",
    "model_version",
    "entity_id",
    "status",
    "score",
    "risk_class",
    "degraded",
    "missing_factors",
    "target_field",
    "as_of",
    "point_estimate",
    "lower",
    "upper",
    "confidence_pct",
    "error_kind",
    "error_message",
    "sink_error",
] + [f"contrib_{name}" for name in RISK_FACTOR_NAMES]

_FLOAT_COLUMNS = {"score", "point_estimate", "lower", "upper", "confidence_pct"} | {
    f"contrib_{name}" for name in RISK_FACTOR_NAMES
}


def flatten_results_for_export(batch: BatchResult) -> list[dict[str, Any]]:
    """Flatten a batch result into one row per entity, in batch order.

    Missing values (no forecast, failed entity, factor not used) are ``None``.
    """
    rows: list[dict[str, Any]] = []
    run_id = batch.run.run_id

    for res in batch.entity_results:
        fc = res.forecast
        rs = res.risk_score
        row: dict[str, Any] = {
            "run_id":         run_id,
            "model_version":  batch.model_version,
            "entity_id":      res.entity_id,
            "status":         res.status,
            "score":          round(rs.score, 4) if rs else None,
            "risk_class":     rs.risk_class.value if rs else None,
            "degraded":       rs.degraded if rs else None,
            "missing_factors": ";".join(rs.missing_factors) if rs else None,
            "target_field":   fc.target_field if fc else None,
            "as_of":          fc.as_of.isoformat() if fc else None,
            "point_estimate": fc.point_estimate if fc else None,
            "lower":          fc.lower if fc else None,
            "upper":          fc.upper if fc else None,
            "confidence_pct": fc.confidence_pct if fc else None,
            "error_kind":     res.error_kind,
            "error_message":  res.error_message,
            "sink_error":     res.sink_error,
        }
        for name in RISK_FACTOR_NAMES:
            factor = rs.factor(name) if rs else None
            row[f"contrib_{name}"] = round(factor.contribution, 4) if factor else None
        rows.append(row)

    return rows


def export_to_csv(
    records: list[dict],
    path: Path,
    fieldnames: list[str] | None = None,
) -> Path:
    """Write ``records`` to a UTF-8 CSV file.

    Args:
        records:    List of row dicts.
        path:       Destination file path (parent dirs created if missing).
        fieldnames: Column order.  If None, uses the keys of the first record.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if not records:
        path.write_text("", encoding="utf-8")
        return path
    cols = fieldnames or list(records[0].keys())
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=cols, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(records)
    return path


def export_to_json(data: dict | list, path: Path) -> Path:
    """Write ``data`` to a pretty-printed JSON file (dates via ``str``)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
    return path


def _results_schema() -> pa.Schema:
    fields = []
    for col in EXPORT_COLUMNS:
        if col in _FLOAT_COLUMNS:
            fields.append(pa.field(col, pa.float64()))
        elif col == "degraded":
            fields.append(pa.field(col, pa.bool_()))
        else:
            fields.append(pa.field(col, pa.string()))
    return pa.schema(fields)


def export_to_parquet(rows: list[dict[str, Any]], path: Path) -> Path:
    """Write flattened result rows to a snappy-compressed Parquet file.

    Rows must come from ``flatten_results_for_export()``; non-finite floats
    are written as nulls.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    schema = _results_schema()
    arrays: dict[str, pa.Array] = {}
    for field in schema:
        values = [r.get(field.name) for r in rows]
        if field.type == pa.float64():
            values = [v if v is not None and math.isfinite(v) else None for v in values]
        arrays[field.name] = pa.array(values, type=field.type)
    table = pa.table(arrays, schema=schema)
    pq.write_table(table, str(path), compression="snappy")
    logger.info("Results Parquet written: %s (%d rows)", path.name, len(rows))
    return path
