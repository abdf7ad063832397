"""
CSV import of historical sales/financial records.

Format — comma delimited, with a header row.
Required columns:
  entity_id, observed_at

Optional numeric columns (empty string → None):
  revenue, cost, sales_units, ad_spend, assets, liabilities,
  current_assets, current_liabilities, unit_price, unit_cost

Optional categorical columns:
  sector, region

Date formats (observed_at):
  YYYY-MM-DD, DD/MM/YYYY, M/D/YYYY, DD-MM-YYYY, YYYY/MM/DD, or a spreadsheet
  serial day number such as ``45292``.

Numeric cells may carry thousands separators: ``"1,250.50"`` → 1250.5.
"""

from __future__ import annotations

import csv
import logging
import threading
from datetime import date
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from sales_risk_engine.models.record import CATEGORICAL_FIELDS, NUMERIC_FIELDS, Record
from sales_risk_engine.sources.base import InMemoryRecordSource
from sales_risk_engine.utils.time_utils import parse_flexible_date

logger = logging.getLogger(__name__)

REQUIRED_CSV_COLUMNS = frozenset({"entity_id", "observed_at"})


def parse_records_csv(path: Path) -> list[Record]:
    """Parse a CSV file into validated :class:`Record` objects.

    All rows are validated before any are returned. If **any** row fails,
    a single :class:`ValueError` is raised listing the first 10 failures.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValueError: If required columns are missing or any row fails validation.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Records CSV file not found: {path}")

    with open(path, encoding="utf-8-sig", newline="") as f:
        reader = csv.DictReader(f)

        if reader.fieldnames is None:
            raise ValueError(f"CSV file is empty or has no header row: {path}")

        actual_cols = {c.strip() for c in reader.fieldnames}
        missing = REQUIRED_CSV_COLUMNS - actual_cols
        if missing:
            raise ValueError(
                f"CSV missing required columns: {sorted(missing)}\n"
                f"Found columns: {sorted(actual_cols)}"
            )

        rows = [{(k or "").strip(): (v or "") for k, v in row.items()} for row in reader]

    if not rows:
        logger.warning("Records CSV is empty (header only): %s", path)
        return []

    records: list[Record] = []
    errors: list[tuple[int, str]] = []

    for i, row in enumerate(rows):
        line_no = i + 2
        if not any(v.strip() for v in row.values()):
            continue
        try:
            records.append(_row_to_record(row))
        except (ValueError, ValidationError) as exc:
            errors.append((line_no, str(exc)))

    if errors:
        max_shown = 10
        detail = "\n".join(f"  Row {ln}: {msg}" for ln, msg in errors[:max_shown])
        suffix = f"\n  … and {len(errors) - max_shown} more" if len(errors) > max_shown else ""
        raise ValueError(
            f"{len(errors)} row(s) failed validation in {path.name}:\n{detail}{suffix}"
        )

    logger.info("Parsed %d records from %s", len(records), path.name)
    return records


class CsvRecordSource:
    """``RecordSource`` backed by one CSV file, parsed once on first fetch."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._loaded: Optional[InMemoryRecordSource] = None

    def _source(self) -> InMemoryRecordSource:
        with self._lock:
            if self._loaded is None:
                self._loaded = InMemoryRecordSource(parse_records_csv(self.path))
            return self._loaded

    def fetch_records(
        self,
        entity_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[Record]:
        return self._source().fetch_records(entity_id, start, end)

    def list_entity_ids(self) -> list[str]:
        return self._source().list_entity_ids()

    def all_records(self) -> list[Record]:
        return self._source().all_records()


# ── Private helpers ────────────────────────────────────────────────────────────

def _row_to_record(row: dict[str, str]) -> Record:
    values: dict[str, object] = {
        "entity_id": _req(row, "entity_id"),
        "observed_at": _parse_date(row, "observed_at"),
    }
    for field in NUMERIC_FIELDS:
        values[field] = _parse_number(row, field)
    for field in CATEGORICAL_FIELDS:
        values[field] = _opt(row, field)
    return Record(**values)


def _req(row: dict[str, str], key: str) -> str:
    v = row.get(key, "").strip()
    if not v:
        raise ValueError(f"Required field '{key}' is empty.")
    return v


def _opt(row: dict[str, str], key: str) -> Optional[str]:
    v = row.get(key, "").strip()
    return v if v else None


def _parse_date(row: dict[str, str], key: str) -> date:
    v = _req(row, key)
    try:
        return parse_flexible_date(v)
    except ValueError as exc:
        raise ValueError(f"Invalid date for '{key}': {exc}") from exc


def _parse_number(row: dict[str, str], key: str) -> Optional[float]:
    """Parse a numeric cell, tolerating thousands separators."""
    v = _opt(row, key)
    if v is None:
        return None
    try:
        return float(v.replace(",", ""))
    except ValueError:
        raise ValueError(f"Invalid number for '{key}': '{v}'.")
