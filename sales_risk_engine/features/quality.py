"""
Data quality checks over raw records.

``build_quality_report()`` inspects a list of records before training and
reports:

- Missingness fraction per numeric and categorical field.
- Duplicate (entity_id, observed_at) keys.
- Entities with less history than ``min_history_periods``.
- Records lacking the forecast target.

``is_clean`` is False only for hard problems (duplicate keys, missing
targets).  High missingness in optional fields is normal for sparse business
data and only shows up in ``high_missingness_fields``.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date
from typing import Optional, Sequence

from sales_risk_engine.models.record import CATEGORICAL_FIELDS, NUMERIC_FIELDS, Record


@dataclass
class DataQualityReport:
    """Summary of data quality checks on a record set.

    Attributes:
        total_records:            Records inspected.
        total_entities:           Distinct entity ids.
        date_range_start:         Earliest observed_at, or None if empty.
        date_range_end:           Latest observed_at, or None if empty.
        missingness:              Field → fraction of None values [0.0, 1.0].
        high_missingness_fields:  Fields above ``missingness_threshold``.
        duplicate_key_count:      Extra records sharing an (entity, date) key.
        short_history_entities:   Entities with fewer than the minimum periods.
        missing_target_count:     Records lacking the target field.
        is_clean:                 False if duplicates or missing targets exist.
    """

    total_records: int
    total_entities: int
    date_range_start: Optional[date]
    date_range_end: Optional[date]
    missingness: dict[str, float]
    high_missingness_fields: list[str]
    duplicate_key_count: int
    short_history_entities: list[str]
    missing_target_count: int
    is_clean: bool


def build_quality_report(
    records: Sequence[Record],
    target_field: str,
    min_history_periods: int = 3,
    missingness_threshold: float = 0.30,
) -> DataQualityReport:
    """Build a quality report for a list of records."""
    if not records:
        return DataQualityReport(
            total_records=0,
            total_entities=0,
            date_range_start=None,
            date_range_end=None,
            missingness={},
            high_missingness_fields=[],
            duplicate_key_count=0,
            short_history_entities=[],
            missing_target_count=0,
            is_clean=True,
        )

    n = len(records)

    missingness = {
        field: sum(1 for r in records if r.get(field) is None) / n
        for field in NUMERIC_FIELDS + CATEGORICAL_FIELDS
    }
    high = [f for f, frac in missingness.items() if frac > missingness_threshold]

    keys = Counter((r.entity_id, r.observed_at) for r in records)
    duplicate_key_count = sum(count - 1 for count in keys.values() if count > 1)

    per_entity = Counter(r.entity_id for r in records)
    short = sorted(eid for eid, count in per_entity.items() if count < min_history_periods)

    missing_target = sum(1 for r in records if r.get(target_field) is None)
    dates = [r.observed_at for r in records]

    return DataQualityReport(
        total_records=n,
        total_entities=len(per_entity),
        date_range_start=min(dates),
        date_range_end=max(dates),
        missingness=missingness,
        high_missingness_fields=high,
        duplicate_key_count=duplicate_key_count,
        short_history_entities=short,
        missing_target_count=missing_target,
        is_clean=duplicate_key_count == 0 and missing_target == 0,
    )
