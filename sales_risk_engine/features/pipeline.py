"""
Feature pipeline: raw records → model-ready ``FeatureVector`` objects.

Two stages, kept apart so inference can never refit:

1. ``FeaturePipeline(config, target_field).fit(records)`` looks up the
   schema version in the registry, computes raw numeric columns for every
   record, and freezes the training statistics: per-column medians (for
   imputation), means / standard deviations (for z-scaling) and the category
   vocabulary (for one-hot encoding).

2. The returned ``FittedFeaturePipeline`` applies those frozen statistics to
   any records — training or inference — without recomputing anything.

Missing data
------------
- Missing or non-finite numerics (including lag/rolling columns that have no
  history yet) are imputed with the training median of that column.
- Missing categories and categories unseen at fit time map to ``"unknown"``.
- No record is dropped: ``transform`` returns exactly one vector per record.

Versioning
----------
``FittedFeaturePipeline.version`` is ``"<schema>+<fingerprint>"`` where the
fingerprint hashes the frozen statistics and column names.  Two fits on
different data give different versions, so a model trained on one can never
silently accept vectors from the other.

Lag and rolling windows count *record periods*: previous observations of the
same entity ordered by ``observed_at``.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from sales_risk_engine.config import FeatureConfig
from sales_risk_engine.errors import InsufficientHistoryError, SchemaError
from sales_risk_engine.features.lag_rolling import compute_lag_rolling_features
from sales_risk_engine.features.registry import PipelineSpec, get_pipeline_spec
from sales_risk_engine.models.features import FeatureVector, LabeledVector
from sales_risk_engine.models.record import UNKNOWN_CATEGORY, Record

logger = logging.getLogger(__name__)


# ── Helpers ───────────────────────────────────────────────────────────────────


def to_float(value: object) -> Optional[float]:
    """Coerce a value to a finite float, or ``None`` if missing / non-finite."""
    if value is None:
        return None
    try:
        f = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def validate_required_fields(records: Sequence[Record], required: Sequence[str]) -> None:
    """Raise ``SchemaError`` for the first record lacking a required field."""
    for rec in records:
        for field in required:
            if rec.get(field) is None:
                raise SchemaError(
                    f"Record for entity '{rec.entity_id}' at {rec.observed_at} "
                    f"is missing required field '{field}'.",
                    entity_id=rec.entity_id,
                    field=field,
                )


def group_by_entity(records: Sequence[Record]) -> dict[str, list[Record]]:
    """Group records per entity (first-appearance order), each sorted by date.

    The sort is stable, so records sharing a date keep their input order.
    """
    groups: dict[str, list[Record]] = defaultdict(list)
    for rec in records:
        groups[rec.entity_id].append(rec)
    return {eid: sorted(recs, key=lambda r: r.observed_at) for eid, recs in groups.items()}


def _raw_numeric_rows(
    entity_records: list[Record],
    spec: PipelineSpec,
    target_field: str,
) -> list[dict[str, Optional[float]]]:
    """Un-imputed numeric columns for one entity's sorted records."""
    targets = [to_float(r.get(target_field)) for r in entity_records]
    derived = compute_lag_rolling_features(
        targets, target_field, spec.lag_steps, spec.rolling_windows
    )
    rows: list[dict[str, Optional[float]]] = []
    for i, (rec, extra) in enumerate(zip(entity_records, derived)):
        row = {name: to_float(rec.get(name)) for name in spec.numeric_inputs}
        row.update(extra)
        row["history_periods"] = float(i)
        rows.append(row)
    return rows


def _category(rec: Record, field: str) -> str:
    value = rec.get(field)
    return str(value) if value else UNKNOWN_CATEGORY


def _fingerprint(payload: dict) -> str:
    text = json.dumps(payload, sort_keys=True, default=repr)
    return hashlib.sha256(text.encode()).hexdigest()[:8]


# ── Fitted pipeline ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FittedFeaturePipeline:
    """Frozen training statistics plus the transform that applies them.

    Attributes:
        spec:            Schema version declaration from the registry.
        target_field:    Forecast target the lag/rolling columns are built on.
        numeric_columns: Numeric column names in model order.
        medians:         Training medians per numeric column.
        means:           Training means (after imputation).
        stds:            Training standard deviations (1.0 when constant).
        vocabulary:      Categorical field → sorted known values (incl. unknown).
        version:         Concrete version ``"<schema>+<fingerprint>"``.
    """

    spec: PipelineSpec
    target_field: str
    numeric_columns: tuple[str, ...]
    medians: dict[str, float]
    means: dict[str, float]
    stds: dict[str, float]
    vocabulary: dict[str, tuple[str, ...]]
    version: str

    @property
    def feature_names(self) -> tuple[str, ...]:
        names = list(self.numeric_columns)
        for field in self.spec.categorical_inputs:
            names += [f"{field}={value}" for value in self.vocabulary[field]]
        return tuple(names)

    @property
    def required_fields(self) -> tuple[str, ...]:
        return self.spec.required_for(self.target_field)

    # ── Public API ───────────────────────────────────────────────────────────

    def transform(
        self,
        records: Sequence[Record],
        pipeline_version: Optional[str] = None,
    ) -> list[FeatureVector]:
        """Transform records into one feature vector per record.

        Vectors are ordered by entity (first appearance) then ``observed_at``.
        Each vector's features use only that record and earlier records of the
        same entity.

        Args:
            records:          Records of one or more entities.
            pipeline_version: Optional version the caller expects; either the
                              bare schema tag or this fit's concrete version.

        Raises:
            SchemaError: Unknown/incompatible version, or a record lacks a
                required field.
        """
        if pipeline_version is not None:
            get_pipeline_spec(pipeline_version)
            if pipeline_version not in (self.version, self.spec.version):
                raise SchemaError(
                    f"Pipeline fitted as '{self.version}' cannot produce "
                    f"vectors for version '{pipeline_version}'."
                )
        validate_required_fields(records, self.required_fields)

        vectors: list[FeatureVector] = []
        for entity_records in group_by_entity(records).values():
            vectors.extend(self._transform_entity(entity_records))
        return vectors

    def transform_latest(
        self,
        records: Sequence[Record],
        min_history: int = 1,
    ) -> FeatureVector:
        """Build the as-of vector for the most recent record of one entity.

        Raises:
            SchemaError:              Records span several entities or lack a
                                      required field.
            InsufficientHistoryError: Fewer than ``min_history`` records.
        """
        entity_ids = {r.entity_id for r in records}
        if len(entity_ids) > 1:
            raise SchemaError(
                f"transform_latest expects one entity, got {sorted(entity_ids)}."
            )
        if len(records) < max(1, min_history):
            entity_id = next(iter(entity_ids), "<none>")
            raise InsufficientHistoryError(entity_id, len(records), max(1, min_history))
        return self.transform(records)[-1]

    def build_training_set(
        self,
        records: Sequence[Record],
        horizon_periods: int,
    ) -> list[LabeledVector]:
        """Pair each record's vector with the target ``horizon_periods`` later.

        For entity record *i* with a record *i+h* available, emit the vector as
        of *i* and label ``target(i+h)`` dated ``observed_at(i+h)``.

        Raises:
            SchemaError: A record lacks a required field.
        """
        if horizon_periods < 1:
            raise ValueError(f"horizon_periods must be >= 1, got {horizon_periods}.")
        validate_required_fields(records, self.required_fields)

        examples: list[LabeledVector] = []
        skipped = 0
        for entity_records in group_by_entity(records).values():
            vectors = self._transform_entity(entity_records)
            for i in range(len(entity_records) - horizon_periods):
                future = entity_records[i + horizon_periods]
                if future.observed_at <= vectors[i].as_of:
                    skipped += 1
                    continue
                examples.append(
                    LabeledVector(
                        vector=vectors[i],
                        label=float(future.get(self.target_field)),  # type: ignore[arg-type]
                        label_date=future.observed_at,
                    )
                )
        if skipped:
            logger.warning(
                "Skipped %d training pair(s) whose label date was not after the "
                "as-of date (duplicate observation dates).", skipped,
            )
        return examples

    # ── Internals ────────────────────────────────────────────────────────────

    def _transform_entity(self, entity_records: list[Record]) -> list[FeatureVector]:
        raw_rows = _raw_numeric_rows(entity_records, self.spec, self.target_field)
        names = self.feature_names
        vectors: list[FeatureVector] = []
        for rec, raw in zip(entity_records, raw_rows):
            values: list[float] = []
            for col in self.numeric_columns:
                x = raw[col]
                if x is None:
                    x = self.medians[col]
                values.append((x - self.means[col]) / self.stds[col])
            for field in self.spec.categorical_inputs:
                cat = _category(rec, field)
                known = self.vocabulary[field]
                if cat not in known:
                    cat = UNKNOWN_CATEGORY
                values.extend(1.0 if v == cat else 0.0 for v in known)
            vectors.append(
                FeatureVector(
                    entity_id=rec.entity_id,
                    as_of=rec.observed_at,
                    pipeline_version=self.version,
                    feature_names=names,
                    values=tuple(values),
                )
            )
        return vectors


# ── Unfitted pipeline ─────────────────────────────────────────────────────────


class FeaturePipeline:
    """Fits frozen feature statistics for one schema version and target.

    Args:
        config:       Feature configuration (``pipeline_version``).
        target_field: Record field the forecast model predicts.
    """

    def __init__(self, config: FeatureConfig, target_field: str) -> None:
        self._spec = get_pipeline_spec(config.pipeline_version)
        self._target_field = target_field

    def fit(self, records: Sequence[Record]) -> FittedFeaturePipeline:
        """Freeze medians, means, stds and vocabulary on the training records.

        Raises:
            SchemaError: No records, or a record lacks a required field.
        """
        spec = self._spec
        if not records:
            raise SchemaError("Cannot fit a feature pipeline on zero records.")
        validate_required_fields(records, spec.required_for(self._target_field))

        columns = tuple(spec.derived_numeric_columns(self._target_field))
        raw_rows: list[dict[str, Optional[float]]] = []
        for entity_records in group_by_entity(records).values():
            raw_rows.extend(_raw_numeric_rows(entity_records, spec, self._target_field))

        medians: dict[str, float] = {}
        means: dict[str, float] = {}
        stds: dict[str, float] = {}
        for col in columns:
            observed = [row[col] for row in raw_rows if row[col] is not None]
            median = float(np.median(observed)) if observed else 0.0
            imputed = np.array(
                [median if row[col] is None else row[col] for row in raw_rows],
                dtype=float,
            )
            std = float(imputed.std())
            medians[col] = median
            means[col] = float(imputed.mean())
            stds[col] = std if std > 0.0 and math.isfinite(std) else 1.0

        vocabulary = {
            field: tuple(sorted({_category(r, field) for r in records} | {UNKNOWN_CATEGORY}))
            for field in spec.categorical_inputs
        }

        fingerprint = _fingerprint({
            "target": self._target_field,
            "columns": list(columns),
            "medians": medians,
            "means": means,
            "stds": stds,
            "vocabulary": {k: list(v) for k, v in vocabulary.items()},
        })
        fitted = FittedFeaturePipeline(
            spec=spec,
            target_field=self._target_field,
            numeric_columns=columns,
            medians=medians,
            means=means,
            stds=stds,
            vocabulary=vocabulary,
            version=f"{spec.version}+{fingerprint}",
        )
        logger.info(
            "Fitted feature pipeline %s on %d records (%d features).",
            fitted.version, len(records), len(fitted.feature_names),
        )
        return fitted
