"""
Feature pipeline version registry.

This module is the single source of truth for what each feature-pipeline
schema version reads and produces.  ``FeaturePipeline`` looks versions up
here; asking for a version that is not declared is a ``SchemaError``.

A plain dict of ``PipelineSpec`` dataclasses is deliberately simple:

* Easy to read — no framework magic, no decorators.
* Adding a version means adding one entry; existing versions never change,
  so models trained against them keep working.
* Column names are derived here (``feature_columns()``), so the pipeline and
  the tests agree on model input order.

Column groups (in model input order)
------------------------------------
numeric     Raw record numerics, median-imputed and z-scaled.
lag         Target value N record periods prior.
rolling     Rolling mean / std of the target over the last N periods.
momentum    Percentage change of the target over N periods.
history     Number of prior periods the entity has (depth of history).
category    One-hot indicators over the frozen training vocabulary.
"""

from __future__ import annotations

from dataclasses import dataclass

from sales_risk_engine.errors import SchemaError
from sales_risk_engine.models.record import CATEGORICAL_FIELDS, NUMERIC_FIELDS


@dataclass(frozen=True)
class PipelineSpec:
    """Declaration of one feature-pipeline schema version.

    Attributes:
        version:           Schema version tag, e.g. ``"v1"``.
        required_fields:   Record fields that must be present on every record.
                           The forecast target is appended at fit time.
        numeric_inputs:    Record numerics passed through as features.
        categorical_inputs: Record categoricals one-hot encoded.
        lag_steps:         Target lags, in record periods.
        rolling_windows:   Rolling mean/std/pct-change windows, in periods.
        description:       Human-readable summary.
    """

    version: str
    required_fields: tuple[str, ...]
    numeric_inputs: tuple[str, ...]
    categorical_inputs: tuple[str, ...]
    lag_steps: tuple[int, ...]
    rolling_windows: tuple[int, ...]
    description: str = ""

    def required_for(self, target_field: str) -> tuple[str, ...]:
        """Required fields including the forecast target."""
        if target_field in self.required_fields:
            return self.required_fields
        return self.required_fields + (target_field,)

    def derived_numeric_columns(self, target_field: str) -> list[str]:
        """Numeric column names in model input order (before one-hot columns)."""
        cols = list(self.numeric_inputs)
        cols += [f"{target_field}_lag_{n}" for n in self.lag_steps]
        for n in self.rolling_windows:
            cols += [f"{target_field}_roll_mean_{n}", f"{target_field}_roll_std_{n}"]
        cols += [f"{target_field}_pct_change_{n}" for n in self.rolling_windows]
        cols.append("history_periods")
        return cols


# ── Registry ──────────────────────────────────────────────────────────────────

PIPELINE_VERSIONS: dict[str, PipelineSpec] = {
    "v1": PipelineSpec(
        version="v1",
        required_fields=("entity_id", "observed_at"),
        numeric_inputs=NUMERIC_FIELDS,
        categorical_inputs=CATEGORICAL_FIELDS,
        lag_steps=(1, 2, 3),
        rolling_windows=(3, 6),
        description="Record numerics, target lags 1-3, rolling 3/6, sector/region one-hot.",
    ),
}


def get_pipeline_spec(version: str) -> PipelineSpec:
    """Return the pipeline schema for a version.

    Accepts a concrete fitted version (``"v1+ab12cd34"``) as well as the bare
    schema tag.

    Raises:
        SchemaError: If the schema version is not declared.
    """
    schema_version = version.split("+", 1)[0]
    try:
        return PIPELINE_VERSIONS[schema_version]
    except KeyError:
        raise SchemaError(
            f"Unknown feature pipeline version '{version}'. "
            f"Known versions: {sorted(PIPELINE_VERSIONS)}."
        ) from None
