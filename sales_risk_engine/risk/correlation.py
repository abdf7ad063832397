"""
Advertising impact analysis over one entity's history.

``ad_impact_correlation`` computes the Pearson coefficient between
``ad_spend`` and ``sales_units`` and maps it to an interpretation band:

    r >= 0.7          highly_efficient   more advertising, many more sales
    0.3 <= r < 0.7    moderate           advertising helps, but is not the only driver
    -0.3 < r < 0.3    no_clear_relation  spend shows no clear link to sales
    -0.7 < r <= -0.3  moderate_inverse   sales fall slightly as spend rises
    r <= -0.7         critical_inverse   advertising is hurting sales

``project_sales_from_ad_spend`` fits ``sales_units ~ ad_spend`` by ordinary
least squares and evaluates it at a planned spend (a what-if projection,
independent of the registered forecasting models).

Both need at least two records with both fields present.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from sales_risk_engine.errors import SchemaError
from sales_risk_engine.ml.metrics import r_squared
from sales_risk_engine.models.record import Record

logger = logging.getLogger(__name__)

MIN_RECORDS = 2


@dataclass(frozen=True)
class CorrelationResult:
    """Pearson correlation of ad spend vs. units sold.

    Attributes:
        entity_id:      Entity analysed.
        coefficient:    Pearson r in [-1, 1].
        band:           Interpretation band key.
        interpretation: Human-readable band description.
        n_records:      Records used.
    """

    entity_id: str
    coefficient: float
    band: str
    interpretation: str
    n_records: int


@dataclass(frozen=True)
class AdSpendProjection:
    """OLS what-if projection of units sold for a planned ad spend."""

    entity_id: str
    future_ad_spend: float
    predicted_units: float
    intercept: float
    slope: float
    r_squared: float
    n_records: int


def interpret_correlation(r: float) -> tuple[str, str]:
    """Return ``(band, description)`` for a Pearson coefficient."""
    if r >= 0.7:
        return "highly_efficient", "Highly efficient: more advertising, many more sales."
    if r >= 0.3:
        return "moderate", "Moderate impact: advertising helps but is not the only driver."
    if r > -0.3:
        return "no_clear_relation", "No clear relation: spend shows no clear link to sales."
    if r > -0.7:
        return "moderate_inverse", "Moderate inverse relation: sales fall slightly as spend rises."
    return "critical_inverse", "Critical inverse relation: advertising is hurting sales."


def _paired_series(entity_id: str, records: Sequence[Record]) -> tuple[np.ndarray, np.ndarray]:
    pairs = [
        (r.ad_spend, r.sales_units)
        for r in sorted(records, key=lambda r: r.observed_at)
        if r.ad_spend is not None and r.sales_units is not None
    ]
    if len(pairs) < MIN_RECORDS:
        raise SchemaError(
            f"Entity '{entity_id}' needs at least {MIN_RECORDS} records with ad_spend "
            f"and sales_units; got {len(pairs)}.",
            entity_id=entity_id,
        )
    x = np.array([p[0] for p in pairs], dtype=np.float64)
    y = np.array([p[1] for p in pairs], dtype=np.float64)
    return x, y


def ad_impact_correlation(entity_id: str, records: Sequence[Record]) -> CorrelationResult:
    """Pearson correlation between ad spend and units sold.

    Raises:
        SchemaError: Fewer than two usable records, or a constant series.
    """
    x, y = _paired_series(entity_id, records)
    if np.std(x) == 0.0 or np.std(y) == 0.0:
        raise SchemaError(
            f"Correlation undefined for entity '{entity_id}': "
            "ad_spend or sales_units is constant.",
            entity_id=entity_id,
        )
    r = float(np.corrcoef(x, y)[0, 1])
    r = max(-1.0, min(1.0, r))
    band, text = interpret_correlation(r)
    logger.debug("Correlation %s: r=%.4f (%s)", entity_id, r, band)
    return CorrelationResult(
        entity_id=entity_id,
        coefficient=r,
        band=band,
        interpretation=text,
        n_records=len(x),
    )


def project_sales_from_ad_spend(
    entity_id: str,
    records: Sequence[Record],
    future_ad_spend: float,
) -> AdSpendProjection:
    """Fit ``sales_units = a + b * ad_spend`` and evaluate at ``future_ad_spend``.

    Raises:
        SchemaError: Fewer than two usable records.
    """
    x, y = _paired_series(entity_id, records)
    design = np.column_stack([np.ones(len(x)), x])
    (intercept, slope), *_ = np.linalg.lstsq(design, y, rcond=None)
    fitted = intercept + slope * x
    return AdSpendProjection(
        entity_id=entity_id,
        future_ad_spend=future_ad_spend,
        predicted_units=float(intercept + slope * future_ad_spend),
        intercept=float(intercept),
        slope=float(slope),
        r_squared=r_squared(y, fitted),
        n_records=len(x),
    )
