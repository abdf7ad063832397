"""
Raw risk factor computation and normalisation.

Every factor is oriented so that larger means riskier:

    debt_ratio               liabilities / assets
    current_liability_ratio  current_liabilities / current_assets
                             (inverse of the liquidity ratio)
    cost_ratio               cost / revenue
    revenue_decline          max(0, (prev_revenue - revenue) / prev_revenue)
    forecast_uncertainty     (upper - lower) / point_estimate
    forecast_decline         max(0, (current - point_estimate) / current)

The two forecast factors depend on the direction of the forecast target.
For ``revenue`` and ``sales_units`` a lower forecast is the risk.  For
``cost`` (``RISK_INCREASING_TARGETS``) it is forecast *growth*:
``forecast_decline`` becomes ``max(0, (point_estimate - current) / current)``
and ``forecast_uncertainty`` is taken relative to the current value, so a
higher cost forecast never lowers the score.

Each returns ``None`` when an input is missing.  A zero or negative
denominator gives ``inf`` when the numerator is positive and ``0.0``
otherwise, so raising the numerator can only move the ratio up.

``normalize(raw, lo, hi)`` is the clamped linear map ``[lo, hi] → [0, 1]``;
``inf`` maps to 1.0.
"""

from __future__ import annotations

import math
from typing import Optional

from sales_risk_engine.models.forecast import Forecast
from sales_risk_engine.models.record import Record

RISK_INCREASING_TARGETS = frozenset({"cost"})


def safe_ratio(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    if numerator is None or denominator is None:
        return None
    if math.isnan(numerator) or math.isnan(denominator):
        return None
    if denominator <= 0.0:
        return math.inf if numerator > 0.0 else 0.0
    return numerator / denominator


def debt_ratio(rec: Record) -> Optional[float]:
    return safe_ratio(rec.liabilities, rec.assets)


def current_liability_ratio(rec: Record) -> Optional[float]:
    return safe_ratio(rec.current_liabilities, rec.current_assets)


def cost_ratio(rec: Record) -> Optional[float]:
    return safe_ratio(rec.cost, rec.revenue)


def revenue_decline(current: Record, previous: Optional[Record]) -> Optional[float]:
    if previous is None or previous.revenue is None or current.revenue is None:
        return None
    if previous.revenue <= 0.0:
        return 0.0
    return max(0.0, (previous.revenue - current.revenue) / previous.revenue)


def forecast_uncertainty(forecast: Forecast, current_value: Optional[float] = None) -> Optional[float]:
    if forecast.target_field in RISK_INCREASING_TARGETS:
        return safe_ratio(forecast.interval_width, current_value)
    return safe_ratio(forecast.interval_width, forecast.point_estimate) or 0.0


def forecast_decline(forecast: Forecast, current_value: Optional[float]) -> Optional[float]:
    """Adverse move of the forecast target against its current value."""
    if current_value is None:
        return None
    increasing = forecast.target_field in RISK_INCREASING_TARGETS
    if current_value <= 0.0:
        if increasing:
            return math.inf if forecast.point_estimate > 0.0 else 0.0
        return 0.0
    change = (forecast.point_estimate - current_value) / current_value
    return max(0.0, change if increasing else -change)


def normalize(raw: float, lo: float, hi: float) -> float:
    """Clamped, non-decreasing linear map of ``raw`` from ``[lo, hi]`` to ``[0, 1]``."""
    if math.isinf(raw):
        return 1.0 if raw > 0 else 0.0
    return min(1.0, max(0.0, (raw - lo) / (hi - lo)))
