"""
Validation metrics for forecasting models.

MAE (Mean Absolute Error)
  "On average, the forecast is off by X units of the target."  Used as the
  acceptance gate (``training.max_validation_mae``).

RMSE (Root Mean Squared Error)
  Penalizes large misses more than MAE.  RMSE much larger than MAE implies
  occasional large misses.

MAPE (Mean Absolute Percentage Error)
  Scale-free error; 0.05 = 5%.  Actuals with ``|y| < MAPE_EPSILON`` are
  excluded to avoid division by zero.  Omitted when nothing qualifies.

R² (coefficient of determination)
  Share of variance explained; 1.0 is perfect, 0.0 is no better than
  predicting the mean, negative is worse.  0.0 when the actuals are constant.
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

MAPE_EPSILON = 1e-9


def evaluate(actual: Sequence[float], predicted: Sequence[float]) -> dict[str, float]:
    """Compute mae, rmse, mape, r2 and n_val.

    Returns:
        Metric dict; empty when ``actual`` is empty.

    Raises:
        ValueError: If the sequences differ in length.
    """
    y = np.asarray(actual, dtype=np.float64)
    p = np.asarray(predicted, dtype=np.float64)
    if y.shape != p.shape:
        raise ValueError(f"actual ({y.shape}) and predicted ({p.shape}) differ in shape.")
    n = len(y)
    if n == 0:
        return {}

    err = y - p
    metrics: dict[str, float] = {
        "mae":   float(np.mean(np.abs(err))),
        "rmse":  math.sqrt(float(np.mean(err * err))),
        "r2":    r_squared(y, p),
        "n_val": float(n),
    }
    mask = np.abs(y) >= MAPE_EPSILON
    if mask.any():
        metrics["mape"] = float(np.mean(np.abs(err[mask] / y[mask])))
    return metrics


def r_squared(actual: Sequence[float], predicted: Sequence[float]) -> float:
    y = np.asarray(actual, dtype=np.float64)
    p = np.asarray(predicted, dtype=np.float64)
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    if ss_tot == 0.0:
        return 0.0
    ss_res = float(np.sum((y - p) ** 2))
    return 1.0 - ss_res / ss_tot


def residual_quantile(
    actual: Sequence[float],
    predicted: Sequence[float],
    confidence_pct: float,
) -> float:
    """Empirical ``confidence_pct`` quantile of absolute residuals.

    This is the interval half-width stored on a model; ``[p - q, p + q]``
    covered ``confidence_pct`` of the validation actuals.
    """
    residuals = np.abs(np.asarray(actual, dtype=np.float64) - np.asarray(predicted, dtype=np.float64))
    if residuals.size == 0:
        return 0.0
    return float(np.quantile(residuals, confidence_pct))
