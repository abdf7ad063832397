"""
Risk scoring: ``EntitySnapshot`` (+ optional ``Forecast``) → ``RiskScore``.

Score formula
-------------
    g_i   = normalize(raw_i, lo_i, hi_i)            # clamped to [0, 1]
    score = 100 · Σ w_i·g_i / Σ w_i                  # over computable factors

with non-negative weights from the named ``RiskConfig``.  Because every
``g_i`` is a non-decreasing function of a risk-increasing input and is
clamped, the score is monotonic in each input and always lies in [0, 100],
including for infinite ratios.

Factors
-------
From the latest record (and the one before it):
    debt_ratio, current_liability_ratio, cost_ratio, revenue_decline,
    loss_probability (Monte-Carlo profitability simulation).
From the forecast, when one is given:
    forecast_uncertainty, forecast_decline.

Degraded mode
-------------
Without a forecast the score is ratio-only and flagged ``DEGRADED``.
Weighted factors whose inputs are missing are listed in ``missing_factors``;
if none can be computed the snapshot is unusable and ``SchemaError`` is raised.

Classes
-------
``score < b1`` → LOW, ``< b2`` → MEDIUM, ``< b3`` → HIGH, else CRITICAL,
where ``class_boundaries = [b1, b2, b3]``.
"""

from __future__ import annotations

import logging
from typing import Optional

from sales_risk_engine.config import RiskConfig
from sales_risk_engine.errors import SchemaError
from sales_risk_engine.models.forecast import Forecast
from sales_risk_engine.models.record import EntitySnapshot
from sales_risk_engine.models.risk import (
    FLAG_DEGRADED,
    SCORE_MAX,
    SCORE_MIN,
    RiskClass,
    RiskFactor,
    RiskScore,
)
from sales_risk_engine.risk import ratios
from sales_risk_engine.risk.simulation import price_and_cost, simulate_profitability

logger = logging.getLogger(__name__)

FORECAST_FACTORS = frozenset({"forecast_uncertainty", "forecast_decline"})


def classify(score: float, boundaries: list[float]) -> RiskClass:
    """Map a score to its risk class."""
    b1, b2, b3 = boundaries
    if score < b1:
        return RiskClass.LOW
    if score < b2:
        return RiskClass.MEDIUM
    if score < b3:
        return RiskClass.HIGH
    return RiskClass.CRITICAL


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


class RiskScorer:
    """Scores entities with one named risk weighting set.

    Args:
        config: Weights, normalisation scales, class boundaries, simulation settings.
    """

    def __init__(self, config: RiskConfig) -> None:
        self._config = config

    @property
    def config(self) -> RiskConfig:
        return self._config

    def score(
        self,
        snapshot: EntitySnapshot,
        forecast: Optional[Forecast] = None,
    ) -> RiskScore:
        """Score one entity.

        Args:
            snapshot: The entity's records, oldest first.
            forecast: Optional forecast for the entity; ``None`` → degraded.

        Raises:
            SchemaError: The forecast belongs to another entity, or no weighted
                         factor can be computed from the snapshot.
        """
        if forecast is not None and forecast.entity_id != snapshot.entity_id:
            raise SchemaError(
                f"Forecast for '{forecast.entity_id}' cannot score entity "
                f"'{snapshot.entity_id}'.",
                entity_id=snapshot.entity_id,
            )

        raw = self._raw_factors(snapshot, forecast)
        cfg = self._config

        available: list[tuple[str, float, float]] = []   # (name, raw, weight)
        missing: list[str] = []
        for name, weight in cfg.ratio_weights.items():
            if weight <= 0.0:
                continue
            if name in FORECAST_FACTORS and forecast is None:
                continue
            value = raw.get(name)
            if value is None:
                missing.append(name)
            else:
                available.append((name, value, weight))

        if not available:
            raise SchemaError(
                f"No risk factor computable for entity '{snapshot.entity_id}'; "
                f"missing inputs for {missing}.",
                entity_id=snapshot.entity_id,
            )

        total_weight = sum(w for _, _, w in available)
        factors: list[RiskFactor] = []
        weighted_sum = 0.0
        for name, value, weight in available:
            scale = cfg.factor_scales[name]
            g = ratios.normalize(value, scale.lo, scale.hi)
            weighted_sum += weight * g
            factors.append(
                RiskFactor(
                    name=name,
                    raw_value=value,
                    normalized=g,
                    weight=weight,
                    contribution=SCORE_MAX * weight * g / total_weight,
                )
            )

        score = _clamp(SCORE_MAX * weighted_sum / total_weight, SCORE_MIN, SCORE_MAX)
        flags = () if forecast is not None else (FLAG_DEGRADED,)
        result = RiskScore(
            entity_id=snapshot.entity_id,
            score=score,
            risk_class=classify(score, cfg.class_boundaries),
            factors=tuple(factors),
            missing_factors=tuple(missing),
            flags=flags,
            config_name=cfg.name,
            model_version=forecast.model_version if forecast is not None else None,
        )
        logger.debug(
            "Scored %s: %.2f (%s) flags=%s missing=%s",
            snapshot.entity_id, score, result.risk_class.value, flags, missing,
        )
        return result

    # ── Internals ────────────────────────────────────────────────────────────

    def _raw_factors(
        self,
        snapshot: EntitySnapshot,
        forecast: Optional[Forecast],
    ) -> dict[str, Optional[float]]:
        cfg = self._config
        current = snapshot.current
        raw: dict[str, Optional[float]] = {
            "debt_ratio":              ratios.debt_ratio(current),
            "current_liability_ratio": ratios.current_liability_ratio(current),
            "cost_ratio":              ratios.cost_ratio(current),
            "revenue_decline":         ratios.revenue_decline(current, snapshot.previous),
            "loss_probability":        None,
        }

        inputs = price_and_cost(current)
        if inputs is not None and cfg.ratio_weights.get("loss_probability", 0.0) > 0.0:
            sim = simulate_profitability(
                inputs[0],
                inputs[1],
                iterations=cfg.simulation_iterations,
                variation=cfg.simulation_variation,
                seed=cfg.simulation_seed,
            )
            raw["loss_probability"] = sim.loss_probability

        if forecast is not None:
            current_value = current.get(forecast.target_field)
            current_float = float(current_value) if current_value is not None else None
            raw["forecast_uncertainty"] = ratios.forecast_uncertainty(forecast, current_float)
            raw["forecast_decline"] = ratios.forecast_decline(forecast, current_float)
        return raw
