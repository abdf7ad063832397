"""
Repository for batch outputs: ``forecast_results`` and ``risk_results``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from sales_risk_engine.db.repositories.base import BaseRepository
from sales_risk_engine.models.forecast import Forecast
from sales_risk_engine.models.risk import RiskScore

logger = logging.getLogger(__name__)


class ResultRepository(BaseRepository):
    """Append-only writes plus simple reads for batch results."""

    def insert_forecast(self, forecast: Forecast, run_id: Optional[str] = None) -> int:
        self.execute(
            """
            INSERT INTO forecast_results (
                run_id, entity_id, target_field, horizon_periods, as_of,
                point_estimate, lower, upper, confidence_pct,
                interval_method, model_version, features_hash
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                run_id,
                forecast.entity_id,
                forecast.target_field,
                forecast.horizon_periods,
                forecast.as_of.isoformat(),
                forecast.point_estimate,
                forecast.lower,
                forecast.upper,
                forecast.confidence_pct,
                forecast.interval_method,
                forecast.model_version,
                forecast.features_hash,
            ),
        )
        return self.last_insert_rowid()

    def insert_risk_score(self, score: RiskScore, run_id: Optional[str] = None) -> int:
        factors = [
            {
                "name":         f.name,
                # JSON has no infinity; unbounded ratios are stored as null.
                "raw_value":    f.raw_value if abs(f.raw_value) != float("inf") else None,
                "normalized":   f.normalized,
                "weight":       f.weight,
                "contribution": f.contribution,
            }
            for f in score.factors
        ]
        self.execute(
            """
            INSERT INTO risk_results (
                run_id, entity_id, score, risk_class, flags,
                missing_factors, factors_json, config_name, model_version
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                run_id,
                score.entity_id,
                score.score,
                score.risk_class.value,
                json.dumps(list(score.flags)),
                json.dumps(list(score.missing_factors)),
                json.dumps(factors),
                score.config_name,
                score.model_version,
            ),
        )
        return self.last_insert_rowid()

    def list_risk_results(self, run_id: str) -> list[dict[str, Any]]:
        rows = self.fetchall(
            "SELECT * FROM risk_results WHERE run_id = ? ORDER BY entity_id;", (run_id,)
        )
        return [dict(r) for r in rows]

    def list_forecast_results(self, run_id: str) -> list[dict[str, Any]]:
        rows = self.fetchall(
            "SELECT * FROM forecast_results WHERE run_id = ? ORDER BY entity_id;", (run_id,)
        )
        return [dict(r) for r in rows]
