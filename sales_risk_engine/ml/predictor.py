"""
Inference engine: ``FeatureVector`` + ``Model`` → ``Forecast``.

Inference flow
--------------
1. Structural compatibility check — the vector's ``pipeline_version`` and
   ``feature_names`` must equal the ones recorded on the model, otherwise
   ``FeatureMismatchError``.  No coercion or column reordering is attempted.
2. Point estimate from the model's estimator.
3. Interval ``[point - h, point + h]`` where ``h`` is the model's stored
   residual-quantile half-width.  ``h`` is fixed per model, so every call
   against the same model gets the same interval width.
4. Non-negative targets clamp the point estimate and lower bound at 0.

The engine never mutates the model or the vector.
"""

from __future__ import annotations

import logging
from typing import Sequence

from sales_risk_engine.errors import FeatureMismatchError
from sales_risk_engine.ml.model import Model
from sales_risk_engine.models.features import FeatureVector
from sales_risk_engine.models.forecast import INTERVAL_METHOD_RESIDUAL_QUANTILE, Forecast

logger = logging.getLogger(__name__)


def check_compatible(vector: FeatureVector, model: Model) -> None:
    """Raise ``FeatureMismatchError`` unless ``vector`` fits ``model``."""
    meta = model.metadata
    if vector.pipeline_version != meta.feature_pipeline_version:
        raise FeatureMismatchError(vector.pipeline_version, meta.feature_pipeline_version)
    if vector.feature_names != meta.feature_names:
        missing = sorted(set(meta.feature_names) - set(vector.feature_names))
        extra   = sorted(set(vector.feature_names) - set(meta.feature_names))
        raise FeatureMismatchError(
            vector.pipeline_version,
            meta.feature_pipeline_version,
            detail=f"Feature names differ (missing={missing[:5]}, extra={extra[:5]}).",
        )


class InferenceEngine:
    """Produces forecasts from fitted models.

    Args:
        non_negative_target: Clamp point estimate and lower bound at 0.
    """

    def __init__(self, non_negative_target: bool = True) -> None:
        self._non_negative = non_negative_target

    def predict(self, vector: FeatureVector, model: Model) -> Forecast:
        """Forecast one entity.

        Raises:
            FeatureMismatchError: Vector and model schemas differ.
        """
        return self.predict_many([vector], model)[0]

    def predict_many(self, vectors: Sequence[FeatureVector], model: Model) -> list[Forecast]:
        """Forecast several vectors against one model in a single estimator call."""
        if not vectors:
            return []
        for vec in vectors:
            check_compatible(vec, model)

        meta = model.metadata
        half = meta.interval_half_width
        raw = model.predict_values([vec.values for vec in vectors])

        forecasts: list[Forecast] = []
        for vec, value in zip(vectors, raw):
            point = float(value)
            lower = point - half
            upper = point + half
            if self._non_negative:
                point = max(0.0, point)
                lower = max(0.0, lower)
                upper = max(upper, point)
            forecasts.append(
                Forecast(
                    entity_id=vec.entity_id,
                    target_field=meta.target_field,
                    horizon_periods=meta.horizon_periods,
                    as_of=vec.as_of,
                    point_estimate=point,
                    lower=lower,
                    upper=upper,
                    confidence_pct=meta.confidence_pct,
                    interval_method=INTERVAL_METHOD_RESIDUAL_QUANTILE,
                    model_version=meta.version_id,
                    features_hash=vec.features_hash,
                )
            )
        logger.debug("Predicted %d forecast(s) with %s.", len(forecasts), meta.version_id)
        return forecasts
