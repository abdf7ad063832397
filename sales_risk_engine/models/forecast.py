"""
Forecast output model.

``Forecast`` is a single point estimate with a confidence interval for one
entity and horizon.  It is frozen — once produced it is handed to reporting
and persistence collaborators unchanged.  The engine itself never stores it.
"""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, ConfigDict, model_validator

INTERVAL_METHOD_RESIDUAL_QUANTILE = "residual_quantile"


class Forecast(BaseModel):
    """Point forecast with confidence interval.

    Attributes:
        entity_id:       Entity forecast.
        target_field:    Record field being forecast, e.g. ``"revenue"``.
        horizon_periods: Periods ahead of ``as_of``.
        as_of:           Date of the latest record the forecast is based on.
        point_estimate:  Central estimate.
        lower:           Lower bound of the interval.
        upper:           Upper bound of the interval.
        confidence_pct:  Nominal coverage of the interval, e.g. ``0.80``.
        interval_method: How the interval was derived (stable per model).
        model_version:   ``version_id`` of the model that produced this.
        features_hash:   Hash of the input feature vector for reproducibility.
    """

    model_config = ConfigDict(frozen=True)

    entity_id: str
    target_field: str
    horizon_periods: int
    as_of: date
    point_estimate: float
    lower: float
    upper: float
    confidence_pct: float
    interval_method: str = INTERVAL_METHOD_RESIDUAL_QUANTILE
    model_version: str
    features_hash: str

    @model_validator(mode="after")
    def validate_interval(self) -> "Forecast":
        if not self.lower <= self.point_estimate <= self.upper:
            raise ValueError(
                f"Interval must contain the point estimate: "
                f"{self.lower} <= {self.point_estimate} <= {self.upper}."
            )
        if not 0.0 < self.confidence_pct < 1.0:
            raise ValueError(
                f"confidence_pct must be in (0.0, 1.0), got {self.confidence_pct}."
            )
        if self.horizon_periods < 1:
            raise ValueError(f"horizon_periods must be >= 1, got {self.horizon_periods}.")
        return self

    @property
    def interval_width(self) -> float:
        return self.upper - self.lower
