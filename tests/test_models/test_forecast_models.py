"""Tests for Forecast, FeatureVector, LabeledVector and RiskScore models."""

from __future__ import annotations

from datetime import date

import pytest
from pydantic import ValidationError

from sales_risk_engine.models.features import FeatureVector, LabeledVector
from sales_risk_engine.models.forecast import Forecast
from sales_risk_engine.models.risk import FLAG_DEGRADED, RiskFactor, RiskScore, RiskClass


def _forecast(**overrides) -> Forecast:
    fields = dict(
        entity_id="ACME",
        target_field="revenue",
        horizon_periods=1,
        as_of=date(2024, 11, 26),
        point_estimate=1300.0,
        lower=1200.0,
        upper=1400.0,
        confidence_pct=0.8,
        model_version="revenue_h1-20240101T000000-abcdef12",
        features_hash="0123456789abcdef",
    )
    fields.update(overrides)
    return Forecast(**fields)


def _vector(**overrides) -> FeatureVector:
    fields = dict(
        entity_id="ACME",
        as_of=date(2024, 1, 1),
        pipeline_version="v1+0011aabb",
        feature_names=("a", "b"),
        values=(1.0, 2.0),
    )
    fields.update(overrides)
    return FeatureVector(**fields)


class TestForecast:
    def test_valid_construction(self, sample_forecast):
        assert sample_forecast.interval_width == pytest.approx(200.0)
        assert sample_forecast.interval_method == "residual_quantile"

    def test_point_outside_interval_raises(self):
        with pytest.raises(ValidationError, match="contain the point estimate"):
            _forecast(point_estimate=1500.0)

    def test_inverted_interval_raises(self):
        with pytest.raises(ValidationError):
            _forecast(lower=1400.0, upper=1200.0)

    def test_degenerate_interval_allowed(self):
        f = _forecast(lower=1300.0, upper=1300.0)
        assert f.interval_width == 0.0

    @pytest.mark.parametrize("pct", [0.0, 1.0, 1.5])
    def test_confidence_pct_bounds(self, pct):
        with pytest.raises(ValidationError):
            _forecast(confidence_pct=pct)

    def test_frozen(self, sample_forecast):
        with pytest.raises(ValidationError):
            sample_forecast.point_estimate = 1.0


class TestFeatureVector:
    def test_misaligned_names_and_values_raise(self):
        with pytest.raises(ValidationError, match="same length"):
            _vector(values=(1.0,))

    def test_hash_is_stable_and_value_sensitive(self):
        assert _vector().features_hash == _vector().features_hash
        assert _vector().features_hash != _vector(values=(1.0, 2.5)).features_hash
        assert len(_vector().features_hash) == 16

    def test_hash_depends_on_pipeline_version(self):
        assert _vector().features_hash != _vector(pipeline_version="v1+ffff0000").features_hash

    def test_as_dict(self):
        assert _vector().as_dict() == {"a": 1.0, "b": 2.0}


class TestLabeledVector:
    def test_label_after_features_accepted(self):
        ex = LabeledVector(vector=_vector(), label=5.0, label_date=date(2024, 2, 1))
        assert ex.label == 5.0

    def test_label_on_same_date_raises(self):
        with pytest.raises(ValidationError, match="label_date"):
            LabeledVector(vector=_vector(), label=5.0, label_date=date(2024, 1, 1))


class TestRiskScore:
    def _score(self, **overrides) -> RiskScore:
        fields = dict(
            entity_id="ACME",
            score=42.0,
            risk_class=RiskClass.MEDIUM,
            factors=(
                RiskFactor(
                    name="debt_ratio", raw_value=0.4, normalized=0.25, weight=1.0, contribution=42.0
                ),
            ),
        )
        fields.update(overrides)
        return RiskScore(**fields)

    @pytest.mark.parametrize("score", [-0.1, 100.1])
    def test_score_out_of_range_raises(self, score):
        with pytest.raises(ValidationError):
            self._score(score=score)

    def test_degraded_property(self):
        assert self._score().degraded is False
        assert self._score(flags=(FLAG_DEGRADED,)).degraded is True

    def test_factor_lookup(self):
        score = self._score()
        assert score.factor("debt_ratio").raw_value == 0.4
        assert score.factor("cost_ratio") is None

    def test_risk_class_rank(self):
        assert RiskClass.LOW.rank == 0
        assert RiskClass.CRITICAL.rank == 3
        assert sorted([RiskClass.CRITICAL, RiskClass.LOW, RiskClass.HIGH]) == [
            RiskClass.LOW,
            RiskClass.HIGH,
            RiskClass.CRITICAL,
        ]
