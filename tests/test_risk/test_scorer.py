"""
Tests for sales_risk_engine/risk/scorer.py.

What we test
------------
RiskScorer.score():
  - Score always within [0, 100], including infinite ratios.
  - Monotonic: moving any ratio input in its risk direction (latest record
    only, all else fixed) never lowers the score, with and without a
    forecast, through zero denominators and infinite ratios.
  - Forecast inputs: a lower point estimate or a wider interval never
    lowers the score; for a cost forecast a higher point never does.
  - No forecast → DEGRADED flag, no forecast factors.
  - With forecast → forecast factors present, model version recorded.
  - Weighted factors with missing inputs are listed, not silently dropped.
  - No computable factor, or a forecast for another entity → SchemaError.
  - Factor contributions add up to the score.

classify():
  - Boundaries are inclusive on the upper class.
"""

from __future__ import annotations

from datetime import date

import pytest

from sales_risk_engine.config import RiskConfig
from sales_risk_engine.errors import SchemaError
from sales_risk_engine.models.forecast import Forecast
from sales_risk_engine.models.record import EntitySnapshot, Record
from sales_risk_engine.models.risk import FLAG_DEGRADED, RiskClass
from sales_risk_engine.risk.scorer import FORECAST_FACTORS, RiskScorer, classify


def _snapshot(records) -> EntitySnapshot:
    return EntitySnapshot.from_records(records[0].entity_id, records)


@pytest.fixture
def scorer() -> RiskScorer:
    return RiskScorer(RiskConfig())


class TestBounds:
    def test_score_in_range(self, scorer, make_records):
        result = scorer.score(_snapshot(make_records("ACME")))
        assert 0.0 <= result.score <= 100.0

    def test_zero_assets_gives_bounded_score(self, scorer, make_records):
        snap = _snapshot(make_records("ACME", assets=0.0, current_assets=0.0))
        result = scorer.score(snap)
        assert 0.0 <= result.score <= 100.0
        assert result.factor("debt_ratio").normalized == 1.0

    def test_extreme_inputs_score_100(self, make_records):
        cfg = RiskConfig(
            ratio_weights={"debt_ratio": 1.0},
        )
        snap = _snapshot(make_records("ACME", liabilities=1e12))
        assert RiskScorer(cfg).score(snap).score == pytest.approx(100.0)


class TestMonotonicity:
    def test_liabilities_never_lower_score(self, scorer, make_records):
        scores = [
            scorer.score(_snapshot(make_records("ACME", liabilities=float(level)))).score
            for level in (0, 1000, 2000, 3000, 4000, 5000, 10000)
        ]
        assert scores == sorted(scores)
        assert scores[-1] > scores[0]

    def test_cost_never_lowers_score(self, scorer, make_records):
        low = scorer.score(_snapshot(make_records("ACME", cost=500.0, unit_cost=5.0)))
        high = scorer.score(_snapshot(make_records("ACME", cost=1500.0, unit_cost=11.0)))
        assert high.score >= low.score


class TestDegradedMode:
    def test_no_forecast_is_degraded(self, scorer, make_records):
        result = scorer.score(_snapshot(make_records("ACME")))
        assert result.degraded is True
        assert result.flags == (FLAG_DEGRADED,)
        assert result.model_version is None
        names = {f.name for f in result.factors}
        assert not names & FORECAST_FACTORS
        assert not set(result.missing_factors) & FORECAST_FACTORS

    def test_forecast_adds_factors(self, scorer, make_records, sample_forecast):
        result = scorer.score(_snapshot(make_records("ACME")), sample_forecast)
        assert result.degraded is False
        assert result.model_version == sample_forecast.model_version
        assert result.factor("forecast_uncertainty").raw_value == pytest.approx(200.0 / 1300.0)
        assert result.factor("forecast_decline") is not None


class TestMissingInputs:
    def test_missing_factor_listed(self, scorer, make_records):
        result = scorer.score(_snapshot(make_records("ACME", assets=None)))
        assert "debt_ratio" in result.missing_factors
        assert result.factor("debt_ratio") is None

    def test_single_record_has_no_revenue_decline(self, scorer, make_records):
        result = scorer.score(_snapshot(make_records("ACME", n=1)))
        assert "revenue_decline" in result.missing_factors

    def test_nothing_computable_raises(self, scorer):
        snap = _snapshot([Record(entity_id="EMPTY", observed_at=date(2024, 1, 1))])
        with pytest.raises(SchemaError) as exc_info:
            scorer.score(snap)
        assert exc_info.value.entity_id == "EMPTY"

    def test_forecast_for_other_entity_raises(self, scorer, make_records, sample_forecast):
        with pytest.raises(SchemaError):
            scorer.score(_snapshot(make_records("BOLT")), sample_forecast)


class TestContributions:
    def test_contributions_sum_to_score(self, scorer, make_records, sample_forecast):
        result = scorer.score(_snapshot(make_records("ACME")), sample_forecast)
        assert sum(f.contribution for f in result.factors) == pytest.approx(result.score)

    def test_zero_weight_factors_skipped(self, make_records):
        weights = {**RiskConfig().ratio_weights, "cost_ratio": 0.0}
        result = RiskScorer(RiskConfig(ratio_weights=weights)).score(
            _snapshot(make_records("ACME"))
        )
        assert result.factor("cost_ratio") is None
        assert "cost_ratio" not in result.missing_factors

    def test_config_name_recorded(self, make_records):
        result = RiskScorer(RiskConfig(name="strict")).score(_snapshot(make_records("ACME")))
        assert result.config_name == "strict"


class TestClassify:
    @pytest.mark.parametrize(
        "score,expected",
        [
            (0.0, RiskClass.LOW),
            (24.99, RiskClass.LOW),
            (25.0, RiskClass.MEDIUM),
            (50.0, RiskClass.HIGH),
            (74.99, RiskClass.HIGH),
            (75.0, RiskClass.CRITICAL),
            (100.0, RiskClass.CRITICAL),
        ],
    )
    def test_boundaries(self, score, expected):
        assert classify(score, [25.0, 50.0, 75.0]) is expected

    def test_classes_are_ordered(self):
        assert RiskClass.LOW < RiskClass.MEDIUM < RiskClass.HIGH < RiskClass.CRITICAL
        assert max([RiskClass.HIGH, RiskClass.LOW]) is RiskClass.HIGH


# ── Monotonicity sweeps ───────────────────────────────────────────────────────

def _sweep(scorer, make_records, field, levels, forecast=None) -> list[float]:
    """Scores with the latest ACME record's ``field`` set to each level."""
    scores = []
    for level in levels:
        records = make_records("ACME")
        records[-1] = records[-1].model_copy(update={field: level})
        scores.append(scorer.score(_snapshot(records), forecast).score)
    return scores


# Levels run from least to most risky.
_BALANCE_SHEET_SWEEPS = [
    ("liabilities", [0.0, 1000.0, 2000.0, 5000.0, 1e9]),
    ("current_liabilities", [0.0, 500.0, 900.0, 3000.0, 1e9]),
    ("assets", [1e9, 10000.0, 5000.0, 100.0, 0.0, -50.0]),
    ("current_assets", [1e9, 3000.0, 1500.0, 10.0, 0.0, -50.0]),
    ("cost", [0.0, 500.0, 900.0, 1275.0, 5000.0]),
    ("unit_cost", [1.0, 7.0, 10.0, 12.0, 50.0]),
    ("unit_price", [100.0, 10.0, 7.0, 1.0, 0.0]),
]


class TestMonotonicitySweeps:
    @pytest.mark.parametrize("field,levels", _BALANCE_SHEET_SWEEPS)
    def test_ratio_inputs_without_forecast(self, scorer, make_records, field, levels):
        scores = _sweep(scorer, make_records, field, levels)
        assert scores == sorted(scores)
        assert scores[-1] > scores[0]

    @pytest.mark.parametrize("field,levels", _BALANCE_SHEET_SWEEPS)
    def test_ratio_inputs_with_forecast(
        self, scorer, make_records, sample_forecast, field, levels
    ):
        scores = _sweep(scorer, make_records, field, levels, sample_forecast)
        assert scores == sorted(scores)
        assert scores[-1] > scores[0]

    def test_falling_revenue_through_zero(self, scorer, make_records):
        scores = _sweep(scorer, make_records, "revenue", [1e6, 1275.0, 500.0, 1.0, 0.0, -100.0])
        assert scores == sorted(scores)
        assert scores[-1] > scores[0]

    def test_every_score_bounded(self, scorer, make_records, sample_forecast):
        for field, levels in _BALANCE_SHEET_SWEEPS:
            for score in _sweep(scorer, make_records, field, levels, sample_forecast):
                assert 0.0 <= score <= 100.0


def _forecast(point: float, half_width: float, target_field: str = "revenue") -> Forecast:
    return Forecast(
        entity_id="ACME",
        target_field=target_field,
        horizon_periods=1,
        as_of=date(2024, 11, 26),
        point_estimate=point,
        lower=point - half_width,
        upper=point + half_width,
        confidence_pct=0.8,
        model_version="revenue_h1-20240101T000000-abcdef12",
        features_hash="0123456789abcdef",
    )


class TestForecastMonotonicity:
    def test_lower_revenue_forecast_never_lowers_score(self, scorer, make_records):
        snap = _snapshot(make_records("ACME"))
        scores = [
            scorer.score(snap, _forecast(point, 100.0)).score
            for point in (5000.0, 1300.0, 800.0, 100.0, 0.0)
        ]
        assert scores == sorted(scores)
        assert scores[-1] > scores[0]

    def test_wider_interval_never_lowers_score(self, scorer, make_records):
        snap = _snapshot(make_records("ACME"))
        scores = [
            scorer.score(snap, _forecast(1300.0, half)).score
            for half in (0.0, 50.0, 100.0, 500.0, 5000.0)
        ]
        assert scores == sorted(scores)
        assert scores[-1] > scores[0]

    def test_higher_cost_forecast_never_lowers_score(self, scorer, make_records):
        # Latest ACME cost is 892.5
        snap = _snapshot(make_records("ACME"))
        scores = [
            scorer.score(snap, _forecast(point, 50.0, target_field="cost")).score
            for point in (60.0, 446.25, 892.5, 1338.75, 1800.0)
        ]
        assert scores == sorted(scores)
        assert scores[-1] > scores[0]

    def test_cost_cut_scores_no_higher_than_flat_cost(self, scorer, make_records):
        snap = _snapshot(make_records("ACME"))
        halved = scorer.score(snap, _forecast(446.25, 50.0, target_field="cost"))
        flat = scorer.score(snap, _forecast(892.5, 50.0, target_field="cost"))
        assert halved.score <= flat.score
        assert halved.factor("forecast_decline").raw_value == 0.0
