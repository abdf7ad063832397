"""
Tests for advertising impact analysis.

What we test
------------
interpret_correlation():
  - Band edges: 0.7, 0.3, -0.3, -0.7.
ad_impact_correlation():
  - Strongly co-moving spend and units → highly_efficient.
  - Fewer than two usable records or a constant series → SchemaError.
project_sales_from_ad_spend():
  - Recovers an exact linear relation and projects from it.
"""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from sales_risk_engine.errors import SchemaError
from sales_risk_engine.models.record import Record
from sales_risk_engine.risk.correlation import (
    ad_impact_correlation,
    interpret_correlation,
    project_sales_from_ad_spend,
)


def _series(pairs) -> list[Record]:
    start = date(2024, 1, 1)
    return [
        Record(
            entity_id="ADS",
            observed_at=start + timedelta(days=30 * i),
            ad_spend=spend,
            sales_units=units,
        )
        for i, (spend, units) in enumerate(pairs)
    ]


class TestInterpretCorrelation:
    @pytest.mark.parametrize(
        "r,band",
        [
            (1.0, "highly_efficient"),
            (0.7, "highly_efficient"),
            (0.69, "moderate"),
            (0.3, "moderate"),
            (0.0, "no_clear_relation"),
            (-0.3, "moderate_inverse"),
            (-0.69, "moderate_inverse"),
            (-0.7, "critical_inverse"),
            (-1.0, "critical_inverse"),
        ],
    )
    def test_bands(self, r, band):
        assert interpret_correlation(r)[0] == band


class TestAdImpactCorrelation:
    def test_positive_relation(self, make_records):
        result = ad_impact_correlation("ACME", make_records("ACME"))
        assert result.coefficient > 0.7
        assert result.band == "highly_efficient"
        assert result.n_records == 12

    def test_perfect_inverse(self):
        records = _series([(10.0, 50.0), (20.0, 40.0), (30.0, 30.0)])
        result = ad_impact_correlation("ADS", records)
        assert result.coefficient == pytest.approx(-1.0)
        assert result.band == "critical_inverse"

    def test_records_missing_fields_are_skipped(self):
        records = _series([(10.0, 50.0), (None, 40.0), (30.0, 70.0)])
        assert ad_impact_correlation("ADS", records).n_records == 2

    def test_too_few_records_raises(self):
        with pytest.raises(SchemaError):
            ad_impact_correlation("ADS", _series([(10.0, 50.0)]))

    def test_constant_series_raises(self, make_records):
        with pytest.raises(SchemaError, match="constant"):
            ad_impact_correlation("ACME", make_records("ACME", ad_spend=50.0))


class TestProjection:
    def test_exact_linear_projection(self):
        records = _series([(s, 2.0 * s + 10.0) for s in (10.0, 20.0, 30.0, 40.0)])
        proj = project_sales_from_ad_spend("ADS", records, 200.0)
        assert proj.slope == pytest.approx(2.0)
        assert proj.intercept == pytest.approx(10.0)
        assert proj.predicted_units == pytest.approx(410.0)
        assert proj.r_squared == pytest.approx(1.0)

    def test_too_few_records_raises(self):
        with pytest.raises(SchemaError):
            project_sales_from_ad_spend("ADS", [], 100.0)
