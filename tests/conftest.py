"""
Shared pytest fixtures for the Sales Risk Engine test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema applied. Created anew for each test that requests it.
  - ``db_path``: A temporary on-disk SQLite path (for components that open
    their own connections).
  - ``make_records``: Factory for one entity's monthly record history.
  - ``sample_records`` / ``app_config`` / ``fitted_pipeline`` /
    ``trained_registry``: A small, fully trained setup using the linear
    family so results are fast and deterministic.
"""

from __future__ import annotations

import sqlite3
from datetime import date, timedelta
from typing import Callable, Generator

import pytest

from sales_risk_engine.config import (
    AppConfig,
    OrchestratorConfig,
    RetryConfig,
    TrainingConfig,
)
from sales_risk_engine.db.schema import apply_schema
from sales_risk_engine.features.pipeline import FeaturePipeline, FittedFeaturePipeline
from sales_risk_engine.ml.model import Model
from sales_risk_engine.ml.trainer import ModelTrainer
from sales_risk_engine.models.forecast import Forecast
from sales_risk_engine.models.record import Record
from sales_risk_engine.registry.model_registry import ModelRegistry

START_DATE = date(2024, 1, 1)


# ── Database fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the full schema applied.

    Foreign key enforcement is ON. Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    apply_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "db" / "test.db")


# ── Record factories ──────────────────────────────────────────────────────────

def build_records(
    entity_id: str,
    n: int = 12,
    base_revenue: float = 1000.0,
    growth: float = 25.0,
    start: date = START_DATE,
    **overrides,
) -> list[Record]:
    """Monthly-ish records with a trend plus a small deterministic wobble."""
    records = []
    for i in range(n):
        revenue = base_revenue + growth * i + ((i * 37) % 11) * 3.0
        fields = {
            "entity_id": entity_id,
            "observed_at": start + timedelta(days=30 * i),
            "revenue": revenue,
            "cost": revenue * 0.7,
            "sales_units": revenue / 10.0,
            "ad_spend": 100.0 + 5.0 * i,
            "assets": 5000.0,
            "liabilities": 2000.0,
            "current_assets": 1500.0,
            "current_liabilities": 900.0,
            "unit_price": 10.0,
            "unit_cost": 7.0,
            "sector": "retail",
            "region": "north",
        }
        fields.update(overrides)
        records.append(Record(**fields))
    return records


@pytest.fixture
def make_records() -> Callable[..., list[Record]]:
    return build_records


@pytest.fixture
def sample_records() -> list[Record]:
    """Four entities x 12 periods with different levels and trends."""
    return (
        build_records("ACME", base_revenue=1000.0, growth=25.0)
        + build_records("BOLT", base_revenue=2000.0, growth=-10.0, sector="industrial")
        + build_records("CORE", base_revenue=500.0, growth=40.0, region="south")
        + build_records("DYNA", base_revenue=1500.0, growth=5.0)
    )


# ── Config / trained model fixtures ───────────────────────────────────────────

@pytest.fixture
def app_config() -> AppConfig:
    """Linear family, small minimum training set, fast zero-delay retries."""
    return AppConfig(
        training=TrainingConfig(model_family="linear", min_train_rows=5),
        orchestrator=OrchestratorConfig(
            max_workers=2,
            retry=RetryConfig(strategy="fixed", base_seconds=0.0, max_retries=2),
        ),
    )


@pytest.fixture
def fitted_pipeline(app_config, sample_records) -> FittedFeaturePipeline:
    return FeaturePipeline(app_config.features, app_config.forecast.target_field).fit(
        sample_records
    )


@pytest.fixture
def trained_registry(app_config, sample_records, fitted_pipeline) -> ModelRegistry:
    """In-memory registry holding one accepted ``revenue_h1`` model."""
    registry = ModelRegistry()
    examples = fitted_pipeline.build_training_set(
        sample_records, app_config.forecast.horizon_periods
    )
    ModelTrainer(registry, app_config).train(examples, fitted_pipeline)
    return registry


@pytest.fixture
def trained_model(trained_registry, app_config) -> Model:
    return trained_registry.get_latest(app_config.forecast.model_kind)


@pytest.fixture
def sample_forecast() -> Forecast:
    return Forecast(
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
