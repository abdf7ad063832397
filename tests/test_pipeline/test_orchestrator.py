"""
Tests for sales_risk_engine/pipeline/orchestrator.py.

What we test
------------
BatchOrchestrator.run_batch():
  - All-valid batch → every entity succeeded, outcome "success", run succeeded.
  - k malformed entities → exactly k schema_error failures, the rest
    succeed, outcome "partial", run still succeeded.
  - Empty registry → model resolution retried with backoff, each valid
    entity fails no_model_available, outcome "failed", run failed.
  - A model that cannot be loaded (integrity failure, unexpected error)
    is not retried; each valid entity fails with that error kind and the
    run, persisted or not, ends failed.
  - An estimator that raises at inference time → ratio-only DEGRADED score.
  - Short history → ratio-only DEGRADED score, not a failure.
  - TransientInfraError retried with backoff; exhausted retries recorded.
  - Unexpected exceptions recorded as internal_error.
  - Cancellation before start and mid-batch → "cancelled" entities and run.
  - Sink failure recorded as sink_error; entity keeps its status.
  - The model snapshot is resolved exactly once per batch.
  - SQLite sink + db_path persist the run row and every result row.

compute_backoff():
  - exponential / linear / fixed strategies and the max_seconds cap.
"""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from sales_risk_engine.config import OrchestratorConfig, RetryConfig, RiskConfig
from sales_risk_engine.db.connection import get_connection
from sales_risk_engine.db.repositories.result_repo import ResultRepository
from sales_risk_engine.db.repositories.run_repo import RunRepository
from sales_risk_engine.errors import ArtifactIntegrityError, TransientInfraError
from sales_risk_engine.ml.model import Model
from sales_risk_engine.models.meta import RunStatus
from sales_risk_engine.pipeline.orchestrator import (
    OUTCOME_CANCELLED,
    OUTCOME_FAILED,
    OUTCOME_PARTIAL,
    OUTCOME_SUCCESS,
    STATUS_CANCELLED,
    STATUS_DEGRADED,
    STATUS_FAILED,
    STATUS_SUCCEEDED,
    BatchOrchestrator,
    compute_backoff,
)
from sales_risk_engine.registry.model_registry import ModelRegistry
from sales_risk_engine.sinks import InMemoryResultSink, SqliteResultSink
from sales_risk_engine.sources.base import InMemoryRecordSource

ENTITIES = ["ACME", "BOLT", "CORE", "DYNA"]


class _SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeps() -> _SleepRecorder:
    return _SleepRecorder()


@pytest.fixture
def source(sample_records) -> InMemoryRecordSource:
    return InMemoryRecordSource(sample_records)


def _orchestrator(app_config, source, registry, sleeps, **kwargs) -> BatchOrchestrator:
    return BatchOrchestrator(app_config, source, registry, sleep=sleeps, **kwargs)


def _with_orchestrator(cfg, **kwargs):
    orch = OrchestratorConfig(**{**cfg.orchestrator.model_dump(), **kwargs})
    return cfg.model_copy(update={"orchestrator": orch})


# ── Happy path ────────────────────────────────────────────────────────────────


class TestAllValid:
    def test_every_entity_succeeds(self, app_config, source, trained_registry, sleeps):
        batch = _orchestrator(app_config, source, trained_registry, sleeps).run_batch(ENTITIES)
        assert batch.outcome == OUTCOME_SUCCESS
        assert batch.n_succeeded == 4
        assert [r.entity_id for r in batch.entity_results] == ENTITIES
        assert all(r.status == STATUS_SUCCEEDED for r in batch.entity_results)
        assert sleeps.calls == []

    def test_run_record_closed(self, app_config, source, trained_registry, trained_model, sleeps):
        batch = _orchestrator(app_config, source, trained_registry, sleeps).run_batch(ENTITIES)
        run = batch.run
        assert run.status == RunStatus.SUCCEEDED
        assert run.run_kind == "inference"
        assert run.entities_total == 4
        assert run.entities_succeeded == 4
        assert run.model_version == trained_model.version_id
        assert run.ended_at is not None

    def test_forecasts_use_batch_model(self, app_config, source, trained_registry, trained_model, sleeps):
        batch = _orchestrator(app_config, source, trained_registry, sleeps).run_batch(ENTITIES)
        assert batch.model_version == trained_model.version_id
        for r in batch.entity_results:
            assert r.forecast.model_version == trained_model.version_id
            assert r.risk_score.model_version == trained_model.version_id
            assert r.risk_score.degraded is False
            assert r.attempts == 1

    def test_results_reach_sink(self, app_config, source, trained_registry, sleeps):
        sink = InMemoryResultSink()
        batch = _orchestrator(app_config, source, trained_registry, sleeps, sink=sink).run_batch(
            ENTITIES
        )
        assert len(sink.forecasts) == 4
        assert len(sink.risk_scores) == 4
        assert {run_id for run_id, _ in sink.risk_scores} == {batch.run.run_id}

    def test_per_batch_config_override(self, app_config, source, trained_registry, sleeps):
        override = app_config.model_copy(update={"risk": RiskConfig(name="strict")})
        batch = _orchestrator(app_config, source, trained_registry, sleeps).run_batch(
            ["ACME"], config=override
        )
        assert batch.entity_results[0].risk_score.config_name == "strict"

    def test_empty_batch(self, app_config, source, trained_registry, sleeps):
        batch = _orchestrator(app_config, source, trained_registry, sleeps).run_batch([])
        assert batch.outcome == OUTCOME_SUCCESS
        assert batch.entity_results == []


# ── Failure isolation ─────────────────────────────────────────────────────────


class TestMalformedEntities:
    @pytest.mark.parametrize("k", [1, 2, 3])
    def test_k_malformed_entities_fail_alone(
        self, k, app_config, make_records, trained_registry, sleeps
    ):
        records = []
        for i, eid in enumerate(ENTITIES):
            overrides = {"revenue": None} if i < k else {}
            records += make_records(eid, **overrides)
        batch = _orchestrator(
            app_config, InMemoryRecordSource(records), trained_registry, sleeps
        ).run_batch(ENTITIES)

        failures = batch.failures()
        assert [f.entity_id for f in failures] == ENTITIES[:k]
        assert all(f.error_kind == "schema_error" for f in failures)
        assert all(f.attempts == 1 for f in failures)
        assert batch.n_succeeded == 4 - k
        assert batch.outcome == OUTCOME_PARTIAL
        assert batch.run.status == RunStatus.SUCCEEDED
        assert batch.run.entities_failed == k

    def test_unknown_entity_is_schema_error(self, app_config, source, trained_registry, sleeps):
        batch = _orchestrator(app_config, source, trained_registry, sleeps).run_batch(
            ["ACME", "GHOST"]
        )
        ghost = batch.result_for("GHOST")
        assert ghost.status == STATUS_FAILED
        assert ghost.error_kind == "schema_error"
        assert "GHOST" in ghost.error_message

    def test_all_failed_fails_run(self, app_config, source, trained_registry, sleeps):
        batch = _orchestrator(app_config, source, trained_registry, sleeps).run_batch(
            ["GHOST", "PHANTOM"]
        )
        assert batch.outcome == OUTCOME_FAILED
        assert batch.run.status == RunStatus.FAILED
        assert "2" in batch.run.error_detail

    def test_unexpected_error_is_internal_error(self, app_config, trained_registry, sleeps):
        source = MagicMock()
        source.fetch_records.side_effect = KeyError("boom")
        batch = _orchestrator(app_config, source, trained_registry, sleeps).run_batch(["ACME"])
        result = batch.entity_results[0]
        assert result.error_kind == "internal_error"
        assert result.error_message == "KeyError: 'boom'"
        assert sleeps.calls == []


class TestNoModel:
    def test_each_entity_reports_no_model(self, app_config, source, sleeps):
        batch = _orchestrator(app_config, source, ModelRegistry(), sleeps).run_batch(ENTITIES)
        assert batch.model_version is None
        assert all(r.error_kind == "no_model_available" for r in batch.entity_results)
        assert batch.outcome == OUTCOME_FAILED
        assert batch.run.status == RunStatus.FAILED

    def test_resolution_retried_with_backoff(self, app_config, source, sleeps):
        cfg = _with_orchestrator(
            app_config,
            retry=RetryConfig(strategy="exponential", base_seconds=1.0, max_retries=3),
        )
        _orchestrator(cfg, source, ModelRegistry(), sleeps).run_batch(["ACME"])
        assert sleeps.calls == [1.0, 2.0, 4.0]

    def test_schema_checked_before_missing_model(self, app_config, make_records, sleeps):
        source = InMemoryRecordSource(make_records("BAD", revenue=None))
        batch = _orchestrator(app_config, source, ModelRegistry(), sleeps).run_batch(["BAD"])
        assert batch.entity_results[0].error_kind == "schema_error"

    def test_model_found_after_retry(self, app_config, source, trained_model, sleeps):
        registry = MagicMock()
        registry.get_latest.side_effect = [TransientInfraError("locked"), trained_model]
        batch = _orchestrator(app_config, source, registry, sleeps).run_batch(["ACME"])
        assert batch.model_version == trained_model.version_id
        assert batch.outcome == OUTCOME_SUCCESS
        assert len(sleeps.calls) == 1


class TestModelResolutionFailure:
    def test_integrity_error_reported_per_entity(self, app_config, source, sleeps):
        registry = MagicMock()
        registry.get_latest.side_effect = ArtifactIntegrityError("revenue_h1-x", "checksum mismatch")
        batch = _orchestrator(app_config, source, registry, sleeps).run_batch(ENTITIES)
        assert all(r.error_kind == "artifact_integrity_error" for r in batch.entity_results)
        assert all("checksum mismatch" in r.error_message for r in batch.entity_results)
        assert batch.outcome == OUTCOME_FAILED
        assert batch.run.status == RunStatus.FAILED
        assert registry.get_latest.call_count == 1
        assert sleeps.calls == []

    def test_unexpected_error_is_internal_error(self, app_config, source, sleeps):
        registry = MagicMock()
        registry.get_latest.side_effect = OSError("disk gone")
        batch = _orchestrator(app_config, source, registry, sleeps).run_batch(["ACME", "BOLT"])
        assert all(r.error_kind == "internal_error" for r in batch.entity_results)
        assert batch.entity_results[0].error_message == "OSError: disk gone"
        assert batch.run.status == RunStatus.FAILED

    def test_schema_errors_still_reported_first(self, app_config, make_records, sleeps):
        registry = MagicMock()
        registry.get_latest.side_effect = ArtifactIntegrityError("revenue_h1-x", "missing")
        source = InMemoryRecordSource(make_records("BAD", revenue=None))
        batch = _orchestrator(app_config, source, registry, sleeps).run_batch(["BAD"])
        assert batch.entity_results[0].error_kind == "schema_error"

    def test_failed_run_persisted(self, app_config, source, sleeps, db_path):
        registry = MagicMock()
        registry.get_latest.side_effect = ArtifactIntegrityError("revenue_h1-x", "missing")
        batch = _orchestrator(app_config, source, registry, sleeps, db_path=db_path).run_batch(
            ENTITIES
        )
        with get_connection(db_path) as conn:
            run = RunRepository(conn).get(batch.run.run_id)
        assert run.status == RunStatus.FAILED
        assert run.ended_at is not None

    def test_run_closed_when_batch_raises(
        self, app_config, source, trained_registry, sleeps, db_path, monkeypatch
    ):
        def _explode(self, run, results, model):
            raise RuntimeError("finalize broke")

        monkeypatch.setattr(BatchOrchestrator, "_finalize", _explode)
        orch = _orchestrator(app_config, source, trained_registry, sleeps, db_path=db_path)
        with pytest.raises(RuntimeError, match="finalize broke"):
            orch.run_batch(["ACME"])
        with get_connection(db_path) as conn:
            runs = RunRepository(conn).list_recent()
        assert [r.status for r in runs] == [RunStatus.FAILED]
        assert runs[0].error_detail == "RuntimeError: finalize broke"


class _FailingEstimator:
    family = "linear"
    hyperparameters: dict = {}

    def predict(self, X):
        raise RuntimeError("estimator exploded")


class TestDegraded:
    def test_short_history_degrades(self, app_config, make_records, trained_registry, sleeps):
        source = InMemoryRecordSource(make_records("ACME") + make_records("TINY", n=2))
        batch = _orchestrator(app_config, source, trained_registry, sleeps).run_batch(
            ["ACME", "TINY"]
        )
        tiny = batch.result_for("TINY")
        assert tiny.status == STATUS_DEGRADED
        assert tiny.forecast is None
        assert tiny.risk_score.degraded is True
        assert tiny.error_kind is None
        assert batch.outcome == OUTCOME_SUCCESS
        assert batch.run.entities_degraded == 1

    def test_inference_failure_degrades(self, app_config, source, trained_model, sleeps):
        broken = Model(
            metadata=trained_model.metadata,
            estimator=_FailingEstimator(),
            pipeline=trained_model.pipeline,
        )
        registry = MagicMock()
        registry.get_latest.return_value = broken
        batch = _orchestrator(app_config, source, registry, sleeps).run_batch(["ACME"])
        result = batch.entity_results[0]
        assert result.status == STATUS_DEGRADED
        assert result.forecast is None
        assert result.risk_score.degraded is True
        assert result.error_kind is None
        assert result.attempts == 1
        assert batch.outcome == OUTCOME_SUCCESS

    def test_degraded_result_reaches_sink_without_forecast(
        self, app_config, make_records, trained_registry, sleeps
    ):
        sink = InMemoryResultSink()
        source = InMemoryRecordSource(make_records("TINY", n=2))
        _orchestrator(app_config, source, trained_registry, sleeps, sink=sink).run_batch(["TINY"])
        assert sink.forecasts == []
        assert len(sink.risk_scores) == 1


class TestTransientRetry:
    def test_retry_then_succeed(self, app_config, make_records, trained_registry, sleeps):
        source = MagicMock()
        source.fetch_records.side_effect = [TransientInfraError("timeout"), make_records("ACME")]
        batch = _orchestrator(app_config, source, trained_registry, sleeps).run_batch(["ACME"])
        result = batch.entity_results[0]
        assert result.status == STATUS_SUCCEEDED
        assert result.attempts == 2
        assert sleeps.calls == [0.0]

    def test_retries_exhausted(self, app_config, trained_registry, sleeps):
        source = MagicMock()
        source.fetch_records.side_effect = TransientInfraError("down")
        batch = _orchestrator(app_config, source, trained_registry, sleeps).run_batch(["ACME"])
        result = batch.entity_results[0]
        assert result.status == STATUS_FAILED
        assert result.error_kind == "transient_infra_error"
        assert result.attempts == 3
        assert source.fetch_records.call_count == 3
        assert len(sleeps.calls) == 2

    def test_schema_errors_never_retried(self, app_config, trained_registry, sleeps):
        source = MagicMock()
        source.fetch_records.return_value = []
        _orchestrator(app_config, source, trained_registry, sleeps).run_batch(["ACME"])
        assert source.fetch_records.call_count == 1


class TestCancellation:
    def test_cancel_before_start(self, app_config, source, trained_registry, sleeps):
        event = threading.Event()
        event.set()
        batch = _orchestrator(app_config, source, trained_registry, sleeps).run_batch(
            ENTITIES, cancel_event=event
        )
        assert all(r.status == STATUS_CANCELLED for r in batch.entity_results)
        assert all(r.attempts == 0 for r in batch.entity_results)
        assert batch.outcome == OUTCOME_CANCELLED
        assert batch.run.status == RunStatus.FAILED
        assert batch.run.error_detail == "cancelled"
        assert batch.run.entities_cancelled == 4

    def test_cancel_mid_batch(self, app_config, sample_records, trained_registry, sleeps):
        event = threading.Event()
        inner = InMemoryRecordSource(sample_records)

        class _CancellingSource:
            def fetch_records(self, entity_id, start=None, end=None):
                event.set()
                return inner.fetch_records(entity_id, start, end)

        cfg = _with_orchestrator(app_config, max_workers=1)
        batch = _orchestrator(cfg, _CancellingSource(), trained_registry, sleeps).run_batch(
            ENTITIES, cancel_event=event
        )
        assert batch.entity_results[0].status == STATUS_SUCCEEDED
        assert [r.status for r in batch.entity_results[1:]] == [STATUS_CANCELLED] * 3
        assert batch.outcome == OUTCOME_CANCELLED
        assert batch.run.error_detail == "cancelled"


class TestSinkFailure:
    def test_sink_error_recorded(self, app_config, source, trained_registry, sleeps):
        sink = MagicMock()
        sink.write.side_effect = RuntimeError("disk full")
        batch = _orchestrator(app_config, source, trained_registry, sleeps, sink=sink).run_batch(
            ["ACME", "BOLT"]
        )
        for r in batch.entity_results:
            assert r.status == STATUS_SUCCEEDED
            assert r.sink_error == "RuntimeError: disk full"
        assert batch.outcome == OUTCOME_SUCCESS


class TestModelSnapshot:
    def test_resolved_once_per_batch(self, app_config, source, trained_registry, sleeps):
        registry = MagicMock(wraps=trained_registry)
        _orchestrator(app_config, source, registry, sleeps).run_batch(ENTITIES)
        assert registry.get_latest.call_count == 1


class TestPersistence:
    def test_run_and_results_persisted(self, app_config, source, trained_registry, sleeps, db_path):
        sink = SqliteResultSink(db_path)
        batch = _orchestrator(
            app_config, source, trained_registry, sleeps, sink=sink, db_path=db_path
        ).run_batch(ENTITIES)
        assert all(r.sink_error is None for r in batch.entity_results)

        with get_connection(db_path) as conn:
            run = RunRepository(conn).get(batch.run.run_id)
            risk_rows = ResultRepository(conn).list_risk_results(batch.run.run_id)
            forecast_rows = ResultRepository(conn).list_forecast_results(batch.run.run_id)

        assert run.status == RunStatus.SUCCEEDED
        assert run.entities_succeeded == 4
        assert [r["entity_id"] for r in risk_rows] == sorted(ENTITIES)
        assert len(forecast_rows) == 4


class TestComputeBackoff:
    def test_exponential(self):
        retry = RetryConfig(strategy="exponential", base_seconds=0.5, max_seconds=30.0)
        assert [compute_backoff(n, retry) for n in (1, 2, 3, 4)] == [0.5, 1.0, 2.0, 4.0]

    def test_linear(self):
        retry = RetryConfig(strategy="linear", base_seconds=2.0, max_seconds=30.0)
        assert [compute_backoff(n, retry) for n in (1, 2, 3)] == [2.0, 4.0, 6.0]

    def test_fixed(self):
        retry = RetryConfig(strategy="fixed", base_seconds=1.5)
        assert compute_backoff(5, retry) == 1.5

    def test_capped(self):
        retry = RetryConfig(strategy="exponential", base_seconds=1.0, max_seconds=5.0)
        assert compute_backoff(10, retry) == 5.0
