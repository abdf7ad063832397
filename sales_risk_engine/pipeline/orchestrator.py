"""
Batch inference and risk scoring for the Sales Risk Engine.

The ``BatchOrchestrator`` runs one tracked batch in a deterministic,
testable sequence:

  Step 1 — Run record:   Create the inference ``PipelineRun`` and start it.
  Step 2 — Snapshot:     Resolve the latest accepted model for the configured
                         kind once.  Every worker reads this same immutable
                         ``Model``; a model registered mid-batch is not seen.
  Step 3 — Fan out:      Score entities on a bounded ``ThreadPoolExecutor``.
  Step 4 — Finalize:     Count outcomes, close the run, persist it.

Per-entity flow
---------------
  fetch records → snapshot → required-field check → as-of feature vector
  → forecast → risk score → sink

Failure isolation
-----------------
- ``SchemaError``, ``FeatureMismatchError``, ``NoModelAvailable``:
      recorded on the entity (``error_kind`` + message), never retried.
- ``TransientInfraError``:
      retried with backoff up to ``retry.max_retries``; then recorded.
- ``DegradedScoring`` (e.g. ``InsufficientHistoryError``) or any other
  inference failure except ``FeatureMismatchError`` / ``SchemaError`` /
  ``TransientInfraError``:
      not a failure; the entity gets a ratio-only ``DEGRADED`` score.
- Unexpected exceptions:
      logged with traceback and recorded as ``internal_error``.
- Sink failure:
      logged and recorded as ``sink_error``; the entity keeps its status.

Model resolution retries ``NoModelAvailable`` and ``TransientInfraError``
with the same backoff before giving up.  If no model can be resolved the
batch still runs and each otherwise-valid entity fails with
``no_model_available``.  A non-retryable resolution error (for example
``ArtifactIntegrityError`` from a tampered artifact) is not retried; each
otherwise-valid entity fails with that error's kind instead.  Whatever
happens, the run is left in a terminal state.

Cancellation
------------
``cancel_event`` is checked before each entity starts.  Entities not yet
started are reported ``cancelled``; the run ends failed with error detail
``"cancelled"``.

Batch outcome
-------------
  success   — every entity succeeded or degraded
  partial   — some entities failed, at least one succeeded or degraded
  failed    — no entity succeeded or degraded
  cancelled — cancellation was requested before all entities started
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from pydantic import ValidationError

from sales_risk_engine.config import AppConfig, RetryConfig
from sales_risk_engine.errors import (
    DegradedScoring,
    EngineError,
    FeatureMismatchError,
    NoModelAvailable,
    SchemaError,
    TransientInfraError,
)
from sales_risk_engine.features.pipeline import validate_required_fields
from sales_risk_engine.features.registry import get_pipeline_spec
from sales_risk_engine.ml.model import Model
from sales_risk_engine.ml.predictor import InferenceEngine
from sales_risk_engine.models.forecast import Forecast
from sales_risk_engine.models.meta import PipelineRun
from sales_risk_engine.models.record import EntitySnapshot
from sales_risk_engine.models.risk import RiskScore
from sales_risk_engine.pipeline.base import new_run, persist_run
from sales_risk_engine.registry.model_registry import ModelRegistry
from sales_risk_engine.risk.scorer import RiskScorer
from sales_risk_engine.sinks import ResultSink
from sales_risk_engine.sources.base import RecordSource

logger = logging.getLogger(__name__)

STATUS_SUCCEEDED = "succeeded"
STATUS_DEGRADED = "degraded"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"

OUTCOME_SUCCESS = "success"
OUTCOME_PARTIAL = "partial"
OUTCOME_FAILED = "failed"
OUTCOME_CANCELLED = "cancelled"


# ── Result types ──────────────────────────────────────────────────────────────

@dataclass
class EntityResult:
    """Outcome of one entity in a batch.

    Attributes:
        entity_id:     Entity processed.
        status:        "succeeded", "degraded", "failed" or "cancelled".
        forecast:      Forecast, when one was produced.
        risk_score:    Risk score, for succeeded and degraded entities.
        error_kind:    ``EngineError.error_kind`` (or "internal_error") on failure.
        error_message: Exception message on failure.
        attempts:      Processing attempts made (0 when cancelled).
        sink_error:    Message if the result sink rejected this entity's output.
    """

    entity_id:     str
    status:        str
    forecast:      Optional[Forecast]  = None
    risk_score:    Optional[RiskScore] = None
    error_kind:    Optional[str]       = None
    error_message: Optional[str]       = None
    attempts:      int                 = 0
    sink_error:    Optional[str]       = None

    @property
    def ok(self) -> bool:
        return self.status in (STATUS_SUCCEEDED, STATUS_DEGRADED)


@dataclass
class BatchResult:
    """Complete result of one batch: the run record plus per-entity outcomes.

    ``entity_results`` follows the order of the requested entity ids.
    """

    run:            PipelineRun
    entity_results: list[EntityResult] = field(default_factory=list)
    model_version:  Optional[str]      = None
    outcome:        str                = OUTCOME_SUCCESS

    def _count(self, status: str) -> int:
        return sum(1 for r in self.entity_results if r.status == status)

    @property
    def n_succeeded(self) -> int:
        return self._count(STATUS_SUCCEEDED)

    @property
    def n_degraded(self) -> int:
        return self._count(STATUS_DEGRADED)

    @property
    def n_failed(self) -> int:
        return self._count(STATUS_FAILED)

    @property
    def n_cancelled(self) -> int:
        return self._count(STATUS_CANCELLED)

    def failures(self) -> list[EntityResult]:
        return [r for r in self.entity_results if r.status == STATUS_FAILED]

    def result_for(self, entity_id: str) -> Optional[EntityResult]:
        return next((r for r in self.entity_results if r.entity_id == entity_id), None)


def compute_backoff(attempt: int, retry: RetryConfig) -> float:
    """Delay in seconds before retry number ``attempt`` (1-based), capped."""
    if retry.strategy == "exponential":
        delay = retry.base_seconds * (2 ** (attempt - 1))
    elif retry.strategy == "linear":
        delay = retry.base_seconds * attempt
    else:
        delay = retry.base_seconds
    return min(delay, retry.max_seconds)


# ── Orchestrator ──────────────────────────────────────────────────────────────

class BatchOrchestrator:
    """Runs batch inference + risk scoring over a list of entities.

    Args:
        config:   Application configuration (default for every batch).
        source:   Data-source collaborator supplying records.
        registry: Model registry to resolve the batch's model snapshot from.
        sink:     Optional result sink for each finished entity.
        db_path:  SQLite path for ``pipeline_runs``; ``None`` skips persistence.
        sleep:    Sleep function used between retries (injectable for tests).
    """

    def __init__(
        self,
        config: AppConfig,
        source: RecordSource,
        registry: ModelRegistry,
        sink: Optional[ResultSink] = None,
        db_path: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.source = source
        self.registry = registry
        self.sink = sink
        self.db_path = db_path
        self._sleep = sleep

    def run_batch(
        self,
        entity_ids: Sequence[str],
        config: Optional[AppConfig] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> BatchResult:
        """Score every entity and return the batch result.

        Args:
            entity_ids:   Entities to process; results keep this order.
            config:       Per-batch override of the orchestrator's config.
            cancel_event: Set it to stop starting new entities.

        Returns:
            ``BatchResult`` whose ``run`` is in a terminal state.
        """
        cfg = config or self.config
        cancel_event = cancel_event or threading.Event()

        run = new_run("inference", cfg, entities_total=len(entity_ids))
        run.start()
        persist_run(run, self.db_path)
        logger.info(
            "Batch starting | run_id=%s | entities=%d | kind=%s",
            run.run_id, len(entity_ids), cfg.forecast.model_kind,
        )

        try:
            model, unresolved = self._resolve_model(cfg, cancel_event)
            if model is not None:
                run.model_version = model.version_id

            scorer = RiskScorer(cfg.risk)
            engine = InferenceEngine(non_negative_target=cfg.forecast.non_negative_target)

            def work(entity_id: str) -> EntityResult:
                return self._process_entity(
                    entity_id, model, unresolved, cfg, scorer, engine, run.run_id, cancel_event
                )

            with ThreadPoolExecutor(
                max_workers=cfg.orchestrator.max_workers,
                thread_name_prefix="batch",
            ) as pool:
                results = list(pool.map(work, entity_ids))

            return self._finalize(run, results, model)
        except Exception as exc:
            if not run.status.is_terminal:
                run.fail(f"{type(exc).__name__}: {exc}")
                persist_run(run, self.db_path)
            raise

    # ── Steps ─────────────────────────────────────────────────────────────────

    def _resolve_model(
        self,
        cfg: AppConfig,
        cancel_event: threading.Event,
    ) -> tuple[Optional[Model], Optional[tuple[str, str]]]:
        """Fetch the latest accepted model, retrying while unavailable.

        Returns:
            ``(model, None)`` on success, else ``(None, (error_kind, message))``
            for a non-retryable failure, or ``(None, None)`` once retries for
            an unavailable model run out.
        """
        kind = cfg.forecast.model_kind
        retry = cfg.orchestrator.retry
        attempt = 0
        while True:
            try:
                model = self.registry.get_latest(kind)
                logger.info("Batch model snapshot: %s", model.version_id)
                return model, None
            except (NoModelAvailable, TransientInfraError) as exc:
                attempt += 1
                if attempt > retry.max_retries or cancel_event.is_set():
                    logger.warning(
                        "No model resolved for kind '%s' after %d attempt(s): %s",
                        kind, attempt, exc,
                    )
                    return None, None
                delay = compute_backoff(attempt, retry)
                logger.info(
                    "Model for '%s' unavailable (%s); retry %d/%d in %.2fs",
                    kind, exc.error_kind, attempt, retry.max_retries, delay,
                )
                self._sleep(delay)
            except EngineError as exc:
                logger.error("Model for '%s' cannot be loaded [%s]: %s", kind, exc.error_kind, exc)
                return None, (exc.error_kind, str(exc))
            except Exception as exc:
                logger.exception("Unexpected error resolving model for '%s'", kind)
                return None, ("internal_error", f"{type(exc).__name__}: {exc}")

    def _process_entity(
        self,
        entity_id: str,
        model: Optional[Model],
        unresolved: Optional[tuple[str, str]],
        cfg: AppConfig,
        scorer: RiskScorer,
        engine: InferenceEngine,
        run_id: str,
        cancel_event: threading.Event,
    ) -> EntityResult:
        if cancel_event.is_set():
            return EntityResult(entity_id=entity_id, status=STATUS_CANCELLED)

        log_extra = {"run_id": run_id, "entity_id": entity_id}
        retry = cfg.orchestrator.retry
        attempt = 0
        while True:
            attempt += 1
            try:
                forecast, score = self._score_entity(entity_id, model, cfg, scorer, engine)
                break
            except TransientInfraError as exc:
                if attempt > retry.max_retries:
                    logger.warning(
                        "Entity %s failed after %d attempt(s): %s", entity_id, attempt, exc,
                        extra=log_extra,
                    )
                    return _failed(entity_id, exc.error_kind, str(exc), attempt)
                delay = compute_backoff(attempt, retry)
                logger.info(
                    "Transient failure for %s; retry %d/%d in %.2fs: %s",
                    entity_id, attempt, retry.max_retries, delay, exc,
                    extra=log_extra,
                )
                self._sleep(delay)
            except NoModelAvailable as exc:
                kind, message = unresolved or (exc.error_kind, str(exc))
                logger.warning(
                    "Entity %s failed [%s]: %s", entity_id, kind, message, extra=log_extra
                )
                return _failed(entity_id, kind, message, attempt)
            except EngineError as exc:
                logger.warning(
                    "Entity %s failed [%s]: %s", entity_id, exc.error_kind, exc,
                    extra=log_extra,
                )
                return _failed(entity_id, exc.error_kind, str(exc), attempt)
            except Exception as exc:
                logger.exception("Unexpected error scoring entity %s", entity_id, extra=log_extra)
                return _failed(entity_id, "internal_error", f"{type(exc).__name__}: {exc}", attempt)

        result = EntityResult(
            entity_id=entity_id,
            status=STATUS_SUCCEEDED if forecast is not None else STATUS_DEGRADED,
            forecast=forecast,
            risk_score=score,
            attempts=attempt,
        )
        if self.sink is not None:
            try:
                self.sink.write(run_id, forecast, score)
            except Exception as exc:
                logger.error("Result sink failed for %s: %s", entity_id, exc, extra=log_extra)
                result.sink_error = f"{type(exc).__name__}: {exc}"
        return result

    def _score_entity(
        self,
        entity_id: str,
        model: Optional[Model],
        cfg: AppConfig,
        scorer: RiskScorer,
        engine: InferenceEngine,
    ) -> tuple[Optional[Forecast], RiskScore]:
        records = self.source.fetch_records(entity_id)
        if not records:
            raise SchemaError(f"No records found for entity '{entity_id}'.", entity_id=entity_id)
        try:
            snapshot = EntitySnapshot.from_records(entity_id, records)
        except ValidationError as exc:
            raise SchemaError(
                f"Invalid records for entity '{entity_id}': {exc}", entity_id=entity_id
            ) from exc

        if model is not None:
            required = model.pipeline.required_fields
        else:
            spec = get_pipeline_spec(cfg.features.pipeline_version)
            required = spec.required_for(cfg.forecast.target_field)
        validate_required_fields(snapshot.records, required)

        if model is None:
            raise NoModelAvailable(model_kind=cfg.forecast.model_kind)

        forecast: Optional[Forecast]
        try:
            vector = model.pipeline.transform_latest(
                snapshot.records, min_history=cfg.features.min_history_periods
            )
            forecast = engine.predict(vector, model)
        except DegradedScoring as exc:
            logger.info("Degraded scoring for %s: %s", entity_id, exc)
            forecast = None
        except (FeatureMismatchError, SchemaError, TransientInfraError):
            raise
        except Exception as exc:
            logger.warning(
                "Inference failed for %s; scoring ratios only: %s", entity_id, exc, exc_info=True
            )
            forecast = None

        return forecast, scorer.score(snapshot, forecast)

    def _finalize(
        self,
        run: PipelineRun,
        results: list[EntityResult],
        model: Optional[Model],
    ) -> BatchResult:
        batch = BatchResult(
            run=run,
            entity_results=results,
            model_version=model.version_id if model is not None else None,
        )
        run.entities_succeeded = batch.n_succeeded
        run.entities_degraded = batch.n_degraded
        run.entities_failed = batch.n_failed
        run.entities_cancelled = batch.n_cancelled

        n_ok = batch.n_succeeded + batch.n_degraded
        if batch.n_cancelled:
            batch.outcome = OUTCOME_CANCELLED
            run.fail("cancelled")
        elif batch.n_failed == 0:
            batch.outcome = OUTCOME_SUCCESS
            run.succeed()
        elif n_ok == 0:
            batch.outcome = OUTCOME_FAILED
            run.fail(f"All {batch.n_failed} entities failed.")
        else:
            batch.outcome = OUTCOME_PARTIAL
            run.succeed()

        persist_run(run, self.db_path)
        logger.info(
            "Batch %s | run_id=%s | succeeded=%d degraded=%d failed=%d cancelled=%d",
            batch.outcome, run.run_id, batch.n_succeeded, batch.n_degraded,
            batch.n_failed, batch.n_cancelled,
        )
        return batch


def _failed(entity_id: str, kind: str, message: str, attempts: int) -> EntityResult:
    return EntityResult(
        entity_id=entity_id,
        status=STATUS_FAILED,
        error_kind=kind,
        error_message=message,
        attempts=attempts,
    )
