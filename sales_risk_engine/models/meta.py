"""
Model and run metadata — the reproducibility backbone.

``ModelMetadata`` describes a trained model: what kind and family it is, the
training window it saw, the feature pipeline version it expects, and its
validation metrics.  It is frozen; a retrained model gets a new version id.

``PipelineRun`` is the execution audit record for one training job or one
inference batch.  It is the only mutable model in the engine: its status moves
``pending → running → succeeded | failed`` through ``start()``, ``succeed()``
and ``fail()``, which reject any other transition.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from sales_risk_engine.errors import InvalidRunTransition
from sales_risk_engine.utils.time_utils import utcnow

VALID_MODEL_FAMILIES = frozenset({"lightgbm", "linear"})
VALID_RUN_KINDS = frozenset({"training", "inference"})


class ModelMetadata(BaseModel):
    """Describes a trained forecasting model.

    Attributes:
        version_id:               Unique, never reused, e.g.
                                  ``"revenue_h1-20261019T090000-1a2b3c4d"``.
        model_kind:               Target + horizon, e.g. ``"revenue_h1"``.
        model_family:             Estimator family; one of ``VALID_MODEL_FAMILIES``.
        target_field:             Record field being forecast.
        horizon_periods:          Periods ahead the model forecasts.
        feature_pipeline_version: Fitted pipeline version the model was trained on.
        feature_names:            Input columns in model order.
        training_start:           Earliest as-of date in the training partition.
        training_end:             Latest label date among training rows; no
                                  label the model learnt from is later.
        metrics:                  Validation metrics (mae, rmse, mape, r2, n_val).
        hyperparameters:          Family-specific hyperparameters.
        interval_half_width:      Residual quantile used for intervals.
        confidence_pct:           Coverage the half-width was computed for.
        accepted:                 True only when the model passed acceptance.
        trained_at:               UTC datetime training finished.
    """

    model_config = ConfigDict(frozen=True)

    version_id: str
    model_kind: str
    model_family: str
    target_field: str
    horizon_periods: int
    feature_pipeline_version: str
    feature_names: tuple[str, ...]
    training_start: Optional[date] = None
    training_end: Optional[date] = None
    metrics: dict[str, float] = {}
    hyperparameters: dict[str, Any] = {}
    interval_half_width: float = 0.0
    confidence_pct: float = 0.80
    accepted: bool = False
    trained_at: datetime

    @field_validator("model_family")
    @classmethod
    def validate_model_family(cls, v: str) -> str:
        if v not in VALID_MODEL_FAMILIES:
            raise ValueError(
                f"Unknown model_family '{v}'. Must be one of {sorted(VALID_MODEL_FAMILIES)}."
            )
        return v

    @field_validator("interval_half_width")
    @classmethod
    def validate_half_width(cls, v: float) -> float:
        if v < 0.0:
            raise ValueError(f"interval_half_width must be >= 0, got {v}.")
        return v


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED)


_ALLOWED_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING:   frozenset({RunStatus.RUNNING, RunStatus.FAILED}),
    RunStatus.RUNNING:   frozenset({RunStatus.SUCCEEDED, RunStatus.FAILED}),
    RunStatus.SUCCEEDED: frozenset(),
    RunStatus.FAILED:    frozenset(),
}


class PipelineRun(BaseModel):
    """Execution audit record for one training job or inference batch.

    Attributes:
        run_id:          UUID4 string.
        run_kind:        ``"training"`` or ``"inference"``.
        status:          Current lifecycle status.
        model_kind:      Model kind the run trains or uses.
        model_version:   Model produced (training) or used (inference).
        config_snapshot: Sub-config dump at run creation.
        entities_total:  Entities in the batch (0 for training).
        entities_succeeded / entities_degraded / entities_failed /
        entities_cancelled: Batch counters.
        error_detail:    Failure description when ``status == failed``.
        created_at:      When the record was created (pending).
        started_at:      When the run entered ``running``.
        ended_at:        When the run reached a terminal status.
    """

    # Not frozen: status and counters change as the run executes
    model_config = ConfigDict(frozen=False, validate_assignment=True)

    run_id: str
    run_kind: str
    status: RunStatus = RunStatus.PENDING
    model_kind: Optional[str] = None
    model_version: Optional[str] = None
    config_snapshot: dict[str, Any] = {}
    entities_total: int = 0
    entities_succeeded: int = 0
    entities_degraded: int = 0
    entities_failed: int = 0
    entities_cancelled: int = 0
    error_detail: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    @field_validator("run_kind")
    @classmethod
    def validate_run_kind(cls, v: str) -> str:
        if v not in VALID_RUN_KINDS:
            raise ValueError(f"Unknown run_kind '{v}'. Must be one of {sorted(VALID_RUN_KINDS)}.")
        return v

    def _transition(self, target: RunStatus) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidRunTransition(self.status.value, target.value)
        self.status = target

    def start(self) -> None:
        self._transition(RunStatus.RUNNING)
        self.started_at = utcnow()

    def succeed(self) -> None:
        self._transition(RunStatus.SUCCEEDED)
        self.ended_at = utcnow()

    def fail(self, error_detail: str) -> None:
        self._transition(RunStatus.FAILED)
        self.error_detail = error_detail
        self.ended_at = utcnow()
