"""
Model trainer: labeled feature vectors → accepted, registered ``Model``.

Flow
----
1. Check every example was built by the supplied fitted pipeline.
2. Split (``time`` by default, ``random`` on request); see ``ml.splits``.
3. Fit the configured family on the training partition.
4. Predict the validation partition (clamped at 0 for non-negative targets)
   and compute MAE / RMSE / MAPE / R².
5. Compute the interval half-width: the ``confidence_pct`` quantile of
   absolute validation residuals.
6. Acceptance gate — reject with ``TrainingError`` when validation MAE
   exceeds ``max_validation_mae`` or R² is below ``min_validation_r2``.
7. Register in the model registry.  Rejected fits are never registered, so
   ``get_latest`` keeps returning the previous model.

Only one training job per model kind runs at a time: ``train()`` holds a
process-wide per-kind lock for the whole fit.
"""

from __future__ import annotations

import logging
import math
import threading
import uuid
from typing import TYPE_CHECKING, Optional, Sequence

import numpy as np

from sales_risk_engine.config import AppConfig
from sales_risk_engine.errors import FeatureMismatchError, TrainingError
from sales_risk_engine.features.pipeline import FittedFeaturePipeline
from sales_risk_engine.ml.estimators import build_estimator
from sales_risk_engine.ml.metrics import evaluate, residual_quantile
from sales_risk_engine.ml.model import Model
from sales_risk_engine.ml.splits import random_split, time_split
from sales_risk_engine.models.features import LabeledVector
from sales_risk_engine.models.meta import ModelMetadata
from sales_risk_engine.utils.time_utils import utcnow

if TYPE_CHECKING:
    from sales_risk_engine.registry.model_registry import ModelRegistry

logger = logging.getLogger(__name__)

_KIND_LOCKS: dict[str, threading.Lock] = {}
_KIND_LOCKS_GUARD = threading.Lock()


def kind_lock(model_kind: str) -> threading.Lock:
    """Return the process-wide training lock for a model kind."""
    with _KIND_LOCKS_GUARD:
        lock = _KIND_LOCKS.get(model_kind)
        if lock is None:
            lock = _KIND_LOCKS[model_kind] = threading.Lock()
        return lock


def new_version_id(model_kind: str) -> str:
    """Return a never-reused version id, e.g. ``revenue_h1-20261019T090000-1a2b3c4d``."""
    return f"{model_kind}-{utcnow():%Y%m%dT%H%M%S}-{uuid.uuid4().hex[:8]}"


class ModelTrainer:
    """Trains, validates and registers forecasting models.

    Args:
        registry: Registry accepted models are appended to.
        config:   Default application config; ``train()`` may override it.
    """

    def __init__(self, registry: "ModelRegistry", config: AppConfig) -> None:
        self._registry = registry
        self._config = config

    def train(
        self,
        examples: Sequence[LabeledVector],
        pipeline: FittedFeaturePipeline,
        config: Optional[AppConfig] = None,
    ) -> Model:
        """Fit, validate and register one model.

        Args:
            examples: Feature vectors paired with their forward labels.
            pipeline: Fitted feature pipeline that produced ``examples``.
            config:   Overrides the trainer's default config for this call.

        Returns:
            The accepted, registered ``Model``.

        Raises:
            FeatureMismatchError: An example was not built by ``pipeline``.
            TrainingError:        Too few rows, empty validation, or a metric
                                  outside the acceptance bounds.
        """
        cfg = config or self._config
        model_kind = cfg.forecast.model_kind
        with kind_lock(model_kind):
            return self._train_locked(examples, pipeline, cfg, model_kind)

    # ── Internals ────────────────────────────────────────────────────────────

    def _train_locked(
        self,
        examples: Sequence[LabeledVector],
        pipeline: FittedFeaturePipeline,
        cfg: AppConfig,
        model_kind: str,
    ) -> Model:
        tcfg = cfg.training
        if not examples:
            raise TrainingError("No training examples supplied.", model_kind=model_kind)

        names = pipeline.feature_names
        for ex in examples:
            if ex.vector.pipeline_version != pipeline.version:
                raise FeatureMismatchError(ex.vector.pipeline_version, pipeline.version)
            if ex.vector.feature_names != names:
                raise FeatureMismatchError(
                    ex.vector.pipeline_version, pipeline.version,
                    detail="Feature names differ from the pipeline's columns.",
                )

        if tcfg.split_strategy == "random":
            train, val = random_split(examples, tcfg.validation_fraction, tcfg.seed)
        else:
            train, val, _cutoff = time_split(examples, tcfg.validation_fraction)

        logger.info(
            "Training %s (%s): %d train rows, %d validation rows.",
            model_kind, tcfg.model_family, len(train), len(val),
        )
        if len(train) < tcfg.min_train_rows:
            raise TrainingError(
                f"Need >= {tcfg.min_train_rows} training rows for '{model_kind}'; "
                f"got {len(train)}.",
                model_kind=model_kind,
            )
        if not val:
            raise TrainingError(
                f"Validation partition for '{model_kind}' is empty; "
                "supply more distinct observation dates.",
                model_kind=model_kind,
            )

        X_train = np.array([ex.vector.values for ex in train], dtype=np.float64)
        y_train = np.array([ex.label for ex in train], dtype=np.float64)
        X_val   = np.array([ex.vector.values for ex in val], dtype=np.float64)
        y_val   = np.array([ex.label for ex in val], dtype=np.float64)

        estimator = build_estimator(tcfg.model_family, tcfg)
        estimator.fit(X_train, y_train, X_val, y_val, list(names))

        preds = estimator.predict(X_val)
        if cfg.forecast.non_negative_target:
            preds = np.maximum(preds, 0.0)

        metrics = evaluate(y_val, preds)
        train_r2 = getattr(estimator, "train_r2", None)
        if train_r2 is not None:
            metrics["train_r2"] = float(train_r2)
        half_width = residual_quantile(y_val, preds, cfg.forecast.confidence_pct)

        self._check_acceptance(metrics, cfg, model_kind)

        metadata = ModelMetadata(
            version_id=new_version_id(model_kind),
            model_kind=model_kind,
            model_family=tcfg.model_family,
            target_field=cfg.forecast.target_field,
            horizon_periods=cfg.forecast.horizon_periods,
            feature_pipeline_version=pipeline.version,
            feature_names=names,
            training_start=min(ex.vector.as_of for ex in train),
            training_end=max(ex.label_date for ex in train),
            metrics=metrics,
            hyperparameters=estimator.hyperparameters,
            interval_half_width=half_width,
            confidence_pct=cfg.forecast.confidence_pct,
            accepted=True,
            trained_at=utcnow(),
        )
        model = Model(metadata=metadata, estimator=estimator, pipeline=pipeline)
        self._registry.register(model)
        logger.info(
            "Registered %s  mae=%.4f  r2=%.4f  half_width=%.4f",
            metadata.version_id, metrics["mae"], metrics["r2"], half_width,
        )
        return model

    @staticmethod
    def _check_acceptance(metrics: dict[str, float], cfg: AppConfig, model_kind: str) -> None:
        tcfg = cfg.training
        mae = metrics["mae"]
        if not math.isfinite(mae) or not mae <= tcfg.max_validation_mae:
            logger.warning("Rejected %s: mae=%.4f", model_kind, metrics["mae"])
            raise TrainingError(
                f"Validation MAE {metrics['mae']:.4f} exceeds max_validation_mae "
                f"{tcfg.max_validation_mae}.",
                model_kind=model_kind,
                metrics=metrics,
            )
        r2 = metrics["r2"]
        if not math.isfinite(r2):
            logger.warning("Rejected %s: r2=%s", model_kind, r2)
            raise TrainingError(
                f"Validation R² is not finite ({r2}).",
                model_kind=model_kind,
                metrics=metrics,
            )
        if tcfg.min_validation_r2 is not None and not r2 >= tcfg.min_validation_r2:
            logger.warning("Rejected %s: r2=%.4f", model_kind, metrics["r2"])
            raise TrainingError(
                f"Validation R² {metrics['r2']:.4f} is below min_validation_r2 "
                f"{tcfg.min_validation_r2}.",
                model_kind=model_kind,
                metrics=metrics,
            )
