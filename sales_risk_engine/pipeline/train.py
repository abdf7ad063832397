"""
Training stage: records → fitted feature pipeline → accepted model.

Steps:
  1. Fit the feature pipeline on the supplied training-window records.
  2. Build labeled examples (vector as of record i, target at i + horizon).
  3. Train, validate and register through ``ModelTrainer``.

The produced version id is written to ``PipelineRun.model_version``.  A
rejected fit raises ``TrainingError`` and leaves the registry unchanged.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from sales_risk_engine.config import AppConfig
from sales_risk_engine.features.pipeline import FeaturePipeline
from sales_risk_engine.ml.trainer import ModelTrainer
from sales_risk_engine.models.meta import PipelineRun
from sales_risk_engine.models.record import Record
from sales_risk_engine.pipeline.base import PipelineStage
from sales_risk_engine.registry.model_registry import ModelRegistry

logger = logging.getLogger(__name__)


class TrainStage(PipelineStage):
    """Fits and registers one model for ``config.forecast.model_kind``."""

    run_kind = "training"

    def __init__(
        self,
        config: AppConfig,
        registry: ModelRegistry,
        db_path: Optional[str] = None,
    ) -> None:
        super().__init__(config, db_path)
        self.registry = registry

    def _execute(self, run: PipelineRun, records: Sequence[Record] = (), **kwargs) -> int:
        cfg = self.config
        pipeline = FeaturePipeline(cfg.features, cfg.forecast.target_field).fit(records)
        examples = pipeline.build_training_set(records, cfg.forecast.horizon_periods)
        logger.info(
            "Built %d labeled examples for %s from %d records.",
            len(examples), cfg.forecast.model_kind, len(records),
        )
        model = ModelTrainer(self.registry, cfg).train(examples, pipeline)
        run.model_version = model.version_id
        return len(examples)
