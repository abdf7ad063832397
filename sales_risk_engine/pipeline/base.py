"""
Abstract base class for tracked pipeline stages.

Every stage follows the same contract:
  1. Receive ``AppConfig`` at construction.
  2. ``run(**kwargs)`` is the sole public API.
  3. ``run()`` creates a ``PipelineRun`` (pending), moves it to running,
     calls ``_execute()``, then to succeeded or failed, persisting the record
     at each step when a database path is configured.
  4. ``_execute()`` is the stage-specific implementation.

Stages never swallow exceptions from ``_execute()``: the failure is recorded
on the run and re-raised.

Usage::

    class MyStage(PipelineStage):
        run_kind = "training"

        def _execute(self, run: PipelineRun, **kwargs) -> int:
            return 42

    run = MyStage(config=app_config).run(records=records)
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import uuid4

from sales_risk_engine.config import AppConfig
from sales_risk_engine.db.connection import get_connection
from sales_risk_engine.db.repositories.run_repo import RunRepository
from sales_risk_engine.db.schema import apply_schema
from sales_risk_engine.models.meta import PipelineRun
from sales_risk_engine.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


def new_run(run_kind: str, config: AppConfig, **fields: Any) -> PipelineRun:
    """Create a pending run with a config snapshot of the relevant sections."""
    snapshot = {
        "features": config.features.model_dump(),
        "training": config.training.model_dump(),
        "forecast": config.forecast.model_dump(),
        "risk_name": config.risk.name,
        "orchestrator": config.orchestrator.model_dump(),
    }
    return PipelineRun(
        run_id=str(uuid4()),
        run_kind=run_kind,
        model_kind=config.forecast.model_kind,
        config_snapshot=snapshot,
        created_at=utcnow(),
        **fields,
    )


def persist_run(run: PipelineRun, db_path: Optional[str]) -> None:
    """Upsert a run record; no-op without a database path.

    Persistence failures are logged, not raised, so they never mask the
    outcome of the run itself.
    """
    if db_path is None:
        return
    try:
        with get_connection(db_path) as conn:
            apply_schema(conn)
            RunRepository(conn).upsert(run)
    except sqlite3.Error as exc:
        logger.error("Failed to persist PipelineRun %s: %s", run.run_id, exc)


class PipelineStage(ABC):
    """Abstract base for tracked stages.

    Attributes:
        run_kind: ``"training"`` or ``"inference"``; set by subclasses.
        config:   Application configuration.
        db_path:  SQLite path for run records, or ``None`` to skip persistence.
    """

    run_kind: str

    def __init__(self, config: AppConfig, db_path: Optional[str] = None) -> None:
        self.config = config
        self.db_path = db_path

    def run(self, **kwargs: Any) -> PipelineRun:
        """Execute the stage and return its finished ``PipelineRun``.

        Raises:
            Exception: Re-raises anything from ``_execute()`` after recording
                the run as failed.
        """
        run = new_run(self.run_kind, self.config)
        run.start()
        persist_run(run, self.db_path)
        logger.info(
            "Stage [%s] starting | run_id=%s", self.run_kind, run.run_id,
            extra={"run_id": run.run_id},
        )

        try:
            processed = self._execute(run=run, **kwargs)
        except Exception as exc:
            run.fail(f"{type(exc).__name__}: {exc}")
            logger.error(
                "Stage [%s] FAILED: %s | run_id=%s", self.run_kind, exc, run.run_id,
                extra={"run_id": run.run_id},
            )
            persist_run(run, self.db_path)
            raise

        run.succeed()
        persist_run(run, self.db_path)
        logger.info(
            "Stage [%s] completed | processed=%d | run_id=%s",
            self.run_kind, processed, run.run_id,
        )
        return run

    @abstractmethod
    def _execute(self, run: PipelineRun, **kwargs: Any) -> int:
        """Stage-specific work; returns the number of items processed."""
        ...
