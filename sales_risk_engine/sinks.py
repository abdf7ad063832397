"""
Result sinks: persistence collaborators for batch outputs.

A sink receives each entity's ``(Forecast | None, RiskScore)`` as soon as the
entity finishes.  ``write`` is called from worker threads, so implementations
must be thread-safe.  Failures propagate to the orchestrator, which records
them on the entity and carries on.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from typing import Optional, Protocol

from sales_risk_engine.db.connection import get_connection
from sales_risk_engine.db.repositories.result_repo import ResultRepository
from sales_risk_engine.db.schema import apply_schema
from sales_risk_engine.errors import TransientInfraError
from sales_risk_engine.models.forecast import Forecast
from sales_risk_engine.models.risk import RiskScore

logger = logging.getLogger(__name__)


class ResultSink(Protocol):
    def write(
        self,
        run_id: str,
        forecast: Optional[Forecast],
        risk_score: RiskScore,
    ) -> None: ...


class InMemoryResultSink:
    """Collects results in lists; handy for tests and notebook use."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.forecasts: list[tuple[str, Forecast]] = []
        self.risk_scores: list[tuple[str, RiskScore]] = []

    def write(
        self,
        run_id: str,
        forecast: Optional[Forecast],
        risk_score: RiskScore,
    ) -> None:
        with self._lock:
            if forecast is not None:
                self.forecasts.append((run_id, forecast))
            self.risk_scores.append((run_id, risk_score))


class SqliteResultSink:
    """Writes to ``forecast_results`` / ``risk_results``, one connection per write.

    The run row must already exist in ``pipeline_runs`` (the orchestrator
    persists it when given the same ``db_path``).
    """

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self._db_path = db_path
        self._wal_mode = wal_mode
        self._busy_timeout_ms = busy_timeout_ms
        with get_connection(db_path, wal_mode, busy_timeout_ms) as conn:
            apply_schema(conn)

    def write(
        self,
        run_id: str,
        forecast: Optional[Forecast],
        risk_score: RiskScore,
    ) -> None:
        try:
            with get_connection(self._db_path, self._wal_mode, self._busy_timeout_ms) as conn:
                repo = ResultRepository(conn)
                if forecast is not None:
                    repo.insert_forecast(forecast, run_id=run_id)
                repo.insert_risk_score(risk_score, run_id=run_id)
        except sqlite3.OperationalError as exc:
            raise TransientInfraError(f"Result database unavailable: {exc}") from exc
        logger.debug("Persisted results for %s (run %s)", risk_score.entity_id, run_id)
