"""
Repository for ``pipeline_runs`` audit records.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Optional

from sales_risk_engine.db.repositories.base import BaseRepository
from sales_risk_engine.models.meta import PipelineRun, RunStatus

logger = logging.getLogger(__name__)


class RunRepository(BaseRepository):
    """Read/write access to ``pipeline_runs``."""

    def upsert(self, run: PipelineRun) -> None:
        """Insert the run, or update its status, counters and timestamps."""
        self.execute(
            """
            INSERT INTO pipeline_runs (
                run_id, run_kind, status, model_kind, model_version,
                config_snapshot, entities_total, entities_succeeded,
                entities_degraded, entities_failed, entities_cancelled,
                error_detail, created_at, started_at, ended_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(run_id) DO UPDATE SET
                status             = excluded.status,
                model_version      = excluded.model_version,
                entities_total     = excluded.entities_total,
                entities_succeeded = excluded.entities_succeeded,
                entities_degraded  = excluded.entities_degraded,
                entities_failed    = excluded.entities_failed,
                entities_cancelled = excluded.entities_cancelled,
                error_detail       = excluded.error_detail,
                started_at         = excluded.started_at,
                ended_at           = excluded.ended_at;
            """,
            (
                run.run_id,
                run.run_kind,
                run.status.value,
                run.model_kind,
                run.model_version,
                json.dumps(run.config_snapshot, default=str),
                run.entities_total,
                run.entities_succeeded,
                run.entities_degraded,
                run.entities_failed,
                run.entities_cancelled,
                run.error_detail,
                run.created_at.isoformat(),
                run.started_at.isoformat() if run.started_at else None,
                run.ended_at.isoformat() if run.ended_at else None,
            ),
        )

    def get(self, run_id: str) -> Optional[PipelineRun]:
        row = self.fetchone("SELECT * FROM pipeline_runs WHERE run_id = ?;", (run_id,))
        return _row_to_run(row) if row else None

    def list_recent(self, limit: int = 20, run_kind: Optional[str] = None) -> list[PipelineRun]:
        if run_kind is None:
            rows = self.fetchall(
                "SELECT * FROM pipeline_runs ORDER BY created_at DESC LIMIT ?;", (limit,)
            )
        else:
            rows = self.fetchall(
                "SELECT * FROM pipeline_runs WHERE run_kind = ? "
                "ORDER BY created_at DESC LIMIT ?;",
                (run_kind, limit),
            )
        return [_row_to_run(r) for r in rows]


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_run(row: sqlite3.Row) -> PipelineRun:
    return PipelineRun(
        run_id=row["run_id"],
        run_kind=row["run_kind"],
        status=RunStatus(row["status"]),
        model_kind=row["model_kind"],
        model_version=row["model_version"],
        config_snapshot=json.loads(row["config_snapshot"] or "{}"),
        entities_total=row["entities_total"],
        entities_succeeded=row["entities_succeeded"],
        entities_degraded=row["entities_degraded"],
        entities_failed=row["entities_failed"],
        entities_cancelled=row["entities_cancelled"],
        error_detail=row["error_detail"],
        created_at=datetime.fromisoformat(row["created_at"]),
        started_at=_parse_dt(row["started_at"]),
        ended_at=_parse_dt(row["ended_at"]),
    )
