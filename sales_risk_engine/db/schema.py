"""
SQLite schema DDL for the engine's persistence collaborators.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is idempotent.

Tables
------
  1. model_registry    — append-only model index (artifact path + SHA-256).
                         UPDATE and DELETE are aborted by triggers.
  2. pipeline_runs     — training / inference run audit records.
  3. forecast_results  — forecasts emitted by batch runs (→ pipeline_runs).
  4. risk_results      — risk scores emitted by batch runs (→ pipeline_runs).
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────
# One statement per string; trigger bodies contain semicolons so nothing is split.

_DDL_MODEL_REGISTRY = """
CREATE TABLE IF NOT EXISTS model_registry (
    seq              INTEGER PRIMARY KEY AUTOINCREMENT,
    version_id       TEXT    NOT NULL UNIQUE,
    model_kind       TEXT    NOT NULL,
    model_family     TEXT    NOT NULL,
    accepted         INTEGER NOT NULL DEFAULT 0,
    metadata_json    TEXT    NOT NULL,
    artifact_path    TEXT    NOT NULL,
    artifact_sha256  TEXT    NOT NULL,
    registered_at    TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
)
"""

_IDX_MODEL_REGISTRY_KIND = """
CREATE INDEX IF NOT EXISTS idx_model_registry_kind
    ON model_registry (model_kind, accepted, seq)
"""

_TRG_MODEL_REGISTRY_NO_UPDATE = """
CREATE TRIGGER IF NOT EXISTS trg_model_registry_no_update
BEFORE UPDATE ON model_registry
BEGIN
    SELECT RAISE(ABORT, 'model_registry is append-only');
END
"""

_TRG_MODEL_REGISTRY_NO_DELETE = """
CREATE TRIGGER IF NOT EXISTS trg_model_registry_no_delete
BEFORE DELETE ON model_registry
BEGIN
    SELECT RAISE(ABORT, 'model_registry is append-only');
END
"""

_DDL_PIPELINE_RUNS = """
CREATE TABLE IF NOT EXISTS pipeline_runs (
    run_id              TEXT    PRIMARY KEY,
    run_kind            TEXT    NOT NULL CHECK (run_kind IN ('training', 'inference')),
    status              TEXT    NOT NULL,
    model_kind          TEXT,
    model_version       TEXT,
    config_snapshot     TEXT    NOT NULL DEFAULT '{}',
    entities_total      INTEGER NOT NULL DEFAULT 0,
    entities_succeeded  INTEGER NOT NULL DEFAULT 0,
    entities_degraded   INTEGER NOT NULL DEFAULT 0,
    entities_failed     INTEGER NOT NULL DEFAULT 0,
    entities_cancelled  INTEGER NOT NULL DEFAULT 0,
    error_detail        TEXT,
    created_at          TEXT    NOT NULL,
    started_at          TEXT,
    ended_at            TEXT
)
"""

_DDL_FORECAST_RESULTS = """
CREATE TABLE IF NOT EXISTS forecast_results (
    forecast_id      INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id           TEXT    REFERENCES pipeline_runs(run_id),
    entity_id        TEXT    NOT NULL,
    target_field     TEXT    NOT NULL,
    horizon_periods  INTEGER NOT NULL,
    as_of            TEXT    NOT NULL,
    point_estimate   REAL    NOT NULL,
    lower            REAL    NOT NULL,
    upper            REAL    NOT NULL,
    confidence_pct   REAL    NOT NULL,
    interval_method  TEXT    NOT NULL,
    model_version    TEXT    NOT NULL,
    features_hash    TEXT    NOT NULL,
    created_at       TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
)
"""

_IDX_FORECAST_ENTITY = """
CREATE INDEX IF NOT EXISTS idx_forecast_results_entity
    ON forecast_results (entity_id, as_of)
"""

_DDL_RISK_RESULTS = """
CREATE TABLE IF NOT EXISTS risk_results (
    risk_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id           TEXT    REFERENCES pipeline_runs(run_id),
    entity_id        TEXT    NOT NULL,
    score            REAL    NOT NULL CHECK (score >= 0 AND score <= 100),
    risk_class       TEXT    NOT NULL,
    flags            TEXT    NOT NULL DEFAULT '[]',
    missing_factors  TEXT    NOT NULL DEFAULT '[]',
    factors_json     TEXT    NOT NULL DEFAULT '[]',
    config_name      TEXT    NOT NULL,
    model_version    TEXT,
    created_at       TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
)
"""

_IDX_RISK_ENTITY = """
CREATE INDEX IF NOT EXISTS idx_risk_results_entity
    ON risk_results (entity_id, created_at)
"""

_ALL_DDL: list[str] = [
    _DDL_MODEL_REGISTRY,
    _IDX_MODEL_REGISTRY_KIND,
    _TRG_MODEL_REGISTRY_NO_UPDATE,
    _TRG_MODEL_REGISTRY_NO_DELETE,
    _DDL_PIPELINE_RUNS,
    _DDL_FORECAST_RESULTS,
    _IDX_FORECAST_ENTITY,
    _DDL_RISK_RESULTS,
    _IDX_RISK_ENTITY,
]

ALL_TABLE_NAMES = [
    "model_registry",
    "pipeline_runs",
    "forecast_results",
    "risk_results",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Create all tables, indexes and triggers.  Idempotent."""
    for statement in _ALL_DDL:
        conn.execute(statement)
    conn.commit()
    logger.info("Schema applied: %d tables verified.", len(ALL_TABLE_NAMES))


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return table names present in the database (sorted)."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]
