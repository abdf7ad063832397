"""Tests for SQLite schema — idempotency, table/index creation, FK and append-only triggers."""

from __future__ import annotations

import sqlite3

import pytest

from sales_risk_engine.db.schema import ALL_TABLE_NAMES, apply_schema, get_existing_tables


def _insert_registry_row(conn, version_id: str = "revenue_h1-x") -> None:
    conn.execute(
        """
        INSERT INTO model_registry (
            version_id, model_kind, model_family, accepted,
            metadata_json, artifact_path, artifact_sha256
        ) VALUES (?, 'revenue_h1', 'linear', 1, '{}', '/tmp/x.joblib', 'abc');
        """,
        (version_id,),
    )


class TestApplySchema:
    def test_all_tables_created(self, in_memory_db):
        tables = get_existing_tables(in_memory_db)
        for expected_table in ALL_TABLE_NAMES:
            assert expected_table in tables, (
                f"Expected table '{expected_table}' not found in database. "
                f"Found: {tables}"
            )

    def test_idempotent_double_apply(self, in_memory_db):
        """apply_schema() called twice must not raise errors."""
        apply_schema(in_memory_db)
        tables = get_existing_tables(in_memory_db)
        assert set(ALL_TABLE_NAMES) <= set(tables)

    def test_key_indexes_created(self, in_memory_db):
        rows = in_memory_db.execute(
            "SELECT name FROM sqlite_master WHERE type='index';"
        ).fetchall()
        indexes = {row["name"] for row in rows}
        for idx in (
            "idx_model_registry_kind",
            "idx_forecast_results_entity",
            "idx_risk_results_entity",
        ):
            assert idx in indexes


class TestAppendOnlyRegistry:
    def test_update_rejected(self, in_memory_db):
        _insert_registry_row(in_memory_db)
        with pytest.raises(sqlite3.DatabaseError, match="append-only"):
            in_memory_db.execute("UPDATE model_registry SET accepted = 0;")

    def test_delete_rejected(self, in_memory_db):
        _insert_registry_row(in_memory_db)
        with pytest.raises(sqlite3.DatabaseError, match="append-only"):
            in_memory_db.execute("DELETE FROM model_registry;")

    def test_duplicate_version_rejected(self, in_memory_db):
        _insert_registry_row(in_memory_db)
        with pytest.raises(sqlite3.IntegrityError):
            _insert_registry_row(in_memory_db)


class TestConstraints:
    def test_fk_enforcement_is_on(self, in_memory_db):
        row = in_memory_db.execute("PRAGMA foreign_keys;").fetchone()
        assert row[0] == 1, "PRAGMA foreign_keys should be 1 (enabled)"

    def test_result_requires_existing_run(self, in_memory_db):
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(
                """
                INSERT INTO risk_results (run_id, entity_id, score, risk_class, config_name)
                VALUES ('missing-run', 'ACME', 10.0, 'low', 'default');
                """
            )

    def test_score_range_checked(self, in_memory_db):
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(
                """
                INSERT INTO risk_results (entity_id, score, risk_class, config_name)
                VALUES ('ACME', 150.0, 'critical', 'default');
                """
            )
