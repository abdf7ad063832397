"""
Repository for the append-only ``model_registry`` index.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Optional

from sales_risk_engine.db.repositories.base import BaseRepository
from sales_risk_engine.models.meta import ModelMetadata

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistryEntry:
    """One indexed model: metadata plus where its artifact lives."""

    seq: int
    metadata: ModelMetadata
    artifact_path: str
    artifact_sha256: str


class ModelRegistryRepository(BaseRepository):
    """Insert-only access to ``model_registry``."""

    def insert(self, metadata: ModelMetadata, artifact_path: str, artifact_sha256: str) -> int:
        """Append one entry and return its sequence number.

        Raises:
            sqlite3.IntegrityError: If ``version_id`` is already registered.
        """
        self.execute(
            """
            INSERT INTO model_registry (
                version_id, model_kind, model_family, accepted,
                metadata_json, artifact_path, artifact_sha256
            ) VALUES (?, ?, ?, ?, ?, ?, ?);
            """,
            (
                metadata.version_id,
                metadata.model_kind,
                metadata.model_family,
                int(metadata.accepted),
                metadata.model_dump_json(),
                artifact_path,
                artifact_sha256,
            ),
        )
        return self.last_insert_rowid()

    def get(self, version_id: str) -> Optional[RegistryEntry]:
        row = self.fetchone("SELECT * FROM model_registry WHERE version_id = ?;", (version_id,))
        return _row_to_entry(row) if row else None

    def exists(self, version_id: str) -> bool:
        row = self.fetchone(
            "SELECT 1 AS present FROM model_registry WHERE version_id = ?;", (version_id,)
        )
        return row is not None

    def get_latest_accepted(self, model_kind: str) -> Optional[RegistryEntry]:
        row = self.fetchone(
            """
            SELECT * FROM model_registry
            WHERE model_kind = ? AND accepted = 1
            ORDER BY seq DESC
            LIMIT 1;
            """,
            (model_kind,),
        )
        return _row_to_entry(row) if row else None

    def list_entries(self, model_kind: Optional[str] = None) -> list[RegistryEntry]:
        """Entries in registration order, optionally for one kind."""
        if model_kind is None:
            rows = self.fetchall("SELECT * FROM model_registry ORDER BY seq;")
        else:
            rows = self.fetchall(
                "SELECT * FROM model_registry WHERE model_kind = ? ORDER BY seq;",
                (model_kind,),
            )
        return [_row_to_entry(r) for r in rows]


def _row_to_entry(row: sqlite3.Row) -> RegistryEntry:
    return RegistryEntry(
        seq=int(row["seq"]),
        metadata=ModelMetadata.model_validate_json(row["metadata_json"]),
        artifact_path=row["artifact_path"],
        artifact_sha256=row["artifact_sha256"],
    )
