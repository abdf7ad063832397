"""
Model stores: where registered models physically live.

Both stores are append-only and keep registration order.

InMemoryModelStore
  Serialized model bytes (joblib) in a list.  Used by tests and one-shot
  CLI runs where nothing needs to survive the process.

SqliteModelStore
  One joblib artifact file per version under ``artifact_dir`` plus an index
  row in ``model_registry`` carrying the file's SHA-256.  On load the digest
  is recomputed and compared when ``verify_checksums`` is on.  SQLite lock
  contention surfaces as ``TransientInfraError`` so callers can retry.
"""

from __future__ import annotations

import hashlib
import io
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Optional, Protocol

import joblib

from sales_risk_engine.db.connection import get_connection
from sales_risk_engine.db.repositories.registry_repo import ModelRegistryRepository
from sales_risk_engine.db.schema import apply_schema
from sales_risk_engine.errors import (
    ArtifactIntegrityError,
    NoModelAvailable,
    TransientInfraError,
)
from sales_risk_engine.ml.model import Model
from sales_risk_engine.models.meta import ModelMetadata

logger = logging.getLogger(__name__)


class ModelStore(Protocol):
    def contains(self, version_id: str) -> bool: ...

    def save(self, model: Model) -> None: ...

    def load(self, version_id: str) -> Model: ...

    def latest_accepted_version(self, model_kind: str) -> Optional[str]: ...

    def list_metadata(self, model_kind: Optional[str] = None) -> list[ModelMetadata]: ...


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


# ── In-memory ─────────────────────────────────────────────────────────────────


class InMemoryModelStore:
    """Append-only list of (metadata, serialized model) pairs."""

    def __init__(self) -> None:
        self._entries: list[tuple[ModelMetadata, bytes]] = []
        self._lock = threading.Lock()

    def contains(self, version_id: str) -> bool:
        with self._lock:
            return any(m.version_id == version_id for m, _ in self._entries)

    def save(self, model: Model) -> None:
        buf = io.BytesIO()
        joblib.dump(model, buf)
        with self._lock:
            if any(m.version_id == model.version_id for m, _ in self._entries):
                raise ValueError(f"Model version '{model.version_id}' is already stored.")
            self._entries.append((model.metadata, buf.getvalue()))

    def load(self, version_id: str) -> Model:
        with self._lock:
            payload = next((b for m, b in self._entries if m.version_id == version_id), None)
        if payload is None:
            raise NoModelAvailable(version_id=version_id)
        return joblib.load(io.BytesIO(payload))

    def latest_accepted_version(self, model_kind: str) -> Optional[str]:
        with self._lock:
            for meta, _ in reversed(self._entries):
                if meta.model_kind == model_kind and meta.accepted:
                    return meta.version_id
        return None

    def list_metadata(self, model_kind: Optional[str] = None) -> list[ModelMetadata]:
        with self._lock:
            return [
                m for m, _ in self._entries
                if model_kind is None or m.model_kind == model_kind
            ]


# ── SQLite + joblib artifacts ─────────────────────────────────────────────────


class SqliteModelStore:
    """SQLite index + joblib artifact files with SHA-256 verification.

    Args:
        db_path:          SQLite database path (schema applied on construction).
        artifact_dir:     Directory for ``<version_id>.joblib`` files.
        verify_checksums: Recompute and compare SHA-256 on every load.
        wal_mode:         Passed through to ``get_connection``.
        busy_timeout_ms:  Passed through to ``get_connection``.
    """

    def __init__(
        self,
        db_path: str,
        artifact_dir: str | Path,
        verify_checksums: bool = True,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self._db_path = db_path
        self._artifact_dir = Path(artifact_dir)
        self._verify = verify_checksums
        self._wal_mode = wal_mode
        self._busy_timeout_ms = busy_timeout_ms
        with self._connect() as conn:
            apply_schema(conn)

    def _connect(self):
        return get_connection(self._db_path, self._wal_mode, self._busy_timeout_ms)

    def _with_repo(self, fn):
        try:
            with self._connect() as conn:
                return fn(ModelRegistryRepository(conn))
        except sqlite3.OperationalError as exc:
            raise TransientInfraError(f"Model registry database unavailable: {exc}") from exc

    def contains(self, version_id: str) -> bool:
        return self._with_repo(lambda repo: repo.exists(version_id))

    def save(self, model: Model) -> None:
        version_id = model.version_id
        if self.contains(version_id):
            raise ValueError(f"Model version '{version_id}' is already stored.")

        self._artifact_dir.mkdir(parents=True, exist_ok=True)
        path = self._artifact_dir / f"{version_id}.joblib"
        joblib.dump(model, path)
        digest = sha256_file(path)
        try:
            self._with_repo(lambda repo: repo.insert(model.metadata, str(path), digest))
        except (sqlite3.IntegrityError, TransientInfraError):
            path.unlink(missing_ok=True)
            raise
        logger.info("Model artifact saved: %s (sha256=%s…)", path, digest[:12])

    def load(self, version_id: str) -> Model:
        entry = self._with_repo(lambda repo: repo.get(version_id))
        if entry is None:
            raise NoModelAvailable(version_id=version_id)

        path = Path(entry.artifact_path)
        if not path.exists():
            raise ArtifactIntegrityError(version_id, f"file not found: {path}")
        if self._verify:
            actual = sha256_file(path)
            if actual != entry.artifact_sha256:
                raise ArtifactIntegrityError(
                    version_id,
                    f"sha256 {actual[:12]}… != recorded {entry.artifact_sha256[:12]}…",
                )
        model = joblib.load(path)
        logger.info("Model artifact loaded: %s", path)
        return model

    def latest_accepted_version(self, model_kind: str) -> Optional[str]:
        entry = self._with_repo(lambda repo: repo.get_latest_accepted(model_kind))
        return entry.metadata.version_id if entry else None

    def list_metadata(self, model_kind: Optional[str] = None) -> list[ModelMetadata]:
        entries = self._with_repo(lambda repo: repo.list_entries(model_kind))
        return [e.metadata for e in entries]
