"""
Versioned, append-only model registry.

There is no global "current model": callers ask for
``get_latest(model_kind)`` (newest accepted model of that kind) or pin an
exact ``get_by_version(version_id)``.  Rollback is just pinning an older
version; nothing is ever overwritten or deleted.

Writes are serialized by a single lock so registration order is total.
Loaded models are cached by version id, so ``get_by_version`` returns the
identical object for the life of the registry.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from sales_risk_engine.errors import NoModelAvailable
from sales_risk_engine.ml.model import Model
from sales_risk_engine.models.meta import ModelMetadata
from sales_risk_engine.registry.stores import InMemoryModelStore, ModelStore

logger = logging.getLogger(__name__)


class ModelRegistry:
    """Append-only registry over a ``ModelStore``.

    Args:
        store: Backing store; defaults to a fresh ``InMemoryModelStore``.
    """

    def __init__(self, store: Optional[ModelStore] = None) -> None:
        self._store: ModelStore = store if store is not None else InMemoryModelStore()
        self._write_lock = threading.Lock()
        self._cache: dict[str, Model] = {}
        self._cache_lock = threading.Lock()

    def register(self, model: Model) -> None:
        """Append a model.

        Raises:
            ValueError: The version id is already registered.
        """
        with self._write_lock:
            if self._store.contains(model.version_id):
                raise ValueError(
                    f"Model version '{model.version_id}' is already registered; "
                    "registered models are immutable."
                )
            self._store.save(model)
            with self._cache_lock:
                self._cache[model.version_id] = model
        logger.info(
            "Registered model %s (kind=%s, accepted=%s)",
            model.version_id, model.model_kind, model.metadata.accepted,
        )

    def get_latest(self, model_kind: str) -> Model:
        """Newest accepted model of a kind.

        Raises:
            NoModelAvailable: No accepted model of that kind is registered.
        """
        version_id = self._store.latest_accepted_version(model_kind)
        if version_id is None:
            raise NoModelAvailable(model_kind=model_kind)
        return self.get_by_version(version_id)

    def get_by_version(self, version_id: str) -> Model:
        """Exact model version (cached after first load).

        Raises:
            NoModelAvailable: The version is not registered.
        """
        with self._cache_lock:
            cached = self._cache.get(version_id)
        if cached is not None:
            return cached
        loaded = self._store.load(version_id)
        with self._cache_lock:
            return self._cache.setdefault(version_id, loaded)

    def list_versions(self, model_kind: Optional[str] = None) -> list[ModelMetadata]:
        """Metadata of every registered model, oldest first."""
        return self._store.list_metadata(model_kind)
