"""
Tests for sales_risk_engine/registry/model_registry.py.

What we test
------------
ModelRegistry:
  - register() then get_latest() / get_by_version() return the model.
  - Registering the same version twice raises ValueError.
  - get_latest() returns the newest accepted model of a kind; rejected or
    other-kind entries are ignored.
  - Older versions stay retrievable after newer ones land (rollback).
  - get_by_version() returns the identical cached object.
  - Registered models and their metadata are immutable.
  - Unknown kinds / versions raise NoModelAvailable.
"""

from __future__ import annotations

import dataclasses

import pydantic
import pytest

from sales_risk_engine.errors import NoModelAvailable
from sales_risk_engine.ml.model import Model
from sales_risk_engine.registry.model_registry import ModelRegistry


def _variant(model: Model, version_id: str, **meta_updates) -> Model:
    metadata = model.metadata.model_copy(update={"version_id": version_id, **meta_updates})
    return Model(metadata=metadata, estimator=model.estimator, pipeline=model.pipeline)


class TestRegisterAndGet:
    def test_get_latest_and_by_version(self, trained_model):
        registry = ModelRegistry()
        registry.register(trained_model)
        assert registry.get_latest("revenue_h1") is trained_model
        assert registry.get_by_version(trained_model.version_id) is trained_model

    def test_duplicate_version_raises(self, trained_registry, trained_model):
        with pytest.raises(ValueError, match="already registered"):
            trained_registry.register(trained_model)

    def test_newest_accepted_wins(self, trained_registry, trained_model):
        newer = _variant(trained_model, "revenue_h1-newer")
        trained_registry.register(newer)
        assert trained_registry.get_latest("revenue_h1") is newer

    def test_rejected_entries_are_skipped(self, trained_registry, trained_model):
        trained_registry.register(_variant(trained_model, "revenue_h1-rejected", accepted=False))
        assert trained_registry.get_latest("revenue_h1") is trained_model

    def test_other_kinds_are_separate(self, trained_registry, trained_model):
        trained_registry.register(_variant(trained_model, "cost_h1-x", model_kind="cost_h1"))
        assert trained_registry.get_latest("revenue_h1") is trained_model
        assert trained_registry.get_latest("cost_h1").version_id == "cost_h1-x"

    def test_old_versions_stay_retrievable(self, trained_registry, trained_model):
        trained_registry.register(_variant(trained_model, "revenue_h1-newer"))
        assert trained_registry.get_by_version(trained_model.version_id) is trained_model

    def test_list_versions_in_registration_order(self, trained_registry, trained_model):
        trained_registry.register(_variant(trained_model, "revenue_h1-newer"))
        trained_registry.register(_variant(trained_model, "cost_h1-x", model_kind="cost_h1"))
        all_ids = [m.version_id for m in trained_registry.list_versions()]
        assert all_ids == [trained_model.version_id, "revenue_h1-newer", "cost_h1-x"]
        assert [m.version_id for m in trained_registry.list_versions("cost_h1")] == ["cost_h1-x"]


class TestMissing:
    def test_empty_registry_has_no_latest(self):
        with pytest.raises(NoModelAvailable) as exc_info:
            ModelRegistry().get_latest("revenue_h1")
        assert exc_info.value.model_kind == "revenue_h1"

    def test_unknown_version(self, trained_registry):
        with pytest.raises(NoModelAvailable) as exc_info:
            trained_registry.get_by_version("revenue_h1-missing")
        assert exc_info.value.version_id == "revenue_h1-missing"


class TestImmutability:
    def test_model_is_frozen(self, trained_model):
        with pytest.raises(dataclasses.FrozenInstanceError):
            trained_model.metadata = None  # type: ignore[misc]

    def test_metadata_is_frozen(self, trained_model):
        with pytest.raises(pydantic.ValidationError):
            trained_model.metadata.accepted = False  # type: ignore[misc]

    def test_cached_object_identity(self, trained_registry, trained_model):
        first = trained_registry.get_by_version(trained_model.version_id)
        second = trained_registry.get_by_version(trained_model.version_id)
        assert first is second
