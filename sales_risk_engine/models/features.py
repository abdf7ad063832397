"""
Model-ready feature vectors.

A ``FeatureVector`` is the only thing the inference engine accepts.  It carries
its own schema tag — ``pipeline_version`` plus the ordered ``feature_names`` —
so the inference boundary can check compatibility structurally instead of
assuming it.

``features_hash`` is a 16-char SHA-256 digest of (version, names, values);
identical records run through the same fitted pipeline always produce the same
hash, in any process.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date

from pydantic import BaseModel, ConfigDict, model_validator


def hash_features(pipeline_version: str, names: tuple[str, ...], values: tuple[float, ...]) -> str:
    """Return a 16-char SHA-256 hex digest of a feature vector."""
    payload = json.dumps(
        {"v": pipeline_version, "names": list(names), "values": [repr(x) for x in values]},
        sort_keys=True,
    )
    return hashlib.sha256(payload.encode()).hexdigest()[:16]


class FeatureVector(BaseModel):
    """Ordered, named numeric features for one entity as of one date.

    Attributes:
        entity_id:        Entity the features describe.
        as_of:            ``observed_at`` of the latest record used.
        pipeline_version: Concrete fitted pipeline version
                          (``"<schema>+<stats fingerprint>"``).
        feature_names:    Column names, in model input order.
        values:           Feature values, aligned with ``feature_names``.
    """

    model_config = ConfigDict(frozen=True)

    entity_id: str
    as_of: date
    pipeline_version: str
    feature_names: tuple[str, ...]
    values: tuple[float, ...]

    @model_validator(mode="after")
    def validate_alignment(self) -> "FeatureVector":
        if len(self.feature_names) != len(self.values):
            raise ValueError(
                f"feature_names ({len(self.feature_names)}) and values "
                f"({len(self.values)}) must have the same length."
            )
        return self

    @property
    def features_hash(self) -> str:
        return hash_features(self.pipeline_version, self.feature_names, self.values)

    def as_dict(self) -> dict[str, float]:
        return dict(zip(self.feature_names, self.values))


class LabeledVector(BaseModel):
    """A training example: feature vector plus its forward-looking label.

    Attributes:
        vector:     Features as of ``vector.as_of``.
        label:      Target value ``horizon`` periods later.
        label_date: ``observed_at`` of the record the label came from.
    """

    model_config = ConfigDict(frozen=True)

    vector: FeatureVector
    label: float
    label_date: date

    @model_validator(mode="after")
    def validate_label_after_features(self) -> "LabeledVector":
        if self.label_date <= self.vector.as_of:
            raise ValueError(
                f"label_date ({self.label_date}) must be after as_of ({self.vector.as_of})."
            )
        return self
