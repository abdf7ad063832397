"""
Immutable trained model: metadata + fitted estimator + fitted feature pipeline.

A ``Model`` bundles everything inference needs so a registry lookup returns
one self-describing object.  It is never mutated after training; the
estimator and pipeline are only read (``predict`` / ``transform``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from sales_risk_engine.features.pipeline import FittedFeaturePipeline
from sales_risk_engine.ml.estimators import Estimator
from sales_risk_engine.models.meta import ModelMetadata


@dataclass(frozen=True, eq=False)
class Model:
    """A versioned, fitted forecasting function.

    Attributes:
        metadata:  Version, kind, training window, metrics, interval half-width.
        estimator: Fitted family estimator.
        pipeline:  Fitted feature pipeline the model was trained against.
    """

    metadata: ModelMetadata
    estimator: Estimator
    pipeline: FittedFeaturePipeline

    @property
    def version_id(self) -> str:
        return self.metadata.version_id

    @property
    def model_kind(self) -> str:
        return self.metadata.model_kind

    def predict_values(self, rows: Sequence[Sequence[float]]) -> np.ndarray:
        """Raw estimator output for a batch of aligned feature rows."""
        X = np.asarray(rows, dtype=np.float64)
        if X.ndim == 1:
            X = X.reshape(1, -1)
        return self.estimator.predict(X)
