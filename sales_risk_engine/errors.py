"""
Engine error kinds.

Every error raised by the engine derives from ``EngineError`` so callers can
catch the whole family at one seam.  ``error_kind`` is the stable string the
orchestrator records against a failed entity.

Recovery contract
-----------------
- ``DegradedScoring``     — non-fatal; the orchestrator falls back to a
                            ratio-only risk score flagged ``DEGRADED``.
- ``TransientInfraError`` — retryable; retried with backoff, surfaced only
                            when retries are exhausted.
- ``NoModelAvailable``    — retried like a transient failure (the registry may
                            be filling), then reported per entity.
- Everything else         — reported per entity; never retried.
"""

from __future__ import annotations

from typing import Optional


class EngineError(Exception):
    """Base class for every engine error."""

    error_kind: str = "engine_error"
    retryable: bool = False


class SchemaError(EngineError):
    """Malformed or incomplete input records.

    Attributes:
        entity_id: Entity whose records failed validation, if known.
        field:     Name of the offending field, if known.
    """

    error_kind = "schema_error"

    def __init__(
        self,
        message: str,
        entity_id: Optional[str] = None,
        field: Optional[str] = None,
    ) -> None:
        self.entity_id = entity_id
        self.field = field
        super().__init__(message)


class TrainingError(EngineError):
    """A fit failed acceptance or could not be performed.

    Attributes:
        model_kind: Model kind being trained.
        metrics:    Validation metrics at rejection time (may be empty).
    """

    error_kind = "training_error"

    def __init__(
        self,
        message: str,
        model_kind: Optional[str] = None,
        metrics: Optional[dict[str, float]] = None,
    ) -> None:
        self.model_kind = model_kind
        self.metrics = dict(metrics or {})
        super().__init__(message)


class NoModelAvailable(EngineError):
    """The registry holds no accepted model for the requested kind or version."""

    error_kind = "no_model_available"
    retryable = True

    def __init__(
        self,
        model_kind: Optional[str] = None,
        version_id: Optional[str] = None,
    ) -> None:
        self.model_kind = model_kind
        self.version_id = version_id
        if version_id is not None:
            msg = f"Model version '{version_id}' is not registered."
        else:
            msg = f"No accepted model registered for kind '{model_kind}'."
        super().__init__(msg)


class FeatureMismatchError(EngineError):
    """Version or schema skew between a feature vector and a model."""

    error_kind = "feature_mismatch"

    def __init__(self, vector_version: str, model_version: str, detail: str = "") -> None:
        self.vector_version = vector_version
        self.model_version = model_version
        msg = (
            f"Feature vector pipeline version '{vector_version}' does not match "
            f"model feature pipeline version '{model_version}'."
        )
        if detail:
            msg = f"{msg} {detail}"
        super().__init__(msg)


class DegradedScoring(EngineError):
    """Optional forecast input unavailable; score must fall back to ratios only."""

    error_kind = "degraded_scoring"


class InsufficientHistoryError(DegradedScoring):
    """Entity has too few records to build an inference feature vector."""

    def __init__(self, entity_id: str, available: int, required: int) -> None:
        self.entity_id = entity_id
        self.available = available
        self.required = required
        super().__init__(
            f"Entity '{entity_id}' has {available} record(s); "
            f"forecasting needs at least {required}."
        )


class TransientInfraError(EngineError):
    """Retryable infrastructure failure (data source or store unavailable)."""

    error_kind = "transient_infra_error"
    retryable = True


class InvalidRunTransition(EngineError):
    """Illegal PipelineRun status transition."""

    error_kind = "invalid_run_transition"

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition PipelineRun from '{current}' to '{target}'.")


class ArtifactIntegrityError(EngineError):
    """A stored model artifact is missing or fails its SHA-256 check."""

    error_kind = "artifact_integrity_error"

    def __init__(self, version_id: str, detail: str) -> None:
        self.version_id = version_id
        super().__init__(f"Artifact for model '{version_id}' failed integrity check: {detail}")
