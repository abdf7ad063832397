"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — local secrets and env overrides (gitignored)
  4. Environment variables        — ``SALES_RISK_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

Every engine component (feature pipeline, trainer, registry, scorer,
orchestrator) receives a sub-config from an ``AppConfig`` instance — never raw
dicts or individual env var lookups scattered through the codebase.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings (registry index, runs, results)."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/sales_risk.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class DataConfig(BaseModel):
    """Filesystem paths for raw records and exported results."""

    model_config = ConfigDict(frozen=True)

    records_csv: str = "data/raw/records.csv"
    export_dir: str = "data/outputs/results"


class RegistryConfig(BaseModel):
    """Model registry backing store."""

    model_config = ConfigDict(frozen=True)

    artifact_dir: str = "data/outputs/model_artifacts"
    verify_checksums: bool = True


class FeatureConfig(BaseModel):
    """Feature pipeline parameters.

    ``pipeline_version`` selects a schema declared in
    ``features.registry.PIPELINE_VERSIONS``.  ``min_history_periods`` is the
    number of records an entity needs before an inference vector is built;
    below it the orchestrator falls back to ratio-only scoring.
    """

    model_config = ConfigDict(frozen=True)

    pipeline_version: str = "v1"
    min_history_periods: int = 3

    @field_validator("min_history_periods")
    @classmethod
    def validate_min_history(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"min_history_periods must be >= 1, got {v}.")
        return v


class TrainingConfig(BaseModel):
    """Model trainer settings: split, acceptance bounds, hyperparameters.

    ``max_validation_mae`` is in target units and unbounded by default;
    ``min_validation_r2`` is the scale-free gate (``config/default.toml``
    ships 0.0).  A non-finite validation metric is always rejected.
    """

    model_config = ConfigDict(frozen=True)

    model_family: str = "lightgbm"
    split_strategy: str = "time"
    validation_fraction: float = 0.2
    seed: int = 42
    min_train_rows: int = 10
    max_validation_mae: float = float("inf")
    min_validation_r2: Optional[float] = None

    # LightGBM hyperparameters
    num_leaves: int = 15
    learning_rate: float = 0.05
    n_estimators: int = 200
    min_child_samples: int = 5
    feature_fraction: float = 0.9
    bagging_fraction: float = 0.8
    bagging_freq: int = 5
    early_stopping_rounds: int = 20

    @field_validator("model_family")
    @classmethod
    def validate_family(cls, v: str) -> str:
        valid = {"lightgbm", "linear"}
        if v not in valid:
            raise ValueError(f"model_family must be one of {sorted(valid)}, got '{v}'.")
        return v

    @field_validator("split_strategy")
    @classmethod
    def validate_split(cls, v: str) -> str:
        if v not in ("time", "random"):
            raise ValueError(f"split_strategy must be 'time' or 'random', got '{v}'.")
        return v

    @field_validator("validation_fraction")
    @classmethod
    def validate_fraction(cls, v: float) -> float:
        if not 0.0 < v < 1.0:
            raise ValueError(f"validation_fraction must be in (0.0, 1.0), got {v}.")
        return v

    @field_validator("max_validation_mae")
    @classmethod
    def validate_mae_bound(cls, v: float) -> float:
        if v <= 0.0:
            raise ValueError(f"max_validation_mae must be > 0, got {v}.")
        return v


class ForecastConfig(BaseModel):
    """Forecast target and interval settings.

    The model kind is derived from target and horizon, e.g. ``revenue_h1``.
    """

    model_config = ConfigDict(frozen=True)

    target_field: str = "revenue"
    horizon_periods: int = 1
    confidence_pct: float = 0.80
    non_negative_target: bool = True

    @field_validator("confidence_pct")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        if not 0.0 < v < 1.0:
            raise ValueError(f"confidence_pct must be in (0.0, 1.0), got {v}.")
        return v

    @field_validator("horizon_periods")
    @classmethod
    def validate_horizon(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"horizon_periods must be >= 1, got {v}.")
        return v

    @field_validator("target_field")
    @classmethod
    def validate_target(cls, v: str) -> str:
        valid = {"revenue", "sales_units", "cost"}
        if v not in valid:
            raise ValueError(f"target_field must be one of {sorted(valid)}, got '{v}'.")
        return v

    @property
    def model_kind(self) -> str:
        return f"{self.target_field}_h{self.horizon_periods}"


class FactorScale(BaseModel):
    """Clamped linear normalisation range for one risk factor.

    ``lo`` maps to 0.0 and ``hi`` maps to 1.0; values outside are clamped.
    """

    model_config = ConfigDict(frozen=True)

    lo: float = 0.0
    hi: float = 1.0

    @model_validator(mode="after")
    def validate_range(self) -> "FactorScale":
        if not self.hi > self.lo:
            raise ValueError(f"FactorScale.hi ({self.hi}) must be > lo ({self.lo}).")
        return self


RISK_FACTOR_NAMES: tuple[str, ...] = (
    "debt_ratio",
    "current_liability_ratio",
    "cost_ratio",
    "revenue_decline",
    "loss_probability",
    "forecast_uncertainty",
    "forecast_decline",
)

_DEFAULT_RATIO_WEIGHTS: dict[str, float] = {
    "debt_ratio":              0.25,
    "current_liability_ratio": 0.20,
    "cost_ratio":              0.20,
    "revenue_decline":         0.10,
    "loss_probability":        0.10,
    "forecast_uncertainty":    0.075,
    "forecast_decline":        0.075,
}

_DEFAULT_FACTOR_SCALES: dict[str, FactorScale] = {
    "debt_ratio":              FactorScale(lo=0.2, hi=1.0),
    "current_liability_ratio": FactorScale(lo=0.5, hi=2.0),
    "cost_ratio":              FactorScale(lo=0.5, hi=1.1),
    "revenue_decline":         FactorScale(lo=0.0, hi=0.5),
    "loss_probability":        FactorScale(lo=0.0, hi=1.0),
    "forecast_uncertainty":    FactorScale(lo=0.0, hi=1.0),
    "forecast_decline":        FactorScale(lo=0.0, hi=0.5),
}


class RiskConfig(BaseModel):
    """Named risk weighting set consumed by the risk scorer.

    ``class_boundaries`` are the score thresholds separating
    Low | Medium | High | Critical and must be strictly increasing in (0, 100).
    """

    model_config = ConfigDict(frozen=True)

    name: str = "default"
    ratio_weights: dict[str, float] = dict(_DEFAULT_RATIO_WEIGHTS)
    factor_scales: dict[str, FactorScale] = dict(_DEFAULT_FACTOR_SCALES)
    class_boundaries: list[float] = [25.0, 50.0, 75.0]
    simulation_iterations: int = 1000
    simulation_variation: float = 0.15
    simulation_seed: int = 7

    @field_validator("ratio_weights")
    @classmethod
    def validate_weights(cls, v: dict[str, float]) -> dict[str, float]:
        unknown = sorted(set(v) - set(RISK_FACTOR_NAMES))
        if unknown:
            raise ValueError(
                f"Unknown risk factors {unknown}. Known: {list(RISK_FACTOR_NAMES)}."
            )
        for name, w in v.items():
            if w < 0.0:
                raise ValueError(f"ratio weight '{name}' must be >= 0, got {w}.")
        if not any(w > 0.0 for w in v.values()):
            raise ValueError("At least one ratio weight must be > 0.")
        return v

    @field_validator("class_boundaries")
    @classmethod
    def validate_boundaries(cls, v: list[float]) -> list[float]:
        if len(v) != 3:
            raise ValueError(
                f"class_boundaries needs exactly 3 thresholds (4 classes), got {len(v)}."
            )
        if any(b <= 0.0 or b >= 100.0 for b in v):
            raise ValueError(f"class_boundaries must lie in (0, 100), got {v}.")
        if any(b >= c for b, c in zip(v, v[1:])):
            raise ValueError(f"class_boundaries must be strictly increasing, got {v}.")
        return v

    @field_validator("simulation_variation")
    @classmethod
    def validate_variation(cls, v: float) -> float:
        if not 0.0 <= v < 1.0:
            raise ValueError(f"simulation_variation must be in [0.0, 1.0), got {v}.")
        return v

    @model_validator(mode="after")
    def validate_scales_cover_weights(self) -> "RiskConfig":
        missing = sorted(set(self.ratio_weights) - set(self.factor_scales))
        if missing:
            raise ValueError(f"No factor_scales entry for weighted factors: {missing}.")
        return self


class RetryConfig(BaseModel):
    """Retry backoff policy for transient failures.

    Attributes:
        strategy:     "exponential" (2^n * base), "linear" (n * base),
                      or "fixed" (always base_seconds).
        base_seconds: Base delay for the first retry.
        max_seconds:  Upper cap on retry delay.
        max_retries:  Stop retrying after this many attempts (0 = no retries).
    """

    model_config = ConfigDict(frozen=True)

    strategy: str = "exponential"
    base_seconds: float = 0.5
    max_seconds: float = 30.0
    max_retries: int = 3

    @field_validator("strategy")
    @classmethod
    def valid_strategy(cls, v: str) -> str:
        valid = {"exponential", "linear", "fixed"}
        if v not in valid:
            raise ValueError(f"RetryConfig.strategy must be one of {sorted(valid)}, got '{v}'.")
        return v

    @field_validator("base_seconds", "max_seconds")
    @classmethod
    def non_negative_seconds(cls, v: float) -> float:
        if v < 0.0:
            raise ValueError(f"Delay seconds must be >= 0.0, got {v}.")
        return v

    @field_validator("max_retries")
    @classmethod
    def non_negative_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"max_retries must be >= 0, got {v}.")
        return v


class OrchestratorConfig(BaseModel):
    """Batch orchestration parameters."""

    model_config = ConfigDict(frozen=True)

    max_workers: int = 4
    retry: RetryConfig = RetryConfig()

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_workers must be >= 1, got {v}.")
        return v


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/engine.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class AppConfig(BaseModel):
    """Complete application configuration — the single source of truth.

    Constructed by ``load_config()`` which merges TOML + .env.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    data: DataConfig = DataConfig()
    registry: RegistryConfig = RegistryConfig()
    features: FeatureConfig = FeatureConfig()
    training: TrainingConfig = TrainingConfig()
    forecast: ForecastConfig = ForecastConfig()
    risk: RiskConfig = RiskConfig()
    orchestrator: OrchestratorConfig = OrchestratorConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    dotenv_path = root / ".env"
    load_dotenv(dotenv_path=dotenv_path, override=False)

    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    raw = _apply_env_overrides(raw)

    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply SALES_RISK_* env vars to the raw config dict.

    Supported overrides:
      SALES_RISK_DB_PATH       → raw["database"]["db_path"]
      SALES_RISK_ARTIFACT_DIR  → raw["registry"]["artifact_dir"]
      SALES_RISK_LOG_LEVEL     → raw["logging"]["level"]
      SALES_RISK_MAX_WORKERS   → raw["orchestrator"]["max_workers"]
      SALES_RISK_DEBUG         → raw["debug"]
    """
    if db_path := os.environ.get("SALES_RISK_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if artifact_dir := os.environ.get("SALES_RISK_ARTIFACT_DIR"):
        raw.setdefault("registry", {})["artifact_dir"] = artifact_dir

    if log_level := os.environ.get("SALES_RISK_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if max_workers := os.environ.get("SALES_RISK_MAX_WORKERS"):
        raw.setdefault("orchestrator", {})["max_workers"] = int(max_workers)

    if debug := os.environ.get("SALES_RISK_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})

    orch_raw = dict(raw.get("orchestrator", {}))
    retry_raw = orch_raw.pop("retry", {})

    risk_raw = dict(raw.get("risk", {}))
    if "factor_scales" in risk_raw:
        merged_scales = dict(_DEFAULT_FACTOR_SCALES)
        for name, scale in risk_raw["factor_scales"].items():
            merged_scales[name] = FactorScale(**scale)
        risk_raw["factor_scales"] = merged_scales

    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        data=DataConfig(**raw.get("data", {})),
        registry=RegistryConfig(**raw.get("registry", {})),
        features=FeatureConfig(**raw.get("features", {})),
        training=TrainingConfig(**raw.get("training", {})),
        forecast=ForecastConfig(**raw.get("forecast", {})),
        risk=RiskConfig(**risk_raw),
        orchestrator=OrchestratorConfig(retry=RetryConfig(**retry_raw), **orch_raw),
        logging=LoggingConfig(**raw.get("logging", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
