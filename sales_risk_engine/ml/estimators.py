"""
Pluggable model families.

Every family implements the same small contract:

    fit(X_train, y_train, X_val, y_val, feature_names) -> None
    predict(X) -> numpy.ndarray
    hyperparameters -> dict

and is registered by name in ``MODEL_FAMILIES``.  The trainer builds one via
``build_estimator(family, training_config)`` and never branches on family.

Families
--------
lightgbm
  Gradient-boosted trees.  ``regression_l1`` (MAE loss) is robust to
  outlier periods such as one-off bulk orders.  Early stopping on the
  validation partition when one is supplied.

linear
  Ordinary least squares with intercept, solved with ``numpy.linalg.lstsq``.
  Reports in-sample R² like a classic OLS summary.  A useful baseline and the
  right choice when an entity set is too small for trees.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Protocol

import numpy as np

from sales_risk_engine.config import TrainingConfig
from sales_risk_engine.ml.metrics import r_squared

logger = logging.getLogger(__name__)


class Estimator(Protocol):
    family: str

    @property
    def hyperparameters(self) -> dict[str, Any]: ...

    def fit(
        self,
        X_train: np.ndarray,
        y_train: np.ndarray,
        X_val: Optional[np.ndarray],
        y_val: Optional[np.ndarray],
        feature_names: list[str],
    ) -> None: ...

    def predict(self, X: np.ndarray) -> np.ndarray: ...


def booster_feature_names(n: int) -> list[str]:
    """Positional column names ``f0 .. f{n-1}`` handed to LightGBM."""
    return [f"f{i}" for i in range(n)]


class LightGBMEstimator:
    """LightGBM regressor over z-scaled feature vectors."""

    family = "lightgbm"

    def __init__(
        self,
        num_leaves: int = 15,
        learning_rate: float = 0.05,
        n_estimators: int = 200,
        min_child_samples: int = 5,
        feature_fraction: float = 0.9,
        bagging_fraction: float = 0.8,
        bagging_freq: int = 5,
        early_stopping_rounds: int = 20,
        seed: int = 42,
    ) -> None:
        self._hyperparams: dict[str, Any] = {
            "num_leaves":        num_leaves,
            "learning_rate":     learning_rate,
            "n_estimators":      n_estimators,
            "min_child_samples": min_child_samples,
            "feature_fraction":  feature_fraction,
            "bagging_fraction":  bagging_fraction,
            "bagging_freq":      bagging_freq,
            "seed":              seed,
        }
        self._early_stopping_rounds = early_stopping_rounds
        self._booster = None       # lgb.Booster; None until fit()
        self._feature_names: list[str] = []

    @property
    def hyperparameters(self) -> dict[str, Any]:
        return dict(self._hyperparams)

    @property
    def is_fitted(self) -> bool:
        return self._booster is not None

    @property
    def feature_names(self) -> list[str]:
        """Engine column names, in booster column order (``f0`` is the first)."""
        return list(self._feature_names)

    @property
    def best_iteration(self) -> int:
        """Boosting round kept by early stopping; 0 when it did not run."""
        if self._booster is None:
            return 0
        return int(self._booster.best_iteration)

    def fit(
        self,
        X_train: np.ndarray,
        y_train: np.ndarray,
        X_val: Optional[np.ndarray],
        y_val: Optional[np.ndarray],
        feature_names: list[str],
    ) -> None:
        import lightgbm as lgb

        params = {
            "objective":         "regression_l1",
            "metric":            "mae",
            "num_leaves":        self._hyperparams["num_leaves"],
            "learning_rate":     self._hyperparams["learning_rate"],
            "feature_fraction":  self._hyperparams["feature_fraction"],
            "bagging_fraction":  self._hyperparams["bagging_fraction"],
            "bagging_freq":      self._hyperparams["bagging_freq"],
            "min_child_samples": self._hyperparams["min_child_samples"],
            "seed":              self._hyperparams["seed"],
            "deterministic":     True,
            "verbose":           -1,
            "n_jobs":            1,
        }
        # One-hot names embed raw category values, which may hold characters
        # LightGBM rejects; the booster sees positional names only.
        self._feature_names = list(feature_names)
        safe_names = booster_feature_names(len(feature_names))
        dtrain = lgb.Dataset(X_train, label=y_train, feature_name=safe_names, free_raw_data=False)

        callbacks = [lgb.log_evaluation(period=-1)]
        valid_sets  = [dtrain]
        valid_names = ["train"]
        if X_val is not None and len(X_val):
            dval = lgb.Dataset(
                X_val, label=y_val, feature_name=safe_names,
                reference=dtrain, free_raw_data=False,
            )
            valid_sets  = [dtrain, dval]
            valid_names = ["train", "val"]
            callbacks.append(
                lgb.early_stopping(stopping_rounds=self._early_stopping_rounds, verbose=False)
            )

        self._booster = lgb.train(
            params,
            dtrain,
            num_boost_round=self._hyperparams["n_estimators"],
            valid_sets=valid_sets,
            valid_names=valid_names,
            callbacks=callbacks,
        )
        logger.debug("LightGBM fit: best_iteration=%s", self._booster.best_iteration)

    def predict(self, X: np.ndarray) -> np.ndarray:
        if self._booster is None:
            raise RuntimeError("LightGBMEstimator.predict() called before fit().")
        return np.asarray(self._booster.predict(X), dtype=np.float64)


class LinearEstimator:
    """Ordinary least squares ``y = b0 + X·b``."""

    family = "linear"

    def __init__(self) -> None:
        self._coef: Optional[np.ndarray] = None
        self._intercept: float = 0.0
        self.train_r2: Optional[float] = None

    @property
    def hyperparameters(self) -> dict[str, Any]:
        return {}

    @property
    def coefficients(self) -> Optional[np.ndarray]:
        return None if self._coef is None else self._coef.copy()

    @property
    def intercept(self) -> float:
        return self._intercept

    def fit(
        self,
        X_train: np.ndarray,
        y_train: np.ndarray,
        X_val: Optional[np.ndarray],
        y_val: Optional[np.ndarray],
        feature_names: list[str],
    ) -> None:
        X = np.asarray(X_train, dtype=np.float64)
        y = np.asarray(y_train, dtype=np.float64)
        design = np.column_stack([np.ones(len(X)), X])
        beta, *_ = np.linalg.lstsq(design, y, rcond=None)
        self._intercept = float(beta[0])
        self._coef = beta[1:]
        self.train_r2 = r_squared(y, self.predict(X))
        logger.debug("OLS fit: intercept=%.4f  train R²=%.4f", self._intercept, self.train_r2)

    def predict(self, X: np.ndarray) -> np.ndarray:
        if self._coef is None:
            raise RuntimeError("LinearEstimator.predict() called before fit().")
        return self._intercept + np.asarray(X, dtype=np.float64) @ self._coef


# ── Family registry ───────────────────────────────────────────────────────────


def _build_lightgbm(cfg: TrainingConfig) -> Estimator:
    return LightGBMEstimator(
        num_leaves=cfg.num_leaves,
        learning_rate=cfg.learning_rate,
        n_estimators=cfg.n_estimators,
        min_child_samples=cfg.min_child_samples,
        feature_fraction=cfg.feature_fraction,
        bagging_fraction=cfg.bagging_fraction,
        bagging_freq=cfg.bagging_freq,
        early_stopping_rounds=cfg.early_stopping_rounds,
        seed=cfg.seed,
    )


def _build_linear(cfg: TrainingConfig) -> Estimator:
    return LinearEstimator()


MODEL_FAMILIES: dict[str, Callable[[TrainingConfig], Estimator]] = {
    "lightgbm": _build_lightgbm,
    "linear":   _build_linear,
}


def build_estimator(family: str, cfg: TrainingConfig) -> Estimator:
    """Instantiate an unfitted estimator for a registered family.

    Raises:
        ValueError: If the family is not registered.
    """
    try:
        factory = MODEL_FAMILIES[family]
    except KeyError:
        raise ValueError(
            f"Unknown model family '{family}'. Registered: {sorted(MODEL_FAMILIES)}."
        ) from None
    return factory(cfg)
