"""
ML forecasting layer — pluggable estimators behind one immutable Model type.

Modules
-------
metrics     : MAE, RMSE, MAPE, R² and residual quantiles.
splits      : Time-based and seeded random validation splits.
estimators  : LightGBMEstimator and LinearEstimator (OLS), registered by family name.
model       : Model — metadata + fitted estimator + fitted feature pipeline.
trainer     : ModelTrainer — split, fit, acceptance check, registration.
predictor   : InferenceEngine — FeatureVector + Model → Forecast.
"""
