"""Feature engineering package for the Sales Risk Engine.

Modules
-------
registry     — PipelineSpec dataclass + PIPELINE_VERSIONS (schema source of truth)
lag_rolling  — Lag, rolling-window and momentum features over record periods
pipeline     — FeaturePipeline.fit() and the frozen FittedFeaturePipeline
quality      — DataQualityReport for raw record sets
"""
