"""Sales forecasting and financial risk scoring engine."""

__version__ = "0.1.0"
