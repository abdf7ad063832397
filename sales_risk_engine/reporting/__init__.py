"""
sales_risk_engine.reporting — Flat exports and terminal formatting of results.

Modules:
  export     — Batch result flattening and CSV/JSON/Parquet writers.
  formatters — ASCII terminal table formatters for Typer CLI commands.
"""
