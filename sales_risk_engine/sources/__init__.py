"""Record data sources (in-memory and CSV)."""
