"""
Sales Risk Engine — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute action (DB init, training, batch scoring, analytics).
  5. Report result to stdout.

Install and run::

    pip install -e .
    sales-risk-engine --help
    sales-risk-engine init-db
    sales-risk-engine validate-config
    sales-risk-engine train --file data/raw/records.csv
    sales-risk-engine run-batch --file data/raw/records.csv --format parquet
    sales-risk-engine list-models
    sales-risk-engine correlation --entity B00X1 --future-ad-spend 2500
    sales-risk-engine simulate --price 19.99 --cost 14.50
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="sales-risk-engine",
    help="Sales forecasting and financial risk scoring engine.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from sales_risk_engine.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    from sales_risk_engine.utils.logging import configure_logging
    configure_logging(config.logging)


def _open_registry(config, db_path: str):
    """Registry backed by the SQLite index and on-disk joblib artifacts."""
    from sales_risk_engine.registry.model_registry import ModelRegistry
    from sales_risk_engine.registry.stores import SqliteModelStore

    store = SqliteModelStore(
        db_path,
        config.registry.artifact_dir,
        verify_checksums=config.registry.verify_checksums,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    )
    return ModelRegistry(store)


def _load_records_or_exit(path: Path):
    from sales_risk_engine.sources.csv_source import parse_records_csv

    try:
        return parse_records_csv(path)
    except (FileNotFoundError, ValueError) as exc:
        typer.echo(f"[ERROR] CSV parse failed:\n{exc}", err=True)
        raise typer.Exit(code=1)


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(
        None, "--db-path", help="Override DB path from config (e.g. data/db/test.db)."
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Initialize the SQLite database and apply the full schema.

    Safe to run multiple times — all DDL uses IF NOT EXISTS.
    """
    from sales_risk_engine.db.connection import get_connection
    from sales_risk_engine.db.schema import ALL_TABLE_NAMES, apply_schema

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")

    with get_connection(
        target_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        apply_schema(conn)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to TOML config file (default: config/default.toml)."
    ),
    show_full: bool = typer.Option(False, "--full", help="Print full config including all fields."),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:     {config.database.db_path}")
    typer.echo(f"  Artifact dir:      {config.registry.artifact_dir}")
    typer.echo(f"  Pipeline version:  {config.features.pipeline_version}")
    typer.echo(f"  Model kind:        {config.forecast.model_kind}")
    typer.echo(f"  Model family:      {config.training.model_family}")
    typer.echo(f"  Risk weighting:    {config.risk.name}")
    typer.echo(f"  Class boundaries:  {config.risk.class_boundaries}")
    typer.echo(f"  Max workers:       {config.orchestrator.max_workers}")
    typer.echo(f"  Log level:         {config.logging.level}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config valid.")


@app.command("train")
def train(
    records_file: Optional[str] = typer.Option(
        None, "--file", "-f", help="Records CSV. Defaults to config.data.records_csv."
    ),
    family: Optional[str] = typer.Option(
        None, "--family", help="Override training.model_family (lightgbm | linear)."
    ),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Fit, validate and register a forecasting model from a records CSV.

    \b
    Steps:
      1. Parse and validate every CSV row.
      2. Fit the feature pipeline and build labeled examples.
      3. Train, check acceptance bounds, register the accepted model.

    A rejected fit registers nothing and exits with code 1.
    """
    from sales_risk_engine.config import TrainingConfig
    from sales_risk_engine.errors import EngineError, TrainingError
    from sales_risk_engine.pipeline.train import TrainStage

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    if family:
        try:
            training = TrainingConfig(**{**config.training.model_dump(), "model_family": family})
        except ValueError as exc:
            typer.echo(f"[ERROR] {exc}", err=True)
            raise typer.Exit(code=1)
        config = config.model_copy(update={"training": training})

    target_db = db_path or config.database.db_path
    path = Path(records_file) if records_file else Path(config.data.records_csv)
    typer.echo(f"Loading records from: {path}")
    records = _load_records_or_exit(path)
    typer.echo(f"  Parsed {len(records)} record(s).")

    registry = _open_registry(config, target_db)
    try:
        run = TrainStage(config, registry, db_path=target_db).run(records=records)
    except TrainingError as exc:
        typer.echo(f"[ERROR] Training rejected: {exc}", err=True)
        for name, value in sorted(exc.metrics.items()):
            typer.echo(f"  {name}: {value:.4f}", err=True)
        raise typer.Exit(code=1)
    except EngineError as exc:
        typer.echo(f"[ERROR] {exc.error_kind}: {exc}", err=True)
        raise typer.Exit(code=1)

    meta = registry.get_by_version(run.model_version).metadata
    typer.echo(f"  Model version: {meta.version_id}")
    typer.echo(f"  Family:        {meta.model_family}")
    for name in ("mae", "rmse", "mape", "r2"):
        if name in meta.metrics:
            typer.echo(f"  {name.upper():<5}          {meta.metrics[name]:.4f}")
    typer.echo("[OK] Model registered.")


@app.command("run-batch")
def run_batch(
    records_file: Optional[str] = typer.Option(
        None, "--file", "-f", help="Records CSV. Defaults to config.data.records_csv."
    ),
    entity: Optional[list[str]] = typer.Option(
        None, "--entity", "-e", help="Entity id to score. Repeatable; all entities if omitted."
    ),
    export_format: str = typer.Option(
        "csv", "--format", help="Export format: csv | json | parquet."
    ),
    export_dir: Optional[str] = typer.Option(
        None, "--export-dir", help="Override config.data.export_dir."
    ),
    no_persist: bool = typer.Option(
        False, "--no-persist", help="Do not write results to the database."
    ),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Forecast and risk-score entities with the latest accepted model.

    Failed entities are reported individually; the command exits with
    code 1 only when no entity could be scored.
    """
    from sales_risk_engine.pipeline.orchestrator import OUTCOME_FAILED, BatchOrchestrator
    from sales_risk_engine.reporting.export import (
        EXPORT_COLUMNS,
        export_to_csv,
        export_to_json,
        export_to_parquet,
        flatten_results_for_export,
    )
    from sales_risk_engine.reporting.formatters import format_batch_summary
    from sales_risk_engine.sinks import SqliteResultSink
    from sales_risk_engine.sources.csv_source import CsvRecordSource

    if export_format not in ("csv", "json", "parquet"):
        typer.echo(
            f"[ERROR] Unsupported format '{export_format}'. Use csv, json or parquet.", err=True
        )
        raise typer.Exit(code=1)

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_db = db_path or config.database.db_path
    path = Path(records_file) if records_file else Path(config.data.records_csv)
    source = CsvRecordSource(path)
    try:
        entity_ids = list(entity) if entity else source.list_entity_ids()
    except (FileNotFoundError, ValueError) as exc:
        typer.echo(f"[ERROR] CSV parse failed:\n{exc}", err=True)
        raise typer.Exit(code=1)

    sink = None
    if not no_persist:
        sink = SqliteResultSink(
            target_db,
            wal_mode=config.database.wal_mode,
            busy_timeout_ms=config.database.busy_timeout_ms,
        )

    orchestrator = BatchOrchestrator(
        config,
        source,
        _open_registry(config, target_db),
        sink=sink,
        db_path=None if no_persist else target_db,
    )
    batch = orchestrator.run_batch(entity_ids)
    typer.echo(format_batch_summary(batch))

    rows = flatten_results_for_export(batch)
    out_dir = Path(export_dir or config.data.export_dir)
    out_path = out_dir / f"results_{batch.run.run_id}.{export_format}"
    if export_format == "csv":
        export_to_csv(rows, out_path, fieldnames=EXPORT_COLUMNS)
    elif export_format == "json":
        export_to_json(rows, out_path)
    else:
        export_to_parquet(rows, out_path)
    typer.echo(f"\n  Exported {len(rows)} row(s) to {out_path}")

    if batch.outcome == OUTCOME_FAILED:
        typer.echo("[ERROR] No entity could be scored.", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"[OK] Batch {batch.outcome}.")


@app.command("list-models")
def list_models(
    kind: Optional[str] = typer.Option(None, "--kind", help="Filter by model kind, e.g. revenue_h1."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """List registered model versions, oldest first."""
    from sales_risk_engine.reporting.formatters import format_model_list

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    registry = _open_registry(config, db_path or config.database.db_path)
    typer.echo(format_model_list(registry.list_versions(kind)))


@app.command("correlation")
def correlation(
    entity: str = typer.Option(..., "--entity", "-e", help="Entity id to analyse."),
    records_file: Optional[str] = typer.Option(
        None, "--file", "-f", help="Records CSV. Defaults to config.data.records_csv."
    ),
    future_ad_spend: Optional[float] = typer.Option(
        None, "--future-ad-spend", help="Also project units sold at this ad spend."
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Correlate ad spend with units sold for one entity."""
    from sales_risk_engine.errors import SchemaError
    from sales_risk_engine.reporting.formatters import format_correlation
    from sales_risk_engine.risk.correlation import (
        ad_impact_correlation,
        project_sales_from_ad_spend,
    )

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    path = Path(records_file) if records_file else Path(config.data.records_csv)
    records = [r for r in _load_records_or_exit(path) if r.entity_id == entity]

    try:
        result = ad_impact_correlation(entity, records)
        projection = None
        if future_ad_spend is not None:
            projection = project_sales_from_ad_spend(entity, records, future_ad_spend)
    except SchemaError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(format_correlation(result, projection))


@app.command("simulate")
def simulate(
    price: Optional[float] = typer.Option(None, "--price", help="Base unit price."),
    cost: Optional[float] = typer.Option(None, "--cost", help="Base unit cost."),
    entity: Optional[str] = typer.Option(
        None, "--entity", "-e", help="Use the latest record of this entity instead of --price/--cost."
    ),
    records_file: Optional[str] = typer.Option(
        None, "--file", "-f", help="Records CSV (with --entity)."
    ),
    iterations: Optional[int] = typer.Option(None, "--iterations", help="Override risk.simulation_iterations."),
    seed: Optional[int] = typer.Option(None, "--seed", help="Override risk.simulation_seed."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Monte-Carlo profitability simulation (price and cost varied ±15%)."""
    from sales_risk_engine.reporting.formatters import format_simulation
    from sales_risk_engine.risk.simulation import price_and_cost, simulate_profitability

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    if entity is not None:
        path = Path(records_file) if records_file else Path(config.data.records_csv)
        records = [r for r in _load_records_or_exit(path) if r.entity_id == entity]
        if not records:
            typer.echo(f"[ERROR] No records for entity '{entity}'.", err=True)
            raise typer.Exit(code=1)
        inputs = price_and_cost(max(records, key=lambda r: r.observed_at))
        if inputs is None:
            typer.echo(
                f"[ERROR] Entity '{entity}' has no unit_price/unit_cost or revenue/cost.",
                err=True,
            )
            raise typer.Exit(code=1)
        price, cost = inputs
    elif price is None or cost is None:
        typer.echo("[ERROR] Pass --price and --cost, or --entity.", err=True)
        raise typer.Exit(code=1)

    risk = config.risk
    try:
        result = simulate_profitability(
            price,
            cost,
            iterations=iterations if iterations is not None else risk.simulation_iterations,
            variation=risk.simulation_variation,
            seed=seed if seed is not None else risk.simulation_seed,
        )
    except ValueError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(format_simulation(result))


if __name__ == "__main__":
    app()
