"""
ASCII terminal formatters for CLI commands.

All formatters take engine result objects and return plain multi-line
strings suitable for ``typer.echo()``.

No third-party dependencies (no ``rich``, no ``colorama``).
"""

from __future__ import annotations

from sales_risk_engine.models.meta import ModelMetadata
from sales_risk_engine.pipeline.orchestrator import BatchResult
from sales_risk_engine.risk.correlation import AdSpendProjection, CorrelationResult
from sales_risk_engine.risk.simulation import SimulationResult


def _fmt_num(value: float | None, spec: str = ".2f") -> str:
    if value is None:
        return "N/A"
    return format(value, spec)


# ── Batch summary ─────────────────────────────────────────────────────────────


def format_batch_summary(batch: BatchResult, top_n: int = 25) -> str:
    """Format a batch result: counts header plus one row per entity.

    Rows are sorted by risk score descending; failed and cancelled entities
    follow at the end with their error kind.
    """
    run = batch.run
    lines: list[str] = []
    lines.append("")
    lines.append("=== Batch Summary ===")
    lines.append(f"  Run:      {run.run_id}")
    lines.append(f"  Status:   {run.status.value}  (outcome: {batch.outcome})")
    lines.append(f"  Model:    {batch.model_version or 'none'}")
    lines.append(
        f"  Entities: {len(batch.entity_results)}  "
        f"succeeded={batch.n_succeeded}  degraded={batch.n_degraded}  "
        f"failed={batch.n_failed}  cancelled={batch.n_cancelled}"
    )

    if not batch.entity_results:
        lines.append("")
        lines.append("  (no entities in batch)")
        return "\n".join(lines)

    scored = sorted(
        (r for r in batch.entity_results if r.risk_score is not None),
        key=lambda r: -r.risk_score.score,  # type: ignore[union-attr]
    )
    others = [r for r in batch.entity_results if r.risk_score is None]

    lines.append("")
    header = (
        f"  {'Entity':<24}  {'Status':<9}  {'Score':>6}  {'Class':<8}  "
        f"{'Forecast':>12}  {'Interval':>25}"
    )
    lines.append(header)
    lines.append("  " + "-" * (len(header) - 2))

    for r in scored[:top_n]:
        rs = r.risk_score
        fc = r.forecast
        point = _fmt_num(fc.point_estimate) if fc else "-"
        interval = f"[{fc.lower:.2f}, {fc.upper:.2f}]" if fc else "-"
        lines.append(
            f"  {r.entity_id[:24]:<24}  {r.status:<9}  {rs.score:>6.1f}  "  # type: ignore[union-attr]
            f"{rs.risk_class.value:<8}  {point:>12}  {interval:>25}"  # type: ignore[union-attr]
        )
    if len(scored) > top_n:
        lines.append(f"  ... {len(scored) - top_n} more scored entities")

    for r in others:
        detail = r.error_kind or r.status
        lines.append(f"  {r.entity_id[:24]:<24}  {r.status:<9}  {detail}")
        if r.error_message:
            lines.append(f"      {r.error_message[:100]}")

    sink_errors = [r for r in batch.entity_results if r.sink_error]
    if sink_errors:
        lines.append("")
        lines.append(f"  [WARN] {len(sink_errors)} result(s) were not persisted by the sink.")

    return "\n".join(lines)


# ── Model registry ────────────────────────────────────────────────────────────


def format_model_list(models: list[ModelMetadata]) -> str:
    """Format registered model versions, oldest first."""
    lines: list[str] = ["", "=== Registered Models ==="]
    if not models:
        lines.append("  (no models registered — run 'train' first)")
        return "\n".join(lines)

    header = (
        f"  {'Version':<46}  {'Family':<8}  {'Pipeline':<18}  "
        f"{'MAE':>10}  {'R2':>7}  {'Trained at':<19}"
    )
    lines.append(header)
    lines.append("  " + "-" * (len(header) - 2))
    for m in models:
        lines.append(
            f"  {m.version_id[:46]:<46}  {m.model_family:<8}  "
            f"{m.feature_pipeline_version[:18]:<18}  "
            f"{_fmt_num(m.metrics.get('mae')):>10}  "
            f"{_fmt_num(m.metrics.get('r2'), '.3f'):>7}  "
            f"{m.trained_at:%Y-%m-%d %H:%M:%S}"
        )
    return "\n".join(lines)


# ── Analytics ─────────────────────────────────────────────────────────────────


def format_correlation(
    result: CorrelationResult,
    projection: AdSpendProjection | None = None,
) -> str:
    lines = [
        "",
        "=== Ad Spend vs. Units Sold ===",
        f"  Entity:      {result.entity_id}",
        f"  Records:     {result.n_records}",
        f"  Pearson r:   {result.coefficient:+.4f}",
        f"  Band:        {result.band}",
        f"  {result.interpretation}",
    ]
    if projection is not None:
        lines += [
            "",
            f"  Projection at ad spend {projection.future_ad_spend:,.2f}:",
            f"    units = {projection.intercept:.3f} + {projection.slope:.5f} * ad_spend",
            f"    predicted units: {projection.predicted_units:,.1f}  (R2 {projection.r_squared:.3f})",
        ]
    return "\n".join(lines)


def format_simulation(result: SimulationResult) -> str:
    return "\n".join([
        "",
        "=== Profitability Simulation ===",
        f"  Base price:  {result.base_price:,.2f}",
        f"  Base cost:   {result.base_cost:,.2f}",
        f"  Iterations:  {result.iterations}",
        f"  Profitable:  {result.profitable_scenarios}",
        f"  Loss:        {result.loss_scenarios}",
        f"  Loss probability: {result.loss_probability:.1%}",
    ])
