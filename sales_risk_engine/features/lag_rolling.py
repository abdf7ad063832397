"""
Lag, rolling-window and momentum features over an entity's record history.

How it works
------------
The caller passes one entity's target values ordered oldest → newest (one
value per record period, ``None`` where the record lacked it).  For position
``i``:

a. **Lag N**: ``values[i - N]``; ``None`` before the series has N periods.
b. **Rolling mean N**: mean of non-None values in ``values[i-N+1 .. i]``.
c. **Rolling std N**: ``sqrt(max(0.0, E[x²] - E[x]²))`` over the same window.
   The clamp prevents negative values from floating-point cancellation.
d. **Pct change N**: ``(v_i - v_{i-N}) / v_{i-N}``; ``None`` if either is
   missing or the base is 0.

Only positions ``<= i`` are read, so no feature can see a later period.

Missing data handling
---------------------
- A window with zero non-None values produces None for mean and std.
- A window with exactly one non-None value produces that value and 0.0 std.
- ``None`` outputs are imputed later by the fitted pipeline (training median).
"""

from __future__ import annotations

import math
from typing import Optional, Sequence


def compute_lag_rolling_features(
    values: Sequence[Optional[float]],
    prefix: str,
    lag_steps: Sequence[int],
    rolling_windows: Sequence[int],
) -> list[dict[str, Optional[float]]]:
    """Compute lag / rolling / momentum columns for every period of one series.

    Args:
        values:          Target values, oldest first.
        prefix:          Column name prefix (the target field name).
        lag_steps:       Lags to emit, in periods.
        rolling_windows: Windows for rolling stats and pct change.

    Returns:
        One dict per input position; keys follow
        ``PipelineSpec.derived_numeric_columns``.
    """
    result: list[dict[str, Optional[float]]] = []
    for i, current in enumerate(values):
        out: dict[str, Optional[float]] = {}

        # ── Lags ────────────────────────────────────────────────────────────
        for n in lag_steps:
            out[f"{prefix}_lag_{n}"] = values[i - n] if i - n >= 0 else None

        # ── Rolling stats ───────────────────────────────────────────────────
        for n in rolling_windows:
            window = values[max(0, i - n + 1): i + 1]
            valid = [v for v in window if v is not None]
            mean_key = f"{prefix}_roll_mean_{n}"
            std_key  = f"{prefix}_roll_std_{n}"
            if not valid:
                out[mean_key] = None
                out[std_key]  = None
            elif len(valid) == 1:
                out[mean_key] = valid[0]
                out[std_key]  = 0.0
            else:
                mu = sum(valid) / len(valid)
                mu2 = sum(v * v for v in valid) / len(valid)
                out[mean_key] = mu
                out[std_key]  = math.sqrt(max(0.0, mu2 - mu * mu))

        # ── Momentum ────────────────────────────────────────────────────────
        for n in rolling_windows:
            base = values[i - n] if i - n >= 0 else None
            pct_key = f"{prefix}_pct_change_{n}"
            if current is None or base is None or base == 0.0:
                out[pct_key] = None
            else:
                out[pct_key] = (current - base) / base

        result.append(out)
    return result
