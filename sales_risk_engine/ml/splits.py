"""
Train / validation splits for labeled feature vectors.

Time split (default)
--------------------
Picks a cutoff date so that roughly ``validation_fraction`` of the examples
have ``as_of`` after it.  Then:

  training   = examples with ``as_of <= cutoff`` AND ``label_date <= cutoff``
  validation = examples with ``as_of >  cutoff``

Examples whose features are before the cutoff but whose label lies after it
belong to neither partition: training on them would let the label leak
information from the validation period.

Random split
------------
Seeded ``numpy.random.Generator`` permutation.  Only appropriate when the
examples are not a time series (e.g. cross-sectional entities).
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional, Sequence

import numpy as np

from sales_risk_engine.models.features import LabeledVector

logger = logging.getLogger(__name__)

Split = tuple[list[LabeledVector], list[LabeledVector]]


def time_split(
    examples: Sequence[LabeledVector],
    validation_fraction: float,
) -> tuple[list[LabeledVector], list[LabeledVector], Optional[date]]:
    """Split by as-of date; returns (train, validation, cutoff).

    The cutoff is the latest distinct as-of date that leaves at least
    ``validation_fraction`` of examples after it.  Returns an empty
    validation partition (and ``None`` cutoff) when there are fewer than two
    distinct as-of dates.
    """
    dates = sorted({ex.vector.as_of for ex in examples})
    if len(dates) < 2:
        return list(examples), [], None

    target_val = max(1, int(round(len(examples) * validation_fraction)))
    cutoff = dates[0]
    for d in reversed(dates[:-1]):
        n_after = sum(1 for ex in examples if ex.vector.as_of > d)
        if n_after >= target_val:
            cutoff = d
            break

    train = [ex for ex in examples if ex.vector.as_of <= cutoff and ex.label_date <= cutoff]
    val   = [ex for ex in examples if ex.vector.as_of > cutoff]
    logger.debug(
        "Time split at %s: %d train, %d val, %d straddling examples excluded.",
        cutoff, len(train), len(val), len(examples) - len(train) - len(val),
    )
    return train, val, cutoff


def random_split(
    examples: Sequence[LabeledVector],
    validation_fraction: float,
    seed: int,
) -> Split:
    """Seeded random split; returns (train, validation)."""
    n = len(examples)
    if n < 2:
        return list(examples), []
    rng = np.random.default_rng(seed)
    order = rng.permutation(n)
    n_val = min(n - 1, max(1, int(round(n * validation_fraction))))
    val_idx = set(int(i) for i in order[:n_val])
    train = [ex for i, ex in enumerate(examples) if i not in val_idx]
    val   = [ex for i, ex in enumerate(examples) if i in val_idx]
    return train, val
