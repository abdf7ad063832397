"""
Monte-Carlo profitability simulation.

Each iteration scales the base price and base cost independently by a
uniform factor in ``[1 - variation, 1 + variation]`` (±15% by default) and
counts the scenario as profitable when ``price - cost > 0``, a loss
otherwise.  ``loss_probability = loss_scenarios / iterations`` feeds the
``loss_probability`` risk factor.

The generator is ``numpy.random.default_rng(seed)``; the same draws are used
whatever the inputs, so for a fixed seed a higher cost (or lower price) can
never produce fewer loss scenarios.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from sales_risk_engine.models.record import Record


@dataclass(frozen=True)
class SimulationResult:
    """Outcome counts of one profitability simulation.

    Attributes:
        base_price:           Price the variations were applied to.
        base_cost:            Cost the variations were applied to.
        iterations:           Scenarios simulated.
        profitable_scenarios: Scenarios with price - cost > 0.
        loss_scenarios:       All other scenarios.
    """

    base_price: float
    base_cost: float
    iterations: int
    profitable_scenarios: int
    loss_scenarios: int

    @property
    def loss_probability(self) -> float:
        return self.loss_scenarios / self.iterations


def simulate_profitability(
    base_price: float,
    base_cost: float,
    iterations: int = 1000,
    variation: float = 0.15,
    seed: int = 7,
) -> SimulationResult:
    """Run the simulation.

    Raises:
        ValueError: ``iterations < 1`` or ``variation`` outside [0, 1).
    """
    if iterations < 1:
        raise ValueError(f"iterations must be >= 1, got {iterations}.")
    if not 0.0 <= variation < 1.0:
        raise ValueError(f"variation must be in [0.0, 1.0), got {variation}.")

    rng = np.random.default_rng(seed)
    price_factor = rng.uniform(1.0 - variation, 1.0 + variation, size=iterations)
    cost_factor  = rng.uniform(1.0 - variation, 1.0 + variation, size=iterations)

    margin = base_price * price_factor - base_cost * cost_factor
    profitable = int(np.count_nonzero(margin > 0.0))
    return SimulationResult(
        base_price=base_price,
        base_cost=base_cost,
        iterations=iterations,
        profitable_scenarios=profitable,
        loss_scenarios=iterations - profitable,
    )


def price_and_cost(record: Record) -> Optional[tuple[float, float]]:
    """Simulation inputs for a record: unit price/cost, else revenue/cost."""
    if record.unit_price is not None and record.unit_cost is not None:
        return record.unit_price, record.unit_cost
    if record.revenue is not None and record.cost is not None:
        return record.revenue, record.cost
    return None
