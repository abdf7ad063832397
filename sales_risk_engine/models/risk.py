"""
Risk score output model.

``RiskScore.score`` is always within ``[SCORE_MIN, SCORE_MAX]``.
``RiskClass`` is ordered: comparisons follow Low < Medium < High < Critical.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

SCORE_MIN = 0.0
SCORE_MAX = 100.0

FLAG_DEGRADED = "DEGRADED"


class RiskClass(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_CLASS_ORDER.index(self)

    # str defines its own ordering; override all four so ranks win.
    def __lt__(self, other: object) -> bool:
        if not isinstance(other, RiskClass):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, RiskClass):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, RiskClass):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, RiskClass):
            return NotImplemented
        return self.rank >= other.rank


_RISK_CLASS_ORDER: list[RiskClass] = [
    RiskClass.LOW,
    RiskClass.MEDIUM,
    RiskClass.HIGH,
    RiskClass.CRITICAL,
]


class RiskFactor(BaseModel):
    """One weighted contribution to a risk score.

    Attributes:
        name:         Factor name, e.g. ``"debt_ratio"``.
        raw_value:    Ratio as computed from inputs (may be ``inf``).
        normalized:   Raw value mapped into [0, 1].
        weight:       Configured weight.
        contribution: Points this factor adds to the final score.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    raw_value: float
    normalized: float
    weight: float
    contribution: float


class RiskScore(BaseModel):
    """Bounded risk measure plus ordered risk class for one entity.

    Attributes:
        entity_id:       Entity scored.
        score:           Final score in [0, 100].
        risk_class:      Class from the configured boundaries.
        factors:         Factors that contributed, in evaluation order.
        missing_factors: Weighted factors that could not be computed.
        flags:           Status flags; ``"DEGRADED"`` for ratio-only scores.
        config_name:     Name of the risk weighting set used.
        model_version:   Model behind the forecast factors, if any.
    """

    model_config = ConfigDict(frozen=True)

    entity_id: str
    score: float
    risk_class: RiskClass
    factors: tuple[RiskFactor, ...]
    missing_factors: tuple[str, ...] = ()
    flags: tuple[str, ...] = ()
    config_name: str = "default"
    model_version: Optional[str] = None

    @field_validator("score")
    @classmethod
    def validate_score_range(cls, v: float) -> float:
        if not SCORE_MIN <= v <= SCORE_MAX:
            raise ValueError(f"score must be in [{SCORE_MIN}, {SCORE_MAX}], got {v}.")
        return v

    @property
    def degraded(self) -> bool:
        return FLAG_DEGRADED in self.flags

    def factor(self, name: str) -> Optional[RiskFactor]:
        return next((f for f in self.factors if f.name == name), None)
