"""
Raw historical observations and per-entity snapshots.

``Record`` is one period's sales/financial observation for a business entity.
Numeric fields are ``Optional`` — the feature pipeline imputes missing values
and the risk scorer skips factors whose inputs are absent.  Only the fields a
pipeline version declares as *required* must be present; that check happens
in the feature pipeline (raising ``SchemaError``), not here, so that a data
source can hand over incomplete rows and have them reported per entity.

Records are frozen: once ingested they are never mutated.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

NUMERIC_FIELDS: tuple[str, ...] = (
    "revenue",
    "cost",
    "sales_units",
    "ad_spend",
    "assets",
    "liabilities",
    "current_assets",
    "current_liabilities",
    "unit_price",
    "unit_cost",
)

CATEGORICAL_FIELDS: tuple[str, ...] = ("sector", "region")

UNKNOWN_CATEGORY = "unknown"


class Record(BaseModel):
    """One historical sales/financial observation.

    Attributes:
        entity_id:           Business entity identifier (client, product, company).
        observed_at:         Period date the observation refers to.
        revenue:             Total sales in money for the period.
        cost:                Total cost for the period.
        sales_units:         Units sold in the period.
        ad_spend:            Advertising spend in the period.
        assets:              Total assets at period end.
        liabilities:         Total liabilities at period end.
        current_assets:      Current assets at period end.
        current_liabilities: Current liabilities at period end.
        unit_price:          Selling price per unit.
        unit_cost:           Cost per unit.
        sector:              Business sector (categorical).
        region:              Sales region (categorical).
    """

    model_config = ConfigDict(frozen=True)

    entity_id: str
    observed_at: date
    revenue: Optional[float] = None
    cost: Optional[float] = None
    sales_units: Optional[float] = None
    ad_spend: Optional[float] = None
    assets: Optional[float] = None
    liabilities: Optional[float] = None
    current_assets: Optional[float] = None
    current_liabilities: Optional[float] = None
    unit_price: Optional[float] = None
    unit_cost: Optional[float] = None
    sector: Optional[str] = None
    region: Optional[str] = None

    @field_validator("entity_id")
    @classmethod
    def validate_entity_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("entity_id must not be empty.")
        return v.strip()

    @field_validator("sector", "region")
    @classmethod
    def normalise_category(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().lower()
        return v or None

    def get(self, field: str) -> Optional[float | str]:
        """Return a field value by name (``None`` when missing or unknown)."""
        return getattr(self, field, None)


class EntitySnapshot(BaseModel):
    """An entity's records ordered by ``observed_at`` — the risk scorer input.

    Attributes:
        entity_id: Entity identifier.
        records:   Records sorted oldest → newest (sorted on construction).
    """

    model_config = ConfigDict(frozen=True)

    entity_id: str
    records: tuple[Record, ...]

    @field_validator("records")
    @classmethod
    def sort_records(cls, v: tuple[Record, ...]) -> tuple[Record, ...]:
        if not v:
            raise ValueError("EntitySnapshot needs at least one record.")
        return tuple(sorted(v, key=lambda r: r.observed_at))

    @model_validator(mode="after")
    def validate_single_entity(self) -> "EntitySnapshot":
        foreign = {r.entity_id for r in self.records} - {self.entity_id}
        if foreign:
            raise ValueError(
                f"EntitySnapshot '{self.entity_id}' contains records of other "
                f"entities: {sorted(foreign)}."
            )
        return self

    @classmethod
    def from_records(cls, entity_id: str, records: list[Record]) -> "EntitySnapshot":
        return cls(entity_id=entity_id, records=tuple(records))

    @property
    def current(self) -> Record:
        """Most recent record."""
        return self.records[-1]

    @property
    def previous(self) -> Optional[Record]:
        """Record immediately before the most recent, or ``None``."""
        return self.records[-2] if len(self.records) > 1 else None
