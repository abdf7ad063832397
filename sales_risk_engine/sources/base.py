"""
Data-source collaborator protocol and an in-memory implementation.

The orchestrator only ever calls ``fetch_records``; blocking I/O lives behind
this seam.  Implementations may raise ``TransientInfraError`` for retryable
outages.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Iterable, Optional, Protocol

from sales_risk_engine.models.record import Record


class RecordSource(Protocol):
    def fetch_records(
        self,
        entity_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[Record]: ...


def filter_by_date(
    records: Iterable[Record],
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> list[Record]:
    """Keep records with ``start <= observed_at <= end`` (bounds inclusive)."""
    return [
        r for r in records
        if (start is None or r.observed_at >= start)
        and (end is None or r.observed_at <= end)
    ]


class InMemoryRecordSource:
    """Serves records held in a dict keyed by entity id."""

    def __init__(self, records: Iterable[Record] = ()) -> None:
        self._by_entity: dict[str, list[Record]] = defaultdict(list)
        for rec in records:
            self._by_entity[rec.entity_id].append(rec)

    def fetch_records(
        self,
        entity_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[Record]:
        recs = sorted(self._by_entity.get(entity_id, []), key=lambda r: r.observed_at)
        return filter_by_date(recs, start, end)

    def list_entity_ids(self) -> list[str]:
        return list(self._by_entity)

    def all_records(self) -> list[Record]:
        return [r for recs in self._by_entity.values() for r in recs]
