"""
Allocation Snapshot — the read-only configuration a generation pass runs on.

Built once by the ConfigurationStore, then threaded through the temporal,
spatial and routing stages. The only mutable piece is the HeadroomLedger,
which the generation pass owns.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from fractions import Fraction
from typing import Literal

CLASSIFICATIONS = ("A", "B", "C")
UNIFORM_ORIGIN_WEIGHTS = {"A": 1.0, "B": 1.0, "C": 1.0}

Direction = Literal["inbound", "outbound"]
WeightSourceMode = Literal["auto", "city_requirements", "classification_matrix"]


def week_start(day: date) -> date:
    """Monday of the ISO week containing day."""
    return day - timedelta(days=day.weekday())


@dataclass(frozen=True)
class CityInfo:
    city_id: int
    name: str
    classification: str


@dataclass(frozen=True)
class NodeInfo:
    code: str
    city_id: int
    classification: str
    has_panelist: bool
    status: str = "active"

    @property
    def eligible(self) -> bool:
        """Only active nodes with an assigned panelist can take placements."""
        return self.status == "active" and self.has_panelist


@dataclass(frozen=True)
class MatrixRow:
    destination_classification: str
    pct_from_a: float
    pct_from_b: float
    pct_from_c: float

    @property
    def total(self) -> float:
        return self.pct_from_a + self.pct_from_b + self.pct_from_c

    def source_weights(self) -> dict[str, float]:
        return {"A": self.pct_from_a, "B": self.pct_from_b, "C": self.pct_from_c}


@dataclass(frozen=True)
class CityRequirement:
    city_id: int
    from_classification_a: int
    from_classification_b: int
    from_classification_c: int

    @property
    def total(self) -> int:
        return self.from_classification_a + self.from_classification_b + self.from_classification_c

    def source_weights(self) -> dict[str, float]:
        return {
            "A": float(self.from_classification_a),
            "B": float(self.from_classification_b),
            "C": float(self.from_classification_c),
        }


# ── Destination weight sources ───────────────────────────────────────────


@dataclass(frozen=True)
class ByClassificationMatrix:
    """Destination share per classification = matrix row total, split evenly over its cities."""

    rows: dict[str, MatrixRow]
    kind: str = "classification_matrix"

    def city_weights(self, cities: list[CityInfo]) -> list[tuple[CityInfo, Fraction]]:
        per_class: dict[str, list[CityInfo]] = {}
        for city in cities:
            per_class.setdefault(city.classification, []).append(city)

        weights = []
        for city in cities:
            row = self.rows.get(city.classification)
            if row is None or row.total <= 0:
                continue
            weights.append((city, Fraction(row.total) / len(per_class[city.classification])))
        return weights

    def origin_weights(self, city: CityInfo) -> dict[str, float] | None:
        row = self.rows.get(city.classification)
        if row is None or row.total <= 0:
            return None
        return row.source_weights()


@dataclass(frozen=True)
class ByCityRequirement:
    """Destination share per city = its absolute requirement counts, normalized."""

    requirements: dict[int, CityRequirement]
    kind: str = "city_requirements"

    def city_weights(self, cities: list[CityInfo]) -> list[tuple[CityInfo, Fraction]]:
        weights = []
        for city in cities:
            req = self.requirements.get(city.city_id)
            if req is None or req.total <= 0:
                continue
            weights.append((city, Fraction(req.total)))
        return weights

    def origin_weights(self, city: CityInfo) -> dict[str, float] | None:
        req = self.requirements.get(city.city_id)
        if req is None or req.total <= 0:
            return None
        return req.source_weights()


DestinationWeightSource = ByClassificationMatrix | ByCityRequirement


# ── Headroom ─────────────────────────────────────────────────────────────


class HeadroomLedger:
    """
    Remaining weekly capacity per node, keyed by (node, ISO week, direction).

    inbound counts placements where the node is the destination, outbound
    counts selections where it is the origin. Each is capped at the weekly cap
    independently; keys are per week, so headroom resets at week boundaries.
    """

    def __init__(
        self,
        weekly_cap: int,
        existing_inbound: dict[tuple[str, date], int] | None = None,
        existing_outbound: dict[tuple[str, date], int] | None = None,
    ):
        self.weekly_cap = weekly_cap
        self._existing = {
            "inbound": dict(existing_inbound or {}),
            "outbound": dict(existing_outbound or {}),
        }
        self._committed: dict[str, dict[tuple[str, date], int]] = {"inbound": {}, "outbound": {}}

    def existing(self, node: str, week: date, direction: Direction = "inbound") -> int:
        return self._existing[direction].get((node, week), 0)

    def committed(self, node: str, week: date, direction: Direction = "inbound") -> int:
        return self._committed[direction].get((node, week), 0)

    def remaining(self, node: str, week: date, direction: Direction = "inbound") -> int:
        return self.weekly_cap - self.existing(node, week, direction) - self.committed(node, week, direction)

    def commit(self, node: str, week: date, direction: Direction, count: int = 1) -> None:
        if count > self.remaining(node, week, direction):
            raise ValueError(f"Node {node} has no {direction} headroom for {count} more events in week {week}")
        key = (node, week)
        self._committed[direction][key] = self._committed[direction].get(key, 0) + count

    def release(self, node: str, week: date, direction: Direction, count: int = 1) -> None:
        key = (node, week)
        current = self._committed[direction].get(key, 0)
        if count > current:
            raise ValueError(f"Cannot release {count} {direction} events from node {node}; only {current} committed")
        self._committed[direction][key] = current - count


# ── Snapshot ─────────────────────────────────────────────────────────────


@dataclass
class AllocationSnapshot:
    account_id: uuid.UUID
    carrier_id: uuid.UUID
    product_id: uuid.UUID
    cities: dict[int, CityInfo]
    nodes: list[NodeInfo]
    matrix: dict[str, MatrixRow] = field(default_factory=dict)
    city_requirements: dict[int, CityRequirement] = field(default_factory=dict)
    seasonality: dict[int, tuple[float, ...]] = field(default_factory=dict)
    max_events_per_week: int = 0
    existing_inbound: dict[tuple[str, date], int] = field(default_factory=dict)
    existing_outbound: dict[tuple[str, date], int] = field(default_factory=dict)

    def sorted_cities(self) -> list[CityInfo]:
        return [self.cities[cid] for cid in sorted(self.cities)]

    def eligible_nodes(self, city_id: int | None = None) -> list[NodeInfo]:
        nodes = [n for n in self.nodes if n.eligible and (city_id is None or n.city_id == city_id)]
        return sorted(nodes, key=lambda n: n.code)

    def city_of(self, node_code: str) -> CityInfo | None:
        for node in self.nodes:
            if node.code == node_code:
                return self.cities.get(node.city_id)
        return None

    def new_ledger(self) -> HeadroomLedger:
        return HeadroomLedger(self.max_events_per_week, self.existing_inbound, self.existing_outbound)

    def weight_source(self, mode: WeightSourceMode = "auto") -> DestinationWeightSource:
        """
        Resolve which configuration surface drives destination shares.

        auto: city requirements win when any requirement row carries weight,
        otherwise the classification matrix.
        """
        by_requirement = ByCityRequirement(self.city_requirements)
        by_matrix = ByClassificationMatrix(self.matrix)
        if mode == "city_requirements":
            return by_requirement
        if mode == "classification_matrix":
            return by_matrix
        if any(req.total > 0 for req in self.city_requirements.values()):
            return by_requirement
        return by_matrix

    def origin_weights(self, city: CityInfo, source: DestinationWeightSource) -> dict[str, float]:
        """Origin classification weights for a destination city: active source, other source, uniform."""
        other = (
            ByClassificationMatrix(self.matrix)
            if isinstance(source, ByCityRequirement)
            else ByCityRequirement(self.city_requirements)
        )
        for candidate in (source, other):
            weights = candidate.origin_weights(city)
            if weights is not None:
                return weights
        return dict(UNIFORM_ORIGIN_WEIGHTS)
