"""
Spatial Allocator — one week's quota → destination cities → destination nodes.

Algorithm (per ISO week):
  1. Weight every city through the DestinationWeightSource and apportion the
     week's quota across cities. Rounding carries over from week to week, so
     period totals per city stay within a unit of their exact share.
  2. Inside a city, apportion its share across eligible nodes (active, with a
     panelist) weighted by their inbound headroom; nodes at or below zero
     headroom get weight zero.
  3. Whatever exceeds the city's aggregate headroom is recorded as unassigned
     for that city. It is never forced onto a full node.

Conservation: Σ city(placed + unassigned) + unroutable == week quota.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from allocation.apportion import RunningApportionment, largest_remainder
from allocation.snapshot import AllocationSnapshot, CityInfo, DestinationWeightSource, HeadroomLedger
from allocation.temporal import WeekBucket

logger = structlog.get_logger()


@dataclass
class CityWeekResult:
    city: CityInfo
    quota: int
    placements: dict[str, int] = field(default_factory=dict)
    unassigned: int = 0

    @property
    def placed(self) -> int:
        return sum(self.placements.values())


@dataclass
class WeekAllocation:
    week: WeekBucket
    cities: list[CityWeekResult]
    # Quota that no city carries weight for (no configured city at all).
    unroutable: int = 0

    @property
    def placed(self) -> int:
        return sum(c.placed for c in self.cities)

    @property
    def unassigned(self) -> int:
        return sum(c.unassigned for c in self.cities) + self.unroutable

    def unassigned_by_city(self) -> dict[int, int]:
        return {c.city.city_id: c.unassigned for c in self.cities if c.unassigned}


class SpatialAllocator:
    """Places destination events for one week at a time against a shared ledger."""

    def __init__(self, snapshot: AllocationSnapshot, source: DestinationWeightSource):
        self.snapshot = snapshot
        self.source = source
        self._city_weights = source.city_weights(snapshot.sorted_cities())
        self._city_split = RunningApportionment([w for _, w in self._city_weights])

    @property
    def weighted_cities(self) -> list[CityInfo]:
        return [city for city, _ in self._city_weights]

    def allocate_week(self, week: WeekBucket, ledger: HeadroomLedger) -> WeekAllocation:
        if not self._city_weights:
            if week.quota:
                logger.warning("allocation.no_weighted_cities", week=week.iso_label, quota=week.quota)
            return WeekAllocation(week=week, cities=[], unroutable=week.quota)

        city_quotas = self._city_split.split(week.quota)
        results = [
            self._place_city(city, quota, week, ledger)
            for (city, _), quota in zip(self._city_weights, city_quotas)
        ]
        return WeekAllocation(week=week, cities=results)

    def _place_city(self, city: CityInfo, quota: int, week: WeekBucket, ledger: HeadroomLedger) -> CityWeekResult:
        result = CityWeekResult(city=city, quota=quota)
        if quota == 0:
            return result

        nodes = self.snapshot.eligible_nodes(city.city_id)
        headroom = [max(ledger.remaining(n.code, week.week_start, "inbound"), 0) for n in nodes]
        placeable = min(quota, sum(headroom))

        for node, count in zip(nodes, largest_remainder(placeable, headroom)):
            if count:
                ledger.commit(node.code, week.week_start, "inbound", count)
                result.placements[node.code] = count

        result.unassigned = quota - placeable
        if result.unassigned:
            logger.warning(
                "allocation.city_deficit",
                week=week.iso_label,
                city_id=city.city_id,
                city=city.name,
                quota=quota,
                deficit=result.unassigned,
                eligible_nodes=len(nodes),
            )
        return result
