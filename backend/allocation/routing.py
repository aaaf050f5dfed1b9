"""
Route Pairer — picks an origin node for every destination placement.

For each placed event:
  1. Origin classification weights come from the destination city's
     configuration (see AllocationSnapshot.origin_weights).
  2. A classification is drawn by those weights among classifications that
     still have an eligible origin with outbound headroom, then a node is
     drawn inside it weighted by its remaining outbound headroom.
  3. The destination itself is never its own origin.
  4. With no eligible origin left, the placement is demoted: its inbound
     headroom is released and it counts as unassigned for its city.

Draws are deterministic (StableDraw), so regenerating a plan with the same
inputs reproduces the same routes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

import structlog

from allocation.apportion import StableDraw
from allocation.snapshot import CLASSIFICATIONS, AllocationSnapshot, DestinationWeightSource, HeadroomLedger, NodeInfo
from allocation.spatial import CityWeekResult, WeekAllocation

logger = structlog.get_logger()


@dataclass(frozen=True)
class RoutedEvent:
    origin_node: str
    destination_node: str
    week_start: date
    origin_city_id: int
    destination_city_id: int


@dataclass
class WeekRouting:
    events: list[RoutedEvent] = field(default_factory=list)
    demoted_by_city: dict[int, int] = field(default_factory=dict)

    @property
    def demoted(self) -> int:
        return sum(self.demoted_by_city.values())


def _interleave(cities: list[CityWeekResult]) -> list[tuple[CityWeekResult, str]]:
    """Round-robin over (city, node) placements so scarce origins are shared across destinations."""
    queues = [
        [city, code, count]
        for city in cities
        for code, count in sorted(city.placements.items())
        if count > 0
    ]
    slots = []
    while queues:
        for queue in queues:
            slots.append((queue[0], queue[1]))
            queue[2] -= 1
        queues = [q for q in queues if q[2] > 0]
    return slots


class RoutePairer:
    def __init__(self, snapshot: AllocationSnapshot, source: DestinationWeightSource, draw: StableDraw):
        self.snapshot = snapshot
        self.source = source
        self.draw = draw
        self._origins_by_class: dict[str, list[NodeInfo]] = {cls: [] for cls in CLASSIFICATIONS}
        for node in snapshot.eligible_nodes():
            self._origins_by_class.setdefault(node.classification, []).append(node)

    def pair_week(self, allocation: WeekAllocation, ledger: HeadroomLedger) -> WeekRouting:
        routing = WeekRouting()
        week = allocation.week.week_start

        for city_result, destination in _interleave(allocation.cities):
            origin = self._select_origin(city_result, destination, week, ledger)
            if origin is None:
                ledger.release(destination, week, "inbound")
                city_result.placements[destination] -= 1
                if city_result.placements[destination] == 0:
                    del city_result.placements[destination]
                city_result.unassigned += 1
                city_id = city_result.city.city_id
                routing.demoted_by_city[city_id] = routing.demoted_by_city.get(city_id, 0) + 1
                continue

            ledger.commit(origin.code, week, "outbound")
            routing.events.append(
                RoutedEvent(
                    origin_node=origin.code,
                    destination_node=destination,
                    week_start=week,
                    origin_city_id=origin.city_id,
                    destination_city_id=city_result.city.city_id,
                )
            )

        if routing.demoted:
            logger.warning(
                "allocation.placements_demoted",
                week=allocation.week.iso_label,
                demoted=routing.demoted,
                by_city=routing.demoted_by_city,
            )
        return routing

    def _select_origin(
        self,
        city_result: CityWeekResult,
        destination: str,
        week: date,
        ledger: HeadroomLedger,
    ) -> NodeInfo | None:
        class_weights = self.snapshot.origin_weights(city_result.city, self.source)

        candidates: dict[str, list[tuple[NodeInfo, int]]] = {}
        for cls in CLASSIFICATIONS:
            if class_weights.get(cls, 0) <= 0:
                continue
            pool = [
                (node, ledger.remaining(node.code, week, "outbound"))
                for node in self._origins_by_class.get(cls, [])
                if node.code != destination
            ]
            pool = [(node, headroom) for node, headroom in pool if headroom > 0]
            if pool:
                candidates[cls] = pool

        if not candidates:
            return None

        classes = sorted(candidates)
        chosen_class = self.draw.choose(classes, [class_weights[cls] for cls in classes])
        if chosen_class is None:
            return None
        pool = candidates[chosen_class]
        return self.draw.choose([node for node, _ in pool], [headroom for _, headroom in pool])
