"""Tests for the spatial allocator, the route pairer and the headroom ledger (no database)."""

import uuid
from datetime import date, timedelta

import pytest

from allocation.apportion import StableDraw
from allocation.routing import RoutePairer
from allocation.snapshot import (
    AllocationSnapshot,
    ByCityRequirement,
    ByClassificationMatrix,
    CityInfo,
    CityRequirement,
    HeadroomLedger,
    MatrixRow,
    NodeInfo,
)
from allocation.spatial import SpatialAllocator
from allocation.temporal import WeekBucket

MONDAY = date(2026, 3, 2)


def _week(quota: int, monday: date = MONDAY) -> WeekBucket:
    return WeekBucket(
        index=0,
        week_start=monday,
        days=tuple(monday + timedelta(days=i) for i in range(7)),
        quota=quota,
    )


def _snapshot(cap: int = 50, **overrides) -> AllocationSnapshot:
    cities = {
        1: CityInfo(1, "Alpha", "A"),
        2: CityInfo(2, "Beta", "B"),
        3: CityInfo(3, "Gamma", "C"),
    }
    nodes = [
        NodeInfo("ALP-01", 1, "A", True),
        NodeInfo("ALP-02", 1, "A", True),
        NodeInfo("ALP-03", 1, "A", False),
        NodeInfo("ALP-04", 1, "A", True, status="inactive"),
        NodeInfo("BET-01", 2, "B", True),
        NodeInfo("GAM-01", 3, "C", True),
    ]
    params = dict(
        account_id=uuid.uuid4(),
        carrier_id=uuid.uuid4(),
        product_id=uuid.uuid4(),
        cities=cities,
        nodes=nodes,
        matrix={
            "A": MatrixRow("A", 50, 30, 20),
            "B": MatrixRow("B", 40, 40, 20),
            "C": MatrixRow("C", 40, 30, 30),
        },
        city_requirements={
            1: CityRequirement(1, 0, 30, 20),
            2: CityRequirement(2, 20, 0, 10),
            3: CityRequirement(3, 10, 10, 0),
        },
        max_events_per_week=cap,
    )
    params.update(overrides)
    return AllocationSnapshot(**params)


class TestWeightSource:
    def test_auto_prefers_city_requirements(self):
        assert isinstance(_snapshot().weight_source("auto"), ByCityRequirement)

    def test_auto_falls_back_to_matrix(self):
        snapshot = _snapshot(city_requirements={})
        assert isinstance(snapshot.weight_source("auto"), ByClassificationMatrix)

    def test_requirement_rows_without_weight_do_not_count(self):
        snapshot = _snapshot(city_requirements={1: CityRequirement(1, 0, 0, 0)})
        assert isinstance(snapshot.weight_source("auto"), ByClassificationMatrix)

    def test_forced_source(self):
        assert isinstance(_snapshot().weight_source("classification_matrix"), ByClassificationMatrix)

    def test_matrix_splits_classification_share_over_its_cities(self):
        cities = {
            1: CityInfo(1, "Alpha", "A"),
            2: CityInfo(2, "Alpha Two", "A"),
            3: CityInfo(3, "Beta", "B"),
        }
        source = ByClassificationMatrix(_snapshot().matrix)
        weights = {city.city_id: float(w) for city, w in source.city_weights(list(cities.values()))}
        assert weights == {1: 50.0, 2: 50.0, 3: 100.0}

    def test_origin_weights_fall_back_to_matrix_then_uniform(self):
        snapshot = _snapshot(city_requirements={1: CityRequirement(1, 0, 30, 20)})
        source = snapshot.weight_source("auto")
        assert snapshot.origin_weights(snapshot.cities[1], source) == {"A": 0.0, "B": 30.0, "C": 20.0}
        assert snapshot.origin_weights(snapshot.cities[2], source) == {"A": 40, "B": 40, "C": 20}

        bare = _snapshot(city_requirements={}, matrix={})
        assert bare.origin_weights(bare.cities[1], bare.weight_source()) == {"A": 1.0, "B": 1.0, "C": 1.0}


class TestHeadroomLedger:
    def test_directions_are_capped_independently(self):
        ledger = HeadroomLedger(10, existing_inbound={("N1", MONDAY): 4})
        assert ledger.remaining("N1", MONDAY, "inbound") == 6
        assert ledger.remaining("N1", MONDAY, "outbound") == 10

        ledger.commit("N1", MONDAY, "inbound", 6)
        assert ledger.remaining("N1", MONDAY, "inbound") == 0
        with pytest.raises(ValueError):
            ledger.commit("N1", MONDAY, "inbound")

    def test_headroom_resets_each_week(self):
        ledger = HeadroomLedger(3)
        ledger.commit("N1", MONDAY, "inbound", 3)
        assert ledger.remaining("N1", MONDAY + timedelta(days=7), "inbound") == 3

    def test_release_returns_headroom(self):
        ledger = HeadroomLedger(3)
        ledger.commit("N1", MONDAY, "outbound", 2)
        ledger.release("N1", MONDAY, "outbound")
        assert ledger.remaining("N1", MONDAY, "outbound") == 2
        with pytest.raises(ValueError):
            ledger.release("N1", MONDAY, "outbound", 5)


class TestSpatialAllocator:
    def test_quota_is_conserved_and_only_eligible_nodes_receive(self):
        snapshot = _snapshot()
        ledger = snapshot.new_ledger()
        allocation = SpatialAllocator(snapshot, snapshot.weight_source()).allocate_week(_week(60), ledger)

        assert allocation.placed + allocation.unassigned == 60
        placed_nodes = {code for city in allocation.cities for code in city.placements}
        assert placed_nodes <= {"ALP-01", "ALP-02", "BET-01", "GAM-01"}
        # requirements 50 / 30 / 20 out of 100
        assert [c.quota for c in allocation.cities] == [30, 18, 12]

    def test_deficit_when_city_capacity_is_short(self):
        snapshot = _snapshot(cap=5)
        ledger = snapshot.new_ledger()
        allocation = SpatialAllocator(snapshot, snapshot.weight_source()).allocate_week(_week(60), ledger)

        alpha = allocation.cities[0]
        assert alpha.placements == {"ALP-01": 5, "ALP-02": 5}
        assert alpha.unassigned == 20
        assert allocation.unassigned_by_city() == {1: 20, 2: 13, 3: 7}
        assert allocation.placed + allocation.unassigned == 60

    def test_existing_load_reduces_headroom(self):
        snapshot = _snapshot(cap=10, existing_inbound={("ALP-01", MONDAY): 10})
        ledger = snapshot.new_ledger()
        allocation = SpatialAllocator(snapshot, snapshot.weight_source()).allocate_week(_week(20), ledger)
        assert "ALP-01" not in allocation.cities[0].placements

    def test_no_weighted_city_is_unroutable(self):
        snapshot = _snapshot(city_requirements={}, matrix={})
        allocation = SpatialAllocator(snapshot, snapshot.weight_source()).allocate_week(_week(12), snapshot.new_ledger())
        assert allocation.cities == []
        assert allocation.unroutable == 12
        assert allocation.unassigned == 12


class TestRoutePairer:
    def _route(self, snapshot, quota, seed="seed"):
        ledger = snapshot.new_ledger()
        source = snapshot.weight_source()
        allocation = SpatialAllocator(snapshot, source).allocate_week(_week(quota), ledger)
        routing = RoutePairer(snapshot, source, StableDraw(seed)).pair_week(allocation, ledger)
        return allocation, routing, ledger

    def test_every_placement_gets_a_distinct_origin(self):
        snapshot = _snapshot()
        allocation, routing, _ = self._route(snapshot, 60)

        assert len(routing.events) == allocation.placed
        assert all(e.origin_node != e.destination_node for e in routing.events)
        eligible = {"ALP-01", "ALP-02", "BET-01", "GAM-01"}
        assert {e.origin_node for e in routing.events} <= eligible

    def test_origin_classes_follow_destination_weights(self):
        snapshot = _snapshot()
        _, routing, _ = self._route(snapshot, 60)
        # Alpha requires origins from B and C only
        alpha_origins = {e.origin_node for e in routing.events if e.destination_city_id == 1}
        assert alpha_origins <= {"BET-01", "GAM-01"}

    def test_outbound_capacity_is_respected(self):
        snapshot = _snapshot(cap=6)
        _, routing, ledger = self._route(snapshot, 60)
        for code in ("ALP-01", "ALP-02", "BET-01", "GAM-01"):
            assert ledger.remaining(code, MONDAY, "outbound") >= 0
            assert sum(1 for e in routing.events if e.origin_node == code) <= 6

    def test_unpairable_placements_are_demoted(self):
        # Beta only accepts origins from C; GAM-01 already sends 1 of its 2 this week
        snapshot = _snapshot(
            cap=2,
            city_requirements={2: CityRequirement(2, 0, 0, 10)},
            existing_outbound={("GAM-01", MONDAY): 1},
        )
        allocation, routing, ledger = self._route(snapshot, 10)
        beta = allocation.cities[0]

        assert len(routing.events) == 1
        assert routing.events[0].origin_node == "GAM-01"
        assert routing.demoted_by_city == {2: 1}
        assert beta.placed == 1
        assert beta.unassigned == 9
        assert ledger.remaining("BET-01", MONDAY, "inbound") == 1
        assert allocation.placed + allocation.unassigned == 10

    def test_same_seed_reproduces_routes(self):
        _, first, _ = self._route(_snapshot(), 60, seed="abc")
        _, second, _ = self._route(_snapshot(), 60, seed="abc")
        assert first.events == second.events
