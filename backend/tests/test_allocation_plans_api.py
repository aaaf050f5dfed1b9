"""
API Integration Tests — Allocation Plan Workflow.

Preview → generate → review → export/import → merge or cancel, against a
seeded two-city panel.
"""

import pytest
from httpx import AsyncClient

from allocation.roundtrip import parse_csv

BASE = "/api/v1/allocation-plans"


def _body(panel, **overrides) -> dict:
    body = {
        "carrier_id": str(panel.carrier_id),
        "product_id": str(panel.product_id),
        "start_date": "2026-02-01",
        "end_date": "2026-04-30",
        "total_events": 1200,
    }
    body.update(overrides)
    return body


async def _create(client: AsyncClient, panel, **overrides) -> dict:
    response = await client.post(f"{BASE}/", json=_body(panel, **overrides))
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
class TestGeneratePlans:

    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_list_plans_empty(self, client: AsyncClient):
        response = await client.get(f"{BASE}/")
        assert response.status_code == 200
        assert response.json() == []

    async def test_preview_persists_nothing(self, client: AsyncClient, panel):
        response = await client.post(f"{BASE}/preview", json=_body(panel))
        assert response.status_code == 200
        data = response.json()
        assert data["calculated_events"] == 360
        assert data["placed_events"] == 360
        assert data["unassigned_events"] == 0
        assert data["total_weeks"] == 14
        assert data["generation_params"]["weight_source"] == "city_requirements"

        listed = await client.get(f"{BASE}/")
        assert listed.json() == []

    async def test_create_draft_plan(self, client: AsyncClient, panel):
        data = await _create(client, panel)
        assert data["status"] == "draft"
        assert data["calculated_events"] == 360
        assert data["max_events_per_week"] == 50
        assert data["merge_strategy"] == "append"
        assert data["created_by"] == "planner@panelops.test"
        assert {row["city_name"] for row in data["city_breakdown"]} == {"Alpha", "Beta"}

    async def test_tight_capacity_is_reported_not_rejected(self, client: AsyncClient, panel):
        data = await _create(client, panel, max_events_per_week=10)
        assert data["calculated_events"] == 360
        assert data["unassigned_events"] == 80
        assert sum(row["deficit"] for row in data["unassigned_breakdown"]) == 80

    async def test_invalid_period_is_422(self, client: AsyncClient, panel):
        response = await client.post(f"{BASE}/", json=_body(panel, end_date="2026-01-01"))
        assert response.status_code == 422

    async def test_negative_total_is_422(self, client: AsyncClient, panel):
        response = await client.post(f"{BASE}/preview", json=_body(panel, total_events=-5))
        assert response.status_code == 422

    async def test_unknown_weight_source_is_422(self, client: AsyncClient, panel):
        response = await client.post(f"{BASE}/preview", json=_body(panel, weight_source="population"))
        assert response.status_code == 422

    async def test_carrier_without_product_lists_problems(self, client: AsyncClient, panel):
        response = await client.post(
            f"{BASE}/", json=_body(panel, carrier_id="00000000-0000-0000-0000-000000000099")
        )
        assert response.status_code == 422
        detail = response.json()["detail"]
        assert "not assigned" in detail["message"]
        assert detail["problems"] == []

    async def test_list_filters(self, client: AsyncClient, panel):
        plan = await _create(client, panel)
        await _create(client, panel, merge_strategy="replace")
        await client.post(f"{BASE}/{plan['plan_id']}/cancel")

        drafts = await client.get(f"{BASE}/", params={"status": "draft"})
        assert [p["merge_strategy"] for p in drafts.json()] == ["replace"]
        by_product = await client.get(f"{BASE}/", params={"product_id": str(panel.product_id)})
        assert len(by_product.json()) == 2
        bad = await client.get(f"{BASE}/", params={"status": "archived"})
        assert bad.status_code == 422


@pytest.mark.asyncio
class TestReviewPlans:

    async def test_get_plan_not_found(self, client: AsyncClient):
        fake_id = "00000000-0000-0000-0000-000000000099"
        response = await client.get(f"{BASE}/{fake_id}")
        assert response.status_code == 404

    async def test_details_are_ordered_by_date(self, client: AsyncClient, panel):
        plan = await _create(client, panel)
        response = await client.get(f"{BASE}/{plan['plan_id']}/details", params={"limit": 1000})
        assert response.status_code == 200
        rows = response.json()
        assert len(rows) == 360
        dates = [row["scheduled_date"] for row in rows]
        assert dates == sorted(dates)

    async def test_statistics(self, client: AsyncClient, panel):
        plan = await _create(client, panel)
        response = await client.get(f"{BASE}/{plan['plan_id']}/statistics")
        assert response.status_code == 200
        stats = response.json()
        assert stats["total_events"] == 360
        # 89 days → 13 weeks
        assert stats["avg_events_per_week"] == 28
        assert stats["unique_cities"] == 2
        assert stats["classifications"]["A"] + stats["classifications"]["B"] == 360
        assert stats["classifications"]["C"] == 0

    async def test_export_json_and_csv(self, client: AsyncClient, panel):
        plan = await _create(client, panel)
        as_json = await client.get(f"{BASE}/{plan['plan_id']}/export")
        assert as_json.status_code == 200
        assert len(as_json.json()) == 360

        as_csv = await client.get(f"{BASE}/{plan['plan_id']}/export", params={"format": "csv"})
        assert as_csv.status_code == 200
        assert as_csv.headers["content-type"].startswith("text/csv")
        assert "attachment" in as_csv.headers["content-disposition"]
        rows = parse_csv(as_csv.text)
        assert len(rows) == 360
        assert {row["destination_city"] for row in rows} == {"Alpha", "Beta"}


@pytest.mark.asyncio
class TestEditAndMerge:

    async def test_import_json_rows(self, client: AsyncClient, panel):
        plan = await _create(client, panel)
        rows = [
            {"origin_node": "BET-01", "destination_node": "ALP-01", "scheduled_date": "2026-02-02"},
            {"origin_node": "ALP-01", "destination_node": "BET-01", "scheduled_date": "2026-02-03", "notes": "x"},
            {"origin_node": "", "destination_node": "BET-01", "scheduled_date": "2026-02-03"},
        ]
        response = await client.post(f"{BASE}/{plan['plan_id']}/import", json=rows)
        assert response.status_code == 200
        assert response.json() == {
            "plan_id": plan["plan_id"],
            "received_rows": 3,
            "accepted_rows": 2,
            "calculated_events": 2,
        }

    async def test_import_csv_body(self, client: AsyncClient, panel):
        plan = await _create(client, panel)
        exported = await client.get(f"{BASE}/{plan['plan_id']}/export", params={"format": "csv"})
        lines = exported.text.splitlines()
        edited = "\n".join(lines[:21]) + "\n"

        response = await client.post(
            f"{BASE}/{plan['plan_id']}/import-csv",
            content=edited.encode("utf-8"),
            headers={"Content-Type": "text/csv"},
        )
        assert response.status_code == 200
        assert response.json()["accepted_rows"] == 20

        refreshed = await client.get(f"{BASE}/{plan['plan_id']}")
        assert refreshed.json()["calculated_events"] == 20

    async def test_import_without_valid_rows_is_422(self, client: AsyncClient, panel):
        plan = await _create(client, panel)
        response = await client.post(
            f"{BASE}/{plan['plan_id']}/import",
            json=[{"origin_node": "BET-01", "destination_node": "ALP-01", "scheduled_date": "someday"}],
        )
        assert response.status_code == 422

    async def test_merge_then_merge_again_conflicts(self, client: AsyncClient, panel):
        plan = await _create(client, panel)
        response = await client.post(f"{BASE}/{plan['plan_id']}/merge")
        assert response.status_code == 200
        data = response.json()
        assert data["strategy"] == "append"
        assert data["inserted_events"] == 360
        assert data["deleted_events"] == 0

        merged = await client.get(f"{BASE}/{plan['plan_id']}")
        assert merged.json()["status"] == "merged"

        again = await client.post(f"{BASE}/{plan['plan_id']}/merge")
        assert again.status_code == 409
        imported = await client.post(
            f"{BASE}/{plan['plan_id']}/import",
            json=[{"origin_node": "BET-01", "destination_node": "ALP-01", "scheduled_date": "2026-02-02"}],
        )
        assert imported.status_code == 409

    async def test_cancel_then_delete_rules(self, client: AsyncClient, panel):
        plan = await _create(client, panel)
        cancelled = await client.post(f"{BASE}/{plan['plan_id']}/cancel")
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"
        assert cancelled.json()["cancelled_at"] is not None

        assert (await client.post(f"{BASE}/{plan['plan_id']}/merge")).status_code == 409
        assert (await client.delete(f"{BASE}/{plan['plan_id']}")).status_code == 409

    async def test_delete_draft(self, client: AsyncClient, panel):
        plan = await _create(client, panel)
        response = await client.delete(f"{BASE}/{plan['plan_id']}")
        assert response.status_code == 204
        assert (await client.get(f"{BASE}/{plan['plan_id']}")).status_code == 404


@pytest.mark.asyncio
class TestRequestContext:

    async def test_request_id_is_echoed(self, client: AsyncClient):
        response = await client.get("/health", headers={"X-Request-ID": "trace-123"})
        assert response.headers["X-Request-ID"] == "trace-123"
        assert response.json()["algorithm_version"] == "2.0"

    async def test_request_id_is_generated(self, client: AsyncClient):
        response = await client.get("/health")
        assert len(response.headers["X-Request-ID"]) == 32
