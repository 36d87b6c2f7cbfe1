"""Onboarding wizard endpoint tests."""

import pytest
from httpx import AsyncClient

from app.services.onboarding import OnboardingSessionManager

BASE = "/api/onboarding/sessions/s1"

BASIC_INFO = {
    "company_name": "Acme Foods",
    "contact_person": "Jo Owner",
    "primary_email": "owner@acme.test",
    "tenant_id": "t-1",
}


async def _complete(client: AsyncClient, step: str):
    return await client.post(f"{BASE}/steps/{step}/complete")


async def _to_addon_selection(client: AsyncClient, plan, tenant_server) -> None:
    tenant_server.set_status("t-1")
    await client.put(f"{BASE}/basic-info", json=BASIC_INFO)
    await _complete(client, "basic_info")
    await client.put(f"{BASE}/plan", json={"plan": plan.model_dump(mode="json")})
    await _complete(client, "plan_selection")


@pytest.mark.api
@pytest.mark.asyncio
class TestOnboardingFlow:
    async def test_new_session_starts_at_basic_info(self, client: AsyncClient):
        resp = await client.get(BASE)

        assert resp.status_code == 200
        data = resp.json()
        assert data["current_step"] == "basic_info"
        assert data["completed_steps"] == []
        assert data["progress_percentage"] == 17
        assert data["pricing"]["grand_total"] == 0

    async def test_full_wizard(self, client: AsyncClient, plan, store, tenant_server):
        resp = await client.post(f"{BASE}/resume", json={})
        assert resp.json()["current_step"] == "basic_info"

        resp = await client.put(f"{BASE}/basic-info", json=BASIC_INFO)
        assert resp.json()["tenant_id"] == "t-1"

        resp = await _complete(client, "basic_info")
        assert resp.json()["current_step"] == "plan_selection"

        resp = await client.put(f"{BASE}/plan", json={"plan": plan.model_dump(mode="json")})
        assert resp.json()["selections"]["branch_count"] == 3

        await client.put(f"{BASE}/billing-cycle", json={"billing_cycle": "yearly"})
        await client.patch(f"{BASE}/branches/0", json={"name": "Head Office"})
        await client.put(f"{BASE}/addons", json={"addon": {"id": 10, "name": "Advanced Reporting"}})
        resp = await client.put(
            f"{BASE}/addons",
            json={
                "addon": {"id": 20, "name": "Branch Inventory", "pricing_scope": "branch"},
                "branches": [{"branch_index": 0}, {"branch_index": 2}],
            },
        )
        addons = resp.json()["selections"]["selected_addons"]
        assert addons[1]["branches"][0]["branch_name"] == "Head Office"

        pricing = (await client.get(f"{BASE}/pricing")).json()
        assert pricing["plan_total"] == 2880
        assert pricing["organization_addons_total"] == 480
        assert pricing["branch_addons_total"] == 288
        assert pricing["grand_total"] == 3648
        assert pricing["grand_total_label"] == "$3,648.00/year"

        await _complete(client, "plan_selection")
        resp = await _complete(client, "addon_selection")
        assert resp.json()["current_step"] == "plan_summary"

        payload = tenant_server.assigned_payloads()[0]
        assert payload == {
            "tenant_id": "t-1",
            "plan_id": 1,
            "billing_cycle": "yearly",
            "branches_count": 3,
            "organization_addon_assignments": [{"addon_id": 10, "feature_level": "basic"}],
            "branch_addon_assignments": [
                {"branch_id": 1, "addon_assignments": [{"addon_id": 20, "feature_level": "basic"}]},
                {"branch_id": 3, "addon_assignments": [{"addon_id": 20, "feature_level": "basic"}]},
            ],
        }

        resp = await _complete(client, "plan_summary")
        assert resp.json()["current_step"] == "payment"

        resp = await client.post(
            f"{BASE}/payment/failed", json={"message": "declined", "code": "card_declined"}
        )
        data = resp.json()
        assert data["current_step"] == "payment_failed"
        assert data["payment_failure"] == {"message": "declined", "code": "card_declined"}
        assert data["failure_reason"]["title"] == "Card Declined"

        resp = await client.post(f"{BASE}/payment/retry")
        assert resp.json()["current_step"] == "payment"
        assert resp.json()["retry_attempts"] == 1

        resp = await _complete(client, "payment")
        assert resp.json()["current_step"] == "success"
        assert store.data == {}

        resp = await client.post(f"{BASE}/finish")
        assert resp.status_code == 204

    async def test_selections_survive_reload(self, plan, store, tenant_api, tenant_server, client):
        await _to_addon_selection(client, plan, tenant_server)
        await client.put(f"{BASE}/branches", json={"branch_count": 5})

        # A fresh process: nothing in memory, same store
        reloaded = OnboardingSessionManager(store, tenant_api)
        session = await reloaded.get("s1")

        assert session.current_step.value == "plan_selection"
        assert session.plan == plan
        assert session.registry.count == 5
        assert session.basic_info.company_name == "Acme Foods"

    async def test_branch_truncation_drops_addon_branches(self, client: AsyncClient, plan, tenant_server):
        await _to_addon_selection(client, plan, tenant_server)
        await client.put(
            f"{BASE}/addons",
            json={
                "addon": {"id": 20, "name": "Branch Inventory", "pricing_scope": "branch"},
                "branches": [{"branch_index": 0}, {"branch_index": 2}],
            },
        )

        resp = await client.put(f"{BASE}/branches", json={"branch_count": 2})

        addon = resp.json()["selections"]["selected_addons"][0]
        assert [b["branch_index"] for b in addon["branches"]] == [0]


@pytest.mark.api
@pytest.mark.asyncio
class TestOnboardingErrors:
    async def test_complete_wrong_step(self, client: AsyncClient):
        resp = await _complete(client, "payment")

        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "ILLEGAL_TRANSITION"

    async def test_basic_info_required_fields(self, client: AsyncClient):
        resp = await _complete(client, "basic_info")

        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "WIZARD_VALIDATION_ERROR"
        assert "Company name" in error["details"]["missing"]

    async def test_plan_required(self, client: AsyncClient, tenant_server):
        tenant_server.set_status("t-1")
        await client.put(f"{BASE}/basic-info", json=BASIC_INFO)
        await _complete(client, "basic_info")

        resp = await _complete(client, "plan_selection")

        assert resp.status_code == 422
        assert resp.json()["error"]["message"] == "Please select a plan to continue"

    async def test_addon_before_plan(self, client: AsyncClient):
        resp = await client.put(f"{BASE}/addons", json={"addon": {"id": 10, "name": "Advanced Reporting"}})
        assert resp.status_code == 422

    async def test_addon_not_offered(self, client: AsyncClient, plan, tenant_server):
        await _to_addon_selection(client, plan, tenant_server)

        resp = await client.put(f"{BASE}/addons", json={"addon": {"id": 99, "name": "Unknown"}})
        assert resp.status_code == 422

    async def test_rename_out_of_range(self, client: AsyncClient, plan, tenant_server):
        await _to_addon_selection(client, plan, tenant_server)

        resp = await client.patch(f"{BASE}/branches/7", json={"name": "Nowhere"})

        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "BRANCH_INDEX_OUT_OF_RANGE"

    async def test_remove_unselected_addon(self, client: AsyncClient, plan, tenant_server):
        await _to_addon_selection(client, plan, tenant_server)

        resp = await client.delete(f"{BASE}/addons/10")
        assert resp.status_code == 404

    async def test_invalid_branch_count(self, client: AsyncClient, plan, tenant_server):
        await _to_addon_selection(client, plan, tenant_server)

        resp = await client.put(f"{BASE}/branches", json={"branch_count": 0})

        assert resp.status_code == 422
        assert (await client.get(BASE)).json()["selections"]["branch_count"] == 3

    async def test_rejected_plan_assignment_keeps_step(self, client: AsyncClient, plan, tenant_server):
        await _to_addon_selection(client, plan, tenant_server)
        tenant_server.assign_response = (422, {"success": False, "error": "Plan is archived"})

        resp = await _complete(client, "addon_selection")

        assert resp.status_code == 502
        assert resp.json()["error"]["code"] == "PLAN_ASSIGNMENT_FAILED"
        state = (await client.get(BASE)).json()
        assert state["current_step"] == "addon_selection"
        assert state["selections"]["selected_plan"]["id"] == plan.id

    async def test_selections_locked_during_payment(self, client: AsyncClient, plan, tenant_server):
        await _to_addon_selection(client, plan, tenant_server)
        await _complete(client, "addon_selection")
        await _complete(client, "plan_summary")

        resp = await client.put(f"{BASE}/billing-cycle", json={"billing_cycle": "monthly"})
        assert resp.status_code == 409

    async def test_retry_without_failure(self, client: AsyncClient):
        resp = await client.post(f"{BASE}/payment/retry")
        assert resp.status_code == 409

    async def test_finish_before_success(self, client: AsyncClient):
        resp = await client.post(f"{BASE}/finish")
        assert resp.status_code == 409


@pytest.mark.api
@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
