"""Tests for the tenant management API client."""

import httpx
import pytest

from app.middleware.exceptions import ReconciliationError, TenantApiError
from app.schemas.onboarding import AssignPlanRequest, BillingCycle
from app.services.tenant_api import TenantApiClient

TENANT_API_URL = "http://tenant-api.test/api"


def _client(handler) -> TenantApiClient:
    return TenantApiClient(base_url=TENANT_API_URL, transport=httpx.MockTransport(handler))


@pytest.fixture
def assign_request() -> AssignPlanRequest:
    return AssignPlanRequest(tenant_id="t-1", plan_id=1, billing_cycle=BillingCycle.ANNUAL, branches_count=2)


@pytest.mark.asyncio
class TestCheckTenantStatus:
    async def test_posts_tenant_id(self, tenant_api, tenant_server):
        tenant_server.set_status("t-1")

        data = await tenant_api.check_tenant_status("t-1")

        assert data.verification_status.both_verified is True
        assert data.tenant_info.company_name == "Acme Foods"
        path, body = tenant_server.requests[0]
        assert path == "/api/tenants/account/status"
        assert body == {"tenant_id": "t-1"}

    async def test_non_200_raises(self, tenant_api):
        with pytest.raises(ReconciliationError, match="HTTP 404"):
            await tenant_api.check_tenant_status("unknown")

    async def test_unsuccessful_body_raises(self, tenant_api, tenant_server):
        tenant_server.set_status("t-1", {"success": False, "message": "Tenant suspended"})

        with pytest.raises(ReconciliationError, match="Tenant suspended"):
            await tenant_api.check_tenant_status("t-1")

    async def test_malformed_body_raises(self):
        client = _client(lambda request: httpx.Response(200, text="<html>oops</html>"))

        with pytest.raises(ReconciliationError, match="malformed"):
            await client.check_tenant_status("t-1")
        await client.aclose()

    async def test_transport_failure_raises(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(refuse)
        with pytest.raises(ReconciliationError) as exc_info:
            await client.check_tenant_status("t-1")
        assert exc_info.value.error_code == "RECONCILIATION_FAILED"
        await client.aclose()


@pytest.mark.asyncio
class TestAssignPlan:
    async def test_sends_request_payload(self, tenant_api, tenant_server, assign_request):
        response = await tenant_api.assign_plan_to_tenant(assign_request)

        assert response.success is True
        body = tenant_server.assigned_payloads()[0]
        assert body["billing_cycle"] == "yearly"
        assert body["branches_count"] == 2
        assert body["organization_addon_assignments"] == []

    async def test_business_rejection_is_returned(self, tenant_api, tenant_server, assign_request):
        tenant_server.assign_response = (422, {"success": False, "error": {"message": "Plan archived"}})

        response = await tenant_api.assign_plan_to_tenant(assign_request)

        assert response.success is False
        assert response.error == {"message": "Plan archived"}

    async def test_error_status_overrides_success_flag(self, tenant_api, tenant_server, assign_request):
        tenant_server.assign_response = (500, {"success": True})

        response = await tenant_api.assign_plan_to_tenant(assign_request)

        assert response.success is False
        assert response.error == "HTTP 500"

    async def test_unparseable_response(self, assign_request):
        client = _client(lambda request: httpx.Response(502, text="Bad Gateway"))

        response = await client.assign_plan_to_tenant(assign_request)

        assert response.success is False
        assert "HTTP 502" in response.error
        await client.aclose()

    async def test_timeout_raises_tenant_api_error(self, assign_request):
        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = _client(slow)
        with pytest.raises(TenantApiError, match="timeout"):
            await client.assign_plan_to_tenant(assign_request)
        await client.aclose()
