"""Pytest configuration and fixtures for onboarding console tests.

No external services are needed: the wizard store is an in-memory
KeyValueStore and the tenant management API is served by an
httpx.MockTransport backed by FakeTenantServer.
"""

import json
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.main import app
from app.routers.onboarding import get_session_manager
from app.schemas.onboarding import AddonTemplate, Plan, PricingScope
from app.services.onboarding import OnboardingSessionManager
from app.services.tenant_api import TenantApiClient
from app.utils.store import InMemoryKeyValueStore

TENANT_API_URL = "http://tenant-api.test/api"


# ── Fake tenant management API ───────────────────────────────────

def status_payload(
    company_name: str = "Acme Foods",
    is_complete: bool = True,
    email_verified: bool = True,
    phone_verified: bool = True,
    both_verified: bool | None = None,
) -> dict:
    """Build a successful /tenants/account/status response body."""
    if both_verified is None:
        both_verified = email_verified and phone_verified
    return {
        "success": True,
        "message": "ok",
        "data": {
            "tenant_info": {
                "company_name": company_name,
                "primary_email": "owner@acme.test",
                "primary_phone": "+15550100",
                "city": "Springfield",
            },
            "verification_status": {
                "email_verified": email_verified,
                "phone_verified": phone_verified,
                "both_verified": both_verified,
            },
            "basic_info_status": {
                "is_complete": is_complete,
                "validation_errors": [] if is_complete else ["address_line1 is required"],
                "validation_message": None if is_complete else "Address is incomplete",
            },
        },
    }


class FakeTenantServer:
    """Records requests and answers with configurable canned responses."""

    def __init__(self):
        self.statuses: dict[str, tuple[int, dict]] = {}
        self.assign_response: tuple[int, dict] = (200, {"success": True, "message": "Plan assigned"})
        self.requests: list[tuple[str, dict]] = []

    def set_status(self, tenant_id: str, body: dict | None = None, status_code: int = 200) -> None:
        self.statuses[tenant_id] = (status_code, body if body is not None else status_payload())

    def assigned_payloads(self) -> list[dict]:
        return [body for path, body in self.requests if path.endswith("/assign-plan")]

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}")
        self.requests.append((request.url.path, body))

        if request.url.path.endswith("/tenants/account/status"):
            status_code, payload = self.statuses.get(
                body.get("tenant_id"),
                (404, {"success": False, "message": "Tenant not found"}),
            )
            return httpx.Response(status_code, json=payload)

        if request.url.path.endswith("/tenants/subscription/assign-plan"):
            status_code, payload = self.assign_response
            return httpx.Response(status_code, json=payload)

        return httpx.Response(404, json={"success": False, "message": "Not found"})


@pytest.fixture
def status_body():
    """Factory for tenant status response bodies."""
    return status_payload


@pytest.fixture
def tenant_server() -> FakeTenantServer:
    return FakeTenantServer()


@pytest_asyncio.fixture
async def tenant_api(tenant_server: FakeTenantServer) -> AsyncGenerator[TenantApiClient, None]:
    client = TenantApiClient(
        base_url=TENANT_API_URL,
        transport=httpx.MockTransport(tenant_server.handle),
    )
    yield client
    await client.aclose()


# ── Store ────────────────────────────────────────────────────────

@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def session_manager(store, tenant_api) -> OnboardingSessionManager:
    return OnboardingSessionManager(store, tenant_api)


# ── API client ───────────────────────────────────────────────────

@pytest_asyncio.fixture
async def client(session_manager) -> AsyncGenerator[AsyncClient, None]:
    """Test client wired to the in-memory store and fake tenant API."""
    app.dependency_overrides[get_session_manager] = lambda: session_manager

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Catalogue fixtures ───────────────────────────────────────────

@pytest.fixture
def reporting_addon() -> AddonTemplate:
    return AddonTemplate(id=10, name="Advanced Reporting", addon_price=50)


@pytest.fixture
def inventory_addon() -> AddonTemplate:
    return AddonTemplate(id=20, name="Branch Inventory", addon_price=30, pricing_scope=PricingScope.BRANCH)


@pytest.fixture
def support_addon() -> AddonTemplate:
    return AddonTemplate(id=30, name="Priority Support", addon_price=25, is_included=True)


@pytest.fixture
def plan(reporting_addon, inventory_addon, support_addon) -> Plan:
    """Plan from the reference pricing example."""
    return Plan(
        id=1,
        name="Growth",
        monthly_price=100,
        included_branches_count=3,
        annual_discount_percentage=20,
        add_ons=[reporting_addon, inventory_addon, support_addon],
    )


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "api: REST endpoint tests")
    config.addinivalue_line("markers", "cache: Wizard cache and store tests")
