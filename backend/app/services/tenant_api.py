"""Client for the tenant management API.

Only the two calls the onboarding wizard needs:
  - check_tenant_status()    → tenant info, verification and basic-info status
  - assign_plan_to_tenant()  → plan, billing cycle, branches and addons

Timeouts are set here at the transport boundary (settings.tenant_api_timeout_seconds);
the wizard core never times calls out itself.
"""

import logging

import httpx
from pydantic import ValidationError

from app.config import settings
from app.middleware.exceptions import ReconciliationError, TenantApiError
from app.schemas.onboarding import (
    AssignPlanRequest,
    AssignPlanResponse,
    TenantStatusData,
    TenantStatusResponse,
)

logger = logging.getLogger(__name__)

STATUS_PATH = "/tenants/account/status"
ASSIGN_PLAN_PATH = "/tenants/subscription/assign-plan"


class TenantApiClient:
    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.base_url = (base_url or settings.tenant_api_base_url).rstrip("/")
        self.timeout = timeout or settings.tenant_api_timeout_seconds
        self._transport = transport
        self._headers = headers or {}
        self._client: httpx.AsyncClient | None = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers=self._headers,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        try:
            return await self._http().post(path, json=payload)
        except httpx.TimeoutException as e:
            raise TenantApiError(f"Tenant API timeout on {path}") from e
        except httpx.HTTPError as e:
            raise TenantApiError(f"Tenant API request to {path} failed: {e}") from e

    async def check_tenant_status(self, tenant_id: str) -> TenantStatusData:
        """Fetch server-confirmed onboarding status for a tenant.

        Raises ReconciliationError on any failure: transport, non-2xx,
        unparseable body, or a response that reports success=false.
        """
        try:
            response = await self._post(STATUS_PATH, {"tenant_id": tenant_id})
        except TenantApiError as e:
            raise ReconciliationError(e.message) from e

        if response.status_code != 200:
            raise ReconciliationError(
                f"Tenant status check returned HTTP {response.status_code}"
            )

        try:
            body = TenantStatusResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise ReconciliationError("Tenant status response was malformed") from e

        if not body.success or body.data is None:
            raise ReconciliationError(body.message or "Tenant status check was not successful")
        return body.data

    async def assign_plan_to_tenant(self, request: AssignPlanRequest) -> AssignPlanResponse:
        """Submit the plan configuration.

        A business rejection comes back as success=False with the server's
        error payload. Transport failures raise TenantApiError.
        """
        response = await self._post(ASSIGN_PLAN_PATH, request.model_dump(mode="json"))

        try:
            body = AssignPlanResponse.model_validate_json(response.content)
        except ValidationError:
            logger.warning(
                f"Unparseable assign-plan response (HTTP {response.status_code})",
                extra={"tenant_id": request.tenant_id},
            )
            return AssignPlanResponse(
                success=False,
                error=f"Unexpected response from plan assignment (HTTP {response.status_code})",
            )

        if response.status_code >= 400 and body.success:
            body = AssignPlanResponse(
                success=False,
                message=body.message,
                error=body.error or f"HTTP {response.status_code}",
            )
        return body
