"""Decide where a returning user resumes the onboarding wizard.

Progress is what the tenant management API confirms, never what the local
cache claims. The cache only pre-fills earlier choices.

Resolution:
  no tenant_id                               → BASIC_INFO, nothing completed
  status ok, basic info complete AND verified → PLAN_SELECTION, BASIC_INFO completed
  status ok, otherwise                        → BASIC_INFO (redo)
  status call fails                           → clear everything, BASIC_INFO
"""

import logging
from typing import Protocol

from app.middleware.exceptions import ReconciliationError, TenantApiError
from app.schemas.onboarding import (
    RestoredData,
    ResumePoint,
    TenantBasicInfo,
    TenantStatusData,
    WizardStep,
)
from app.services.wizard_cache import WizardCache

logger = logging.getLogger(__name__)


class TenantStatusSource(Protocol):
    async def check_tenant_status(self, tenant_id: str) -> TenantStatusData: ...


def merge_basic_info(
    current: TenantBasicInfo | None,
    restored: TenantBasicInfo,
) -> TenantBasicInfo:
    """Server values win; fields the server left empty keep the local value."""
    merged = (current or TenantBasicInfo()).model_dump()
    for name, value in restored.model_dump().items():
        if value not in (None, ""):
            merged[name] = value
    return TenantBasicInfo(**merged)


def check_consistency(status: TenantStatusData) -> None:
    """Reject status payloads that contradict themselves."""
    verification = status.verification_status
    if verification.both_verified != (verification.email_verified and verification.phone_verified):
        raise ReconciliationError("Tenant verification status is inconsistent")


class ProgressRecoveryService:
    def __init__(self, cache: WizardCache, status_api: TenantStatusSource):
        self.cache = cache
        self.status_api = status_api

    async def resolve_initial_step(self, tenant_id: str | None = None) -> ResumePoint:
        tenant_id = tenant_id or await self.cache.get_tenant_id()
        if not tenant_id:
            return ResumePoint(step=WizardStep.BASIC_INFO)

        try:
            status = await self.status_api.check_tenant_status(tenant_id)
            check_consistency(status)
        except TenantApiError as e:
            logger.warning(
                f"Progress recovery failed for tenant {tenant_id}, restarting wizard: {e.message}",
                extra={"tenant_id": tenant_id, "session_id": self.cache.session_id},
            )
            await self.cache.clear()
            return ResumePoint(step=WizardStep.BASIC_INFO)

        await self.cache.set_tenant_id(tenant_id)

        basic_info = merge_basic_info(await self.cache.load_basic_info(), status.tenant_info)
        await self.cache.save_basic_info(basic_info)

        restored = RestoredData(
            basic_info=basic_info,
            snapshot=await self.cache.load(),
            validation_errors=status.basic_info_status.validation_errors,
            validation_message=status.basic_info_status.validation_message,
        )

        satisfied = (
            status.basic_info_status.is_complete
            and status.verification_status.both_verified
        )
        if not satisfied:
            logger.info(
                f"Tenant {tenant_id} must redo basic info "
                f"(complete={status.basic_info_status.is_complete}, "
                f"verified={status.verification_status.both_verified})"
            )
            return ResumePoint(
                step=WizardStep.BASIC_INFO,
                tenant_id=tenant_id,
                restored_data=restored,
            )

        logger.info(f"Tenant {tenant_id} resumes at plan selection")
        return ResumePoint(
            step=WizardStep.PLAN_SELECTION,
            completed_steps=[WizardStep.BASIC_INFO],
            tenant_id=tenant_id,
            restored_data=restored,
        )
