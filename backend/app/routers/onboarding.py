"""Tenant onboarding wizard: resumable account setup with plan and addon selection.

Endpoints (all under /api/onboarding/sessions/{session_id}):
  POST   /resume                  → resolve where the user resumes
  GET    /                        → progress + selections + pricing
  PUT    /basic-info              → save basic-info form (+ tenant_id)
  PUT    /plan                    → select plan
  PUT    /billing-cycle           → monthly / yearly
  PUT    /branches                → set branch count
  PATCH  /branches/{index}        → rename a branch
  PUT    /addons                  → select (or reconfigure) an addon
  DELETE /addons/{addon_id}       → remove an addon
  GET    /pricing                 → pricing breakdown
  POST   /steps/{step}/complete   → complete the current step
  POST   /previous                → step back
  POST   /payment/failed          → record a payment failure
  POST   /payment/retry           → retry after a failure
  POST   /finish                  → leave the wizard after success

Design:
  - Every selection change is written through to the wizard cache before
    the response goes out.
  - Progress comes from the tenant management API on resume, never from
    the cache alone.
"""

from fastapi import APIRouter, Depends, Request, status

from app.middleware.exceptions import ConsoleException
from app.schemas.onboarding import (
    AddonSelect,
    BasicInfoUpdate,
    BillingCycleSelect,
    BranchCountUpdate,
    BranchRename,
    OnboardingStateOut,
    PaymentFailedRequest,
    PlanSelect,
    PricingOut,
    ResumeRequest,
    TenantBasicInfo,
    WizardStep,
)
from app.services.onboarding import OnboardingSession, OnboardingSessionManager

router = APIRouter()


def get_session_manager(request: Request) -> OnboardingSessionManager:
    return request.app.state.session_manager


async def get_session(
    session_id: str,
    manager: OnboardingSessionManager = Depends(get_session_manager),
) -> OnboardingSession:
    return await manager.get(session_id)


# ── Progress ─────────────────────────────────────────────────

@router.post("/sessions/{session_id}/resume", response_model=OnboardingStateOut)
async def resume_session(
    session_id: str,
    body: ResumeRequest | None = None,
    manager: OnboardingSessionManager = Depends(get_session_manager),
):
    """Re-run progress recovery against the tenant management API."""
    tenant_id = body.tenant_id if body else None
    session = await manager.resume(session_id, tenant_id)
    return session.to_schema()


@router.get("/sessions/{session_id}", response_model=OnboardingStateOut)
async def get_state(session: OnboardingSession = Depends(get_session)):
    return session.to_schema()


@router.get("/sessions/{session_id}/pricing", response_model=PricingOut)
async def get_pricing(session: OnboardingSession = Depends(get_session)):
    return session.pricing().to_schema()


# ── Selections ───────────────────────────────────────────────

@router.put("/sessions/{session_id}/basic-info", response_model=OnboardingStateOut)
async def save_basic_info(
    body: BasicInfoUpdate,
    session: OnboardingSession = Depends(get_session),
):
    info = TenantBasicInfo(**body.model_dump(exclude={"tenant_id"}))
    await session.save_basic_info(info, body.tenant_id)
    return session.to_schema()


@router.put("/sessions/{session_id}/plan", response_model=OnboardingStateOut)
async def select_plan(
    body: PlanSelect,
    session: OnboardingSession = Depends(get_session),
):
    await session.select_plan(body.plan)
    return session.to_schema()


@router.put("/sessions/{session_id}/billing-cycle", response_model=OnboardingStateOut)
async def select_billing_cycle(
    body: BillingCycleSelect,
    session: OnboardingSession = Depends(get_session),
):
    await session.select_billing_cycle(body.billing_cycle)
    return session.to_schema()


@router.put("/sessions/{session_id}/branches", response_model=OnboardingStateOut)
async def set_branch_count(
    body: BranchCountUpdate,
    session: OnboardingSession = Depends(get_session),
):
    await session.set_branch_count(body.branch_count)
    return session.to_schema()


@router.patch("/sessions/{session_id}/branches/{index}", response_model=OnboardingStateOut)
async def rename_branch(
    index: int,
    body: BranchRename,
    session: OnboardingSession = Depends(get_session),
):
    await session.rename_branch(index, body.name)
    return session.to_schema()


@router.put("/sessions/{session_id}/addons", response_model=OnboardingStateOut)
async def select_addon(
    body: AddonSelect,
    session: OnboardingSession = Depends(get_session),
):
    await session.select_addon(body.addon, body.branches)
    return session.to_schema()


@router.delete("/sessions/{session_id}/addons/{addon_id}", response_model=OnboardingStateOut)
async def remove_addon(
    addon_id: int,
    session: OnboardingSession = Depends(get_session),
):
    if not await session.remove_addon(addon_id):
        raise ConsoleException(
            message=f"Addon {addon_id} is not selected",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="ADDON_NOT_SELECTED",
        )
    return session.to_schema()


# ── Navigation ───────────────────────────────────────────────

@router.post("/sessions/{session_id}/steps/{step}/complete", response_model=OnboardingStateOut)
async def complete_step(
    step: WizardStep,
    session: OnboardingSession = Depends(get_session),
):
    """Complete the current step. ADDON_SELECTION assigns the plan first."""
    await session.complete_step(step)
    return session.to_schema()


@router.post("/sessions/{session_id}/previous", response_model=OnboardingStateOut)
async def previous_step(session: OnboardingSession = Depends(get_session)):
    session.previous()
    return session.to_schema()


@router.post("/sessions/{session_id}/payment/failed", response_model=OnboardingStateOut)
async def payment_failed(
    body: PaymentFailedRequest,
    session: OnboardingSession = Depends(get_session),
):
    session.payment_failed(body.message, body.code)
    return session.to_schema()


@router.post("/sessions/{session_id}/payment/retry", response_model=OnboardingStateOut)
async def retry_payment(session: OnboardingSession = Depends(get_session)):
    session.retry_payment()
    return session.to_schema()


@router.post("/sessions/{session_id}/finish", status_code=status.HTTP_204_NO_CONTENT)
async def finish(
    session_id: str,
    session: OnboardingSession = Depends(get_session),
    manager: OnboardingSessionManager = Depends(get_session_manager),
):
    await session.finish()
    manager.discard(session_id)
