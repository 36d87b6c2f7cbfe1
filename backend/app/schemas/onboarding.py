"""Pydantic schemas for the tenant onboarding wizard.

Three groups:
  - catalogue shapes fetched from plan management (Plan, AddonTemplate)
  - wizard selections persisted between visits (WizardCacheSnapshot and
    everything nested in it, TenantBasicInfo)
  - tenant management API payloads and the wizard's own REST bodies
"""

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator


class BillingCycle(str, enum.Enum):
    MONTHLY = "monthly"
    ANNUAL = "yearly"


class PricingScope(str, enum.Enum):
    ORGANIZATION = "organization"
    BRANCH = "branch"


class WizardStep(str, enum.Enum):
    BASIC_INFO = "basic_info"
    PLAN_SELECTION = "plan_selection"
    ADDON_SELECTION = "addon_selection"
    PLAN_SUMMARY = "plan_summary"
    PAYMENT = "payment"
    PAYMENT_FAILED = "payment_failed"
    SUCCESS = "success"


# ── Plan catalogue ──────────────────────────────────────────

class AddonTemplate(BaseModel):
    id: int
    name: str
    addon_price: float = 0
    pricing_scope: PricingScope = PricingScope.ORGANIZATION
    is_included: bool = False

    model_config = {"frozen": True}


class Plan(BaseModel):
    id: int
    name: str
    monthly_price: float = 0
    included_branches_count: int = Field(default=1, ge=1)
    annual_discount_percentage: float | None = Field(default=0, ge=0, le=100)
    add_ons: list[AddonTemplate] = []

    model_config = {"frozen": True}

    def addon(self, addon_id: int) -> AddonTemplate | None:
        for template in self.add_ons:
            if template.id == addon_id:
                return template
        return None


# ── Wizard selections ───────────────────────────────────────

class Branch(BaseModel):
    index: int = Field(ge=0)
    name: str
    is_included_in_plan_default: bool = False


class AddonBranchSelection(BaseModel):
    branch_index: int = Field(ge=0)
    branch_name: str = ""
    is_selected: bool = True


class SelectedAddon(BaseModel):
    addon_id: int
    addon_name: str = ""
    addon_price: float = 0
    pricing_scope: PricingScope
    is_included: bool = False
    branches: list[AddonBranchSelection] = []

    @model_validator(mode="after")
    def _org_addons_have_no_branches(self):
        if self.pricing_scope == PricingScope.ORGANIZATION and self.branches:
            raise ValueError("Organization-scoped addons cannot carry branch selections")
        return self

    @property
    def selected_branch_count(self) -> int:
        return sum(1 for b in self.branches if b.is_selected)


class WizardCacheSnapshot(BaseModel):
    """Persisted projection of the wizard selections (`selected_plan_data`)."""
    selected_plan: Plan | None = None
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    branch_count: int = Field(default=0, ge=0)
    branches: list[Branch] = []
    selected_addons: list[SelectedAddon] = []

    @model_validator(mode="after")
    def _consistent_branches(self):
        if len(self.branches) != self.branch_count:
            raise ValueError("branch_count does not match branches")
        if [b.index for b in self.branches] != list(range(self.branch_count)):
            raise ValueError("Branch indices must be contiguous from 0")
        seen: set[int] = set()
        for addon in self.selected_addons:
            if addon.addon_id in seen:
                raise ValueError(f"Duplicate addon {addon.addon_id}")
            seen.add(addon.addon_id)
            for selection in addon.branches:
                if selection.branch_index >= self.branch_count:
                    raise ValueError(
                        f"Addon {addon.addon_id} references missing branch {selection.branch_index}"
                    )
        return self


class TenantBasicInfo(BaseModel):
    """Basic-info step fields (`tenant_form_data`)."""
    company_name: str | None = None
    contact_person: str | None = None
    primary_email: str | None = None
    primary_phone: str | None = None
    address_line1: str | None = None
    address_line2: str | None = None
    city: str | None = None
    state_province: str | None = None
    postal_code: str | None = None
    country: str | None = None


class PaymentFailure(BaseModel):
    message: str
    code: str


class FailureReason(BaseModel):
    code: str
    title: str
    description: str
    suggestions: list[str] = []


# ── Tenant management API ───────────────────────────────────

class VerificationStatus(BaseModel):
    email_verified: bool = False
    phone_verified: bool = False
    both_verified: bool = False
    email_verified_at: datetime | None = None
    phone_verified_at: datetime | None = None


class BasicInfoStatus(BaseModel):
    is_complete: bool = False
    validation_errors: list[Any] | dict[str, Any] = []
    validation_message: str | None = None


class TenantStatusData(BaseModel):
    tenant_info: TenantBasicInfo = TenantBasicInfo()
    verification_status: VerificationStatus = VerificationStatus()
    basic_info_status: BasicInfoStatus = BasicInfoStatus()


class TenantStatusResponse(BaseModel):
    success: bool
    message: str | None = None
    data: TenantStatusData | None = None


class AddonAssignment(BaseModel):
    addon_id: int
    feature_level: str = "basic"


class BranchAddonAssignment(BaseModel):
    branch_id: int  # 1-based
    addon_assignments: list[AddonAssignment]


class AssignPlanRequest(BaseModel):
    tenant_id: str
    plan_id: int
    billing_cycle: BillingCycle
    branches_count: int = Field(ge=1)
    organization_addon_assignments: list[AddonAssignment] = []
    branch_addon_assignments: list[BranchAddonAssignment] = []


class AssignPlanResponse(BaseModel):
    success: bool
    message: str | None = None
    error: str | dict[str, Any] | None = None


# ── Recovery ────────────────────────────────────────────────

class RestoredData(BaseModel):
    basic_info: TenantBasicInfo | None = None
    snapshot: WizardCacheSnapshot | None = None
    validation_errors: list[Any] | dict[str, Any] = []
    validation_message: str | None = None


class ResumePoint(BaseModel):
    step: WizardStep
    completed_steps: list[WizardStep] = []
    tenant_id: str | None = None
    restored_data: RestoredData = RestoredData()


# ── REST bodies ─────────────────────────────────────────────

class ResumeRequest(BaseModel):
    tenant_id: str | None = None


class BasicInfoUpdate(TenantBasicInfo):
    tenant_id: str | None = None


class PlanSelect(BaseModel):
    plan: Plan


class BillingCycleSelect(BaseModel):
    billing_cycle: BillingCycle


class BranchCountUpdate(BaseModel):
    branch_count: int


class BranchRename(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class AddonSelect(BaseModel):
    addon: AddonTemplate
    branches: list[AddonBranchSelection] | None = None


class PaymentFailedRequest(BaseModel):
    message: str = "Payment processing failed"
    code: str = "PROCESSING_ERROR"


class AddonLineItem(BaseModel):
    addon_id: int
    name: str
    pricing_scope: PricingScope
    is_included: bool
    unit_price: float
    applied_branches: int
    line_total: float
    label: str


class PricingOut(BaseModel):
    billing_cycle: BillingCycle | None = None
    plan_total: float = 0
    organization_addons_total: float = 0
    branch_addons_total: float = 0
    grand_total: float = 0
    annual_savings: float = 0
    grand_total_label: str = ""
    addons: list[AddonLineItem] = []


class OnboardingStateOut(BaseModel):
    session_id: str
    current_step: WizardStep
    completed_steps: list[WizardStep]
    tenant_id: str | None = None
    progress_percentage: int
    payment_failure: PaymentFailure | None = None
    failure_reason: FailureReason | None = None
    retry_attempts: int = 0
    selections: WizardCacheSnapshot
    basic_info: TenantBasicInfo
    pricing: PricingOut
