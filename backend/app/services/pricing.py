"""Subscription pricing for the onboarding wizard.

Pure functions, no state. Everything is derived from the selected plan, the
billing cycle and the selected addons each time it is asked for.

Rules:
    - MONTHLY unit price = the listed monthly amount.
    - ANNUAL unit price  = floor(monthly * 12 * (1 - discount/100)), using the
      plan's annual_discount_percentage (missing = 0%).
    - Plan total  = unit price of plan.monthly_price * included_branches_count.
    - Addon totals are computed per pricing scope: sum the monthly prices of
      the non-included addons in that scope, then annualize the SUM once.
      A branch-scoped addon is charged once regardless of how many branches
      it is applied to, and not at all while none of its branches is ticked.

Amounts are handled as Decimal internally so floor() is exact, and returned
as float.
"""

import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from app.schemas.onboarding import (
    AddonLineItem,
    BillingCycle,
    Plan,
    PricingOut,
    PricingScope,
    SelectedAddon,
)

MONTHS_PER_YEAR = 12


def _dec(value) -> Decimal:
    if not value:
        return Decimal(0)
    return Decimal(str(value))


def _amount(value: Decimal) -> float:
    return float(value)


def unit_price(monthly_price, billing_cycle: BillingCycle, discount_percentage=0) -> Decimal:
    """Price of one monthly amount for the given cycle."""
    monthly = _dec(monthly_price)
    if monthly <= 0:
        return Decimal(0)
    if billing_cycle == BillingCycle.MONTHLY:
        return monthly
    factor = 1 - _dec(discount_percentage) / 100
    return Decimal(math.floor(monthly * MONTHS_PER_YEAR * factor))


@dataclass
class Pricing:
    """Totals for one (plan, cycle, addons) combination."""
    billing_cycle: BillingCycle | None = None
    discount_percentage: float = 0
    plan_total: float = 0
    organization_addons_total: float = 0
    branch_addons_total: float = 0
    grand_total: float = 0
    annual_savings: float = 0
    line_items: list[AddonLineItem] = field(default_factory=list)

    def per_addon_price(self, monthly_price) -> float:
        """Display price for a single addon under this cycle and discount."""
        if self.billing_cycle is None:
            return 0
        return _amount(unit_price(monthly_price, self.billing_cycle, self.discount_percentage))

    def to_schema(self) -> PricingOut:
        return PricingOut(
            billing_cycle=self.billing_cycle,
            plan_total=self.plan_total,
            organization_addons_total=self.organization_addons_total,
            branch_addons_total=self.branch_addons_total,
            grand_total=self.grand_total,
            annual_savings=self.annual_savings,
            grand_total_label=(
                format_price_label(self.grand_total, self.billing_cycle)
                if self.billing_cycle else ""
            ),
            addons=self.line_items,
        )


def is_chargeable(addon: SelectedAddon) -> bool:
    """Included addons are free; a branch addon with no ticked branch isn't assigned."""
    if addon.is_included:
        return False
    if addon.pricing_scope == PricingScope.BRANCH:
        return addon.selected_branch_count > 0
    return True


def _scope_monthly_sum(addons: Iterable[SelectedAddon], scope: PricingScope) -> Decimal:
    return sum(
        (_dec(a.addon_price) for a in addons if a.pricing_scope == scope and is_chargeable(a)),
        Decimal(0),
    )


def addon_line_items(
    billing_cycle: BillingCycle,
    addons: list[SelectedAddon] | None,
    discount_percentage=0,
) -> list[AddonLineItem]:
    """One display line per selected addon. Addons that aren't charged total 0."""
    items = []
    for addon in addons or []:
        price = Decimal(0) if addon.is_included else unit_price(
            addon.addon_price, billing_cycle, discount_percentage
        )
        total = price if is_chargeable(addon) else Decimal(0)
        items.append(AddonLineItem(
            addon_id=addon.addon_id,
            name=addon.addon_name,
            pricing_scope=addon.pricing_scope,
            is_included=addon.is_included,
            unit_price=_amount(price),
            applied_branches=addon.selected_branch_count,
            line_total=_amount(total),
            label=format_price_label(_amount(total), billing_cycle),
        ))
    return items


def compute_pricing(
    plan: Plan | None,
    billing_cycle: BillingCycle | None,
    addons: list[SelectedAddon] | None = None,
) -> Pricing:
    """Compute plan, addon and grand totals.

    A missing plan or billing cycle yields an all-zero result whose
    per_addon_price() always returns 0.
    """
    if plan is None or billing_cycle is None:
        return Pricing()

    discount = plan.annual_discount_percentage or 0
    addons = addons or []

    plan_total = unit_price(plan.monthly_price, billing_cycle, discount) * plan.included_branches_count
    org_total = unit_price(_scope_monthly_sum(addons, PricingScope.ORGANIZATION), billing_cycle, discount)
    branch_total = unit_price(_scope_monthly_sum(addons, PricingScope.BRANCH), billing_cycle, discount)
    grand_total = plan_total + org_total + branch_total

    savings = Decimal(0)
    if billing_cycle == BillingCycle.ANNUAL:
        undiscounted = (
            _dec(plan.monthly_price) * plan.included_branches_count
            + _scope_monthly_sum(addons, PricingScope.ORGANIZATION)
            + _scope_monthly_sum(addons, PricingScope.BRANCH)
        ) * MONTHS_PER_YEAR
        savings = max(undiscounted - grand_total, Decimal(0))

    return Pricing(
        billing_cycle=billing_cycle,
        discount_percentage=discount,
        plan_total=_amount(plan_total),
        organization_addons_total=_amount(org_total),
        branch_addons_total=_amount(branch_total),
        grand_total=_amount(grand_total),
        annual_savings=_amount(savings),
        line_items=addon_line_items(billing_cycle, addons, discount),
    )


# ── Labels ───────────────────────────────────────────────────

def billing_cycle_label(billing_cycle: BillingCycle, style: str = "short") -> str:
    """Human label for a cycle.

    Styles: "short" (/month), "ext" (/monthly), "title" (Monthly),
    "period" (per month).
    """
    monthly = billing_cycle == BillingCycle.MONTHLY
    if style == "ext":
        return "/monthly" if monthly else "/yearly"
    if style == "title":
        return "Monthly" if monthly else "Yearly"
    if style == "period":
        return "per month" if monthly else "per year"
    return "/month" if monthly else "/year"


def format_price_label(amount, billing_cycle: BillingCycle) -> str:
    """e.g. "$380.00/month"."""
    return f"${float(amount or 0):,.2f}{billing_cycle_label(billing_cycle)}"
