"""One onboarding wizard session: selections, progress and persistence.

OnboardingSession is the only thing that mutates wizard data. Every
mutation to plan, billing cycle, branches or addons is applied in memory
and then immediately written through to WizardCache (mutate-then-persist),
so a reload never loses in-progress selections.

OnboardingSessionManager keeps a bounded set of live sessions per session
id. A session id it doesn't hold is rebuilt through ProgressRecoveryService.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Callable

from app.config import settings
from app.middleware.exceptions import IllegalTransitionError, WizardValidationError
from app.schemas.onboarding import (
    AddonAssignment,
    AddonBranchSelection,
    AddonTemplate,
    AssignPlanRequest,
    AssignPlanResponse,
    BillingCycle,
    BranchAddonAssignment,
    OnboardingStateOut,
    Plan,
    PricingScope,
    ResumePoint,
    SelectedAddon,
    TenantBasicInfo,
    WizardCacheSnapshot,
    WizardStep,
)
from app.services.addons import AddonSelectionManager
from app.services.branches import BranchRegistry
from app.services.pricing import Pricing, compute_pricing
from app.services.recovery import ProgressRecoveryService
from app.services.state_machine import OnboardingState, OnboardingStateMachine
from app.services.tenant_api import TenantApiClient
from app.services.wizard_cache import WizardCache
from app.utils.store import KeyValueStore

logger = logging.getLogger(__name__)

# Selections are frozen once the plan has gone to payment
LOCKED_STEPS = {WizardStep.PAYMENT, WizardStep.PAYMENT_FAILED, WizardStep.SUCCESS}

REQUIRED_BASIC_INFO_FIELDS = {
    "company_name": "Company name",
    "primary_email": "Primary email",
}


def build_assign_plan_request(
    tenant_id: str,
    plan: Plan,
    billing_cycle: BillingCycle,
    branch_count: int,
    addons: list[SelectedAddon],
) -> AssignPlanRequest:
    """Translate wizard selections into the plan-assignment payload.

    Branch ids on the wire are 1-based. Only ticked branches inside the
    current branch count are sent.
    """
    org_assignments = [
        AddonAssignment(addon_id=a.addon_id)
        for a in addons
        if a.pricing_scope == PricingScope.ORGANIZATION
    ]

    by_branch: dict[int, list[AddonAssignment]] = {}
    for addon in addons:
        if addon.pricing_scope != PricingScope.BRANCH:
            continue
        for selection in addon.branches:
            if selection.is_selected and selection.branch_index < branch_count:
                by_branch.setdefault(selection.branch_index + 1, []).append(
                    AddonAssignment(addon_id=addon.addon_id)
                )

    return AssignPlanRequest(
        tenant_id=tenant_id,
        plan_id=plan.id,
        billing_cycle=billing_cycle,
        branches_count=branch_count,
        organization_addon_assignments=org_assignments,
        branch_addon_assignments=[
            BranchAddonAssignment(branch_id=branch_id, addon_assignments=assignments)
            for branch_id, assignments in sorted(by_branch.items())
        ],
    )


class OnboardingSession:
    def __init__(self, session_id: str, store: KeyValueStore, tenant_api: TenantApiClient):
        self.session_id = session_id
        self.cache = WizardCache(store, session_id)
        self.tenant_api = tenant_api
        self.registry = BranchRegistry()
        self.addons = AddonSelectionManager(self.registry)
        self.plan: Plan | None = None
        self.billing_cycle = BillingCycle.MONTHLY
        self.basic_info = TenantBasicInfo()
        self.machine = OnboardingStateMachine(assign_plan=self._assign_plan)
        self._lock = asyncio.Lock()

    @classmethod
    async def start(
        cls,
        session_id: str,
        store: KeyValueStore,
        tenant_api: TenantApiClient,
        tenant_id: str | None = None,
    ) -> "OnboardingSession":
        session = cls(session_id, store, tenant_api)
        await session.resume(tenant_id)
        return session

    # ── Recovery ─────────────────────────────────────────────

    async def resume(self, tenant_id: str | None = None) -> ResumePoint:
        point = await ProgressRecoveryService(self.cache, self.tenant_api).resolve_initial_step(tenant_id)

        self.machine.state = OnboardingState(
            current_step=point.step,
            completed_steps=set(point.completed_steps),
            tenant_id=point.tenant_id,
        )

        self.plan = None
        self.billing_cycle = BillingCycle.MONTHLY
        self.registry.restore([])
        self.addons.clear()

        self.basic_info = (
            point.restored_data.basic_info
            or await self.cache.load_basic_info()
            or TenantBasicInfo()
        )
        snapshot = point.restored_data.snapshot or await self.cache.load()
        if snapshot is not None:
            self._apply_snapshot(snapshot)

        logger.info(
            f"Session {self.session_id} resumed at {point.step.value}",
            extra={"session_id": self.session_id, "tenant_id": point.tenant_id},
        )
        return point

    def _apply_snapshot(self, snapshot: WizardCacheSnapshot) -> None:
        self.plan = snapshot.selected_plan
        self.billing_cycle = snapshot.billing_cycle
        self.registry.restore(snapshot.branches)
        if self.plan is not None:
            self.registry.included_count = self.plan.included_branches_count
        self.addons.restore(snapshot.selected_addons)

    # ── Views ────────────────────────────────────────────────

    @property
    def tenant_id(self) -> str | None:
        return self.machine.state.tenant_id

    @property
    def current_step(self) -> WizardStep:
        return self.machine.current_step

    def snapshot(self) -> WizardCacheSnapshot:
        return WizardCacheSnapshot(
            selected_plan=self.plan,
            billing_cycle=self.billing_cycle,
            branch_count=self.registry.count,
            branches=self.registry.branches(),
            selected_addons=self.addons.selected_addons(),
        )

    def pricing(self) -> Pricing:
        return compute_pricing(self.plan, self.billing_cycle, self.addons.selected_addons())

    def to_schema(self) -> OnboardingStateOut:
        return OnboardingStateOut(
            session_id=self.session_id,
            current_step=self.machine.current_step,
            completed_steps=self.machine.ordered_completed_steps(),
            tenant_id=self.tenant_id,
            progress_percentage=self.machine.progress_percentage,
            payment_failure=self.machine.payment_failure,
            failure_reason=self.machine.failure_reason(),
            retry_attempts=self.machine.state.retry_attempts,
            selections=self.snapshot(),
            basic_info=self.basic_info,
            pricing=self.pricing().to_schema(),
        )

    # ── Mutations (write-through) ────────────────────────────

    async def _persist(self) -> None:
        await self.cache.save(self.snapshot())

    def _ensure_editable(self, what: str) -> None:
        if self.machine.current_step in LOCKED_STEPS:
            raise IllegalTransitionError(f"change {what}", self.machine.current_step.value)

    async def save_basic_info(self, info: TenantBasicInfo, tenant_id: str | None = None) -> None:
        self._ensure_editable("basic info")
        self.basic_info = info
        if tenant_id:
            self.machine.state.tenant_id = tenant_id
            await self.cache.set_tenant_id(tenant_id)
        await self.cache.save_basic_info(info)

    async def select_plan(self, plan: Plan) -> None:
        self._ensure_editable("plan")
        changed = self.plan is None or self.plan.id != plan.id
        self.plan = plan
        self.registry.set_included_count(plan.included_branches_count)
        if changed:
            self.addons.retain_offered(plan)
        if self.registry.count < plan.included_branches_count:
            self.registry.set_branch_count(plan.included_branches_count)
        await self._persist()

    async def select_billing_cycle(self, billing_cycle: BillingCycle) -> None:
        self._ensure_editable("billing cycle")
        self.billing_cycle = billing_cycle
        await self._persist()

    async def set_branch_count(self, count: int) -> None:
        self._ensure_editable("branches")
        self.registry.set_branch_count(count)
        await self._persist()

    async def rename_branch(self, index: int, name: str) -> None:
        self._ensure_editable("branches")
        self.registry.rename_branch(index, name)
        self.addons.refresh_branch_names()
        await self._persist()

    async def select_addon(
        self,
        template: AddonTemplate,
        branches: list[AddonBranchSelection] | None = None,
    ) -> SelectedAddon:
        self._ensure_editable("addons")
        if self.plan is None:
            raise WizardValidationError("Please select a plan before choosing addons")
        offered = self.plan.addon(template.id)
        if offered is None:
            raise WizardValidationError(f"Addon {template.id} is not offered by plan '{self.plan.name}'")
        selection = self.addons.select(offered, branches)
        await self._persist()
        return selection

    async def remove_addon(self, addon_id: int) -> bool:
        self._ensure_editable("addons")
        removed = self.addons.remove(addon_id)
        await self._persist()
        return removed

    # ── Step validation ──────────────────────────────────────

    def validate_step(self, step: WizardStep) -> None:
        """Raise WizardValidationError if `step`'s own data is incomplete."""
        if step == WizardStep.BASIC_INFO:
            missing = [
                label for name, label in REQUIRED_BASIC_INFO_FIELDS.items()
                if not getattr(self.basic_info, name)
            ]
            if missing:
                raise WizardValidationError(
                    f"Missing required fields: {', '.join(missing)}",
                    details={"missing": missing},
                )
        elif step == WizardStep.PLAN_SELECTION:
            if self.plan is None:
                raise WizardValidationError("Please select a plan to continue")
            if self.registry.count < 1:
                raise WizardValidationError("Branch count must be at least 1")
        elif step == WizardStep.ADDON_SELECTION:
            if self.plan is None:
                raise WizardValidationError("Please select a plan to continue")
            if not self.tenant_id:
                raise WizardValidationError("Tenant ID not found. Please complete previous steps.")

    # ── Transitions ──────────────────────────────────────────

    async def _assign_plan(self) -> AssignPlanResponse:
        request = build_assign_plan_request(
            tenant_id=self.tenant_id,
            plan=self.plan,
            billing_cycle=self.billing_cycle,
            branch_count=self.registry.count,
            addons=self.addons.selected_addons(),
        )
        logger.info(
            f"Assigning plan {request.plan_id} to tenant {request.tenant_id}",
            extra={"session_id": self.session_id, "tenant_id": request.tenant_id},
        )
        return await self.tenant_api.assign_plan_to_tenant(request)

    async def complete_step(self, step: WizardStep) -> WizardStep:
        if step != self.machine.current_step:
            raise IllegalTransitionError(f"complete {step.value}", self.machine.current_step.value)
        self.validate_step(step)

        async with self._lock:
            current = await self.machine.complete(step)

        if current == WizardStep.SUCCESS:
            await self.cache.clear()
        return current

    def previous(self) -> WizardStep:
        return self.machine.previous()

    def payment_failed(self, message: str, code: str) -> WizardStep:
        return self.machine.payment_failed(message, code)

    def retry_payment(self) -> WizardStep:
        return self.machine.retry_payment()

    async def finish(self) -> None:
        """Leave the wizard after SUCCESS. Persisted keys are gone after this."""
        if self.machine.current_step != WizardStep.SUCCESS:
            raise IllegalTransitionError("finish", self.machine.current_step.value)
        await self.cache.clear()


class OnboardingSessionManager:
    """Live sessions keyed by session id, least recently used first.

    The map is bounded: sessions idle longer than `idle_timeout` and the
    oldest ones beyond `max_sessions` are dropped. A dropped session that
    comes back is rebuilt from the store like any unseen session id.
    """

    def __init__(
        self,
        store: KeyValueStore,
        tenant_api: TenantApiClient,
        max_sessions: int | None = None,
        idle_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.tenant_api = tenant_api
        self.max_sessions = settings.max_live_sessions if max_sessions is None else max_sessions
        self.idle_timeout = settings.session_idle_timeout_seconds if idle_timeout is None else idle_timeout
        self._clock = clock
        self._sessions: OrderedDict[str, OnboardingSession] = OrderedDict()
        self._last_seen: dict[str, float] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    async def get(self, session_id: str) -> OnboardingSession:
        session = self._checkout(session_id)
        if session is None:
            session = await OnboardingSession.start(session_id, self.store, self.tenant_api)
            self._checkin(session)
        return session

    async def resume(self, session_id: str, tenant_id: str | None = None) -> OnboardingSession:
        session = self._checkout(session_id)
        if session is None:
            session = OnboardingSession(session_id, self.store, self.tenant_api)
        await session.resume(tenant_id)
        self._checkin(session)
        return session

    def discard(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._last_seen.pop(session_id, None)

    def _checkout(self, session_id: str) -> OnboardingSession | None:
        self._evict_idle()
        session = self._sessions.get(session_id)
        if session is not None:
            self._sessions.move_to_end(session_id)
            self._last_seen[session_id] = self._clock()
        return session

    def _checkin(self, session: OnboardingSession) -> None:
        self._sessions[session.session_id] = session
        self._sessions.move_to_end(session.session_id)
        self._last_seen[session.session_id] = self._clock()
        while len(self._sessions) > self.max_sessions:
            evicted, _ = self._sessions.popitem(last=False)
            self._last_seen.pop(evicted, None)
            logger.info(f"Evicted session {evicted}: live session limit reached")

    def _evict_idle(self) -> None:
        if not self.idle_timeout:
            return
        cutoff = self._clock() - self.idle_timeout
        while self._sessions:
            oldest = next(iter(self._sessions))
            if self._last_seen.get(oldest, 0) > cutoff:
                break
            self._sessions.popitem(last=False)
            self._last_seen.pop(oldest, None)
            logger.debug(f"Evicted idle session {oldest}")
