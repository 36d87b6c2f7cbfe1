"""Onboarding wizard state machine.

Forward order:
    BASIC_INFO → PLAN_SELECTION → ADDON_SELECTION → PLAN_SUMMARY → PAYMENT → SUCCESS

PAYMENT_FAILED hangs off PAYMENT: a failed payment moves there, a retry moves
back. Every legal move is listed in TRANSITIONS; anything else raises
IllegalTransitionError.

Completing ADDON_SELECTION first awaits the plan-assignment call and only
advances if it succeeds. If the wizard moved while that call was in flight,
even back to ADDON_SELECTION, its result is ignored.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

from app.middleware.exceptions import IllegalTransitionError, PlanAssignmentError
from app.schemas.onboarding import AssignPlanResponse, FailureReason, PaymentFailure, WizardStep

logger = logging.getLogger(__name__)


class WizardAction(str, Enum):
    COMPLETE = "complete"
    PREVIOUS = "previous"
    PAYMENT_FAILED = "payment_failed"
    RETRY_PAYMENT = "retry_payment"


FORWARD_ORDER: list[WizardStep] = [
    WizardStep.BASIC_INFO,
    WizardStep.PLAN_SELECTION,
    WizardStep.ADDON_SELECTION,
    WizardStep.PLAN_SUMMARY,
    WizardStep.PAYMENT,
    WizardStep.SUCCESS,
]

TRANSITIONS: dict[tuple[WizardStep, WizardAction], WizardStep] = {
    (WizardStep.BASIC_INFO, WizardAction.COMPLETE): WizardStep.PLAN_SELECTION,
    (WizardStep.PLAN_SELECTION, WizardAction.COMPLETE): WizardStep.ADDON_SELECTION,
    (WizardStep.ADDON_SELECTION, WizardAction.COMPLETE): WizardStep.PLAN_SUMMARY,
    (WizardStep.PLAN_SUMMARY, WizardAction.COMPLETE): WizardStep.PAYMENT,
    (WizardStep.PAYMENT, WizardAction.COMPLETE): WizardStep.SUCCESS,
    (WizardStep.BASIC_INFO, WizardAction.PREVIOUS): WizardStep.BASIC_INFO,
    (WizardStep.PLAN_SELECTION, WizardAction.PREVIOUS): WizardStep.BASIC_INFO,
    (WizardStep.ADDON_SELECTION, WizardAction.PREVIOUS): WizardStep.PLAN_SELECTION,
    (WizardStep.PLAN_SUMMARY, WizardAction.PREVIOUS): WizardStep.ADDON_SELECTION,
    (WizardStep.PAYMENT, WizardAction.PREVIOUS): WizardStep.PLAN_SUMMARY,
    (WizardStep.PAYMENT_FAILED, WizardAction.PREVIOUS): WizardStep.PLAN_SUMMARY,
    (WizardStep.PAYMENT, WizardAction.PAYMENT_FAILED): WizardStep.PAYMENT_FAILED,
    (WizardStep.PAYMENT_FAILED, WizardAction.RETRY_PAYMENT): WizardStep.PAYMENT,
}


# ── Payment failure catalogue ─────────────────────────────────

DEFAULT_FAILURE_CODE = "PROCESSING_ERROR"

PAYMENT_FAILURE_REASONS: dict[str, FailureReason] = {
    reason.code: reason
    for reason in [
        FailureReason(
            code="CARD_DECLINED",
            title="Card Declined",
            description="Your payment method was declined by your bank.",
            suggestions=[
                "Check that you entered the correct card details",
                "Ensure your card has sufficient funds",
                "Contact your bank to verify the transaction",
                "Try using a different payment method",
            ],
        ),
        FailureReason(
            code="INSUFFICIENT_FUNDS",
            title="Insufficient Funds",
            description="Your account does not have enough funds for this transaction.",
            suggestions=[
                "Add funds to your account",
                "Use a different payment method",
                "Contact your bank for assistance",
            ],
        ),
        FailureReason(
            code="EXPIRED_CARD",
            title="Expired Card",
            description="The payment method you provided has expired.",
            suggestions=[
                "Update your payment method with current expiry date",
                "Use a different valid payment method",
            ],
        ),
        FailureReason(
            code="INVALID_CARD",
            title="Invalid Card Details",
            description="The card information provided appears to be invalid.",
            suggestions=[
                "Double-check your card number",
                "Verify the expiry date and CVV",
                "Ensure billing address matches your card",
            ],
        ),
        FailureReason(
            code="PROCESSING_ERROR",
            title="Processing Error",
            description="A technical error occurred while processing your payment.",
            suggestions=[
                "Try again in a few minutes",
                "Use a different payment method",
                "Contact our support team if the issue persists",
            ],
        ),
    ]
}


def lookup_failure_reason(code: str | None) -> FailureReason:
    """Catalogue entry for a gateway code; unknown codes map to PROCESSING_ERROR."""
    key = (code or "").upper()
    return PAYMENT_FAILURE_REASONS.get(key, PAYMENT_FAILURE_REASONS[DEFAULT_FAILURE_CODE])


# ── State ─────────────────────────────────────────────────────

PlanAssigner = Callable[[], Awaitable[AssignPlanResponse]]


@dataclass
class OnboardingState:
    current_step: WizardStep = WizardStep.BASIC_INFO
    completed_steps: set[WizardStep] = field(default_factory=set)
    tenant_id: str | None = None
    payment_failure: PaymentFailure | None = None
    retry_attempts: int = 0
    # Bumped on every move; an in-flight result is stale once it changes
    generation: int = 0


class OnboardingStateMachine:
    def __init__(
        self,
        state: OnboardingState | None = None,
        assign_plan: PlanAssigner | None = None,
    ):
        self.state = state or OnboardingState()
        self.assign_plan = assign_plan

    # ── Read-only views ──────────────────────────────────────

    @property
    def current_step(self) -> WizardStep:
        return self.state.current_step

    @property
    def completed_steps(self) -> set[WizardStep]:
        return set(self.state.completed_steps)

    @property
    def payment_failure(self) -> PaymentFailure | None:
        return self.state.payment_failure

    def ordered_completed_steps(self) -> list[WizardStep]:
        return [s for s in FORWARD_ORDER if s in self.state.completed_steps]

    def is_completed(self, step: WizardStep) -> bool:
        return step in self.state.completed_steps

    def can(self, action: WizardAction) -> bool:
        return (self.state.current_step, action) in TRANSITIONS

    @property
    def progress_percentage(self) -> int:
        step = self.state.current_step
        if step == WizardStep.PAYMENT_FAILED:
            step = WizardStep.PAYMENT
        position = FORWARD_ORDER.index(step) + 1
        return round(position / len(FORWARD_ORDER) * 100)

    def failure_reason(self) -> FailureReason | None:
        if self.state.payment_failure is None:
            return None
        return lookup_failure_reason(self.state.payment_failure.code)

    # ── Transitions ──────────────────────────────────────────

    def _target(self, action: WizardAction) -> WizardStep:
        target = TRANSITIONS.get((self.state.current_step, action))
        if target is None:
            raise IllegalTransitionError(action.value, self.state.current_step.value)
        return target

    def _move(self, target: WizardStep, action: WizardAction) -> None:
        logger.info(
            f"Wizard {action.value}: {self.state.current_step.value} -> {target.value}",
            extra={"tenant_id": self.state.tenant_id},
        )
        self.state.current_step = target
        self.state.generation += 1

    async def complete(self, step: WizardStep) -> WizardStep:
        """Mark `step` complete and advance. Returns the (possibly unchanged) current step."""
        if step != self.state.current_step:
            raise IllegalTransitionError(
                f"complete {step.value}", self.state.current_step.value
            )
        target = self._target(WizardAction.COMPLETE)

        if step == WizardStep.ADDON_SELECTION:
            if not await self._assign_plan():
                return self.state.current_step

        self.state.completed_steps.add(step)
        self._move(target, WizardAction.COMPLETE)
        return self.state.current_step

    async def _assign_plan(self) -> bool:
        """Run the plan-assignment call. False means the result went stale.

        Stale means the wizard moved at all while the call was in flight, even
        if it has since come back to the same step.
        """
        if self.assign_plan is None:
            raise PlanAssignmentError("No plan assignment handler configured")

        state, generation = self.state, self.state.generation

        try:
            result = await self.assign_plan()
        except PlanAssignmentError:
            if self._moved_since(state, generation):
                logger.info("Ignoring plan assignment failure: wizard moved while it was in flight")
                return False
            raise
        except Exception as e:
            if self._moved_since(state, generation):
                logger.info("Ignoring plan assignment error: wizard moved while it was in flight")
                return False
            logger.warning(
                f"Plan assignment raised: {e}",
                extra={"tenant_id": self.state.tenant_id},
            )
            raise PlanAssignmentError(f"Failed to assign plan: {e}") from e

        if self._moved_since(state, generation):
            logger.info(
                f"Ignoring plan assignment result: wizard moved (now at {self.state.current_step.value})",
                extra={"tenant_id": self.state.tenant_id},
            )
            return False

        if not result.success:
            error = result.error
            if isinstance(error, dict):
                error = error.get("message") or str(error)
            raise PlanAssignmentError(error or result.message or "Failed to assign plan to tenant")
        return True

    def _moved_since(self, state: OnboardingState, generation: int) -> bool:
        return self.state is not state or state.generation != generation

    def previous(self) -> WizardStep:
        """Step back one position. A no-op at BASIC_INFO."""
        target = self._target(WizardAction.PREVIOUS)
        if target != self.state.current_step:
            if self.state.current_step == WizardStep.PAYMENT_FAILED:
                self.state.payment_failure = None
            self._move(target, WizardAction.PREVIOUS)
        return self.state.current_step

    def payment_failed(self, message: str, code: str) -> WizardStep:
        target = self._target(WizardAction.PAYMENT_FAILED)
        self.state.payment_failure = PaymentFailure(message=message, code=code)
        logger.warning(
            f"Payment failed ({code}): {message}",
            extra={"tenant_id": self.state.tenant_id},
        )
        self._move(target, WizardAction.PAYMENT_FAILED)
        return self.state.current_step

    def retry_payment(self) -> WizardStep:
        target = self._target(WizardAction.RETRY_PAYMENT)
        self.state.payment_failure = None
        self.state.retry_attempts += 1
        self._move(target, WizardAction.RETRY_PAYMENT)
        return self.state.current_step
