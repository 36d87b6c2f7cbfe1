"""Addon selections for the onboarding wizard.

Holds at most one SelectedAddon per addon_id, in selection order.
Organization-scoped addons carry no branch list. Branch-scoped addons carry
the full list of branch slots they were configured for; indices that don't
exist in the BranchRegistry are trimmed on the way in, and dropped again
whenever the registry shrinks.
"""

import logging

from app.middleware.exceptions import WizardValidationError
from app.schemas.onboarding import (
    AddonBranchSelection,
    AddonTemplate,
    Plan,
    PricingScope,
    SelectedAddon,
)
from app.services.branches import BranchRegistry

logger = logging.getLogger(__name__)


class AddonSelectionManager:
    def __init__(self, registry: BranchRegistry):
        self.registry = registry
        self._selected: list[SelectedAddon] = []
        registry.on_truncate(self._drop_branches_from)

    def __len__(self) -> int:
        return len(self._selected)

    def selected_addons(self) -> list[SelectedAddon]:
        return [a.model_copy(deep=True) for a in self._selected]

    def select(
        self,
        template: AddonTemplate,
        branch_selections: list[AddonBranchSelection] | None = None,
    ) -> SelectedAddon:
        """Add or replace the selection for `template`.

        Re-selecting an addon replaces its branch list wholesale.
        """
        branches: list[AddonBranchSelection] = []
        if template.pricing_scope == PricingScope.BRANCH:
            if branch_selections is None:
                raise WizardValidationError(
                    f"Addon '{template.name}' is branch-scoped and needs a branch selection"
                )
            branches = self._valid_branches(template, branch_selections)

        selection = SelectedAddon(
            addon_id=template.id,
            addon_name=template.name,
            addon_price=template.addon_price,
            pricing_scope=template.pricing_scope,
            is_included=template.is_included,
            branches=branches,
        )

        for position, existing in enumerate(self._selected):
            if existing.addon_id == template.id:
                self._selected[position] = selection
                break
        else:
            self._selected.append(selection)
        return selection.model_copy(deep=True)

    def remove(self, addon_id: int) -> bool:
        """Remove the addon entirely. Returns False if it wasn't selected."""
        before = len(self._selected)
        self._selected = [a for a in self._selected if a.addon_id != addon_id]
        return len(self._selected) != before

    def is_selected(self, addon_id: int) -> bool:
        addon = self._find(addon_id)
        if addon is None:
            return False
        if addon.pricing_scope == PricingScope.ORGANIZATION:
            return True
        # A branch addon with no branch ticked isn't really selected
        return addon.selected_branch_count > 0

    def get_selection(self, addon_id: int) -> SelectedAddon | None:
        addon = self._find(addon_id)
        return addon.model_copy(deep=True) if addon else None

    def restore(self, addons: list[SelectedAddon]) -> None:
        """Load selections from a snapshot, re-applying the branch rules."""
        self._selected = []
        for addon in addons:
            template = AddonTemplate(
                id=addon.addon_id,
                name=addon.addon_name,
                addon_price=addon.addon_price,
                pricing_scope=addon.pricing_scope,
                is_included=addon.is_included,
            )
            self.select(template, addon.branches if addon.pricing_scope == PricingScope.BRANCH else None)

    def clear(self) -> None:
        self._selected = []

    def retain_offered(self, plan: Plan) -> list[int]:
        """Drop selections the plan doesn't offer. Returns the dropped ids."""
        offered = {t.id for t in plan.add_ons}
        dropped = [a.addon_id for a in self._selected if a.addon_id not in offered]
        if dropped:
            self._selected = [a for a in self._selected if a.addon_id in offered]
            logger.info(f"Dropped addons {dropped} not offered by plan {plan.id}")
        return dropped

    def refresh_branch_names(self) -> None:
        for addon in self._selected:
            for selection in addon.branches:
                if self.registry.has_index(selection.branch_index):
                    selection.branch_name = self.registry.name_of(selection.branch_index)

    def _find(self, addon_id: int) -> SelectedAddon | None:
        for addon in self._selected:
            if addon.addon_id == addon_id:
                return addon
        return None

    def _valid_branches(
        self,
        template: AddonTemplate,
        branch_selections: list[AddonBranchSelection],
    ) -> list[AddonBranchSelection]:
        kept: list[AddonBranchSelection] = []
        seen: set[int] = set()
        for selection in branch_selections:
            index = selection.branch_index
            if not self.registry.has_index(index):
                logger.warning(
                    f"Ignoring branch {index} for addon {template.id}: "
                    f"out of range (branch count: {self.registry.count})"
                )
                continue
            if index in seen:
                logger.warning(f"Ignoring duplicate branch {index} for addon {template.id}")
                continue
            seen.add(index)
            kept.append(AddonBranchSelection(
                branch_index=index,
                branch_name=self.registry.name_of(index),
                is_selected=selection.is_selected,
            ))
        return kept

    def _drop_branches_from(self, branch_count: int) -> None:
        for addon in self._selected:
            if addon.pricing_scope != PricingScope.BRANCH:
                continue
            addon.branches = [b for b in addon.branches if b.branch_index < branch_count]
