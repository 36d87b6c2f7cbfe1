"""Branch slots for a tenant-to-be.

Indices are always contiguous 0..n-1. Growing the count appends default-named
branches; shrinking truncates and tells every registered listener the new
count so it can drop references to the removed indices.
"""

import logging
from typing import Callable

from app.config import settings
from app.middleware.exceptions import BranchIndexError, WizardValidationError
from app.schemas.onboarding import Branch

logger = logging.getLogger(__name__)

TruncateListener = Callable[[int], None]


def default_branch_name(index: int) -> str:
    return settings.default_branch_name.format(number=index + 1, index=index)


def validate_branch_count(count: int, max_count: int | None = None) -> None:
    """Raise WizardValidationError unless 1 <= count <= max_count."""
    if count < 1:
        raise WizardValidationError("Branch count must be at least 1")
    if max_count is not None and count > max_count:
        raise WizardValidationError(f"Branch count cannot exceed {max_count}")


class BranchRegistry:
    def __init__(self, included_count: int = 0, max_count: int | None = None):
        self._branches: list[Branch] = []
        self._listeners: list[TruncateListener] = []
        self.included_count = included_count
        self.max_count = settings.max_branch_count if max_count is None else max_count

    def __len__(self) -> int:
        return len(self._branches)

    @property
    def count(self) -> int:
        return len(self._branches)

    def branches(self) -> list[Branch]:
        return [b.model_copy() for b in self._branches]

    def indices(self) -> set[int]:
        return set(range(len(self._branches)))

    def has_index(self, index: int) -> bool:
        return 0 <= index < len(self._branches)

    def name_of(self, index: int) -> str:
        self._check_index(index)
        return self._branches[index].name

    def on_truncate(self, listener: TruncateListener) -> None:
        self._listeners.append(listener)

    def set_branch_count(self, count: int) -> None:
        validate_branch_count(count, self.max_count)
        current = len(self._branches)
        if count == current:
            return

        if count > current:
            for index in range(current, count):
                self._branches.append(Branch(
                    index=index,
                    name=default_branch_name(index),
                    is_included_in_plan_default=index < self.included_count,
                ))
            logger.debug(f"Branch count increased {current} -> {count}")
            return

        del self._branches[count:]
        logger.debug(f"Branch count decreased {current} -> {count}")
        for listener in self._listeners:
            listener(count)

    def rename_branch(self, index: int, new_name: str) -> Branch:
        self._check_index(index)
        name = (new_name or "").strip()
        if not name:
            raise WizardValidationError("Branch name cannot be empty")
        branch = self._branches[index]
        branch.name = name
        return branch

    def set_included_count(self, included_count: int) -> None:
        """Re-flag which slots are covered by the plan's included branches."""
        self.included_count = included_count
        for branch in self._branches:
            branch.is_included_in_plan_default = branch.index < included_count

    def restore(self, branches: list[Branch]) -> None:
        """Load branches from a snapshot, re-indexing them contiguously."""
        ordered = sorted(branches, key=lambda b: b.index)
        self._branches = [
            Branch(
                index=i,
                name=b.name or default_branch_name(i),
                is_included_in_plan_default=b.is_included_in_plan_default,
            )
            for i, b in enumerate(ordered)
        ]

    def _check_index(self, index: int) -> None:
        if not self.has_index(index):
            raise BranchIndexError(index, len(self._branches))
