"""
Progress gate for remediation actions.

An action owner reports progress in fixed tiers and must attach new
evidence every time. The gate decides whether a save is allowed and what
persisted status the action moves to afterwards:

- below 100% the action goes (or stays) InProgress
- at 100% the action goes to Reviewed and waits for the auditor

Checks run in a fixed order so the user always sees the same error for the
same input: tier first, then monotonicity, then evidence.
"""
from dataclasses import dataclass
from typing import Iterable, Optional

from capa.core.exceptions import (
    EvidenceRequired,
    GateError,
    InvalidProgressValue,
    ProgressNotIncreasing,
)
from capa.core.statuses import ActionStatus, INACTIVE_ATTACHMENT_STATUSES

ALLOWED_PROGRESS = (25, 50, 75, 100)
COMPLETE_PERCENT = 100


@dataclass
class ProgressTransition:
    """Accepted progress save: what to persist, in order."""
    action_id: Optional[str]
    from_percent: int
    to_percent: int
    target_status: ActionStatus

    @property
    def is_final(self) -> bool:
        return self.to_percent == COMPLETE_PERCENT


@dataclass
class ProgressGateResult:
    """Result of progress validation."""
    is_valid: bool
    transition: Optional[ProgressTransition] = None
    error: Optional[GateError] = None

    @property
    def message(self) -> str:
        return str(self.error) if self.error else ""


def target_status_for(percent: int) -> ActionStatus:
    """Persisted status an action moves to after saving ``percent``."""
    if percent >= COMPLETE_PERCENT:
        return ActionStatus.REVIEWED
    return ActionStatus.IN_PROGRESS


def count_new_evidence(attachments: Iterable) -> int:
    """Count files in a save batch that can serve as evidence.

    Accepts Attachment models or AttachmentUpload requests; anything
    already marked Rejected/Inactive does not count.
    """
    return sum(1 for item in attachments if item.status not in INACTIVE_ATTACHMENT_STATUSES)


def _check(current: int, requested: int, new_evidence_count: int, action_id: Optional[str]) -> ProgressTransition:
    if requested not in ALLOWED_PROGRESS:
        raise InvalidProgressValue(requested, action_id)
    if requested <= current:
        raise ProgressNotIncreasing(current, requested, action_id)
    if new_evidence_count < 1:
        raise EvidenceRequired(action_id)
    return ProgressTransition(
        action_id=action_id,
        from_percent=current,
        to_percent=requested,
        target_status=target_status_for(requested),
    )


def validate_progress(
    current: Optional[int],
    requested: int,
    new_evidence_count: int,
    action_id: Optional[str] = None,
) -> ProgressGateResult:
    """Validate a progress save without raising.

    Args:
        current: Progress the action is at now (None counts as 0)
        requested: Progress the owner selected
        new_evidence_count: Usable files attached in this save
        action_id: Carried into the result and any error

    Returns:
        ProgressGateResult; ``error`` holds the first rule that failed.
    """
    try:
        transition = _check(current or 0, requested, new_evidence_count, action_id)
    except GateError as exc:
        return ProgressGateResult(is_valid=False, error=exc)
    return ProgressGateResult(is_valid=True, transition=transition)


def apply_progress(action, requested: int, new_evidence_count: int) -> ProgressTransition:
    """Gate a progress save for an Action, raising the first failing rule.

    Raises:
        InvalidProgressValue: requested is not 25/50/75/100
        ProgressNotIncreasing: requested is not above the current progress
        EvidenceRequired: no new usable evidence in this save
    """
    return _check(action.progress_percent or 0, requested, new_evidence_count, action.action_id)


def apply_resubmission(action, new_evidence_count: int) -> ProgressTransition:
    """Send a returned action that is already at 100% back to review.

    Progress cannot increase any further, so only the evidence rule applies.

    Raises:
        EvidenceRequired: no new usable evidence in this save
    """
    if new_evidence_count < 1:
        raise EvidenceRequired(action.action_id)
    current = action.progress_percent or 0
    return ProgressTransition(
        action_id=action.action_id,
        from_percent=current,
        to_percent=current,
        target_status=ActionStatus.REVIEWED,
    )
