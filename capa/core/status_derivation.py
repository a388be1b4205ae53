"""
Display status derivation for actions and root causes.

Every list, card and filter tab shows the same four action statuses, all
computed here from persisted fields:

- COMPLETED: persisted status is Closed/Completed/Archived, or a closed timestamp is set
- OVERDUE: action is still awaiting work (Open/Active/Approved) and its due date has passed
- IN_PROGRESS: the assignee has saved some progress
- PENDING: none of the above

Derivation is pure: the caller supplies ``now`` and nothing here reads a clock.
"""
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Optional, Union

import enum

from capa.core.statuses import (
    ActionStatus,
    AWAITING_WORK_STATUSES,
    COMPLETED_EQUIVALENT_STATUSES,
    RootCauseStatus,
    normalize_action_status,
    normalize_root_cause_status,
)
from capa.core.time import as_date


class DerivedStatus(str, enum.Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    OVERDUE = "Overdue"


DERIVED_STATUS_LABELS: Dict[str, str] = {
    DerivedStatus.PENDING.value: "Pending",
    DerivedStatus.IN_PROGRESS.value: "In Progress",
    DerivedStatus.COMPLETED.value: "Completed",
    DerivedStatus.OVERDUE.value: "Overdue",
}

# Order of the filter tabs and chart axes
DERIVED_STATUS_ORDER = (
    DerivedStatus.PENDING,
    DerivedStatus.IN_PROGRESS,
    DerivedStatus.COMPLETED,
    DerivedStatus.OVERDUE,
)


def _is_past_due(due_date: Union[date, datetime, str, None], now: Union[date, datetime]) -> bool:
    due = as_date(due_date)
    if due is None:
        return False
    return due < as_date(now)


def derive_action_status(
    persisted_status: Union[ActionStatus, str, None],
    progress_percent: Optional[int],
    due_date: Union[date, datetime, str, None],
    now: Union[date, datetime],
    closed_at: Optional[datetime] = None,
) -> DerivedStatus:
    """
    Compute the display status of an action.

    Key Logic:
    - Completion wins over everything else
    - Overdue applies only while the action is awaiting work; an action the
      assignee has moved to InProgress/Reviewed stays In Progress past its due date
    - Due dates compare by calendar day; time of day is ignored

    Returns:
        DerivedStatus member
    """
    status = normalize_action_status(persisted_status)

    if status in COMPLETED_EQUIVALENT_STATUSES or closed_at is not None:
        return DerivedStatus.COMPLETED

    if status in AWAITING_WORK_STATUSES and _is_past_due(due_date, now):
        return DerivedStatus.OVERDUE

    if (progress_percent or 0) > 0:
        return DerivedStatus.IN_PROGRESS

    return DerivedStatus.PENDING


def derive_for_action(action, now: Union[date, datetime]) -> DerivedStatus:
    """derive_action_status() applied to an Action schema."""
    return derive_action_status(
        action.status,
        action.progress_percent,
        action.due_date,
        now,
        closed_at=action.closed_at,
    )


def get_status_label(status: Optional[DerivedStatus]) -> Optional[str]:
    """Get human-readable label for a derived status."""
    if status is None:
        return None
    return DERIVED_STATUS_LABELS.get(status.value, status.value)


def days_overdue(due_date: Union[date, datetime, str, None], now: Union[date, datetime]) -> int:
    """Whole days past the due date; 0 when not yet due or no due date."""
    due = as_date(due_date)
    if due is None:
        return 0
    return max((as_date(now) - due).days, 0)


@dataclass
class RootCauseDisplay:
    """How a root cause should be presented to its owner and reviewers."""
    status: RootCauseStatus
    label: str
    show_rejection_reason: bool
    is_editable: bool
    is_deletable: bool
    awaiting_review: bool


ROOT_CAUSE_LABELS: Dict[RootCauseStatus, str] = {
    RootCauseStatus.DRAFT: "Draft",
    RootCauseStatus.PENDING: "Pending Review",
    RootCauseStatus.APPROVED: "Approved",
    RootCauseStatus.REJECTED: "Rejected",
}


def derive_root_cause_status(
    status: Union[RootCauseStatus, str, None],
    reason_reject: Optional[str] = None,
) -> RootCauseDisplay:
    """
    Compute the display state of a root cause.

    A Draft that carries a rejection reason was rejected and revised; the
    reason stays visible so the owner can see what to fix before resubmitting.
    """
    current = normalize_root_cause_status(status) or RootCauseStatus.DRAFT
    has_reason = bool(reason_reject and reason_reject.strip())
    label = ROOT_CAUSE_LABELS[current]
    if current == RootCauseStatus.DRAFT and has_reason:
        label = "Draft (Revision Requested)"
    return RootCauseDisplay(
        status=current,
        label=label,
        show_rejection_reason=has_reason and current in (RootCauseStatus.REJECTED, RootCauseStatus.DRAFT),
        is_editable=current == RootCauseStatus.DRAFT,
        is_deletable=current == RootCauseStatus.DRAFT,
        awaiting_review=current == RootCauseStatus.PENDING,
    )


def derive_for_root_cause(root_cause) -> RootCauseDisplay:
    """derive_root_cause_status() applied to a RootCause schema."""
    return derive_root_cause_status(root_cause.status, root_cause.reason_reject)
