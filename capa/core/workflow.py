"""
Workflow transition rules for root causes, actions and findings.

Each entity has one transition table and one role table. Every status change
in the engine is checked here; nothing else compares status strings to
decide what may happen next.

Root cause transitions:
  submit, approve, reject, revise, delete

Action transitions (two review tiers):
  start_progress, mark_reviewed, resubmit      -- action owner
  verify, return                               -- first tier (auditor)
  approve_final, reject_final                  -- second tier (lead auditor)
  close, archive                               -- administrative

Finding transitions:
  receive, close, archive

Usage:
    from capa.core.workflow import check_action_transition

    target = check_action_transition(action, "verify", role="AUDITOR")
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

from capa.core.exceptions import DuplicateName, InvalidTransition, PermissionDenied
from capa.core.roles import RoleCode, normalize_role_code
from capa.core.statuses import (
    ActionStatus,
    FindingStatus,
    RootCauseStatus,
    TERMINAL_ACTION_STATUSES,
    normalize_action_status,
    normalize_finding_status,
    normalize_root_cause_status,
)

logger = logging.getLogger(__name__)

_REVIEWERS = {RoleCode.AUDITOR.value, RoleCode.LEAD_AUDITOR.value}


# ==================== ROOT CAUSE ====================

ROOT_CAUSE_TRANSITIONS = {
    "submit": {"from": [RootCauseStatus.DRAFT], "to": RootCauseStatus.PENDING},
    "approve": {"from": [RootCauseStatus.PENDING], "to": RootCauseStatus.APPROVED},
    "reject": {"from": [RootCauseStatus.PENDING], "to": RootCauseStatus.REJECTED},
    "revise": {"from": [RootCauseStatus.REJECTED], "to": RootCauseStatus.DRAFT},
    "delete": {"from": [RootCauseStatus.DRAFT], "to": None},
}

_ROOT_CAUSE_ROLES: Dict[str, Set[str]] = {
    "submit": {RoleCode.DEPARTMENT_OWNER.value},
    "approve": _REVIEWERS,
    "reject": _REVIEWERS,
    "revise": {RoleCode.DEPARTMENT_OWNER.value},
    "delete": {RoleCode.DEPARTMENT_OWNER.value},
}


# ==================== ACTION ====================

# Statuses from which the owner may report progress
_WORKABLE_ACTION_STATUSES = [
    ActionStatus.OPEN,
    ActionStatus.ACTIVE,
    ActionStatus.IN_PROGRESS,
    ActionStatus.RETURNED,
    ActionStatus.REJECTED,
]

ACTION_TRANSITIONS = {
    "start_progress": {"from": _WORKABLE_ACTION_STATUSES, "to": ActionStatus.IN_PROGRESS},
    "mark_reviewed": {"from": _WORKABLE_ACTION_STATUSES, "to": ActionStatus.REVIEWED},
    "resubmit": {"from": [ActionStatus.RETURNED, ActionStatus.REJECTED], "to": ActionStatus.REVIEWED},
    "verify": {"from": [ActionStatus.REVIEWED], "to": ActionStatus.VERIFIED},
    "return": {"from": [ActionStatus.REVIEWED], "to": ActionStatus.RETURNED},
    "approve_final": {"from": [ActionStatus.VERIFIED], "to": ActionStatus.APPROVED},
    "reject_final": {"from": [ActionStatus.VERIFIED], "to": ActionStatus.REJECTED},
    "close": {
        "from": [
            s for s in ActionStatus
            if s not in TERMINAL_ACTION_STATUSES and s != ActionStatus.CLOSED
        ],
        "to": ActionStatus.CLOSED,
    },
    "archive": {"from": [ActionStatus.CLOSED], "to": ActionStatus.ARCHIVED},
}

_ACTION_ROLES: Dict[str, Set[str]] = {
    "start_progress": {RoleCode.ACTION_OWNER.value},
    "mark_reviewed": {RoleCode.ACTION_OWNER.value},
    "resubmit": {RoleCode.ACTION_OWNER.value},
    "verify": {RoleCode.AUDITOR.value},
    "return": {RoleCode.AUDITOR.value},
    "approve_final": {RoleCode.LEAD_AUDITOR.value},
    "reject_final": {RoleCode.LEAD_AUDITOR.value},
    "close": _REVIEWERS,
    "archive": _REVIEWERS,
}

# Transitions that must carry reviewer feedback / a rejection reason
FEEDBACK_REQUIRED = {"return", "reject_final"}
REASON_REQUIRED = {"reject"}


# ==================== FINDING ====================

FINDING_TRANSITIONS = {
    "receive": {"from": [FindingStatus.OPEN], "to": FindingStatus.RECEIVED},
    "close": {"from": [FindingStatus.OPEN, FindingStatus.RECEIVED], "to": FindingStatus.CLOSED},
    "archive": {"from": [FindingStatus.CLOSED], "to": FindingStatus.ARCHIVED},
}

_FINDING_ROLES: Dict[str, Set[str]] = {
    "receive": {RoleCode.DEPARTMENT_OWNER.value},
    "close": _REVIEWERS,
    "archive": _REVIEWERS,
}


@dataclass
class PlannedTransition:
    """One status change the caller should persist."""
    entity_id: object
    action: str
    from_status: str
    to_status: Optional[str]


def _validate(table: dict, current, action: str) -> dict:
    rule = table.get(action)
    if not rule:
        return {"valid": False, "from": current, "to": None,
                "reason": f"Unknown action: {action}"}

    if current not in rule["from"]:
        return {"valid": False, "from": current, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{_status_value(current)}'"}

    return {"valid": True, "from": current, "to": rule["to"], "reason": None}


def _status_value(status) -> Optional[str]:
    return getattr(status, "value", status)


def _check_role(roles_table: Dict[str, Set[str]], role, action: str) -> str:
    role_code = normalize_role_code(role)
    allowed = roles_table.get(action, set())
    if role_code not in allowed:
        raise PermissionDenied(role_code or role, action)
    return role_code


def _require_text(value: Optional[str], entity: str, action: str, current, what: str) -> None:
    if not value or not value.strip():
        raise InvalidTransition(entity, action, _status_value(current), f"{what} is required")


def validate_root_cause_transition(status, action: str) -> dict:
    """Validate whether an action is valid for the current root cause status."""
    return _validate(ROOT_CAUSE_TRANSITIONS, normalize_root_cause_status(status), action)


def validate_action_transition(status, action: str) -> dict:
    """Validate whether an action is valid for the current action status."""
    return _validate(ACTION_TRANSITIONS, normalize_action_status(status), action)


def validate_finding_transition(status, action: str) -> dict:
    """Validate whether an action is valid for the current finding status."""
    return _validate(FINDING_TRANSITIONS, normalize_finding_status(status), action)


def check_root_cause_transition(root_cause, action: str, role, reason: Optional[str] = None) -> Optional[RootCauseStatus]:
    """
    Check a root cause transition, raising on failure.

    Returns:
        The target status (None for delete)

    Raises:
        PermissionDenied, InvalidTransition
    """
    _check_role(_ROOT_CAUSE_ROLES, role, action)
    validation = validate_root_cause_transition(root_cause.status, action)
    if not validation["valid"]:
        raise InvalidTransition("RootCause", action, _status_value(validation["from"]), validation["reason"])
    if action in REASON_REQUIRED:
        _require_text(reason, "RootCause", action, validation["from"], "Rejection reason")
    return validation["to"]


def check_action_transition(
    action,
    transition: str,
    role,
    actor_id: Optional[str] = None,
    feedback: Optional[str] = None,
) -> ActionStatus:
    """
    Check an action transition, raising on failure.

    Key Logic:
    - Owner transitions are only open to the assignee
    - Second-tier calls require the action to be Verified
    - Return and second-tier reject require feedback
    - Resubmission is only for actions already at 100%

    Returns:
        The target status

    Raises:
        PermissionDenied, InvalidTransition
    """
    role_code = _check_role(_ACTION_ROLES, role, transition)

    if role_code == RoleCode.ACTION_OWNER.value:
        if not action.assigned_to or actor_id is None or str(actor_id) != str(action.assigned_to):
            raise PermissionDenied(role_code, transition, "only the assignee may update this action")

    validation = validate_action_transition(action.status, transition)
    if not validation["valid"]:
        raise InvalidTransition("Action", transition, _status_value(validation["from"]), validation["reason"])

    if transition in FEEDBACK_REQUIRED:
        _require_text(feedback, "Action", transition, validation["from"], "Feedback")

    if transition == "resubmit" and (action.progress_percent or 0) < 100:
        raise InvalidTransition(
            "Action", transition, _status_value(validation["from"]),
            "progress must be 100% to resubmit for review",
        )

    return validation["to"]


def check_finding_transition(finding, action: str, role) -> FindingStatus:
    """Check a finding transition, raising on failure."""
    _check_role(_FINDING_ROLES, role, action)
    validation = validate_finding_transition(finding.status, action)
    if not validation["valid"]:
        raise InvalidTransition("Finding", action, _status_value(validation["from"]), validation["reason"])
    return validation["to"]


def progress_transition_name(target_status: ActionStatus) -> str:
    """Name of the owner transition that persists a progress gate target."""
    if target_status == ActionStatus.REVIEWED:
        return "mark_reviewed"
    return "start_progress"


def allowed_action_transitions(action, role, actor_id: Optional[str] = None) -> List[str]:
    """Transitions the given role could trigger on this action right now.

    Feedback requirements are not considered; those are checked when the
    transition is submitted.
    """
    allowed = []
    for name in ACTION_TRANSITIONS:
        try:
            check_action_transition(action, name, role, actor_id=actor_id, feedback="-")
        except (InvalidTransition, PermissionDenied):
            continue
        allowed.append(name)
    return allowed


def plan_batch_submit(root_causes: Iterable, role) -> List[PlannedTransition]:
    """
    Plan submitting every Draft root cause of one finding for review.

    Non-Draft root causes are skipped. All root causes must belong to the
    same finding.

    Raises:
        PermissionDenied: role may not submit
        InvalidTransition: nothing to submit, or mixed findings
    """
    _check_role(_ROOT_CAUSE_ROLES, role, "submit")
    items = list(root_causes)

    finding_ids = {rc.finding_id for rc in items}
    if len(finding_ids) > 1:
        raise InvalidTransition("RootCause", "submit", None, "root causes belong to different findings")

    planned = []
    for rc in items:
        validation = validate_root_cause_transition(rc.status, "submit")
        if not validation["valid"]:
            continue
        planned.append(PlannedTransition(
            entity_id=rc.root_cause_id,
            action="submit",
            from_status=validation["from"],
            to_status=validation["to"],
        ))

    if not planned:
        raise InvalidTransition("RootCause", "submit", None, "no Draft root causes to submit")

    logger.debug("Planned batch submit of %d root cause(s)", len(planned))
    return planned


def check_root_cause_editable(root_cause, role) -> None:
    """Name/description/category edits are allowed only while Draft, by the owner."""
    role_code = normalize_role_code(role)
    if role_code != RoleCode.DEPARTMENT_OWNER.value:
        raise PermissionDenied(role_code or role, "edit")
    status = normalize_root_cause_status(root_cause.status)
    if status != RootCauseStatus.DRAFT:
        raise InvalidTransition("RootCause", "edit", _status_value(status), "only Draft root causes can be edited")


def _name_key(name: Optional[str]) -> str:
    return (name or "").strip().casefold()


def check_unique_root_cause_name(
    name: str,
    siblings: Iterable,
    exclude_id=None,
    finding_id: Optional[str] = None,
) -> None:
    """
    Reject a root cause name already used under the same finding.

    Comparison ignores case and surrounding whitespace. ``exclude_id`` is
    the root cause being edited, so keeping its own name is allowed.

    Raises:
        DuplicateName
    """
    key = _name_key(name)
    for sibling in siblings:
        if exclude_id is not None and sibling.root_cause_id == exclude_id:
            continue
        if _name_key(sibling.name) == key:
            raise DuplicateName(finding_id or sibling.finding_id, name)
