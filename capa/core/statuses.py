"""Canonical status codes and the lookup tables that map backend spellings onto them.

The backend and the older screens spell the same status several ways
("InProgress", "in-progress", "In Progress"). Everything that enters the
engine is normalized here once, so FSMs and derivation only ever compare
enum members.
"""
import enum
from typing import Dict, Optional, Type, TypeVar

from capa.core.exceptions import ParseError


class Severity(str, enum.Enum):
    MINOR = "Minor"
    MEDIUM = "Medium"
    MAJOR = "Major"
    CRITICAL = "Critical"


class FindingStatus(str, enum.Enum):
    OPEN = "Open"
    RECEIVED = "Received"
    CLOSED = "Closed"
    ARCHIVED = "Archived"


class RootCauseStatus(str, enum.Enum):
    DRAFT = "Draft"
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class ActionStatus(str, enum.Enum):
    OPEN = "Open"
    ACTIVE = "Active"
    IN_PROGRESS = "InProgress"
    REVIEWED = "Reviewed"
    VERIFIED = "Verified"
    APPROVED = "Approved"
    RETURNED = "Returned"
    REJECTED = "Rejected"
    CLOSED = "Closed"
    COMPLETED = "Completed"
    ARCHIVED = "Archived"


class AttachmentStatus(str, enum.Enum):
    OPEN = "Open"
    APPROVED = "Approved"
    RETURNED = "Returned"
    REJECTED = "Rejected"
    INACTIVE = "Inactive"


class EntityType(str, enum.Enum):
    FINDING = "Finding"
    ACTION = "Action"


TERMINAL_ACTION_STATUSES = frozenset({
    ActionStatus.APPROVED,
    ActionStatus.COMPLETED,
    ActionStatus.ARCHIVED,
})

# Persisted statuses that mean the action needs no further work
COMPLETED_EQUIVALENT_STATUSES = frozenset({
    ActionStatus.CLOSED,
    ActionStatus.COMPLETED,
    ActionStatus.ARCHIVED,
})

# Statuses where the assignee has not started, or work was approved to begin
AWAITING_WORK_STATUSES = frozenset({
    ActionStatus.OPEN,
    ActionStatus.ACTIVE,
    ActionStatus.APPROVED,
})

INACTIVE_ATTACHMENT_STATUSES = frozenset({
    AttachmentStatus.REJECTED,
    AttachmentStatus.INACTIVE,
})


# Spellings seen in payloads, keyed by the squashed lowercase form
ACTION_STATUS_ALIASES: Dict[str, ActionStatus] = {
    "pending": ActionStatus.OPEN,
    "received": ActionStatus.OPEN,
    "started": ActionStatus.IN_PROGRESS,
    "review": ActionStatus.REVIEWED,
    "pendingreview": ActionStatus.REVIEWED,
    "return": ActionStatus.RETURNED,
    "returnedforcorrection": ActionStatus.RETURNED,
    "approvedauditor": ActionStatus.VERIFIED,
    "reject": ActionStatus.REJECTED,
    "resolved": ActionStatus.COMPLETED,
    "done": ActionStatus.COMPLETED,
    "complete": ActionStatus.COMPLETED,
}

ROOT_CAUSE_STATUS_ALIASES: Dict[str, RootCauseStatus] = {
    "pendingreview": RootCauseStatus.PENDING,
    "submitted": RootCauseStatus.PENDING,
    "reject": RootCauseStatus.REJECTED,
}

FINDING_STATUS_ALIASES: Dict[str, FindingStatus] = {
    "new": FindingStatus.OPEN,
    "acknowledged": FindingStatus.RECEIVED,
}

ATTACHMENT_STATUS_ALIASES: Dict[str, AttachmentStatus] = {
    "pending": AttachmentStatus.OPEN,
    "accepted": AttachmentStatus.APPROVED,
    "archived": AttachmentStatus.INACTIVE,
}

E = TypeVar("E", bound=enum.Enum)


def _squash(value: str) -> str:
    return "".join(ch for ch in value.lower() if ch.isalnum())


def _normalize(value, enum_cls: Type[E], aliases: Dict[str, E]) -> Optional[E]:
    if value is None:
        return None
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        raise ParseError(
            f"{enum_cls.__name__} must be a string, got {type(value).__name__}",
            payload_kind=type(value).__name__,
        )
    key = _squash(value)
    if not key:
        return None
    for member in enum_cls:
        if _squash(member.value) == key:
            return member
    if key in aliases:
        return aliases[key]
    raise ParseError(f"Unknown {enum_cls.__name__}: {value!r}", payload_kind="str")


def normalize_action_status(value) -> Optional[ActionStatus]:
    return _normalize(value, ActionStatus, ACTION_STATUS_ALIASES)


def normalize_root_cause_status(value) -> Optional[RootCauseStatus]:
    return _normalize(value, RootCauseStatus, ROOT_CAUSE_STATUS_ALIASES)


def normalize_finding_status(value) -> Optional[FindingStatus]:
    return _normalize(value, FindingStatus, FINDING_STATUS_ALIASES)


def normalize_attachment_status(value) -> Optional[AttachmentStatus]:
    return _normalize(value, AttachmentStatus, ATTACHMENT_STATUS_ALIASES)


def severity_label(value: Optional[str]) -> Optional[str]:
    """Canonical severity name when known, otherwise the trimmed input.

    Master data may define severities beyond the built-in four; those pass
    through untouched so reports can still show them.
    """
    if value is None or not str(value).strip():
        return None
    key = _squash(str(value))
    for member in Severity:
        if _squash(member.value) == key:
            return member.value
    return str(value).strip()


def normalize_entity_type(value) -> Optional[EntityType]:
    return _normalize(value, EntityType, {})
