"""Reporting and summary schemas returned to the presentation layer."""
from typing import Optional

from pydantic import BaseModel


class RollupEntry(BaseModel):
    """One chart bucket: a category and how many entities fall into it."""
    category: str
    label: str
    count: int = 0


class AttachmentSummary(BaseModel):
    """Counts over the active attachments of one entity."""
    total: int = 0
    open: int = 0
    approved: int = 0
    returned: int = 0


class ActionStats(BaseModel):
    """Dashboard counters for a set of actions, based on derived status."""
    total: int = 0
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    overdue: int = 0


class FindingActionProgress(BaseModel):
    """Per-finding remediation progress used by the findings progress view."""
    finding_id: str
    title: Optional[str] = None
    action_count: int = 0
    completed_count: int = 0
    overdue_count: int = 0
    average_progress: int = 0


class DepartmentRollupEntry(RollupEntry):
    """Department bucket with the open/closed split shown on the audit dashboard."""
    open_count: int = 0
    closed_count: int = 0
