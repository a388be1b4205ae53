"""Action schemas."""
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, field_validator, model_validator

from capa.core.normalizer import apply_precedence
from capa.core.statuses import ActionStatus, normalize_action_status
from capa.schemas.common import WireModel, coerce_date

PROGRESS_TIERS = (0, 25, 50, 75, 100)


class Action(WireModel):
    """A remediation task for a root cause, tracked by progress and two-tier review."""
    action_id: str
    finding_id: Optional[str] = None
    root_cause_id: Optional[int] = None
    title: str
    description: Optional[str] = None
    status: ActionStatus = ActionStatus.OPEN
    progress_percent: int = 0
    due_date: Optional[date] = None
    assigned_to: Optional[str] = None
    assigned_by: Optional[str] = None
    dept_id: Optional[int] = None
    review_feedback: Optional[str] = None
    created_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @model_validator(mode='before')
    @classmethod
    def resolve_alternate_names(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        for concept in ("dept_id", "assigned_to", "due_date"):
            data = apply_precedence(data, concept)
        return data

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value: Any) -> Any:
        return normalize_action_status(value) or ActionStatus.OPEN

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, value: Any) -> Any:
        return coerce_date(value)

    @field_validator("progress_percent", mode="before")
    @classmethod
    def default_progress(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("progress_percent")
    @classmethod
    def check_progress_tier(cls, value: int) -> int:
        if value not in PROGRESS_TIERS:
            raise ValueError(f"progress_percent must be one of {PROGRESS_TIERS}, got {value}")
        return value


class ActionCreate(BaseModel):
    """Schema for assigning a remediation action once its root cause is approved."""
    finding_id: str
    root_cause_id: Optional[int] = None
    title: str
    description: str
    assigned_to: str
    assigned_dept_id: int
    progress_percent: int = 0
    due_date: date
    review_feedback: Optional[str] = None


class ReviewDecision(BaseModel):
    """Feedback body sent with first- and second-tier review calls."""
    feedback: str = ""
