"""Root cause schemas."""
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, field_validator, model_validator

from capa.core.normalizer import apply_precedence
from capa.core.statuses import RootCauseStatus, normalize_root_cause_status
from capa.schemas.common import WireModel


class RootCause(WireModel):
    """An analyzed underlying reason for a finding, reviewed before acceptance."""
    root_cause_id: int
    finding_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    status: RootCauseStatus = RootCauseStatus.DRAFT
    reason_reject: Optional[str] = None
    reviewer_id: Optional[str] = None
    proposed_action: Optional[str] = None

    @model_validator(mode='before')
    @classmethod
    def resolve_alternate_names(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        return apply_precedence(data, "reason_reject")

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value: Any) -> Any:
        return normalize_root_cause_status(value) or RootCauseStatus.DRAFT


class RootCauseCreate(BaseModel):
    """Schema for creating a root cause. New root causes always start as Draft."""
    finding_id: str
    name: str
    description: str
    category: str
    proposed_action: Optional[str] = None
    status: RootCauseStatus = RootCauseStatus.DRAFT


class RootCauseUpdate(BaseModel):
    """Schema for editing a Draft root cause."""
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    proposed_action: Optional[str] = None


class RootCauseLog(WireModel):
    """One entry of a root cause's update history."""
    log_id: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    action: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    role: Optional[str] = None
    performed_by: Optional[str] = None
    performed_at: Optional[datetime] = None
