"""Finding schemas."""
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, field_validator, model_validator

from capa.core.normalizer import apply_precedence
from capa.core.statuses import FindingStatus, normalize_finding_status, severity_label
from capa.schemas.common import WireModel, coerce_date


class Finding(WireModel):
    """A recorded non-conformance raised by an auditor."""
    finding_id: str
    title: str
    description: Optional[str] = None
    severity: Optional[str] = None
    dept_id: Optional[int] = None
    status: FindingStatus = FindingStatus.OPEN
    deadline: Optional[date] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    witness_id: Optional[str] = None
    audit_id: Optional[str] = None
    audit_item_id: Optional[str] = None

    @model_validator(mode='before')
    @classmethod
    def resolve_alternate_names(cls, data: Any) -> Any:
        """Populate dept_id and severity from whichever name the payload used."""
        if not isinstance(data, dict):
            return data
        data = apply_precedence(data, "dept_id")
        return apply_precedence(data, "finding_severity", "severity")

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value: Any) -> Any:
        return normalize_finding_status(value) or FindingStatus.OPEN

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, value: Any) -> Any:
        return severity_label(value)

    @field_validator("deadline", mode="before")
    @classmethod
    def parse_deadline(cls, value: Any) -> Any:
        return coerce_date(value)


class FindingCreate(BaseModel):
    """Payload for raising a finding from a checklist item."""
    audit_id: Optional[str] = None
    audit_item_id: Optional[str] = None
    title: str
    description: str
    severity: str
    dept_id: int
    status: FindingStatus = FindingStatus.OPEN
    deadline: date
    witness_id: Optional[str] = None
