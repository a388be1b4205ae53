"""Attachment (evidence) schemas."""
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, field_validator

from capa.core.statuses import (
    AttachmentStatus,
    EntityType,
    normalize_attachment_status,
    normalize_entity_type,
)
from capa.schemas.common import WireModel, coerce_date


class Attachment(WireModel):
    """Evidence file attached to a finding or an action."""
    attachment_id: str
    entity_type: EntityType
    entity_id: str
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    content_type: Optional[str] = None
    file_path: Optional[str] = None
    status: AttachmentStatus = AttachmentStatus.OPEN
    uploaded_by: Optional[str] = None
    uploaded_at: Optional[datetime] = None
    retention_until: Optional[date] = None
    is_archived: bool = False

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value: Any) -> Any:
        return normalize_attachment_status(value) or AttachmentStatus.OPEN

    @field_validator("entity_type", mode="before")
    @classmethod
    def normalize_type(cls, value: Any) -> Any:
        return normalize_entity_type(value)

    @field_validator("retention_until", mode="before")
    @classmethod
    def parse_retention(cls, value: Any) -> Any:
        return coerce_date(value)

    @field_validator("is_archived", mode="before")
    @classmethod
    def default_archived(cls, value: Any) -> Any:
        return False if value is None else value


class AttachmentUpload(BaseModel):
    """Multipart upload request for a single evidence file."""
    entity_type: EntityType
    entity_id: str
    uploaded_by: str
    file_name: str
    content: bytes
    content_type: str = "application/octet-stream"
    status: AttachmentStatus = AttachmentStatus.OPEN
    retention_until: Optional[date] = None
    is_archived: bool = False


class EvidenceFile(BaseModel):
    """A file the action owner attaches to a progress save."""
    file_name: str
    content: bytes
    content_type: str = "application/octet-stream"
    status: AttachmentStatus = AttachmentStatus.OPEN
