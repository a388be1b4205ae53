"""
Evidence lifecycle for findings and actions.

Rejected and Inactive files stay in the store for audit history but never
appear in active lists, counts or approval checks.
"""
from collections import Counter
from datetime import date, datetime
from typing import Iterable, List, Optional, Union

from dateutil.relativedelta import relativedelta

from capa.core.config import settings
from capa.core.statuses import (
    AttachmentStatus,
    EntityType,
    INACTIVE_ATTACHMENT_STATUSES,
    normalize_entity_type,
)
from capa.core.time import as_date
from capa.schemas.attachment import Attachment
from capa.schemas.reporting import AttachmentSummary
from capa.schemas.workflow import TransitionWarning


def is_active(attachment: Attachment) -> bool:
    return attachment.status not in INACTIVE_ATTACHMENT_STATUSES and not attachment.is_archived


def retention_until(
    uploaded_on: Union[date, datetime, str],
    months: Optional[int] = None,
) -> date:
    """Retention date stamped on an upload: upload day plus the retention window.

    Month arithmetic clamps to the last day of shorter months
    (Jan 31 + 1 month = Feb 28/29).
    """
    if months is None:
        months = settings.ATTACHMENT_RETENTION_MONTHS
    return as_date(uploaded_on) + relativedelta(months=months)


class AttachmentLifecycleTracker:
    """Filters and summarizes evidence per owning entity.

    Built over whatever attachments the caller fetched; entities may be
    mixed, lookups filter by (entity type, entity id).
    """

    def __init__(self, attachments: Iterable[Attachment]):
        self._attachments = list(attachments)

    def _owned_by(self, entity_type, entity_id) -> List[Attachment]:
        kind = normalize_entity_type(entity_type)
        key = str(entity_id)
        return [
            a for a in self._attachments
            if a.entity_type == kind and a.entity_id == key
        ]

    def all_for(self, entity_type: Union[EntityType, str], entity_id) -> List[Attachment]:
        """Every attachment of the entity, including rejected and inactive ones."""
        return self._owned_by(entity_type, entity_id)

    def active_for(self, entity_type: Union[EntityType, str], entity_id) -> List[Attachment]:
        return [a for a in self._owned_by(entity_type, entity_id) if is_active(a)]

    def summarize(self, entity_type: Union[EntityType, str], entity_id) -> AttachmentSummary:
        active = self.active_for(entity_type, entity_id)
        counts = Counter(a.status for a in active)
        return AttachmentSummary(
            total=len(active),
            open=counts[AttachmentStatus.OPEN],
            approved=counts[AttachmentStatus.APPROVED],
            returned=counts[AttachmentStatus.RETURNED],
        )

    def approval_warnings(self, entity_type: Union[EntityType, str], entity_id) -> List[TransitionWarning]:
        """Warnings shown to the second-tier reviewer before final approval."""
        summary = self.summarize(entity_type, entity_id)
        key = str(entity_id)
        if summary.total == 0:
            return [TransitionWarning(
                warning_type="NO_EVIDENCE",
                message="No active evidence is attached to this item",
                entity_id=key,
            )]
        if summary.approved < summary.total:
            return [TransitionWarning(
                warning_type="UNREVIEWED_EVIDENCE",
                message=(
                    f"{summary.total - summary.approved} of {summary.total} evidence "
                    f"file(s) have not been approved"
                ),
                entity_id=key,
                details=summary.model_dump(),
            )]
        return []
