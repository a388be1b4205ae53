"""Schemas for workflow outcomes and pre-transition warnings."""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from capa.core.statuses import ActionStatus
from capa.schemas.action import Action


class TransitionWarning(BaseModel):
    """
    Non-blocking issue surfaced before a transition.

    Evidence review and action review are separate processes, so an action
    may be approved while some of its evidence is still unreviewed. The
    reviewer is told, not stopped.
    """
    warning_type: str = Field(
        ...,
        description="Type of warning: 'UNREVIEWED_EVIDENCE', 'NO_EVIDENCE', 'EVIDENCE_UNAVAILABLE'"
    )
    severity: str = Field(
        "WARNING",
        description="Severity level: 'WARNING' (proceed with caution), 'INFO'"
    )
    message: str
    entity_id: str
    details: Dict = Field(default_factory=dict)


class ActionTransitionResult(BaseModel):
    """Outcome of a reviewer transition on an action."""
    action_id: str
    previous_status: ActionStatus
    new_status: ActionStatus
    transition: str
    warnings: List[TransitionWarning] = Field(default_factory=list)
    refreshed: Optional[Action] = None


class ProgressSaveOutcome(BaseModel):
    """
    Outcome of an owner's progress save.

    Progress is persisted before status. When the status call fails the
    progress stays saved and ``status_applied`` is False; the caller can
    retry the status step alone.
    """
    action_id: str
    from_percent: int
    to_percent: int
    target_status: ActionStatus
    uploaded_attachment_ids: List[str] = Field(default_factory=list)
    progress_applied: bool = True
    status_applied: bool = True
    status_error: Optional[str] = None
    refreshed: Optional[Action] = None
