"""Schemas package."""
from capa.schemas.common import FetchResult, WireModel
from capa.schemas.finding import Finding, FindingCreate
from capa.schemas.root_cause import RootCause, RootCauseCreate, RootCauseLog, RootCauseUpdate
from capa.schemas.action import Action, ActionCreate, ReviewDecision, PROGRESS_TIERS
from capa.schemas.attachment import Attachment, AttachmentUpload, EvidenceFile
from capa.schemas.master_data import Department, MasterDataResult, SeverityOption
from capa.schemas.reporting import (
    ActionStats,
    AttachmentSummary,
    DepartmentRollupEntry,
    FindingActionProgress,
    RollupEntry,
)
from capa.schemas.workflow import ActionTransitionResult, ProgressSaveOutcome, TransitionWarning

__all__ = [
    "FetchResult",
    "WireModel",
    "Finding",
    "FindingCreate",
    "RootCause",
    "RootCauseCreate",
    "RootCauseLog",
    "RootCauseUpdate",
    "Action",
    "ActionCreate",
    "ReviewDecision",
    "PROGRESS_TIERS",
    "Attachment",
    "AttachmentUpload",
    "EvidenceFile",
    "Department",
    "MasterDataResult",
    "SeverityOption",
    "ActionStats",
    "AttachmentSummary",
    "DepartmentRollupEntry",
    "FindingActionProgress",
    "RollupEntry",
    "ActionTransitionResult",
    "ProgressSaveOutcome",
    "TransitionWarning",
]
