"""Role normalization helpers and canonical mappings."""
from __future__ import annotations

import enum
from typing import Optional, Dict


class RoleCode(str, enum.Enum):
    AUDITOR = "AUDITOR"
    DEPARTMENT_OWNER = "DEPARTMENT_OWNER"
    ACTION_OWNER = "ACTION_OWNER"
    LEAD_AUDITOR = "LEAD_AUDITOR"


ROLE_CODE_TO_DISPLAY: Dict[str, str] = {
    RoleCode.AUDITOR.value: "Auditor",
    RoleCode.DEPARTMENT_OWNER.value: "Department Owner",
    RoleCode.ACTION_OWNER.value: "Action Owner",
    RoleCode.LEAD_AUDITOR.value: "Lead Auditor",
}

# The backend's role names differ from the display names
ROLE_DISPLAY_TO_CODE: Dict[str, str] = {
    "auditor": RoleCode.AUDITOR.value,
    "department owner": RoleCode.DEPARTMENT_OWNER.value,
    "department_owner": RoleCode.DEPARTMENT_OWNER.value,
    "auditeeowner": RoleCode.DEPARTMENT_OWNER.value,
    "auditee owner": RoleCode.DEPARTMENT_OWNER.value,
    "action owner": RoleCode.ACTION_OWNER.value,
    "action_owner": RoleCode.ACTION_OWNER.value,
    "capaowner": RoleCode.ACTION_OWNER.value,
    "capa owner": RoleCode.ACTION_OWNER.value,
    "lead auditor": RoleCode.LEAD_AUDITOR.value,
    "lead_auditor": RoleCode.LEAD_AUDITOR.value,
    "leadauditor": RoleCode.LEAD_AUDITOR.value,
}


def normalize_role_code(value: str | RoleCode | None) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, RoleCode):
        return value.value
    normalized = value.strip()
    if not normalized:
        return None
    upper = normalized.upper().replace(" ", "_")
    if upper in RoleCode.__members__:
        return RoleCode[upper].value
    return ROLE_DISPLAY_TO_CODE.get(normalized.lower())


def get_role_display(role_code: str | None, fallback: str | None = None) -> Optional[str]:
    if not role_code:
        return fallback
    return ROLE_CODE_TO_DISPLAY.get(role_code, fallback)


def is_reviewer(role_code: str | None) -> bool:
    """Auditors and lead auditors review root causes and first-tier actions."""
    return role_code in {RoleCode.AUDITOR.value, RoleCode.LEAD_AUDITOR.value}


def build_capabilities(role_code: str | None) -> dict:
    return {
        "is_auditor": role_code == RoleCode.AUDITOR.value,
        "is_department_owner": role_code == RoleCode.DEPARTMENT_OWNER.value,
        "is_action_owner": role_code == RoleCode.ACTION_OWNER.value,
        "is_lead_auditor": role_code == RoleCode.LEAD_AUDITOR.value,
        "can_raise_findings": role_code in {RoleCode.AUDITOR.value, RoleCode.LEAD_AUDITOR.value},
        "can_edit_root_causes": role_code == RoleCode.DEPARTMENT_OWNER.value,
        "can_assign_actions": role_code == RoleCode.DEPARTMENT_OWNER.value,
        "can_review_root_causes": is_reviewer(role_code),
        "can_save_progress": role_code == RoleCode.ACTION_OWNER.value,
        "can_verify_actions": role_code == RoleCode.AUDITOR.value,
        "can_approve_actions_final": role_code == RoleCode.LEAD_AUDITOR.value,
    }
