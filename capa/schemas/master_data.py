"""Reference data schemas (severities, departments)."""
from typing import Any, List, Optional

from pydantic import BaseModel, model_validator

from capa.core.normalizer import apply_precedence
from capa.schemas.common import WireModel


class SeverityOption(WireModel):
    """A finding severity as defined in master data."""
    severity_id: Optional[int] = None
    name: str = "Unknown"
    description: Optional[str] = None

    @model_validator(mode='before')
    @classmethod
    def resolve_alternate_names(cls, data: Any) -> Any:
        """The severity endpoint has returned the label as 'severity' and as 'name'."""
        if not isinstance(data, dict):
            return data
        data = apply_precedence(data, "severity_name", "name")
        return apply_precedence(data, "severity_id")


class Department(WireModel):
    dept_id: int
    name: str = "Unknown"

    @model_validator(mode='before')
    @classmethod
    def resolve_alternate_names(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        return apply_precedence(data, "dept_id")


class MasterDataResult(BaseModel):
    """Severity list plus whether it came from the hard-coded fallback."""
    severities: List[SeverityOption]
    is_fallback: bool = False
    error: Optional[str] = None

    def names(self) -> List[str]:
        return [s.name for s in self.severities]
