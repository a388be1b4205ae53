"""
Reference data loading with a hard-coded fallback.

Severities must never block an auditor from raising a finding, so a failed
severity load is logged and replaced by the configured default list.
Departments have no fallback; callers get the failed FetchResult.
"""
import logging
from typing import List, Optional

from capa.core.config import settings
from capa.core.exceptions import MasterDataUnavailable
from capa.schemas.master_data import MasterDataResult, SeverityOption

logger = logging.getLogger(__name__)


def default_severities(names: Optional[List[str]] = None) -> List[SeverityOption]:
    """Severity options built from the configured fallback names."""
    if names is None:
        names = settings.get_fallback_severities()
    return [SeverityOption(severity_id=None, name=name) for name in names]


async def fetch_severities(store) -> List[SeverityOption]:
    """
    Load severities from the remote store.

    Raises:
        MasterDataUnavailable: the read failed or returned nothing
    """
    result = await store.list_severities()
    if result.failed:
        raise MasterDataUnavailable("severities", result.error)
    if not result.items:
        raise MasterDataUnavailable("severities", "no severities defined")
    return result.items


async def load_severities(store) -> MasterDataResult:
    """Severities for finding forms, falling back to defaults when unavailable."""
    try:
        severities = await fetch_severities(store)
    except MasterDataUnavailable as exc:
        logger.warning("%s; using fallback severities", exc)
        return MasterDataResult(
            severities=default_severities(),
            is_fallback=True,
            error=str(exc),
        )
    return MasterDataResult(severities=severities)
