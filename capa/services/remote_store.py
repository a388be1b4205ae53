"""
HTTP client for the authoritative remote store.

All traffic goes through one httpx.AsyncClient. Outbound bodies are
converted with to_wire(); inbound payloads are parsed with the normalizer
into schema models. Errors surface as:

- list reads: FetchResult with ``failed`` set (never an empty list pretending to be data)
- single reads and mutations: RemoteFailure
- payloads that match no known shape: ParseError

Usage:
    async with RemoteStore() as store:
        result = await store.list_actions_by_finding("F-1")
        if result.failed:
            ...
"""
import logging
from datetime import date
from typing import Any, Dict, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel

from capa.core.aggregation import dedupe, finding_key
from capa.core.config import settings
from capa.core.exceptions import ParseError, RemoteFailure
from capa.core.normalizer import parse_entities, parse_entity, to_wire
from capa.core.statuses import EntityType
from capa.core.time import cache_bust_token
from capa.schemas.action import Action, ActionCreate, ReviewDecision
from capa.schemas.attachment import Attachment, AttachmentUpload
from capa.schemas.common import FetchResult
from capa.schemas.finding import Finding
from capa.schemas.master_data import Department, SeverityOption
from capa.schemas.root_cause import RootCause, RootCauseCreate, RootCauseLog, RootCauseUpdate

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# Keys of the grouped date-range response; groups overlap
FINDING_RANGE_GROUPS = ("allFindings", "openFindings", "closedFindings")

RANGE_DATE_FORMAT = "%m-%d-%Y"


def _error_detail(response: httpx.Response) -> Optional[str]:
    """Best-effort server message from an error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or None
    if isinstance(body, dict):
        return body.get("message") or body.get("title") or body.get("detail")
    return None


def _body(model: BaseModel, **extra) -> Dict[str, Any]:
    data = model.model_dump(mode="json", exclude_none=True)
    data.update(extra)
    return to_wire(data)


class RemoteStore:
    """Async client for findings, root causes, actions, attachments and master data."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        token: Optional[str] = None,
    ):
        if client is None:
            headers = {"Authorization": f"Bearer {token}"} if token else None
            client = httpx.AsyncClient(
                base_url=base_url or settings.API_BASE_URL,
                timeout=timeout or settings.REQUEST_TIMEOUT_SECONDS,
                headers=headers,
            )
            self._owns_client = True
        else:
            self._owns_client = False
        self._client = client

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RemoteStore":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ==================== PLUMBING ====================

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        fresh: bool = False,
    ) -> Any:
        if fresh:
            params = {**(params or {}), settings.CACHE_BUST_PARAM: cache_bust_token()}
        try:
            response = await self._client.request(
                method, path, params=params, json=json, data=data, files=files,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise RemoteFailure(operation, exc.response.status_code, _error_detail(exc.response)) from exc
        except httpx.RequestError as exc:
            raise RemoteFailure(operation, None, str(exc) or type(exc).__name__) from exc

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ParseError(f"{operation}: response is not JSON", payload_kind="bytes") from exc

    async def _list(
        self,
        operation: str,
        path: str,
        model: Type[M],
        params: Optional[Dict[str, Any]] = None,
        fresh: bool = False,
    ) -> FetchResult:
        try:
            payload = await self._request(operation, "GET", path, params=params, fresh=fresh)
        except RemoteFailure as exc:
            logger.warning("List read failed: %s", exc)
            return FetchResult[model].failure(str(exc))
        return FetchResult[model].ok(parse_entities(payload, model))

    async def _get(self, operation: str, path: str, model: Type[M], fresh: bool = False) -> M:
        payload = await self._request(operation, "GET", path, fresh=fresh)
        if payload is None:
            raise RemoteFailure(operation, None, "empty response")
        return parse_entity(payload, model)

    async def _mutate(
        self,
        operation: str,
        method: str,
        path: str,
        model: Optional[Type[M]] = None,
        **kwargs,
    ) -> Optional[M]:
        payload = await self._request(operation, method, path, **kwargs)
        logger.info("%s %s -> ok", method, path)
        if model is None or payload is None or not isinstance(payload, dict):
            return None
        return parse_entity(payload, model)

    # ==================== FINDINGS ====================

    async def get_finding(self, finding_id: str, fresh: bool = False) -> Finding:
        return await self._get("get_finding", f"/Findings/{finding_id}", Finding, fresh=fresh)

    async def list_findings_by_department(self, dept_id: int, fresh: bool = False) -> FetchResult:
        return await self._list(
            "list_findings_by_department", f"/Findings/by-department/{dept_id}", Finding, fresh=fresh,
        )

    async def list_findings_by_date_range(self, start: date, end: date) -> FetchResult:
        """Findings created between two dates (inclusive).

        The endpoint returns overlapping all/open/closed groups; they are
        merged and deduplicated here.
        """
        operation = "list_findings_by_date_range"
        params = {
            "startDate": start.strftime(RANGE_DATE_FORMAT),
            "endDate": end.strftime(RANGE_DATE_FORMAT),
        }
        try:
            payload = await self._request(operation, "GET", "/AuditDashboard/findings/by-range", params=params)
        except RemoteFailure as exc:
            logger.warning("List read failed: %s", exc)
            return FetchResult[Finding].failure(str(exc))

        if isinstance(payload, dict) and any(key in payload for key in FINDING_RANGE_GROUPS):
            groups = [parse_entities(payload.get(key), Finding) for key in FINDING_RANGE_GROUPS]
            return FetchResult[Finding].ok(dedupe(*groups, key=finding_key))
        return FetchResult[Finding].ok(dedupe(parse_entities(payload, Finding), key=finding_key))

    async def update_finding_status(self, finding_id: str, status: str) -> Optional[Finding]:
        return await self._mutate(
            "update_finding_status", "PUT", f"/Findings/{finding_id}/status", Finding,
            json=to_wire({"status": status}),
        )

    # ==================== ROOT CAUSES ====================

    async def list_root_causes_by_finding(self, finding_id: str, fresh: bool = False) -> FetchResult:
        return await self._list(
            "list_root_causes_by_finding", f"/RootCauses/by-finding/{finding_id}", RootCause, fresh=fresh,
        )

    async def get_root_cause(self, root_cause_id: int, fresh: bool = False) -> RootCause:
        return await self._get("get_root_cause", f"/RootCauses/{root_cause_id}", RootCause, fresh=fresh)

    async def list_root_cause_logs(self, root_cause_id: int, fresh: bool = False) -> FetchResult:
        """Update history of a root cause."""
        return await self._list(
            "list_root_cause_logs", f"/RootCauses/{root_cause_id}/audit-logs/update", RootCauseLog, fresh=fresh,
        )

    async def create_root_cause(self, payload: RootCauseCreate) -> Optional[RootCause]:
        return await self._mutate("create_root_cause", "POST", "/RootCauses", RootCause, json=_body(payload))

    async def update_root_cause(self, root_cause_id: int, payload: RootCauseUpdate, **extra) -> Optional[RootCause]:
        """Update a root cause; ``extra`` carries status/reason changes from the workflow."""
        return await self._mutate(
            "update_root_cause", "PUT", f"/RootCauses/{root_cause_id}", RootCause,
            json=_body(payload, **extra),
        )

    async def delete_root_cause(self, root_cause_id: int) -> None:
        await self._mutate("delete_root_cause", "DELETE", f"/RootCauses/{root_cause_id}")

    async def submit_root_cause(self, root_cause_id: int) -> None:
        await self._mutate("submit_root_cause", "POST", f"/RootCauses/{root_cause_id}/pending-review")

    async def approve_root_cause(self, root_cause_id: int) -> None:
        await self._mutate("approve_root_cause", "POST", f"/RootCauses/{root_cause_id}/approve")

    async def reject_root_cause(self, root_cause_id: int, reason: str) -> None:
        await self._mutate(
            "reject_root_cause", "POST", f"/RootCauses/{root_cause_id}/reject",
            json=to_wire({"reason_reject": reason}),
        )

    # ==================== ACTIONS ====================

    async def get_action(self, action_id: str, fresh: bool = False) -> Action:
        return await self._get("get_action", f"/Action/{action_id}", Action, fresh=fresh)

    async def list_my_actions(self, fresh: bool = False) -> FetchResult:
        return await self._list("list_my_actions", "/Action/my-actions", Action, fresh=fresh)

    async def list_actions_by_root_cause(self, root_cause_id: int, fresh: bool = False) -> FetchResult:
        return await self._list(
            "list_actions_by_root_cause", f"/Action/root-cause/{root_cause_id}", Action, fresh=fresh,
        )

    async def list_actions_by_department(self, dept_id: int, fresh: bool = False) -> FetchResult:
        return await self._list(
            "list_actions_by_department", f"/Action/department/{dept_id}", Action, fresh=fresh,
        )

    async def list_actions_by_finding(self, finding_id: str, fresh: bool = False) -> FetchResult:
        return await self._list(
            "list_actions_by_finding", f"/Action/finding/{finding_id}", Action, fresh=fresh,
        )

    async def create_action(self, payload: ActionCreate) -> Optional[Action]:
        return await self._mutate("create_action", "POST", "/Action", Action, json=_body(payload))

    async def update_progress_percent(self, action_id: str, percent: int) -> None:
        await self._mutate(
            "update_progress_percent", "PUT", f"/Action/{action_id}/progress-percent",
            json=to_wire({"progress_percent": percent}),
        )

    async def set_status_in_progress(self, action_id: str) -> None:
        await self._mutate("set_status_in_progress", "PUT", f"/Action/{action_id}/status/in-progress")

    async def set_status_reviewed(self, action_id: str) -> None:
        await self._mutate("set_status_reviewed", "PUT", f"/Action/{action_id}/status/reviewed")

    async def set_status_closed(self, action_id: str) -> None:
        await self._mutate("set_status_closed", "PUT", f"/Action/{action_id}/status/closed")

    async def set_status_archived(self, action_id: str) -> None:
        await self._mutate("set_status_archived", "PUT", f"/Action/{action_id}/status/archived")

    async def verify_action(self, action_id: str, feedback: str = "") -> None:
        await self._mutate(
            "verify_action", "POST", f"/ActionReview/{action_id}/approve",
            json=_body(ReviewDecision(feedback=feedback)),
        )

    async def return_action(self, action_id: str, feedback: str) -> None:
        await self._mutate(
            "return_action", "POST", f"/ActionReview/{action_id}/returned",
            json=_body(ReviewDecision(feedback=feedback)),
        )

    async def approve_action_final(self, action_id: str, feedback: str = "") -> None:
        await self._mutate(
            "approve_action_final", "PUT", f"/ActionReview/{action_id}/approve/higher-level",
            json=_body(ReviewDecision(feedback=feedback)),
        )

    async def reject_action_final(self, action_id: str, feedback: str) -> None:
        await self._mutate(
            "reject_action_final", "PUT", f"/ActionReview/{action_id}/reject/higher-level",
            json=_body(ReviewDecision(feedback=feedback)),
        )

    # ==================== ATTACHMENTS ====================

    async def list_attachments(self, entity_type: EntityType, entity_id: str, fresh: bool = False) -> FetchResult:
        kind = getattr(entity_type, "value", entity_type)
        return await self._list(
            "list_attachments", f"/admin/AdminAttachment/{kind}/{entity_id}", Attachment, fresh=fresh,
        )

    async def upload_attachment(self, upload: AttachmentUpload) -> Optional[Attachment]:
        """Multipart upload of one evidence file."""
        fields = upload.model_dump(mode="json", exclude={"content", "file_name", "content_type"}, exclude_none=True)
        form = {key: str(value) for key, value in to_wire(fields).items()}
        files = {"file": (upload.file_name, upload.content, upload.content_type)}
        return await self._mutate(
            "upload_attachment", "POST", "/admin/AdminAttachment", Attachment, data=form, files=files,
        )

    # ==================== MASTER DATA ====================

    async def list_severities(self) -> FetchResult:
        return await self._list("list_severities", "/FindingSeverity", SeverityOption)

    async def list_departments(self) -> FetchResult:
        return await self._list("list_departments", "/admin/AdminDepartments", Department)

