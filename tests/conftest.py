"""Pytest fixtures for engine and service testing.

The remote store is replaced by an in-process FastAPI app that speaks the
backend's wire format: camelCase responses, list endpoints wrapped in
``{"$id", "$values"}`` envelopes, PascalCase request bodies.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI, HTTPException, Request, Response

from capa.core.normalizer import wrap
from capa.schemas.action import Action
from capa.schemas.attachment import Attachment
from capa.schemas.finding import Finding
from capa.schemas.root_cause import RootCause
from capa.services.events import InvalidationChannel
from capa.services.remote_store import RemoteStore
from capa.services.workflow_service import WorkflowService

# Wednesday
NOW = datetime(2026, 3, 11, 9, 30)


@pytest.fixture
def now():
    return NOW


# ============================================================================
# Entity builders
# ============================================================================

@pytest.fixture
def make_action():
    """Build an Action with sensible defaults."""
    def _make(**overrides) -> Action:
        data = {
            "action_id": "A-1",
            "finding_id": "F-1",
            "root_cause_id": 1,
            "title": "Update SOP",
            "status": "Open",
            "progress_percent": 0,
            "due_date": date(2026, 3, 20),
            "assigned_to": "owner-1",
        }
        data.update(overrides)
        return Action(**data)
    return _make


@pytest.fixture
def make_root_cause():
    def _make(**overrides) -> RootCause:
        data = {
            "root_cause_id": 1,
            "finding_id": "F-1",
            "name": "Process Gap",
            "description": "Checklist step missing",
            "category": "Process",
            "status": "Draft",
        }
        data.update(overrides)
        return RootCause(**data)
    return _make


@pytest.fixture
def make_finding():
    def _make(**overrides) -> Finding:
        data = {
            "finding_id": "F-1",
            "title": "Expired calibration",
            "severity": "Major",
            "dept_id": 1,
            "status": "Open",
            "created_at": NOW,
        }
        data.update(overrides)
        return Finding(**data)
    return _make


@pytest.fixture
def make_attachment():
    def _make(**overrides) -> Attachment:
        data = {
            "attachment_id": "att-1",
            "entity_type": "Action",
            "entity_id": "A-1",
            "file_name": "evidence.pdf",
            "status": "Open",
        }
        data.update(overrides)
        return Attachment(**data)
    return _make


# ============================================================================
# Fake backend
# ============================================================================

def _snake_to_camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.title() for part in rest)


class FakeBackend:
    """In-memory stand-in for the remote store.

    Records every call as ``(operation, method, path, params, body)`` and
    fails any operation listed in ``failures`` with the given status code.
    Operations listed in ``no_content`` answer 204 instead of echoing the
    stored record.
    """

    def __init__(self) -> None:
        self.findings: Dict[str, Dict[str, Any]] = {}
        self.root_causes: Dict[int, Dict[str, Any]] = {}
        self.actions: Dict[str, Dict[str, Any]] = {}
        self.attachments: List[Dict[str, Any]] = []
        self.root_cause_logs: Dict[int, List[Dict[str, Any]]] = {}
        self.severities: List[Dict[str, Any]] = [
            {"$id": "2", "severityId": 1, "severity": "Minor"},
            {"$id": "3", "severityId": 2, "severity": "Major"},
        ]
        self.departments: List[Dict[str, Any]] = [
            {"deptId": 1, "name": "Quality"},
            {"deptId": 2, "name": "Operations"},
        ]
        self.calls: List[tuple] = []
        self.failures: Dict[str, int] = {}
        self.no_content: set = set()
        self._next_root_cause_id = 100
        self._next_action_id = 500
        self._next_attachment_id = 900
        self.app = self._build_app()

    # -------------------- seeding --------------------

    def add_finding(self, **fields) -> Dict[str, Any]:
        data = {"status": "Open", "severity": "Major", "deptId": 1, "title": "Finding"}
        data.update({_snake_to_camel(k): v for k, v in fields.items()})
        self.findings[data["findingId"]] = data
        return data

    def add_root_cause(self, **fields) -> Dict[str, Any]:
        data = {"status": "Draft", "description": "d", "category": "Process"}
        data.update({_snake_to_camel(k): v for k, v in fields.items()})
        self.root_causes[data["rootCauseId"]] = data
        return data

    def add_action(self, **fields) -> Dict[str, Any]:
        data = {
            "status": "Open", "progressPercent": 0, "title": "Action",
            "dueDate": "2026-03-20T00:00:00", "assignedTo": "owner-1",
        }
        data.update({_snake_to_camel(k): v for k, v in fields.items()})
        self.actions[data["actionId"]] = data
        return data

    def add_attachment(self, **fields) -> Dict[str, Any]:
        data = {"status": "Open", "isArchived": False, "fileName": "file.pdf"}
        data.update({_snake_to_camel(k): v for k, v in fields.items()})
        self.attachments.append(data)
        return data

    # -------------------- helpers --------------------

    def operations(self) -> List[str]:
        return [call[0] for call in self.calls]

    def calls_for(self, operation: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == operation]

    async def _enter(self, operation: str, request: Request) -> Optional[Dict[str, Any]]:
        body = None
        if request.headers.get("content-type", "").startswith("application/json"):
            raw = await request.body()
            body = await request.json() if raw else None
        self.calls.append((operation, request.method, request.url.path, dict(request.query_params), body))
        if operation in self.failures:
            raise HTTPException(status_code=self.failures[operation], detail=f"{operation} failed")
        return body

    def _reply(self, operation: str, record: Dict[str, Any]):
        if operation in self.no_content:
            return Response(status_code=204)
        return record

    def _action(self, action_id: str) -> Dict[str, Any]:
        if action_id not in self.actions:
            raise HTTPException(status_code=404, detail="Action not found")
        return self.actions[action_id]

    def _root_cause(self, root_cause_id: int) -> Dict[str, Any]:
        if root_cause_id not in self.root_causes:
            raise HTTPException(status_code=404, detail="Root cause not found")
        return self.root_causes[root_cause_id]

    # -------------------- routes --------------------

    def _build_app(self) -> FastAPI:
        app = FastAPI()
        backend = self

        @app.get("/Findings/by-department/{dept_id}")
        async def findings_by_department(dept_id: int, request: Request):
            await backend._enter("list_findings_by_department", request)
            return wrap([f for f in backend.findings.values() if f.get("deptId") == dept_id])

        @app.get("/Findings/{finding_id}")
        async def get_finding(finding_id: str, request: Request):
            await backend._enter("get_finding", request)
            if finding_id not in backend.findings:
                raise HTTPException(status_code=404, detail="Finding not found")
            return backend.findings[finding_id]

        @app.put("/Findings/{finding_id}/status")
        async def finding_status(finding_id: str, request: Request):
            body = await backend._enter("update_finding_status", request)
            backend.findings[finding_id]["status"] = body["Status"]
            return backend.findings[finding_id]

        @app.get("/AuditDashboard/findings/by-range")
        async def findings_by_range(request: Request):
            await backend._enter("list_findings_by_date_range", request)
            items = list(backend.findings.values())
            return {
                "allFindings": wrap(items),
                "openFindings": wrap([f for f in items if f["status"] == "Open"]),
                "closedFindings": wrap([f for f in items if f["status"] == "Closed"]),
            }

        @app.get("/RootCauses/by-finding/{finding_id}")
        async def root_causes_by_finding(finding_id: str, request: Request):
            await backend._enter("list_root_causes_by_finding", request)
            return wrap([rc for rc in backend.root_causes.values() if rc.get("findingId") == finding_id])

        @app.get("/RootCauses/{root_cause_id}")
        async def get_root_cause(root_cause_id: int, request: Request):
            await backend._enter("get_root_cause", request)
            return backend._root_cause(root_cause_id)

        @app.get("/RootCauses/{root_cause_id}/audit-logs/update")
        async def root_cause_logs(root_cause_id: int, request: Request):
            await backend._enter("list_root_cause_logs", request)
            return wrap(backend.root_cause_logs.get(root_cause_id, []))

        @app.post("/RootCauses")
        async def create_root_cause(request: Request):
            body = await backend._enter("create_root_cause", request)
            backend._next_root_cause_id += 1
            created = {
                "rootCauseId": backend._next_root_cause_id,
                "findingId": body["FindingId"],
                "name": body["Name"],
                "description": body.get("Description"),
                "category": body.get("Category"),
                "status": body.get("Status", "Draft"),
            }
            backend.root_causes[created["rootCauseId"]] = created
            return backend._reply("create_root_cause", created)

        @app.put("/RootCauses/{root_cause_id}")
        async def update_root_cause(root_cause_id: int, request: Request):
            body = await backend._enter("update_root_cause", request)
            rc = backend._root_cause(root_cause_id)
            for key, value in body.items():
                rc[key[:1].lower() + key[1:]] = value
            return backend._reply("update_root_cause", rc)

        @app.delete("/RootCauses/{root_cause_id}")
        async def delete_root_cause(root_cause_id: int, request: Request):
            await backend._enter("delete_root_cause", request)
            backend.root_causes.pop(root_cause_id, None)
            return Response(status_code=204)

        @app.post("/RootCauses/{root_cause_id}/pending-review")
        async def submit_root_cause(root_cause_id: int, request: Request):
            await backend._enter("submit_root_cause", request)
            backend._root_cause(root_cause_id)["status"] = "Pending"
            return Response(status_code=204)

        @app.post("/RootCauses/{root_cause_id}/approve")
        async def approve_root_cause(root_cause_id: int, request: Request):
            await backend._enter("approve_root_cause", request)
            backend._root_cause(root_cause_id)["status"] = "Approved"
            return Response(status_code=204)

        @app.post("/RootCauses/{root_cause_id}/reject")
        async def reject_root_cause(root_cause_id: int, request: Request):
            body = await backend._enter("reject_root_cause", request)
            rc = backend._root_cause(root_cause_id)
            rc["status"] = "Rejected"
            rc["reasonReject"] = body["ReasonReject"]
            return Response(status_code=204)

        @app.get("/Action/my-actions")
        async def my_actions(request: Request):
            await backend._enter("list_my_actions", request)
            return wrap([a for a in backend.actions.values() if a.get("assignedTo") == "owner-1"])

        @app.get("/Action/root-cause/{root_cause_id}")
        async def actions_by_root_cause(root_cause_id: int, request: Request):
            await backend._enter("list_actions_by_root_cause", request)
            return wrap([a for a in backend.actions.values() if a.get("rootCauseId") == root_cause_id])

        @app.get("/Action/department/{dept_id}")
        async def actions_by_department(dept_id: int, request: Request):
            await backend._enter("list_actions_by_department", request)
            return wrap([a for a in backend.actions.values() if a.get("assignedDeptId") == dept_id])

        @app.get("/Action/finding/{finding_id}")
        async def actions_by_finding(finding_id: str, request: Request):
            await backend._enter("list_actions_by_finding", request)
            return wrap([a for a in backend.actions.values() if a.get("findingId") == finding_id])

        @app.get("/Action/{action_id}")
        async def get_action(action_id: str, request: Request):
            await backend._enter("get_action", request)
            return backend._action(action_id)

        @app.post("/Action")
        async def create_action(request: Request):
            body = await backend._enter("create_action", request)
            backend._next_action_id += 1
            created = {
                "actionId": str(backend._next_action_id),
                "status": "Open",
            }
            for key, value in body.items():
                created[key[:1].lower() + key[1:]] = value
            backend.actions[created["actionId"]] = created
            return backend._reply("create_action", created)

        @app.put("/Action/{action_id}/progress-percent")
        async def progress_percent(action_id: str, request: Request):
            body = await backend._enter("update_progress_percent", request)
            backend._action(action_id)["progressPercent"] = body["ProgressPercent"]
            return Response(status_code=204)

        def _status_route(path: str, operation: str, status: str):
            @app.put(path, name=operation)
            async def _set_status(action_id: str, request: Request):
                await backend._enter(operation, request)
                backend._action(action_id)["status"] = status
                return Response(status_code=204)

        _status_route("/Action/{action_id}/status/in-progress", "set_status_in_progress", "InProgress")
        _status_route("/Action/{action_id}/status/reviewed", "set_status_reviewed", "Reviewed")
        _status_route("/Action/{action_id}/status/closed", "set_status_closed", "Closed")
        _status_route("/Action/{action_id}/status/archived", "set_status_archived", "Archived")

        @app.post("/ActionReview/{action_id}/approve")
        async def verify_action(action_id: str, request: Request):
            body = await backend._enter("verify_action", request)
            action = backend._action(action_id)
            action["status"] = "Verified"
            action["reviewFeedback"] = body.get("Feedback")
            return Response(status_code=204)

        @app.post("/ActionReview/{action_id}/returned")
        async def return_action(action_id: str, request: Request):
            body = await backend._enter("return_action", request)
            action = backend._action(action_id)
            action["status"] = "Returned"
            action["reviewFeedback"] = body.get("Feedback")
            return Response(status_code=204)

        @app.put("/ActionReview/{action_id}/approve/higher-level")
        async def approve_final(action_id: str, request: Request):
            await backend._enter("approve_action_final", request)
            backend._action(action_id)["status"] = "Approved"
            return Response(status_code=204)

        @app.put("/ActionReview/{action_id}/reject/higher-level")
        async def reject_final(action_id: str, request: Request):
            body = await backend._enter("reject_action_final", request)
            action = backend._action(action_id)
            action["status"] = "Rejected"
            action["reviewFeedback"] = body.get("Feedback")
            return Response(status_code=204)

        @app.get("/admin/AdminAttachment/{entity_type}/{entity_id}")
        async def list_attachments(entity_type: str, entity_id: str, request: Request):
            await backend._enter("list_attachments", request)
            return wrap([
                a for a in backend.attachments
                if a.get("entityType") == entity_type and str(a.get("entityId")) == entity_id
            ])

        @app.post("/admin/AdminAttachment")
        async def upload_attachment(request: Request):
            await backend._enter("upload_attachment", request)
            form = await request.form()
            upload = form["file"]
            content = await upload.read()
            backend._next_attachment_id += 1
            created = {
                "attachmentId": str(backend._next_attachment_id),
                "entityType": form["EntityType"],
                "entityId": form["EntityId"],
                "uploadedBy": form.get("UploadedBy"),
                "status": form.get("Status"),
                "retentionUntil": form.get("RetentionUntil"),
                "isArchived": form.get("IsArchived") == "True",
                "fileName": upload.filename,
                "fileSize": len(content),
            }
            backend.attachments.append(created)
            return created

        @app.get("/FindingSeverity")
        async def severities(request: Request):
            await backend._enter("list_severities", request)
            return wrap(backend.severities)

        @app.get("/admin/AdminDepartments")
        async def departments(request: Request):
            await backend._enter("list_departments", request)
            return backend.departments

        return app


@pytest.fixture
def backend():
    return FakeBackend()


@pytest_asyncio.fixture
async def store(backend):
    """RemoteStore wired to the fake backend over ASGI."""
    client = httpx.AsyncClient(
        transport=httpx.ASGITransport(app=backend.app),
        base_url="http://testserver",
    )
    async with client:
        yield RemoteStore(client=client)


@pytest.fixture
def channel():
    return InvalidationChannel()


@pytest.fixture
def service(store, channel):
    return WorkflowService(store, channel, clock=lambda: NOW)
