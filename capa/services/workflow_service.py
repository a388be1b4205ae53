"""
Async workflow operations against the remote store.

Every mutation follows the same sequence:

1. fetch the entity fresh (cache-busted) and run the local rules
2. persist through the remote store
3. re-fetch the affected entity
4. publish one invalidation per persisted change

Local rule failures (InvalidTransition, PermissionDenied, gate errors,
DuplicateName) are raised before anything is written. Mutations run under
asyncio.shield: a view that closes mid-save cancels its own wait, not the
write.

Usage:
    service = WorkflowService(store, channel)
    outcome = await service.save_progress("42", 50, files, actor_id="u-7")
    if not outcome.status_applied:
        await service.retry_status_transition("42", actor_id="u-7")
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from capa.core.attachments import AttachmentLifecycleTracker, retention_until
from capa.core.exceptions import (
    InvalidTransition,
    PermissionDenied,
    ProgressNotIncreasing,
    RemoteFailure,
)
from capa.core.master_data import load_severities
from capa.core.progress_gate import (
    COMPLETE_PERCENT,
    apply_progress,
    apply_resubmission,
    count_new_evidence,
    target_status_for,
)
from capa.core.roles import RoleCode, build_capabilities, normalize_role_code
from capa.core.statuses import (
    ActionStatus,
    EntityType,
    FindingStatus,
    INACTIVE_ATTACHMENT_STATUSES,
    RootCauseStatus,
)
from capa.core.time import utc_now
from capa.core.workflow import (
    check_action_transition,
    check_finding_transition,
    check_root_cause_editable,
    check_root_cause_transition,
    check_unique_root_cause_name,
    plan_batch_submit,
    progress_transition_name,
    validate_action_transition,
)
from capa.schemas.action import Action, ActionCreate
from capa.schemas.attachment import AttachmentUpload, EvidenceFile
from capa.schemas.common import FetchResult
from capa.schemas.finding import Finding
from capa.schemas.master_data import MasterDataResult
from capa.schemas.root_cause import RootCause, RootCauseCreate, RootCauseUpdate
from capa.schemas.workflow import ActionTransitionResult, ProgressSaveOutcome, TransitionWarning
from capa.services.events import (
    ACTION_UPDATED,
    ATTACHMENT_UPDATED,
    FINDING_UPDATED,
    ROOT_CAUSE_UPDATED,
    InvalidationChannel,
)
from capa.services.remote_store import RemoteStore

logger = logging.getLogger(__name__)

_RESUBMITTABLE = {ActionStatus.RETURNED, ActionStatus.REJECTED}


def _check_capability(role, capability: str, action: str) -> None:
    role_code = normalize_role_code(role)
    if not build_capabilities(role_code)[capability]:
        raise PermissionDenied(role_code or role, action)


class WorkflowService:
    """Orchestrates root cause, action and finding workflows."""

    def __init__(
        self,
        store: RemoteStore,
        channel: Optional[InvalidationChannel] = None,
        clock: Callable = utc_now,
    ):
        self.store = store
        self.channel = channel or InvalidationChannel()
        self._clock = clock

    # ==================== HELPERS ====================

    async def _refresh_action(self, action_id: str) -> Optional[Action]:
        try:
            return await self.store.get_action(action_id, fresh=True)
        except RemoteFailure as exc:
            logger.warning("Re-fetch of action %s failed: %s", action_id, exc)
            return None

    async def _refresh_root_cause(self, root_cause_id: int) -> Optional[RootCause]:
        try:
            return await self.store.get_root_cause(root_cause_id, fresh=True)
        except RemoteFailure as exc:
            logger.warning("Re-fetch of root cause %s failed: %s", root_cause_id, exc)
            return None

    async def _refresh_root_causes(self, finding_id: str) -> FetchResult:
        result = await self.store.list_root_causes_by_finding(finding_id, fresh=True)
        if result.failed:
            logger.warning("Re-fetch of root causes for finding %s failed: %s", finding_id, result.error)
        return result

    async def _siblings(self, finding_id: str) -> List[RootCause]:
        result = await self.store.list_root_causes_by_finding(finding_id, fresh=True)
        if result.failed:
            raise RemoteFailure("list_root_causes_by_finding", None, result.error)
        return result.items

    async def _apply_status(self, action_id: str, target: ActionStatus) -> None:
        if target == ActionStatus.REVIEWED:
            await self.store.set_status_reviewed(action_id)
        elif target == ActionStatus.IN_PROGRESS:
            await self.store.set_status_in_progress(action_id)
        else:
            raise ValueError(f"No owner status call for {target.value}")

    # ==================== PROGRESS ====================

    async def save_progress(
        self,
        action_id: str,
        requested_percent: int,
        files: Sequence[EvidenceFile],
        actor_id: str,
        role=RoleCode.ACTION_OWNER,
    ) -> ProgressSaveOutcome:
        """
        Save an owner's progress report with its evidence.

        Key Logic:
        - Rules are checked before any upload
        - Evidence is uploaded first, then progress, then status
        - A failed status call leaves progress saved and is reported, not raised
        - A returned action already at 100% is resubmitted for review

        Raises:
            PermissionDenied, InvalidTransition, GateError, RemoteFailure
        """
        return await asyncio.shield(
            self._save_progress(action_id, requested_percent, list(files), actor_id, role)
        )

    async def _save_progress(
        self,
        action_id: str,
        requested_percent: int,
        files: List[EvidenceFile],
        actor_id: str,
        role,
    ) -> ProgressSaveOutcome:
        action = await self.store.get_action(action_id, fresh=True)
        evidence_count = count_new_evidence(files)

        if action.status in _RESUBMITTABLE and action.progress_percent == COMPLETE_PERCENT:
            check_action_transition(action, "resubmit", role, actor_id=actor_id)
            if requested_percent != COMPLETE_PERCENT:
                raise ProgressNotIncreasing(action.progress_percent, requested_percent, action.action_id)
            transition = apply_resubmission(action, evidence_count)
        else:
            name = progress_transition_name(target_status_for(requested_percent))
            check_action_transition(action, name, role, actor_id=actor_id)
            transition = apply_progress(action, requested_percent, evidence_count)

        uploaded_ids = await self._upload_evidence(action, files, actor_id)

        if transition.to_percent != transition.from_percent:
            try:
                await self.store.update_progress_percent(action_id, transition.to_percent)
            except RemoteFailure:
                await self.channel.publish(ATTACHMENT_UPDATED, action_id, action.finding_id)
                raise

        status_applied, status_error = True, None
        try:
            await self._apply_status(action_id, transition.target_status)
        except RemoteFailure as exc:
            logger.warning("Progress saved for action %s but status update failed: %s", action_id, exc)
            status_applied, status_error = False, str(exc)

        refreshed = await self._refresh_action(action_id)
        await self.channel.publish(ACTION_UPDATED, action_id, action.finding_id)
        logger.info(
            "Action %s progress %s%% -> %s%% (%s)",
            action_id, transition.from_percent, transition.to_percent, transition.target_status.value,
        )
        return ProgressSaveOutcome(
            action_id=action_id,
            from_percent=transition.from_percent,
            to_percent=transition.to_percent,
            target_status=transition.target_status,
            uploaded_attachment_ids=uploaded_ids,
            status_applied=status_applied,
            status_error=status_error,
            refreshed=refreshed,
        )

    async def _upload_evidence(self, action: Action, files: List[EvidenceFile], actor_id: str) -> List[str]:
        """Upload usable files; a single failed file does not stop the others."""
        keep_until = retention_until(self._clock())
        uploaded: List[str] = []
        attempted = 0
        last_error: Optional[RemoteFailure] = None

        for evidence in files:
            if evidence.status in INACTIVE_ATTACHMENT_STATUSES:
                continue
            attempted += 1
            upload = AttachmentUpload(
                entity_type=EntityType.ACTION,
                entity_id=action.action_id,
                uploaded_by=actor_id,
                file_name=evidence.file_name,
                content=evidence.content,
                content_type=evidence.content_type,
                status=evidence.status,
                retention_until=keep_until,
            )
            try:
                created = await self.store.upload_attachment(upload)
            except RemoteFailure as exc:
                logger.warning("Upload of %s for action %s failed: %s", evidence.file_name, action.action_id, exc)
                last_error = exc
                continue
            uploaded.append(created.attachment_id if created else evidence.file_name)

        if attempted and not uploaded:
            raise RemoteFailure("upload_attachment", None, f"no evidence file could be uploaded ({last_error})")
        return uploaded

    async def retry_status_transition(
        self,
        action_id: str,
        actor_id: str,
        role=RoleCode.ACTION_OWNER,
    ) -> Optional[Action]:
        """Re-apply the status step of a progress save whose status call failed."""
        return await asyncio.shield(self._retry_status_transition(action_id, actor_id, role))

    async def _retry_status_transition(self, action_id: str, actor_id: str, role) -> Optional[Action]:
        action = await self.store.get_action(action_id, fresh=True)
        if not action.progress_percent:
            raise InvalidTransition("Action", "retry_status", action.status.value, "no saved progress")
        target = target_status_for(action.progress_percent)
        if action.status == target:
            logger.info("Action %s already %s; nothing to retry", action_id, target.value)
            return action

        check_action_transition(action, progress_transition_name(target), role, actor_id=actor_id)
        await self._apply_status(action_id, target)
        refreshed = await self._refresh_action(action_id)
        await self.channel.publish(ACTION_UPDATED, action_id, action.finding_id)
        return refreshed

    # ==================== ROOT CAUSES ====================

    async def create_root_cause(self, payload: RootCauseCreate, role) -> Optional[RootCause]:
        """Create a Draft root cause after the duplicate-name check."""
        _check_capability(role, "can_edit_root_causes", "create")
        return await asyncio.shield(self._create_root_cause(payload))

    async def _create_root_cause(self, payload: RootCauseCreate) -> Optional[RootCause]:
        siblings = await self._siblings(payload.finding_id)
        check_unique_root_cause_name(payload.name, siblings, finding_id=payload.finding_id)
        draft = payload.model_copy(update={"status": RootCauseStatus.DRAFT})
        created = await self.store.create_root_cause(draft)
        if created is not None:
            refreshed = await self._refresh_root_cause(created.root_cause_id)
        else:
            # No body returned; find the new record by name
            result = await self._refresh_root_causes(payload.finding_id)
            key = payload.name.strip().casefold()
            refreshed = next((rc for rc in result.items if rc.name.strip().casefold() == key), None)
        entity_id = refreshed.root_cause_id if refreshed else payload.finding_id
        await self.channel.publish(ROOT_CAUSE_UPDATED, entity_id, payload.finding_id)
        return refreshed

    async def update_root_cause(self, root_cause_id: int, changes: RootCauseUpdate, role) -> Optional[RootCause]:
        """Edit a Draft root cause."""
        return await asyncio.shield(self._update_root_cause(root_cause_id, changes, role))

    async def _update_root_cause(self, root_cause_id: int, changes: RootCauseUpdate, role) -> Optional[RootCause]:
        current = await self.store.get_root_cause(root_cause_id, fresh=True)
        check_root_cause_editable(current, role)
        if changes.name is not None:
            siblings = await self._siblings(current.finding_id)
            check_unique_root_cause_name(
                changes.name, siblings, exclude_id=current.root_cause_id, finding_id=current.finding_id,
            )
        await self.store.update_root_cause(root_cause_id, changes)
        refreshed = await self._refresh_root_cause(root_cause_id)
        await self.channel.publish(ROOT_CAUSE_UPDATED, root_cause_id, current.finding_id)
        return refreshed

    async def delete_root_cause(self, root_cause_id: int, role) -> FetchResult:
        """Delete a Draft root cause; returns the finding's remaining root causes."""
        return await asyncio.shield(self._delete_root_cause(root_cause_id, role))

    async def _delete_root_cause(self, root_cause_id: int, role) -> FetchResult:
        current = await self.store.get_root_cause(root_cause_id, fresh=True)
        check_root_cause_transition(current, "delete", role)
        await self.store.delete_root_cause(root_cause_id)
        remaining = await self._refresh_root_causes(current.finding_id)
        await self.channel.publish(ROOT_CAUSE_UPDATED, root_cause_id, current.finding_id)
        return remaining

    async def submit_root_causes(self, finding_id: str, role) -> FetchResult:
        """Submit every Draft root cause of a finding for review.

        Returns the finding's root causes as re-read after the submissions.
        """
        return await asyncio.shield(self._submit_root_causes(finding_id, role))

    async def _submit_root_causes(self, finding_id: str, role) -> FetchResult:
        siblings = await self._siblings(finding_id)
        planned = plan_batch_submit(siblings, role)
        for step in planned:
            await self.store.submit_root_cause(step.entity_id)
            await self.channel.publish(ROOT_CAUSE_UPDATED, step.entity_id, finding_id)
        refreshed = await self._refresh_root_causes(finding_id)
        logger.info("Submitted %d root cause(s) for finding %s", len(planned), finding_id)
        return refreshed

    async def approve_root_cause(self, root_cause_id: int, role) -> RootCause:
        return await asyncio.shield(self._review_root_cause(root_cause_id, "approve", role))

    async def reject_root_cause(self, root_cause_id: int, reason: str, role) -> RootCause:
        return await asyncio.shield(self._review_root_cause(root_cause_id, "reject", role, reason))

    async def _review_root_cause(self, root_cause_id: int, action: str, role, reason: Optional[str] = None) -> RootCause:
        current = await self.store.get_root_cause(root_cause_id, fresh=True)
        check_root_cause_transition(current, action, role, reason=reason)
        if action == "approve":
            await self.store.approve_root_cause(root_cause_id)
        else:
            await self.store.reject_root_cause(root_cause_id, reason.strip())
        refreshed = await self.store.get_root_cause(root_cause_id, fresh=True)
        await self.channel.publish(ROOT_CAUSE_UPDATED, root_cause_id, current.finding_id)
        return refreshed

    async def revise_root_cause(
        self,
        root_cause_id: int,
        role,
        changes: Optional[RootCauseUpdate] = None,
    ) -> Optional[RootCause]:
        """Move a Rejected root cause back to Draft, keeping the rejection reason."""
        return await asyncio.shield(self._revise_root_cause(root_cause_id, role, changes or RootCauseUpdate()))

    async def _revise_root_cause(self, root_cause_id: int, role, changes: RootCauseUpdate) -> Optional[RootCause]:
        current = await self.store.get_root_cause(root_cause_id, fresh=True)
        target = check_root_cause_transition(current, "revise", role)
        if changes.name is not None:
            siblings = await self._siblings(current.finding_id)
            check_unique_root_cause_name(
                changes.name, siblings, exclude_id=current.root_cause_id, finding_id=current.finding_id,
            )
        extra = {"status": target.value}
        if current.reason_reject:
            extra["reason_reject"] = current.reason_reject
        await self.store.update_root_cause(root_cause_id, changes, **extra)
        refreshed = await self._refresh_root_cause(root_cause_id)
        await self.channel.publish(ROOT_CAUSE_UPDATED, root_cause_id, current.finding_id)
        return refreshed

    # ==================== ACTIONS ====================

    async def create_action(self, payload: ActionCreate, role) -> Optional[Action]:
        """Assign a remediation action; its root cause must already be Approved."""
        _check_capability(role, "can_assign_actions", "create_action")
        return await asyncio.shield(self._create_action(payload))

    async def _create_action(self, payload: ActionCreate) -> Optional[Action]:
        if payload.root_cause_id is not None:
            root_cause = await self.store.get_root_cause(payload.root_cause_id, fresh=True)
            if root_cause.status != RootCauseStatus.APPROVED:
                raise InvalidTransition(
                    "RootCause", "assign_action", root_cause.status.value,
                    "actions can only be assigned to an Approved root cause",
                )
        created = await self.store.create_action(payload.model_copy(update={"progress_percent": 0}))
        if created is None:
            logger.warning("Action created for finding %s but no id returned; cannot re-fetch", payload.finding_id)
            await self.channel.publish(ACTION_UPDATED, payload.finding_id, payload.finding_id)
            return None
        refreshed = await self._refresh_action(created.action_id)
        await self.channel.publish(ACTION_UPDATED, created.action_id, payload.finding_id)
        return refreshed or created

    async def approval_warnings(self, action_id: str) -> List[TransitionWarning]:
        """Evidence warnings shown before second-tier approval. Never blocking."""
        result = await self.store.list_attachments(EntityType.ACTION, action_id, fresh=True)
        if result.failed:
            return [TransitionWarning(
                warning_type="EVIDENCE_UNAVAILABLE",
                message="Evidence could not be loaded; review status unknown",
                entity_id=str(action_id),
                details={"error": result.error},
            )]
        tracker = AttachmentLifecycleTracker(result.items)
        return tracker.approval_warnings(EntityType.ACTION, action_id)

    async def _review_action(
        self,
        action_id: str,
        transition: str,
        role,
        call: Callable[[], Awaitable[None]],
        feedback: Optional[str] = None,
        actor_id: Optional[str] = None,
        with_warnings: bool = False,
    ) -> ActionTransitionResult:
        action = await self.store.get_action(action_id, fresh=True)
        target = check_action_transition(action, transition, role, actor_id=actor_id, feedback=feedback)
        warnings = await self.approval_warnings(action_id) if with_warnings else []
        for warning in warnings:
            logger.warning("Action %s %s: %s", action_id, transition, warning.message)

        await call()
        refreshed = await self._refresh_action(action_id)
        await self.channel.publish(ACTION_UPDATED, action_id, action.finding_id)
        logger.info("Action %s %s: %s -> %s", action_id, transition, action.status.value, target.value)
        return ActionTransitionResult(
            action_id=action.action_id,
            previous_status=action.status,
            new_status=target,
            transition=transition,
            warnings=warnings,
            refreshed=refreshed,
        )

    async def verify_action(self, action_id: str, role, feedback: str = "") -> ActionTransitionResult:
        """First-tier approval of a Reviewed action."""
        return await asyncio.shield(self._review_action(
            action_id, "verify", role,
            lambda: self.store.verify_action(action_id, feedback), feedback=feedback,
        ))

    async def return_action(self, action_id: str, role, feedback: str) -> ActionTransitionResult:
        """First-tier return of a Reviewed action to its owner."""
        return await asyncio.shield(self._review_action(
            action_id, "return", role,
            lambda: self.store.return_action(action_id, feedback), feedback=feedback,
        ))

    async def approve_action_final(self, action_id: str, role, feedback: str = "") -> ActionTransitionResult:
        """Second-tier approval; requires a Verified action. Evidence warnings are reported."""
        return await asyncio.shield(self._review_action(
            action_id, "approve_final", role,
            lambda: self.store.approve_action_final(action_id, feedback),
            feedback=feedback, with_warnings=True,
        ))

    async def reject_action_final(self, action_id: str, role, feedback: str) -> ActionTransitionResult:
        """Second-tier rejection back to the owner."""
        return await asyncio.shield(self._review_action(
            action_id, "reject_final", role,
            lambda: self.store.reject_action_final(action_id, feedback), feedback=feedback,
        ))

    async def archive_action(self, action_id: str, role) -> ActionTransitionResult:
        return await asyncio.shield(self._review_action(
            action_id, "archive", role, lambda: self.store.set_status_archived(action_id),
        ))

    # ==================== FINDINGS ====================

    async def receive_finding(self, finding_id: str, role) -> Finding:
        return await asyncio.shield(self._transition_finding(finding_id, "receive", role))

    async def archive_finding(self, finding_id: str, role) -> Finding:
        return await asyncio.shield(self._transition_finding(finding_id, "archive", role))

    async def close_finding(self, finding_id: str, role) -> Finding:
        """Close a finding and every action under it that is not yet finished."""
        return await asyncio.shield(self._close_finding(finding_id, role))

    async def _transition_finding(self, finding_id: str, action: str, role) -> Finding:
        finding = await self.store.get_finding(finding_id, fresh=True)
        target = check_finding_transition(finding, action, role)
        await self.store.update_finding_status(finding_id, target.value)
        refreshed = await self.store.get_finding(finding_id, fresh=True)
        await self.channel.publish(FINDING_UPDATED, finding_id)
        return refreshed

    async def _close_finding(self, finding_id: str, role) -> Finding:
        finding = await self.store.get_finding(finding_id, fresh=True)
        check_finding_transition(finding, "close", role)

        actions = await self.store.list_actions_by_finding(finding_id, fresh=True)
        if actions.failed:
            raise RemoteFailure("list_actions_by_finding", None, actions.error)
        for action in actions.items:
            if not validate_action_transition(action.status, "close")["valid"]:
                continue
            check_action_transition(action, "close", role)
            await self.store.set_status_closed(action.action_id)
            await self.channel.publish(ACTION_UPDATED, action.action_id, finding_id)

        await self.store.update_finding_status(finding_id, FindingStatus.CLOSED.value)
        refreshed = await self.store.get_finding(finding_id, fresh=True)
        await self.channel.publish(FINDING_UPDATED, finding_id)
        return refreshed

    # ==================== MASTER DATA ====================

    async def load_severities(self) -> MasterDataResult:
        return await load_severities(self.store)
