"""
Engine-wide exception hierarchy.

Every rule in the engine raises one of these types so the presentation
layer can register a single handler per type and render a consistent
message. Local validation errors (transitions, progress gate, duplicate
names) are raised before the remote store is contacted.

Usage:
    from capa.core.exceptions import InvalidTransition, EvidenceRequired

    raise InvalidTransition("Action", "approve_final", "Reviewed")
    raise EvidenceRequired(action_id="a-1")
"""


class WorkflowError(Exception):
    """Base class for every error raised by the engine."""


class InvalidTransition(WorkflowError):
    """Raised when a state change is not permitted by the entity's FSM.

    Args:
        entity: Entity kind ("Action", "RootCause", "Finding").
        action: Name of the attempted transition.
        current: Status the entity was in.
        reason: Optional explanation appended to the message.
    """

    def __init__(self, entity: str, action: str, current: str | None, reason: str | None = None) -> None:
        msg = f"Cannot '{action}' {entity} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.entity = entity
        self.action = action
        self.current_status = current
        self.reason = reason


class PermissionDenied(WorkflowError):
    """Raised when the acting role may not trigger a transition."""

    def __init__(self, role: str | None, action: str, reason: str | None = None) -> None:
        msg = f"Role {role!r} may not perform '{action}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.role = role
        self.action = action


class GateError(WorkflowError):
    """Base class for progress gate rejections."""

    def __init__(self, message: str, action_id: str | None = None) -> None:
        super().__init__(message)
        self.action_id = action_id


class InvalidProgressValue(GateError):
    """Requested percent is not one of the allowed tiers."""

    def __init__(self, requested: int, action_id: str | None = None) -> None:
        super().__init__(f"Progress {requested}% is not one of 25, 50, 75, 100", action_id)
        self.requested = requested


class ProgressNotIncreasing(GateError):
    """Requested percent is not strictly above the current progress."""

    def __init__(self, current: int, requested: int, action_id: str | None = None) -> None:
        super().__init__(
            f"Progress must increase: requested {requested}% but action is at {current}%",
            action_id,
        )
        self.current = current
        self.requested = requested


class EvidenceRequired(GateError):
    """A progress save arrived without any new, usable attachment."""

    def __init__(self, action_id: str | None = None) -> None:
        super().__init__("At least one new evidence file is required to save progress", action_id)


class DuplicateName(WorkflowError):
    """Raised when a root cause name collides (case-insensitive) within a finding."""

    def __init__(self, finding_id: str | None, name: str) -> None:
        super().__init__(f"Root cause {name!r} already exists for finding {finding_id}")
        self.finding_id = finding_id
        self.name = name


class ParseError(WorkflowError):
    """Raised when a remote payload does not match any known shape.

    Args:
        message: What was wrong with the payload.
        payload_kind: Python type name of the offending value, for logs.
    """

    def __init__(self, message: str, payload_kind: str | None = None) -> None:
        super().__init__(message)
        self.payload_kind = payload_kind


class MasterDataUnavailable(WorkflowError):
    """Reference data (severities, departments) could not be loaded."""

    def __init__(self, resource: str, detail: str | None = None) -> None:
        msg = f"Master data '{resource}' unavailable"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.resource = resource


class RemoteFailure(WorkflowError):
    """Network or server error while talking to the remote store.

    Args:
        operation: Name of the client operation that failed.
        status_code: HTTP status when the server answered, else None.
        detail: Server message or transport error text.
    """

    def __init__(self, operation: str, status_code: int | None = None, detail: str | None = None) -> None:
        msg = f"Remote call '{operation}' failed"
        if status_code is not None:
            msg += f" (HTTP {status_code})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.operation = operation
        self.status_code = status_code
        self.detail = detail
