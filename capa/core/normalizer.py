"""Response normalization at the remote-store boundary.

The backend serializes with reference preservation, so list responses may
arrive either as a bare array or wrapped in an envelope:

    {"$id": "1", "$values": [{"$id": "2", ...}, {"$ref": "2"}]}

Outbound payloads use PascalCase keys while inbound payloads use camelCase.
This module is the only place that knows either convention; everything
past it sees plain snake_case dicts or pydantic models.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel, ValidationError
from pydantic.alias_generators import to_pascal, to_snake

from capa.core.exceptions import ParseError

logger = logging.getLogger(__name__)

VALUES_KEYS = ("$values", "values")
REF_KEY = "$ref"

# One precedence list per concept that payloads spell several ways.
# Names are snake_case because lookups run after from_wire().
FIELD_PRECEDENCE: Dict[str, Sequence[str]] = {
    "dept_id": ("dept_id", "department_id", "assigned_dept_id", "owner_dept_id"),
    "finding_severity": ("severity", "severity_name", "severity_level"),
    "severity_name": ("severity", "name", "severity_name"),
    "severity_id": ("severity_id", "id"),
    "reason_reject": ("reason_reject", "rejection_reason", "reject_reason"),
    "assigned_to": ("assigned_to", "assignee_id", "assigned_user_id"),
    "due_date": ("due_date", "deadline"),
}

M = TypeVar("M", bound=BaseModel)


def _is_envelope(payload: Dict[str, Any]) -> bool:
    return any(key in payload for key in VALUES_KEYS)


def _envelope_values(payload: Dict[str, Any]) -> Any:
    for key in VALUES_KEYS:
        if key in payload:
            return payload[key]
    return None


def _collect_ids(node: Any, index: Dict[str, Any]) -> None:
    """Index every $id-tagged object in the payload by its id."""
    if isinstance(node, dict):
        ref_id = node.get("$id")
        if ref_id is not None and REF_KEY not in node:
            index.setdefault(str(ref_id), node)
        for value in node.values():
            _collect_ids(value, index)
    elif isinstance(node, list):
        for item in node:
            _collect_ids(item, index)


def unwrap(payload: Any) -> List[Any]:
    """Flatten a list response into a list of entities.

    Accepts a bare list or a reference-graph envelope. None and empty
    containers yield []. ``{"$ref": id}`` items resolve to the object that
    carries the same ``$id``; an entity is emitted once even if the graph
    references it several times. The input is never mutated.

    Raises:
        ParseError: the payload is neither a list nor an envelope.
    """
    if payload is None:
        return []
    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict):
        if not payload:
            return []
        if not _is_envelope(payload):
            raise ParseError(
                "Expected a list or an envelope with a values collection, got an object "
                f"with keys {sorted(payload)[:5]}",
                payload_kind="dict",
            )
        items = _envelope_values(payload)
        if items is None:
            return []
        if not isinstance(items, list):
            raise ParseError(
                f"Envelope values must be a list, got {type(items).__name__}",
                payload_kind=type(items).__name__,
            )
    else:
        raise ParseError(
            f"Cannot unwrap a {type(payload).__name__} payload",
            payload_kind=type(payload).__name__,
        )

    index: Dict[str, Any] = {}
    _collect_ids(payload, index)

    result: List[Any] = []
    seen_ids = set()
    for item in items:
        if isinstance(item, dict) and REF_KEY in item:
            target = index.get(str(item[REF_KEY]))
            if target is None:
                raise ParseError(f"Unresolved reference $ref={item[REF_KEY]!r}", payload_kind="dict")
            item = target
        if isinstance(item, dict) and item.get("$id") is not None:
            ref_id = str(item["$id"])
            if ref_id in seen_ids:
                continue
            seen_ids.add(ref_id)
        result.append(item)
    return result


def wrap(items: Iterable[Any], reference_id: str = "1") -> Dict[str, Any]:
    """Build the envelope shape the backend uses for list responses."""
    return {"$id": reference_id, "$values": list(items)}


def _convert_keys(data: Any, convert, drop_references: bool) -> Any:
    if isinstance(data, list):
        return [_convert_keys(item, convert, drop_references) for item in data]
    if isinstance(data, dict):
        if drop_references and _is_envelope(data):
            return _convert_keys(unwrap(data), convert, drop_references)
        converted = {}
        for key, value in data.items():
            if isinstance(key, str) and key.startswith("$"):
                if drop_references:
                    continue
                converted[key] = value
                continue
            converted[convert(key)] = _convert_keys(value, convert, drop_references)
        return converted
    return data


def to_wire(data: Any) -> Any:
    """Convert a local snake_case/camelCase structure to the backend's PascalCase keys.

    Field names of the input are authoritative; only their casing changes.
    Returns a new structure; the input is left untouched.
    """
    return _convert_keys(data, lambda key: to_pascal(to_snake(key)), drop_references=False)


def from_wire(data: Any) -> Any:
    """Convert inbound keys (camelCase or PascalCase) to snake_case.

    Nested envelopes are flattened and ``$``-prefixed bookkeeping keys dropped.
    """
    return _convert_keys(data, to_snake, drop_references=True)


def coalesce(data: Dict[str, Any], names: Sequence[str]) -> Any:
    """Return the first present, non-empty value among ``names``."""
    for name in names:
        value = data.get(name)
        if value is not None and value != "":
            return value
    return None


def apply_precedence(data: Dict[str, Any], concept: str, target: Optional[str] = None) -> Dict[str, Any]:
    """Populate ``target`` (default: the concept name) from FIELD_PRECEDENCE.

    Returns a copy; the alternate names are left in place and ignored by
    the models.
    """
    result = dict(data)
    value = coalesce(data, FIELD_PRECEDENCE[concept])
    if value is not None:
        result[target or concept] = value
    return result


def parse_entity(payload: Any, model: Type[M]) -> M:
    """Validate a single-object response into ``model``.

    Raises:
        ParseError: payload is not an object, or fails model validation.
    """
    if isinstance(payload, dict) and _is_envelope(payload):
        items = unwrap(payload)
        if len(items) != 1:
            raise ParseError(f"Expected one {model.__name__}, got {len(items)}", payload_kind="dict")
        payload = items[0]
    if not isinstance(payload, dict):
        raise ParseError(
            f"Expected a {model.__name__} object, got {type(payload).__name__}",
            payload_kind=type(payload).__name__,
        )
    try:
        return model.model_validate(from_wire(payload))
    except ValidationError as exc:
        logger.warning("Rejected malformed %s payload: %s", model.__name__, exc)
        raise ParseError(f"Malformed {model.__name__}: {exc.error_count()} error(s)", payload_kind="dict") from exc


def parse_entities(payload: Any, model: Type[M]) -> List[M]:
    """Unwrap a list response and validate each entity into ``model``."""
    return [parse_entity(item, model) for item in unwrap(payload)]
