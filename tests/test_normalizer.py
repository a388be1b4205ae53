"""Tests for response normalization at the remote-store boundary."""
import copy
from datetime import date

import pytest

from capa.core.exceptions import ParseError
from capa.core.normalizer import (
    FIELD_PRECEDENCE,
    apply_precedence,
    coalesce,
    from_wire,
    parse_entities,
    parse_entity,
    to_wire,
    unwrap,
    wrap,
)
from capa.core.statuses import ActionStatus, FindingStatus
from capa.schemas.action import Action
from capa.schemas.finding import Finding
from capa.schemas.master_data import SeverityOption


class TestUnwrap:
    """Envelope and bare-list handling."""

    @pytest.mark.parametrize("payload", [None, [], {}, {"$values": None}, {"values": None}])
    def test_empty_shapes_yield_empty_list(self, payload):
        assert unwrap(payload) == []

    def test_round_trip(self):
        items = [{"findingId": "F-1"}, {"findingId": "F-2"}, {"findingId": "F-3"}]
        assert unwrap(wrap(items)) == items

    def test_bare_list_passes_through(self):
        items = [{"actionId": "A-1"}]
        assert unwrap(items) == items

    def test_plain_values_key(self):
        assert unwrap({"referenceId": "1", "values": [{"a": 1}]}) == [{"a": 1}]

    def test_ref_resolves_and_dedupes(self):
        payload = {
            "$id": "1",
            "$values": [
                {"$id": "2", "findingId": "F-1"},
                {"$ref": "2"},
            ],
        }
        assert unwrap(payload) == [{"$id": "2", "findingId": "F-1"}]

    def test_ref_to_nested_object(self):
        payload = {
            "$id": "1",
            "$values": [
                {"$id": "2", "findingId": "F-1", "rootCause": {"$id": "3", "name": "Gap"}},
                {"$ref": "3"},
            ],
        }
        result = unwrap(payload)
        assert len(result) == 2
        assert result[1] == {"$id": "3", "name": "Gap"}

    def test_unresolved_ref_fails_closed(self):
        with pytest.raises(ParseError):
            unwrap({"$id": "1", "$values": [{"$ref": "99"}]})

    @pytest.mark.parametrize("payload", ["text", 42, {"findingId": "F-1"}, {"$values": "oops"}])
    def test_malformed_shapes_fail_closed(self, payload):
        with pytest.raises(ParseError):
            unwrap(payload)

    def test_input_not_mutated(self):
        payload = {"$id": "1", "$values": [{"$id": "2", "x": 1}, {"$ref": "2"}]}
        snapshot = copy.deepcopy(payload)
        unwrap(payload)
        assert payload == snapshot


class TestCaseConversion:
    """Outbound PascalCase, inbound snake_case."""

    def test_to_wire_converts_nested_keys(self):
        data = {
            "finding_id": "F-1",
            "progressPercent": 50,
            "nested": {"due_date": "2026-03-01"},
            "items": [{"file_name": "a.pdf"}],
        }
        assert to_wire(data) == {
            "FindingId": "F-1",
            "ProgressPercent": 50,
            "Nested": {"DueDate": "2026-03-01"},
            "Items": [{"FileName": "a.pdf"}],
        }

    def test_to_wire_does_not_mutate(self):
        data = {"finding_id": "F-1"}
        to_wire(data)
        assert data == {"finding_id": "F-1"}

    def test_from_wire_drops_reference_keys(self):
        assert from_wire({"$id": "4", "findingId": "F-1", "deptId": 2}) == {
            "finding_id": "F-1",
            "dept_id": 2,
        }

    def test_from_wire_flattens_nested_envelopes(self):
        payload = {"actions": {"$id": "5", "$values": [{"actionId": "A-1"}]}}
        assert from_wire(payload) == {"actions": [{"action_id": "A-1"}]}


class TestPrecedence:
    """One normalized field per concept."""

    def test_coalesce_takes_first_non_empty(self):
        data = {"dept_id": None, "department_id": "", "assigned_dept_id": 4, "owner_dept_id": 9}
        assert coalesce(data, FIELD_PRECEDENCE["dept_id"]) == 4

    def test_coalesce_none_when_absent(self):
        assert coalesce({}, FIELD_PRECEDENCE["dept_id"]) is None

    def test_apply_precedence_returns_copy(self):
        data = {"department_id": 3}
        result = apply_precedence(data, "dept_id")
        assert result["dept_id"] == 3
        assert "dept_id" not in data

    def test_apply_precedence_target(self):
        result = apply_precedence({"severity": "Major"}, "severity_name", "name")
        assert result["name"] == "Major"


class TestParseEntities:
    """Typed parse step."""

    def test_action_alternate_field_names(self):
        payload = wrap([{
            "actionId": "A-1",
            "title": "Retrain staff",
            "assignedDeptId": 4,
            "assigneeId": "u-9",
            "deadline": "2026-03-01T00:00:00",
            "status": "in-progress",
            "progressPercent": 25,
        }])
        actions = parse_entities(payload, Action)
        assert len(actions) == 1
        action = actions[0]
        assert action.dept_id == 4
        assert action.assigned_to == "u-9"
        assert action.due_date == date(2026, 3, 1)
        assert action.status == ActionStatus.IN_PROGRESS

    def test_null_progress_reads_as_zero(self):
        action = parse_entity({"actionId": "A-1", "title": "t", "progressPercent": None}, Action)
        assert action.progress_percent == 0

    def test_null_status_falls_back_to_default(self):
        finding = parse_entity({"findingId": "F-1", "title": "t", "status": None}, Finding)
        assert finding.status == FindingStatus.OPEN

    def test_finding_severity_alias(self):
        finding = parse_entity({"findingId": "F-1", "title": "t", "severityName": "major"}, Finding)
        assert finding.severity == "Major"

    def test_numeric_ids_become_strings(self):
        finding = parse_entity({"findingId": 12, "title": "t"}, Finding)
        assert finding.finding_id == "12"

    def test_severity_option_name_fallbacks(self):
        options = parse_entities(
            [{"severityId": 1, "severity": "Minor"}, {"id": 2, "name": "Critical"}, {"severityId": 3}],
            SeverityOption,
        )
        assert [o.name for o in options] == ["Minor", "Critical", "Unknown"]
        assert [o.severity_id for o in options] == [1, 2, 3]

    def test_single_item_envelope_accepted(self):
        action = parse_entity(wrap([{"actionId": "A-1", "title": "t"}]), Action)
        assert action.action_id == "A-1"

    def test_missing_required_field(self):
        with pytest.raises(ParseError):
            parse_entity({"title": "no id"}, Action)

    def test_invalid_progress_tier(self):
        with pytest.raises(ParseError):
            parse_entity({"actionId": "A-1", "title": "t", "progressPercent": 30}, Action)

    def test_unknown_status(self):
        with pytest.raises(ParseError):
            parse_entity({"actionId": "A-1", "title": "t", "status": "Teleported"}, Action)

    def test_non_object_item(self):
        with pytest.raises(ParseError):
            parse_entities(["not-an-object"], Action)
