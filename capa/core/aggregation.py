"""
Rollups for dashboards and reports.

Every rollup is built against a fixed category universe so chart axes stay
put when the data is sparse:

- categories in the universe always appear, zero-filled, in universe order
- categories found only in the data are appended in first-seen order
- items whose category cannot be determined are not counted

Input collections are deduplicated by entity id first; the backend returns
overlapping lists ("all", "open", "closed") that share records.
"""
from collections import Counter
from datetime import date, datetime
from typing import Callable, Dict, Hashable, Iterable, List, Optional, Sequence, TypeVar, Union

from capa.core.statuses import FindingStatus, severity_label
from capa.core.status_derivation import (
    DERIVED_STATUS_LABELS,
    DERIVED_STATUS_ORDER,
    DerivedStatus,
    derive_for_action,
)
from capa.schemas.action import Action
from capa.schemas.finding import Finding
from capa.schemas.master_data import Department, SeverityOption
from capa.schemas.reporting import ActionStats, DepartmentRollupEntry, FindingActionProgress, RollupEntry

T = TypeVar("T")

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

# Findings without a department are grouped under this id
NO_DEPARTMENT = "0"


def finding_key(finding: Finding) -> str:
    return finding.finding_id


def action_key(action: Action) -> str:
    return action.action_id


def dedupe(*sources: Iterable[T], key: Callable[[T], Hashable]) -> List[T]:
    """Merge overlapping collections, keeping the first occurrence of each key."""
    seen = set()
    merged = []
    for source in sources:
        for item in source or []:
            k = key(item)
            if k in seen:
                continue
            seen.add(k)
            merged.append(item)
    return merged


def rollup(
    items: Iterable[T],
    key_fn: Callable[[T], Optional[str]],
    universe: Sequence[str],
    labels: Optional[Dict[str, str]] = None,
    unknown_label: Optional[Callable[[str], str]] = None,
) -> List[RollupEntry]:
    """
    Count items per category against a fixed universe.

    Args:
        items: Entities to count (already deduplicated)
        key_fn: Category of an item, or None to skip it
        universe: Categories that must always appear, in display order;
            repeats are dropped
        labels: Display label per category (defaults to the category)
        unknown_label: Label builder for categories outside the universe

    Returns:
        One RollupEntry per category
    """
    labels = labels or {}
    universe = list(dict.fromkeys(universe))
    counts: Counter = Counter()
    extra: List[str] = []
    known = set(universe)

    for item in items:
        category = key_fn(item)
        if category is None:
            continue
        category = str(category)
        counts[category] += 1
        if category not in known and category not in extra:
            extra.append(category)

    entries = [
        RollupEntry(category=c, label=labels.get(c, c), count=counts[c])
        for c in universe
    ]
    for c in extra:
        label = unknown_label(c) if unknown_label else labels.get(c, c)
        entries.append(RollupEntry(category=c, label=label, count=counts[c]))
    return entries


def _weekday(value: Union[date, datetime, None]) -> Optional[str]:
    if value is None:
        return None
    return WEEKDAYS[value.weekday()]


def by_weekday(findings: Iterable[Finding]) -> List[RollupEntry]:
    """Findings per day of the week they were created."""
    items = dedupe(findings, key=finding_key)
    return rollup(items, lambda f: _weekday(f.created_at), WEEKDAYS)


def by_severity(
    findings: Iterable[Finding],
    severities: Sequence[Union[SeverityOption, str]],
) -> List[RollupEntry]:
    """Findings per severity; ``severities`` is usually the master-data list."""
    names = (s.name if isinstance(s, SeverityOption) else s for s in severities)
    universe = [label for label in (severity_label(n) for n in names) if label]
    items = dedupe(findings, key=finding_key)
    return rollup(items, lambda f: f.severity, universe)


def by_finding_status(findings: Iterable[Finding]) -> List[RollupEntry]:
    items = dedupe(findings, key=finding_key)
    return rollup(items, lambda f: f.status.value, [s.value for s in FindingStatus])


def _dept_category(finding: Finding) -> str:
    return str(finding.dept_id) if finding.dept_id is not None else NO_DEPARTMENT


def by_department(
    findings: Iterable[Finding],
    departments: Sequence[Department],
) -> List[DepartmentRollupEntry]:
    """
    Findings per department with the open/closed split.

    Every known department appears; departments referenced only by findings
    are appended and labelled by id.
    """
    items = dedupe(findings, key=finding_key)
    labels = {str(d.dept_id): d.name or f"Dept {d.dept_id}" for d in departments}
    base = rollup(
        items,
        _dept_category,
        [str(d.dept_id) for d in departments],
        labels=labels,
        unknown_label=lambda c: f"Dept {c}",
    )

    open_counts: Counter = Counter()
    closed_counts: Counter = Counter()
    for f in items:
        if f.status == FindingStatus.OPEN:
            open_counts[_dept_category(f)] += 1
        elif f.status == FindingStatus.CLOSED:
            closed_counts[_dept_category(f)] += 1

    return [
        DepartmentRollupEntry(
            category=entry.category,
            label=entry.label,
            count=entry.count,
            open_count=open_counts[entry.category],
            closed_count=closed_counts[entry.category],
        )
        for entry in base
    ]


def by_status(actions: Iterable[Action], now: Union[date, datetime]) -> List[RollupEntry]:
    """Actions per derived status, in filter-tab order."""
    items = dedupe(actions, key=action_key)
    return rollup(
        items,
        lambda a: derive_for_action(a, now).value,
        [s.value for s in DERIVED_STATUS_ORDER],
        labels=DERIVED_STATUS_LABELS,
    )


def action_stats(actions: Iterable[Action], now: Union[date, datetime]) -> ActionStats:
    """Dashboard counters for an action list."""
    items = dedupe(actions, key=action_key)
    counts = Counter(derive_for_action(a, now) for a in items)
    return ActionStats(
        total=len(items),
        pending=counts[DerivedStatus.PENDING],
        in_progress=counts[DerivedStatus.IN_PROGRESS],
        completed=counts[DerivedStatus.COMPLETED],
        overdue=counts[DerivedStatus.OVERDUE],
    )


def finding_action_progress(
    findings: Iterable[Finding],
    actions: Iterable[Action],
    now: Union[date, datetime],
) -> List[FindingActionProgress]:
    """Remediation progress per finding, averaged over its actions."""
    finding_items = dedupe(findings, key=finding_key)
    by_finding: Dict[str, List[Action]] = {}
    for action in dedupe(actions, key=action_key):
        by_finding.setdefault(action.finding_id, []).append(action)

    results = []
    for finding in finding_items:
        related = by_finding.get(finding.finding_id, [])
        derived = [derive_for_action(a, now) for a in related]
        average = round(sum(a.progress_percent for a in related) / len(related)) if related else 0
        results.append(FindingActionProgress(
            finding_id=finding.finding_id,
            title=finding.title,
            action_count=len(related),
            completed_count=derived.count(DerivedStatus.COMPLETED),
            overdue_count=derived.count(DerivedStatus.OVERDUE),
            average_progress=average,
        ))
    return results
