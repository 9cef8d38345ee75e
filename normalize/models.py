"""
Data models for normalized issues, status events and allocation output.
"""

from datetime import datetime
from typing import List, Optional, Dict, Any


class StatusEvent:
    """
    One changelog item on an issue. Only items with is_status_field set drive the replay;
    the others still count as history entries when resolving an open interval.
    """
    def __init__(self, timestamp: Optional[datetime], from_status: str, to_status: str, is_status_field: bool):
        self.timestamp = timestamp  # None when the changelog timestamp could not be parsed
        self.from_status = from_status
        self.to_status = to_status
        self.is_status_field = is_status_field

    def __repr__(self):
        return f"StatusEvent({self.timestamp!r}, {self.from_status!r} -> {self.to_status!r}, status={self.is_status_field})"


class Issue:
    """
    Normalized issue entity. Read-only input to the allocation engine.
    """
    def __init__(self, key: str, assignee: str, status_events: Optional[List[StatusEvent]] = None, title: str = '', issue_type: str = '', status: str = ''):
        self.key = key
        self.assignee = assignee  # display name, matched verbatim against the roster
        self.status_events = status_events or []
        self.title = title
        self.issue_type = issue_type
        self.status = status  # current status name


class WorkInterval:
    """The [start, end) span an issue spent in development."""

    def __init__(self, start: datetime, end: datetime):
        self.start = start
        self.end = end

    def is_empty(self) -> bool:
        return self.end <= self.start

    def __eq__(self, other):
        if not isinstance(other, WorkInterval):
            return NotImplemented
        return self.start == other.start and self.end == other.end

    def __repr__(self):
        return f"WorkInterval({self.start.isoformat()}, {self.end.isoformat()})"


class Team:
    """
    Ordered roster of contributor display names for one project.
    """
    def __init__(self, project: str, members: List[str]):
        self.project = project
        self.members = list(members)

    def is_member(self, name: str) -> bool:
        return bool(name) and name in self.members


BASE_COLUMNS = ('sprint', 'issueKey', 'title')
DETAIL_COLUMNS = ('issueType', 'status', 'dateStarted', 'dateCompleted', 'workingHours')


class AllocationRow:
    """
    One output row: an issue and its assignee's share of their sprint hours.
    allocations maps every team member to '' except the assignee, who gets e.g. '62.50%'.
    """
    def __init__(self, sprint: str, issue_key: str, title: str, allocations: Dict[str, str], assignee: str = '', hours: float = 0.0, details: Optional[Dict[str, Any]] = None):
        self.sprint = sprint
        self.issue_key = issue_key
        self.title = title
        self.allocations = dict(allocations)
        self.assignee = assignee
        self.hours = hours
        self.details = dict(details or {})  # issueType, status, dateStarted, dateCompleted, workingHours

    def to_record(self, detailed: bool = False) -> Dict[str, Any]:
        """Return the flat column -> value mapping used by the report renderer."""
        record: Dict[str, Any] = {'sprint': self.sprint, 'issueKey': self.issue_key, 'title': self.title}
        if detailed:
            record.update(self.details)
        record.update(self.allocations)
        return record


class AllocationSummary:
    """
    Everything one allocation run produced: rows plus the intermediate totals and drop counts.
    """
    def __init__(self, rows: List[AllocationRow], totals: Dict[str, float], issue_hours: Dict[str, float], dropped: Dict[str, int]):
        self.rows = rows
        self.totals = totals  # ContributorTotals: member -> accumulated hours
        self.issue_hours = issue_hours  # issue key -> hours used for the percentage
        self.dropped = dropped  # reason -> number of issues filtered out

    def __str__(self):
        dropped = sum(self.dropped.values())
        return f"Rows: {len(self.rows)}\nDropped: {dropped}\nTotals: {self.totals}"
