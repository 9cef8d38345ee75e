"""
Allocation aggregator.
Two passes over a sprint's issues: total each contributor's working hours, then express every
issue as a percentage of its assignee's total.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Iterable, Tuple
from normalize.models import Issue, Team, WorkInterval, AllocationRow, AllocationSummary
from .hours import compute_hours
from .replay import derive_interval, Workflow, DEFAULT_WORKFLOW

logger = logging.getLogger(__name__)

DROP_NOT_TEAM_MEMBER = 'not_team_member'
DROP_EXCLUDED_TYPE = 'excluded_type'
DROP_NO_INTERVAL = 'no_interval'
DROP_REASONS = (DROP_NOT_TEAM_MEMBER, DROP_EXCLUDED_TYPE, DROP_NO_INTERVAL)


def is_team_member(team: Team, issue: Issue) -> bool:
    """Filter: the assignee's display name must appear verbatim in the roster."""
    return team.is_member(issue.assignee)


def is_excluded_type(issue: Issue, exclude_issue_types: Iterable[str]) -> bool:
    """Filter: issue types the caller asked to leave out (e.g. Sub-task)."""
    return bool(issue.issue_type) and issue.issue_type in set(exclude_issue_types or ())


class MeasuredIssue:
    """An issue that survived filtering, with its interval and hours for this run."""

    def __init__(self, issue: Issue, interval: WorkInterval, hours: float):
        self.issue = issue
        self.interval = interval
        self.hours = hours


def measure_issues(
    team: Team,
    issues: List[Issue],
    manual_adjustments: Optional[Dict[str, float]],
    now: datetime,
    workflow: Workflow = DEFAULT_WORKFLOW,
    exclude_issue_types: Iterable[str] = (),
) -> Tuple[List[MeasuredIssue], Dict[str, int]]:
    """Derive interval and hours once per issue, in input order. Returns (measured, dropped counts)."""
    dropped = {reason: 0 for reason in DROP_REASONS}
    measured: List[MeasuredIssue] = []
    for issue in issues:
        if not is_team_member(team, issue):
            dropped[DROP_NOT_TEAM_MEMBER] += 1
            logger.debug("Skipping %s: assignee %r is not on the %s roster", issue.key, issue.assignee, team.project)
            continue
        if is_excluded_type(issue, exclude_issue_types):
            dropped[DROP_EXCLUDED_TYPE] += 1
            logger.debug("Skipping %s: issue type %s excluded", issue.key, issue.issue_type)
            continue
        interval = derive_interval(issue, now, workflow)
        if interval is None:
            dropped[DROP_NO_INTERVAL] += 1
            logger.debug("Skipping %s: no in-development interval", issue.key)
            continue
        hours = compute_hours(issue.key, manual_adjustments, interval.start, interval.end)
        logger.debug("%s (%s): %s -> %s = %.2f hours", issue.key, issue.assignee, interval.start.isoformat(), interval.end.isoformat(), hours)
        measured.append(MeasuredIssue(issue, interval, hours))
    return measured, dropped


def compute_contributor_totals(team: Team, measured: List[MeasuredIssue]) -> Dict[str, float]:
    """Totals pass: every roster member starts at zero, then accumulates their issues' hours."""
    totals = {member: 0.0 for member in team.members}
    for m in measured:
        totals[m.issue.assignee] += m.hours
    return totals


def percentage_of(hours: float, total: float) -> float:
    if not total:
        return 0.0
    return hours / total * 100


def format_percentage(value: float) -> str:
    return f"{value:.2f}%"


def _details_for(m: MeasuredIssue, workflow: Workflow) -> Dict[str, object]:
    completed = workflow.is_terminal(m.issue.status)
    return {
        'issueType': m.issue.issue_type,
        'status': m.issue.status,
        'dateStarted': m.interval.start.strftime('%Y-%m-%d'),
        'dateCompleted': m.interval.end.strftime('%Y-%m-%d') if completed else '',
        'workingHours': round(m.hours, 2),
    }


def _build_row(sprint: str, team: Team, m: MeasuredIssue, total: float, workflow: Workflow) -> AllocationRow:
    allocations = {member: '' for member in team.members}
    allocations[m.issue.assignee] = format_percentage(percentage_of(m.hours, total))
    return AllocationRow(
        sprint=sprint,
        issue_key=m.issue.key,
        title=m.issue.title,
        allocations=allocations,
        assignee=m.issue.assignee,
        hours=m.hours,
        details=_details_for(m, workflow),
    )


def allocate_with_summary(
    team: Team,
    issues: List[Issue],
    manual_adjustments: Optional[Dict[str, float]] = None,
    sprint: str = '',
    now: Optional[datetime] = None,
    workflow: Workflow = DEFAULT_WORKFLOW,
    exclude_issue_types: Iterable[str] = (),
) -> AllocationSummary:
    """
    Run both passes and return rows plus the intermediate totals.

    now is read once here when not supplied and reused for every still-open issue, so
    the totals pass and the percentage pass see identical hours.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        # naive clocks are UTC, as with changelog timestamps
        now = now.replace(tzinfo=timezone.utc)
    measured, dropped = measure_issues(team, issues, manual_adjustments, now, workflow, exclude_issue_types)
    totals = compute_contributor_totals(team, measured)
    rows = [_build_row(sprint, team, m, totals[m.issue.assignee], workflow) for m in measured]
    issue_hours = {m.issue.key: m.hours for m in measured}
    logger.info(
        "Allocated %d of %d issues for %s sprint %s (dropped: %s)",
        len(rows), len(issues), team.project, sprint, ', '.join(f"{k}={v}" for k, v in dropped.items()),
    )
    return AllocationSummary(rows=rows, totals=totals, issue_hours=issue_hours, dropped=dropped)


def allocate(
    team: Team,
    issues: List[Issue],
    manual_adjustments: Optional[Dict[str, float]] = None,
    sprint: str = '',
    now: Optional[datetime] = None,
    workflow: Workflow = DEFAULT_WORKFLOW,
    exclude_issue_types: Iterable[str] = (),
) -> List[AllocationRow]:
    """Return one AllocationRow per included issue, in input order."""
    return allocate_with_summary(team, issues, manual_adjustments, sprint, now, workflow, exclude_issue_types).rows
