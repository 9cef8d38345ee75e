"""
Normalization utility helpers.
Turn raw Jira search payloads into normalize.models entities.
"""
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional
from normalize.models import Issue, StatusEvent

# Jira: "2024-10-31T12:11:56.289-0400"; %z also accepts "Z" and "+04:00"
TIMESTAMP_FORMATS = [
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d",
]


def parse_jira_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a Jira changelog timestamp into an aware datetime.

    Naive values are taken as UTC. Returns None for anything unparseable so callers can
    skip the event instead of failing the run.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    for fmt in TIMESTAMP_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def _events_from_history(history: Dict[str, Any]) -> List[StatusEvent]:
    """Return one StatusEvent per changelog item; an item-less history still yields a marker event."""
    ts = parse_jira_timestamp(history.get('created'))
    items = history.get('items') or []
    if not items:
        return [StatusEvent(ts, '', '', False)]
    events = []
    for it in items:
        if not isinstance(it, dict):
            continue
        is_status = (it.get('field') or '') == 'status'
        events.append(StatusEvent(ts, it.get('fromString') or '', it.get('toString') or '', is_status))
    return events


def _extract_assignee(fields: Dict[str, Any]) -> str:
    """Return the assignee display name, or an empty string for unassigned issues."""
    assignee = fields.get('assignee') if isinstance(fields, dict) else None
    if not isinstance(assignee, dict):
        return ''
    return assignee.get('displayName') or ''


def normalize_issue(raw: Dict[str, Any]) -> Issue:
    """Create a normalized Issue from a raw Jira issue dict (search API with expand=changelog).
    Changelog order is preserved as delivered; the replayer sorts by timestamp itself.
    """
    fields = raw.get('fields') or {}
    changelog = raw.get('changelog') or fields.get('changelog') or {}
    histories = changelog.get('histories', []) if isinstance(changelog, dict) else []
    events: List[StatusEvent] = []
    for h in histories:
        if isinstance(h, dict):
            events.extend(_events_from_history(h))
    issue_type = (fields.get('issuetype') or {}).get('name', '') if isinstance(fields.get('issuetype'), dict) else ''
    status = (fields.get('status') or {}).get('name', '') if isinstance(fields.get('status'), dict) else ''
    return Issue(
        key=raw.get('key') or '',
        assignee=_extract_assignee(fields),
        status_events=events,
        title=fields.get('summary') or '',
        issue_type=issue_type,
        status=status,
    )


def normalize_issues(raw_issues: List[Dict[str, Any]]) -> List[Issue]:
    return [normalize_issue(r) for r in raw_issues or [] if isinstance(r, dict)]
