"""
Status-history replay.
Walks an issue's changelog through a two-state machine to find the span it was "in development".
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional, Iterable
from normalize.models import Issue, StatusEvent, WorkInterval

IN_PROGRESS = 'In Progress'
DONE = 'Done'
WONT_DO = "Won't Do"


class Workflow:
    """Status names the replay reacts to."""

    def __init__(self, in_progress: str = IN_PROGRESS, terminal: Iterable[str] = (DONE, WONT_DO)):
        self.in_progress = in_progress
        self.terminal = tuple(terminal)

    def is_terminal(self, status: str) -> bool:
        return status in self.terminal


DEFAULT_WORKFLOW = Workflow()


class ReplayState(Enum):
    IDLE = 'idle'
    TRACKING = 'tracking'


class StatusReplay:
    """
    Replays status-field events in timestamp order.

    IDLE -> TRACKING on a move into the in-progress status (start is reset every time).
    TRACKING -> IDLE on a terminal status (end is recorded) or on leaving in-progress for
    anything else. The second case is a pause: the paused span is dropped, and a later
    re-entry overwrites start, so only the last in-progress stretch survives.
    """

    def __init__(self, workflow: Workflow = DEFAULT_WORKFLOW):
        self.workflow = workflow
        self.state = ReplayState.IDLE
        self.start: Optional[datetime] = None
        self.end: Optional[datetime] = None
        self.terminal_seen = False

    def feed(self, event: StatusEvent):
        if not event.is_status_field or event.timestamp is None:
            return
        if self.state is ReplayState.IDLE:
            if event.to_status == self.workflow.in_progress:
                self.start = event.timestamp
                self.state = ReplayState.TRACKING
            return
        if self.workflow.is_terminal(event.to_status):
            self.end = event.timestamp
            self.terminal_seen = True
            self.state = ReplayState.IDLE
        elif event.from_status == self.workflow.in_progress:
            self.state = ReplayState.IDLE

    def resolve(self, now: datetime, last_entry: Optional[datetime]) -> Optional[WorkInterval]:
        """Close the interval after the whole history was fed; None when nothing usable remains."""
        if self.start is None:
            return None
        end = self.end
        if self.state is ReplayState.TRACKING and not self.terminal_seen:
            end = now
        elif end is None:
            end = last_entry
        if end is None:
            return None
        interval = WorkInterval(self.start, end)
        if interval.is_empty():
            return None
        return interval


def ordered_events(events: List[StatusEvent]) -> List[StatusEvent]:
    """Events with a usable timestamp, oldest first. Ties keep changelog order."""
    return sorted((e for e in events if e.timestamp is not None), key=lambda e: e.timestamp)


def derive_interval(issue: Issue, now: datetime, workflow: Workflow = DEFAULT_WORKFLOW) -> Optional[WorkInterval]:
    """
    Return the in-development WorkInterval for an issue, or None when it never started.

    Still-open issues (in progress, never completed) end at now. Issues that started but
    have no recorded end close at their last history entry of any kind. The result depends
    only on the history and now, so repeated calls within a run agree.
    """
    events = ordered_events(issue.status_events)
    replay = StatusReplay(workflow)
    for event in events:
        replay.feed(event)
    last_entry = events[-1].timestamp if events else None
    return replay.resolve(now, last_entry)
