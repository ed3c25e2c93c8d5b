"""Issue status transitions.

Every status change on an :class:`~app.domain.models.issue.Issue` goes through
this module: API handlers, the generation worker, the scheduled publisher and
the monthly activation batch all call :func:`apply_transition`.
"""

from datetime import UTC, datetime
from enum import StrEnum

from app.core.errors import InvalidStateError
from app.domain.models.issue import Issue, IssueStatus


class IssueEvent(StrEnum):
    GENERATION_SUCCEEDED = "generation_succeeded"
    GENERATION_FAILED = "generation_failed"
    RETRY = "retry"
    SCHEDULE = "schedule"
    PUBLISH = "publish"
    CANCEL = "cancel"


_ALL_BUT_CANCELED = frozenset(status for status in IssueStatus if status != IssueStatus.CANCELED)

TRANSITIONS: dict[IssueEvent, tuple[frozenset[IssueStatus], IssueStatus]] = {
    IssueEvent.GENERATION_SUCCEEDED: (frozenset({IssueStatus.PENDING, IssueStatus.RETRYING}), IssueStatus.READY),
    IssueEvent.GENERATION_FAILED: (frozenset({IssueStatus.PENDING, IssueStatus.RETRYING}), IssueStatus.ERROR),
    IssueEvent.RETRY: (frozenset({IssueStatus.ERROR}), IssueStatus.RETRYING),
    IssueEvent.SCHEDULE: (frozenset({IssueStatus.READY, IssueStatus.SCHEDULED}), IssueStatus.SCHEDULED),
    IssueEvent.PUBLISH: (frozenset({IssueStatus.READY, IssueStatus.SCHEDULED}), IssueStatus.PUBLISHED),
    IssueEvent.CANCEL: (_ALL_BUT_CANCELED, IssueStatus.CANCELED),
}

_FAILURE_MESSAGES = {
    IssueEvent.GENERATION_SUCCEEDED: "Issue is not awaiting generation",
    IssueEvent.GENERATION_FAILED: "Issue is not awaiting generation",
    IssueEvent.RETRY: "Only issues in error state can be retried",
    IssueEvent.SCHEDULE: "Issue must be in ready or scheduled state to publish",
    IssueEvent.PUBLISH: "Issue must be in ready or scheduled state to publish",
    IssueEvent.CANCEL: "Issue is already canceled",
}


def _parse_status(value: str) -> IssueStatus | None:
    try:
        return IssueStatus(value)
    except ValueError:
        return None


def can_transition(current: str, event: IssueEvent) -> bool:
    status = _parse_status(current)
    if status is None:
        return False
    allowed_from, _ = TRANSITIONS[event]
    return status in allowed_from


def assert_transition(current: str, event: IssueEvent) -> IssueStatus:
    """Return the target status for ``event`` or raise ``InvalidStateError``.

    Status strings outside :class:`IssueStatus` are never a valid source.
    """
    if not can_transition(current, event):
        raise InvalidStateError(f"{_FAILURE_MESSAGES[event]} (current status: {current})")
    return TRANSITIONS[event][1]


def allowed_events(current: str) -> list[IssueEvent]:
    return [event for event in IssueEvent if can_transition(current, event)]


def apply_transition(
    issue: Issue,
    event: IssueEvent,
    *,
    at: datetime | None = None,
    error: str | None = None,
) -> IssueStatus:
    target = assert_transition(issue.status, event)
    moment = at or datetime.now(UTC)

    issue.status = target.value
    if event == IssueEvent.PUBLISH:
        issue.published_at = moment
        issue.scheduled_at = None
    elif event == IssueEvent.SCHEDULE:
        issue.scheduled_at = moment
        issue.published_at = None
    elif event == IssueEvent.CANCEL:
        issue.canceled_at = moment
    elif event == IssueEvent.GENERATION_FAILED:
        issue.last_error = error or "Generation failed"
    elif event in {IssueEvent.GENERATION_SUCCEEDED, IssueEvent.RETRY}:
        issue.last_error = None
    return target
