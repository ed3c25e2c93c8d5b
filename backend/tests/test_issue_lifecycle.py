from datetime import UTC, datetime
from uuid import uuid4

import pytest

from app.core.errors import InvalidStateError
from app.domain.issue_lifecycle import IssueEvent, allowed_events, apply_transition, assert_transition, can_transition
from app.domain.models.issue import Issue, IssueStatus


def _issue(status: IssueStatus) -> Issue:
    return Issue(
        id=uuid4(),
        tenant_id=uuid4(),
        magazine_id=uuid4(),
        slug="2026-10",
        title="October 2026",
        status=status.value,
        sprites=[],
        meta={},
    )


@pytest.mark.parametrize(
    ("status", "event", "target"),
    [
        (IssueStatus.PENDING, IssueEvent.GENERATION_SUCCEEDED, IssueStatus.READY),
        (IssueStatus.RETRYING, IssueEvent.GENERATION_FAILED, IssueStatus.ERROR),
        (IssueStatus.ERROR, IssueEvent.RETRY, IssueStatus.RETRYING),
        (IssueStatus.READY, IssueEvent.SCHEDULE, IssueStatus.SCHEDULED),
        (IssueStatus.SCHEDULED, IssueEvent.PUBLISH, IssueStatus.PUBLISHED),
        (IssueStatus.PUBLISHED, IssueEvent.CANCEL, IssueStatus.CANCELED),
    ],
)
def test_allowed_transitions(status, event, target):
    assert assert_transition(status.value, event) == target


@pytest.mark.parametrize(
    ("status", "event"),
    [
        (IssueStatus.PENDING, IssueEvent.PUBLISH),
        (IssueStatus.READY, IssueEvent.RETRY),
        (IssueStatus.PUBLISHED, IssueEvent.GENERATION_SUCCEEDED),
        (IssueStatus.CANCELED, IssueEvent.CANCEL),
        (IssueStatus.CANCELED, IssueEvent.RETRY),
    ],
)
def test_rejected_transitions(status, event):
    assert can_transition(status.value, event) is False
    with pytest.raises(InvalidStateError):
        assert_transition(status.value, event)


def test_unknown_status_is_never_a_valid_source():
    assert allowed_events("archived") == []


def test_publish_sets_published_at_and_clears_schedule():
    issue = _issue(IssueStatus.SCHEDULED)
    issue.scheduled_at = datetime(2026, 10, 1, tzinfo=UTC)
    moment = datetime(2026, 10, 2, 9, 30, tzinfo=UTC)

    apply_transition(issue, IssueEvent.PUBLISH, at=moment)

    assert issue.status == IssueStatus.PUBLISHED.value
    assert issue.published_at == moment
    assert issue.scheduled_at is None


def test_failure_records_error_and_retry_clears_it():
    issue = _issue(IssueStatus.PENDING)

    apply_transition(issue, IssueEvent.GENERATION_FAILED, error="provider offline")
    assert issue.status == IssueStatus.ERROR.value
    assert issue.last_error == "provider offline"

    apply_transition(issue, IssueEvent.RETRY)
    assert issue.status == IssueStatus.RETRYING.value
    assert issue.last_error is None


def test_cancel_message_mentions_current_status():
    issue = _issue(IssueStatus.CANCELED)
    with pytest.raises(InvalidStateError) as exc_info:
        apply_transition(issue, IssueEvent.CANCEL)
    assert "current status: canceled" in exc_info.value.detail["message"]
