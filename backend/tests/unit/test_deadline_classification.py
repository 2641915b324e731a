from datetime import datetime, timedelta, timezone

import pytest

from journalflow.core.config import WorkflowConfig
from journalflow.models.deadline import Deadline, DeadlineState, DeadlineType
from journalflow.models.review import Review
from journalflow.models.review_settings import ReviewSettings
from journalflow.models.submission import Submission, SubmissionStatus
from journalflow.services.deadline_service import (
    classify,
    days_in_status,
    days_left,
    is_submission_overdue,
    plan_deadlines,
)

NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _deadline(due: datetime, **kwargs) -> Deadline:
    data = {
        "id": "d1",
        "submission_id": "s1",
        "type": DeadlineType.REVIEW,
        "due_date": due,
        "assigned_to": "reviewer-a",
    }
    data.update(kwargs)
    return Deadline(**data)


def _submission(status: SubmissionStatus = SubmissionStatus.UNDER_REVIEW, *, changed: datetime = NOW, **kwargs):
    data = {
        "id": "s1",
        "code": "HCQS-20240301-12000000",
        "title": "A sufficiently long title",
        "abstract": "An abstract that is long enough to pass validation.",
        "author_id": "author-1",
        "status": status,
        "last_status_change_at": changed,
        "created_at": changed,
    }
    data.update(kwargs)
    return Submission(**data)


@pytest.mark.unit
@pytest.mark.parametrize(
    "offset,expected",
    [
        (timedelta(seconds=-1), DeadlineState.OVERDUE),
        (timedelta(days=-10), DeadlineState.OVERDUE),
        (timedelta(0), DeadlineState.URGENT),
        (timedelta(days=1), DeadlineState.URGENT),
        (timedelta(days=3), DeadlineState.URGENT),
        (timedelta(days=3, seconds=1), DeadlineState.UPCOMING),
        (timedelta(days=30), DeadlineState.UPCOMING),
    ],
)
def test_classify_boundaries(offset, expected):
    assert classify(_deadline(NOW + offset), NOW) == expected


@pytest.mark.unit
def test_completed_wins_over_due_date():
    d = _deadline(NOW - timedelta(days=5), completed_at=NOW - timedelta(days=1))
    assert classify(d, NOW) == DeadlineState.COMPLETED


@pytest.mark.unit
def test_completed_deadline_never_flagged_overdue():
    d = _deadline(NOW - timedelta(days=5), completed_at=NOW, is_overdue=True)
    assert d.is_overdue is False
    assert d.is_open is False


@pytest.mark.unit
def test_classify_ignores_cached_flag():
    d = _deadline(NOW + timedelta(days=10), is_overdue=True)
    assert classify(d, NOW) == DeadlineState.UPCOMING


@pytest.mark.unit
def test_classify_treats_naive_datetimes_as_utc():
    naive_due = datetime(2024, 3, 2, 12, 0, 0)
    assert classify(_deadline(naive_due), NOW) == DeadlineState.URGENT


@pytest.mark.unit
def test_custom_urgent_window():
    d = _deadline(NOW + timedelta(days=5))
    assert classify(d, NOW, urgent_window_days=7) == DeadlineState.URGENT
    assert classify(d, NOW) == DeadlineState.UPCOMING


@pytest.mark.unit
def test_days_left():
    assert days_left(_deadline(NOW + timedelta(days=2, hours=5)), NOW) == 2
    assert days_left(_deadline(NOW - timedelta(hours=1)), NOW) == -1


@pytest.mark.unit
def test_days_in_status():
    sub = _submission(changed=NOW - timedelta(days=4, hours=23))
    assert days_in_status(sub, NOW) == 4


@pytest.mark.unit
def test_submission_overdue_by_sla():
    config = WorkflowConfig()
    within = _submission(changed=NOW - timedelta(days=21))
    beyond = _submission(changed=NOW - timedelta(days=22))
    assert is_submission_overdue(within, [], NOW, config) is False
    assert is_submission_overdue(beyond, [], NOW, config) is True


@pytest.mark.unit
def test_submission_overdue_by_open_deadline():
    config = WorkflowConfig()
    sub = _submission()
    late = _deadline(NOW - timedelta(hours=2))
    assert is_submission_overdue(sub, [late], NOW, config) is True


@pytest.mark.unit
@pytest.mark.parametrize(
    "status", [SubmissionStatus.DESK_REJECT, SubmissionStatus.REJECTED, SubmissionStatus.PUBLISHED]
)
def test_terminal_submissions_are_never_overdue(status):
    sub = _submission(status, changed=NOW - timedelta(days=400))
    late = _deadline(NOW - timedelta(days=30))
    assert is_submission_overdue(sub, [late], NOW, WorkflowConfig()) is False


# --------------------------------------------------------------- plan_deadlines


def _review(reviewer_id: str, **kwargs) -> Review:
    data = {"id": f"r-{reviewer_id}", "submission_id": "s1", "reviewer_id": reviewer_id, "invited_at": NOW}
    data.update(kwargs)
    return Review(**data)


@pytest.mark.unit
def test_under_review_plans_one_deadline_per_pending_reviewer():
    sub = _submission()
    reviews = [
        _review("reviewer-a"),
        _review("reviewer-b"),
        _review("reviewer-c", declined_at=NOW),
        _review("reviewer-d", submitted_at=NOW),
        _review("reviewer-e", round_no=2),
    ]
    planned = plan_deadlines(
        sub,
        SubmissionStatus.UNDER_REVIEW,
        now=NOW,
        config=WorkflowConfig(),
        settings=ReviewSettings(review_deadline_days=10),
        reviews=reviews,
    )
    assert sorted(d.assigned_to for d in planned) == ["reviewer-a", "reviewer-b"]
    assert all(d.type == DeadlineType.REVIEW for d in planned)
    assert all(d.due_date == NOW + timedelta(days=10) for d in planned)


@pytest.mark.unit
def test_plan_skips_existing_open_deadline():
    sub = _submission()
    existing = _deadline(NOW + timedelta(days=5))
    planned = plan_deadlines(
        sub,
        SubmissionStatus.UNDER_REVIEW,
        now=NOW,
        config=WorkflowConfig(),
        settings=ReviewSettings(),
        reviews=[_review("reviewer-a"), _review("reviewer-b")],
        existing_open=[existing],
    )
    assert [d.assigned_to for d in planned] == ["reviewer-b"]


@pytest.mark.unit
def test_revision_deadline_goes_to_author():
    sub = _submission(SubmissionStatus.REVISION)
    (d,) = plan_deadlines(
        sub, SubmissionStatus.REVISION, now=NOW, config=WorkflowConfig(), settings=ReviewSettings()
    )
    assert d.type == DeadlineType.REVISION
    assert d.assigned_to == "author-1"
    assert d.due_date == NOW + timedelta(days=14)


@pytest.mark.unit
def test_production_plans_production_and_publication():
    config = WorkflowConfig()
    sub = _submission(SubmissionStatus.IN_PRODUCTION)
    planned = plan_deadlines(
        sub,
        SubmissionStatus.IN_PRODUCTION,
        now=NOW,
        config=config,
        settings=ReviewSettings(),
        editor_id="me-1",
    )
    by_type = {d.type: d for d in planned}
    assert set(by_type) == {DeadlineType.PRODUCTION, DeadlineType.PUBLICATION}
    assert by_type[DeadlineType.PUBLICATION].due_date == by_type[DeadlineType.PRODUCTION].due_date + timedelta(
        days=config.publication_days
    )


@pytest.mark.unit
@pytest.mark.parametrize(
    "status", [SubmissionStatus.DESK_REJECT, SubmissionStatus.REJECTED, SubmissionStatus.PUBLISHED]
)
def test_terminal_states_plan_nothing(status):
    planned = plan_deadlines(
        _submission(status), status, now=NOW, config=WorkflowConfig(), settings=ReviewSettings()
    )
    assert planned == []
