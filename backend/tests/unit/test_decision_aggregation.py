import threading
from datetime import datetime, timedelta, timezone

import pytest

from journalflow.core.errors import (
    AlreadyDecided,
    InsufficientReviews,
    InvalidTransition,
    PermissionDenied,
    ValidationError,
)
from journalflow.models.decision import Decision, DecisionValue
from journalflow.models.review import Recommendation, Review
from journalflow.models.review_settings import ReviewSettings, ReviewSettingsUpdate
from journalflow.models.submission import Submission, SubmissionStatus
from journalflow.services.decision_service import (
    can_decide,
    decision_eligibility,
    latest_decision,
    suggest_decision,
)

NOW = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _submission(status=SubmissionStatus.UNDER_REVIEW, round_no=1) -> Submission:
    return Submission(
        id="s1",
        code="HCQS-20240301-00000000",
        title="A sufficiently long title",
        abstract="An abstract that is long enough to pass validation.",
        author_id="author-1",
        status=status,
        current_round=round_no,
        last_status_change_at=NOW,
        created_at=NOW,
    )


def _review(reviewer_id, *, submitted=True, declined=False, rec=Recommendation.MINOR, round_no=1) -> Review:
    return Review(
        id=f"r-{reviewer_id}-{round_no}",
        submission_id="s1",
        reviewer_id=reviewer_id,
        round_no=round_no,
        invited_at=NOW,
        submitted_at=NOW if submitted else None,
        declined_at=NOW if declined else None,
        recommendation=rec if submitted else None,
    )


# ----------------------------------------------------------------- pure rules


@pytest.mark.unit
def test_can_decide_requires_minimum_and_no_pending():
    settings = ReviewSettings(minimum_reviewers=2)
    sub = _submission()
    assert can_decide(sub, [_review("a"), _review("b")], settings) is True
    assert can_decide(sub, [_review("a")], settings) is False
    assert can_decide(sub, [_review("a"), _review("b"), _review("c", submitted=False)], settings) is False


@pytest.mark.unit
def test_declined_pending_reviews_do_not_block():
    settings = ReviewSettings(minimum_reviewers=2)
    reviews = [_review("a"), _review("b"), _review("c", submitted=False, declined=True)]
    assert can_decide(_submission(), reviews, settings) is True


@pytest.mark.unit
def test_submitted_then_declined_review_still_counts():
    settings = ReviewSettings(minimum_reviewers=2)
    reviews = [_review("a"), _review("b", declined=True)]
    result = decision_eligibility(_submission(), reviews, settings)
    assert result.submitted == 2
    assert result.can_decide is True


@pytest.mark.unit
def test_previous_round_reviews_are_ignored():
    settings = ReviewSettings(minimum_reviewers=2)
    reviews = [_review("a", round_no=1), _review("b", round_no=1), _review("a", submitted=False, round_no=2)]
    result = decision_eligibility(_submission(round_no=2), reviews, settings)
    assert (result.submitted, result.pending, result.can_decide) == (0, 1, False)


@pytest.mark.unit
@pytest.mark.parametrize("status", [SubmissionStatus.NEW, SubmissionStatus.REVISION, SubmissionStatus.ACCEPTED])
def test_cannot_decide_outside_review(status):
    assert can_decide(_submission(status), [_review("a"), _review("b")], ReviewSettings()) is False


@pytest.mark.unit
@pytest.mark.parametrize(
    "recs,expected",
    [
        ([Recommendation.REJECT, Recommendation.REJECT, Recommendation.ACCEPT], SubmissionStatus.REJECTED),
        ([Recommendation.MAJOR, Recommendation.MAJOR], SubmissionStatus.REVISION),
        ([Recommendation.MINOR, Recommendation.MINOR, Recommendation.ACCEPT], SubmissionStatus.REVISION),
        ([Recommendation.ACCEPT, Recommendation.ACCEPT], SubmissionStatus.ACCEPTED),
        ([Recommendation.ACCEPT, Recommendation.MINOR], None),
        ([Recommendation.MAJOR, Recommendation.REJECT], None),
    ],
)
def test_suggest_decision(recs, expected):
    reviews = [_review(str(i), rec=rec) for i, rec in enumerate(recs)]
    assert suggest_decision(reviews) == expected


@pytest.mark.unit
def test_latest_decision_by_time():
    older = Decision(id="d1", submission_id="s1", round_no=1, editor_id="e", decision=DecisionValue.MAJOR, decided_at=NOW)
    newer = Decision(
        id="d2",
        submission_id="s1",
        round_no=2,
        editor_id="e",
        decision=DecisionValue.ACCEPT,
        decided_at=NOW + timedelta(days=30),
    )
    assert latest_decision([newer, older]).id == "d2"
    assert latest_decision([]) is None


# ------------------------------------------------------------- recordDecision


@pytest.mark.unit
def test_record_decision_moves_submission(decision_service, reviews_done, managing_editor, repo):
    sub = reviews_done("ACCEPT", "ACCEPT")
    result = decision_service.record_decision(sub.id, managing_editor, "accept", note="Well done")
    assert result.submission.status == SubmissionStatus.ACCEPTED
    assert result.audit.payload["decision"] == "ACCEPT"
    assert result.audit.payload["via_decision"] is True
    (decision,) = repo.list_decisions(sub.id)
    assert decision.note == "Well done"
    assert decision.round_no == 1


@pytest.mark.unit
@pytest.mark.parametrize("value,status", [("MINOR", "REVISION"), ("MAJOR", "REVISION"), ("REJECT", "REJECTED")])
def test_decision_outcomes(decision_service, reviews_done, eic, value, status):
    sub = reviews_done()
    result = decision_service.record_decision(sub.id, eic, value)
    assert result.submission.status.value == status


@pytest.mark.unit
def test_insufficient_reviews(decision_service, under_review, managing_editor, reviewer_service, reviewer_a, repo, review_form):
    review = next(r for r in repo.list_reviews(under_review.id) if r.reviewer_id == reviewer_a.actor_id)
    reviewer_service.submit_review(review.id, reviewer_a, review_form())
    with pytest.raises(InsufficientReviews) as exc:
        decision_service.record_decision(under_review.id, managing_editor, "ACCEPT")
    assert exc.value.details == {"required": 2, "submitted": 1, "pending": 1}
    assert repo.list_decisions(under_review.id) == []
    assert repo.get_submission(under_review.id).status == SubmissionStatus.UNDER_REVIEW


@pytest.mark.unit
def test_minimum_reviewers_setting_applies(decision_service, settings_service, under_review, eic, reviewer_service, reviewer_a, reviewer_b, repo, review_form):
    settings_service.save(eic, ReviewSettingsUpdate(minimum_reviewers=1))
    reviews = {r.reviewer_id: r for r in repo.list_reviews(under_review.id)}
    reviewer_service.submit_review(reviews["reviewer-a"].id, reviewer_a, review_form())
    reviewer_service.decline_review(reviews["reviewer-b"].id, reviewer_b)
    result = decision_service.record_decision(under_review.id, eic, "MINOR")
    assert result.submission.status == SubmissionStatus.REVISION


@pytest.mark.unit
def test_second_decision_same_round(decision_service, reviews_done, managing_editor, eic, repo):
    sub = reviews_done("MAJOR", "MAJOR")
    decision_service.record_decision(sub.id, managing_editor, "MAJOR")
    with pytest.raises(AlreadyDecided) as exc:
        decision_service.record_decision(sub.id, eic, "REJECT")
    assert exc.value.details["round_no"] == 1
    assert repo.get_submission(sub.id).status == SubmissionStatus.REVISION
    assert len(repo.list_decisions(sub.id)) == 1


@pytest.mark.unit
def test_section_editor_cannot_decide(decision_service, reviews_done, section_editor):
    sub = reviews_done()
    with pytest.raises(PermissionDenied):
        decision_service.record_decision(sub.id, section_editor, "ACCEPT")


@pytest.mark.unit
def test_unknown_decision_value(decision_service, reviews_done, eic):
    sub = reviews_done()
    with pytest.raises(ValidationError):
        decision_service.record_decision(sub.id, eic, "MAYBE")


@pytest.mark.unit
def test_desk_reject_decision_from_new(decision_service, submitted, eic, repo):
    result = decision_service.record_decision(submitted.id, eic, DecisionValue.DESK_REJECT, note="Out of scope")
    assert result.submission.status == SubmissionStatus.DESK_REJECT
    assert repo.list_decisions(submitted.id)[0].decision == DecisionValue.DESK_REJECT


@pytest.mark.unit
def test_desk_reject_decision_after_review_started(decision_service, under_review, eic):
    with pytest.raises(InvalidTransition):
        decision_service.record_decision(under_review.id, eic, "DESK_REJECT")


@pytest.mark.unit
def test_failed_transition_removes_decision(decision_service, reviews_done, managing_editor, repo, fake_db):
    sub = reviews_done("MAJOR", "MAJOR")
    fake_db.fail_on("deadlines", "insert")
    with pytest.raises(RuntimeError):
        decision_service.record_decision(sub.id, managing_editor, "MAJOR")
    assert repo.list_decisions(sub.id) == []
    assert repo.get_submission(sub.id).status == SubmissionStatus.UNDER_REVIEW

    retry = decision_service.record_decision(sub.id, managing_editor, "MAJOR")
    assert retry.submission.status == SubmissionStatus.REVISION


@pytest.mark.unit
def test_eligibility_report(decision_service, reviews_done, managing_editor, author):
    sub = reviews_done("REJECT", "REJECT")
    report = decision_service.decision_eligibility(sub.id, managing_editor)
    assert report.can_decide is True
    assert report.suggestion == SubmissionStatus.REJECTED
    assert report.latest_decision is None
    with pytest.raises(PermissionDenied):
        decision_service.decision_eligibility(sub.id, author)


@pytest.mark.unit
def test_concurrent_decisions_only_one_wins(decision_service, reviews_done, managing_editor, eic, repo):
    sub = reviews_done("ACCEPT", "ACCEPT")
    outcomes: list[str] = []
    barrier = threading.Barrier(2)

    def _run(actor, value):
        barrier.wait()
        try:
            decision_service.record_decision(sub.id, actor, value)
            outcomes.append("ok")
        except AlreadyDecided:
            outcomes.append("AlreadyDecided")

    threads = [
        threading.Thread(target=_run, args=(managing_editor, "ACCEPT")),
        threading.Thread(target=_run, args=(eic, "REJECT")),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["AlreadyDecided", "ok"]
    (decision,) = repo.list_decisions(sub.id)
    expected = SubmissionStatus.ACCEPTED if decision.decision == DecisionValue.ACCEPT else SubmissionStatus.REJECTED
    assert repo.get_submission(sub.id).status == expected
