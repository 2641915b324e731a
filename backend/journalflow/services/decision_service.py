from __future__ import annotations

import logging
import uuid
from collections import Counter
from typing import Iterable, Optional

from journalflow.core.errors import (
    AlreadyDecided,
    InsufficientReviews,
    InvalidTransition,
    PermissionDenied,
    ValidationError,
)
from journalflow.core.permissions import Action, Resource, can_access
from journalflow.models.actor import Actor
from journalflow.models.decision import (
    DECISION_OUTCOMES,
    Decision,
    DecisionEligibility,
    DecisionValue,
)
from journalflow.models.review import Recommendation, Review
from journalflow.models.review_settings import ReviewSettings
from journalflow.models.submission import Submission, SubmissionStatus
from journalflow.services.editorial_service import EditorialService, TransitionResult

logger = logging.getLogger("journalflow.decisions")


def current_round_reviews(submission: Submission, reviews: Iterable[Review]) -> list[Review]:
    return [r for r in reviews if r.round_no == submission.current_round]


def decision_eligibility(
    submission: Submission,
    reviews: Iterable[Review],
    settings: ReviewSettings,
) -> DecisionEligibility:
    """
    canDecide 的完整判定。

    中文注释:
    - 已提交的评审永久计入（即使审稿人之后被标记为拒绝）。
    - pending = 当前轮“有效且未提交”的分配；必须为 0 才能决策。
    """
    current = current_round_reviews(submission, reviews)
    submitted = [r for r in current if r.is_submitted]
    pending = [r for r in current if r.is_active and not r.is_submitted]
    active = [r for r in current if r.is_active]
    can = (
        submission.status == SubmissionStatus.UNDER_REVIEW
        and not pending
        and len(submitted) >= settings.minimum_reviewers
    )
    return DecisionEligibility(
        submission_id=submission.id,
        status=submission.status,
        round_no=submission.current_round,
        can_decide=can,
        required=settings.minimum_reviewers,
        submitted=len(submitted),
        pending=len(pending),
        active=len(active),
        suggestion=suggest_decision(submitted),
    )


def can_decide(submission: Submission, reviews: Iterable[Review], settings: ReviewSettings) -> bool:
    return decision_eligibility(submission, reviews, settings).can_decide


def suggest_decision(reviews: Iterable[Review]) -> Optional[SubmissionStatus]:
    """
    建议（仅供参考，不驱动状态机）：
    2+ REJECT -> REJECTED；2+ MAJOR 或 2+ MINOR -> REVISION；2+ ACCEPT -> ACCEPTED。
    """
    counts = Counter(r.recommendation for r in reviews if r.is_submitted and r.recommendation)
    if counts[Recommendation.REJECT] >= 2:
        return SubmissionStatus.REJECTED
    if counts[Recommendation.MAJOR] >= 2 or counts[Recommendation.MINOR] >= 2:
        return SubmissionStatus.REVISION
    if counts[Recommendation.ACCEPT] >= 2:
        return SubmissionStatus.ACCEPTED
    return None


def latest_decision(decisions: Iterable[Decision]) -> Optional[Decision]:
    ordered = sorted(decisions, key=lambda d: d.decided_at)
    return ordered[-1] if ordered else None


def required_permission(decision: DecisionValue) -> Action:
    if decision in {DecisionValue.REJECT, DecisionValue.DESK_REJECT}:
        return Action.REJECT
    return Action.APPROVE


class DecisionService:
    """
    决策聚合：canDecide / recordDecision。

    中文注释:
    - 决策只追加；同一稿件同一轮只有第一条有效，并发的第二次请求抛 AlreadyDecided。
    - 决策写入后驱动状态机；流转失败时删除刚写入的决策，保证全有或全无。
    """

    def __init__(self, editorial: Optional[EditorialService] = None) -> None:
        self.editorial = editorial or EditorialService()
        self.repo = self.editorial.repo
        self.locks = self.editorial.locks
        self.now = self.editorial.now

    def decision_eligibility(self, submission_id: str, actor: Actor) -> DecisionEligibility:
        if not can_access(actor.role, Resource.SUBMISSION, Action.READ):
            raise PermissionDenied(actor.role.value, Resource.SUBMISSION.value, Action.READ.value)
        submission = self.repo.get_submission(submission_id)
        reviews = self.repo.list_reviews(submission_id)
        result = decision_eligibility(submission, reviews, self.editorial.load_settings())
        result.latest_decision = latest_decision(self.repo.list_decisions(submission_id))
        return result

    def record_decision(
        self,
        submission_id: str,
        actor: Actor,
        decision: DecisionValue | str,
        note: Optional[str] = None,
    ) -> TransitionResult:
        try:
            value = DecisionValue(str(getattr(decision, "value", decision)).strip().upper())
        except ValueError as e:
            raise ValidationError.for_field("decision", f"Unknown decision: {decision!r}") from e

        needed = required_permission(value)
        if not can_access(actor.role, Resource.SUBMISSION, needed):
            raise PermissionDenied(actor.role.value, Resource.SUBMISSION.value, needed.value)

        target, action = DECISION_OUTCOMES[value]
        with self.locks.hold(submission_id):
            submission = self.repo.get_submission(submission_id)
            if self.repo.list_decisions(submission_id, round_no=submission.current_round):
                raise AlreadyDecided(submission_id, submission.current_round)

            if value == DecisionValue.DESK_REJECT:
                if submission.status != SubmissionStatus.NEW:
                    raise InvalidTransition(submission.status.value, target.value)
            else:
                if submission.status != SubmissionStatus.UNDER_REVIEW:
                    raise InvalidTransition(submission.status.value, target.value)
                eligibility = decision_eligibility(
                    submission, self.repo.list_reviews(submission_id), self.editorial.load_settings()
                )
                if not eligibility.can_decide:
                    raise InsufficientReviews(
                        required=eligibility.required,
                        submitted=eligibility.submitted,
                        pending=eligibility.pending,
                    )

            record = self.repo.insert_decision(
                Decision(
                    id=str(uuid.uuid4()),
                    submission_id=submission_id,
                    round_no=submission.current_round,
                    editor_id=actor.actor_id,
                    decision=value,
                    note=note,
                    decided_at=self.now(),
                )
            )
            try:
                result = self.editorial.apply_transition(
                    submission,
                    actor,
                    action,
                    via_decision=True,
                    audit_payload={"decision": value.value, "decision_id": record.id, "note": note},
                )
            except Exception:
                self.repo.delete_decision(record.id)
                raise

        logger.info(
            "decision %s recorded on submission %s round %s by %s",
            value.value,
            submission_id,
            submission.current_round,
            actor.actor_id,
        )
        return result
