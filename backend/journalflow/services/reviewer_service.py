from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from journalflow.core.clock import Clock, utc_now
from journalflow.core.config import WorkflowConfig
from journalflow.core.errors import (
    AlreadyDeclined,
    AlreadySubmitted,
    InvalidTransition,
    PermissionDenied,
    ValidationError,
)
from journalflow.core.locks import SubmissionLocks, submission_locks
from journalflow.core.permissions import Action, Resource, can_access
from journalflow.models.actor import Actor
from journalflow.models.audit import AuditEvent, NotificationEvent
from journalflow.models.deadline import Deadline, DeadlineType
from journalflow.models.review import Review, ReviewForm, ReviewView
from journalflow.models.submission import SubmissionStatus
from journalflow.services.audit_service import AuditSink, SupabaseAuditSink
from journalflow.services.deadline_service import plan_deadlines
from journalflow.services.notification_service import NotificationService
from journalflow.services.repository import WorkflowRepository
from journalflow.services.review_policy import reviews_visible_to, view_review_for
from journalflow.services.review_settings_service import ReviewSettingsService

logger = logging.getLogger("journalflow.reviews")

ASSIGNABLE_STATUSES = frozenset({SubmissionStatus.NEW, SubmissionStatus.UNDER_REVIEW})


def _form_errors(exc: PydanticValidationError) -> list[dict[str, Any]]:
    return [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]


class ReviewerService:
    """
    审稿分配与评审生命周期（assignReviewer / submitReview / declineReview）。

    中文注释:
    - 分配时不校验 minimumReviewers（审稿人可能之后拒绝），该约束在决策时校验。
    - 同一轮同一审稿人的有效分配是幂等的：重复分配直接返回已有记录。
    - submitted_at 只写一次；已提交后再拒绝不影响其计入有效评审数。
    """

    def __init__(
        self,
        repo: Optional[WorkflowRepository] = None,
        *,
        config: Optional[WorkflowConfig] = None,
        settings_service: Optional[ReviewSettingsService] = None,
        audit_sink: Optional[AuditSink] = None,
        notifier: Optional[NotificationService] = None,
        locks: Optional[SubmissionLocks] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.repo = repo or WorkflowRepository()
        self.config = config or WorkflowConfig.from_env()
        self.settings_service = settings_service or ReviewSettingsService(self.repo.client)
        self.audit_sink = audit_sink or SupabaseAuditSink(self.repo)
        self.notifier = notifier or NotificationService(self.repo.client)
        self.locks = locks or submission_locks
        self.now = clock

    def _audit(self, actor: Actor, action: str, review: Review, payload: dict[str, Any]) -> None:
        self.audit_sink.record(
            AuditEvent(
                actor_id=actor.actor_id,
                action=action,
                object=f"review:{review.id}",
                before={},
                after={"submission_id": review.submission_id, "round": review.round_no},
                created_at=self.now(),
                payload=payload,
            )
        )

    def _complete_review_deadline(self, review: Review, completed: list[Deadline]) -> None:
        now_iso = self.now().isoformat()
        for d in self.repo.list_deadlines(
            submission_id=review.submission_id,
            assigned_to=review.reviewer_id,
            type=DeadlineType.REVIEW,
            open_only=True,
        ):
            if d.round_no == review.round_no and self.repo.complete_deadline(d.id, now_iso) is not None:
                completed.append(d)

    def _rollback_review(self, before: Review, completed: list[Deadline]) -> None:
        try:
            for d in completed:
                self.repo.undo_deadline_completion(d)
            self.repo.restore_review(before)
        except Exception:
            logger.exception("compensation for review %s failed", before.id)

    @staticmethod
    def _ensure_submittable(review: Review) -> None:
        if review.is_submitted:
            raise AlreadySubmitted("Review has already been submitted", review_id=review.id)
        if not review.is_active:
            raise ValidationError.for_field("review_id", "Review assignment was declined")

    # ------------------------------------------------------------------ assign

    def assign_reviewer(
        self,
        submission_id: str,
        reviewer_id: str,
        actor: Actor,
        *,
        round_no: Optional[int] = None,
        reviewer_name: Optional[str] = None,
    ) -> Review:
        if not can_access(actor.role, Resource.REVIEW, Action.ASSIGN):
            raise PermissionDenied(actor.role.value, Resource.REVIEW.value, Action.ASSIGN.value)

        with self.locks.hold(submission_id):
            submission = self.repo.get_submission(submission_id)
            if submission.status not in ASSIGNABLE_STATUSES:
                raise InvalidTransition(
                    submission.status.value,
                    SubmissionStatus.UNDER_REVIEW.value,
                    message=f"Reviewers cannot be assigned while the submission is {submission.status.value}",
                )
            target_round = round_no or submission.current_round
            if target_round != submission.current_round:
                raise ValidationError.for_field(
                    "round_no",
                    f"Reviewers can only be assigned to the current round ({submission.current_round})",
                )
            if reviewer_id == submission.author_id:
                raise ValidationError.for_field("reviewer_id", "The author cannot review their own submission")

            for existing in self.repo.list_reviews(submission_id, round_no=target_round):
                if existing.reviewer_id == reviewer_id and existing.is_active:
                    return existing

            pending = self.repo.list_pending_reviews_for_reviewer(reviewer_id)
            if len(pending) >= self.config.reviewer_max_workload:
                raise ValidationError.for_field(
                    "reviewer_id",
                    f"Reviewer already has {len(pending)} pending reviews "
                    f"(limit {self.config.reviewer_max_workload})",
                )

            now = self.now()
            settings = self.settings_service.load()
            review = Review(
                id=str(uuid.uuid4()),
                submission_id=submission_id,
                reviewer_id=reviewer_id,
                reviewer_name=reviewer_name,
                round_no=target_round,
                invited_at=now,
                assigned_by=actor.actor_id,
            )
            deadlines: list[Deadline] = []
            if submission.status == SubmissionStatus.UNDER_REVIEW:
                deadlines = plan_deadlines(
                    submission,
                    SubmissionStatus.UNDER_REVIEW,
                    now=now,
                    config=self.config,
                    settings=settings,
                    reviews=[review],
                    existing_open=self.repo.list_deadlines(submission_id=submission_id, open_only=True),
                )
                if deadlines:
                    review = review.model_copy(update={"deadline": deadlines[0].due_date})

            created = self.repo.insert_review(review)
            inserted: list[Deadline] = []
            try:
                for d in deadlines:
                    inserted.append(self.repo.insert_deadline(d))
            except Exception:
                logger.exception("review deadline creation failed for review %s", created.id)
                for d in inserted:
                    self.repo.delete_deadline(d.id)
                self.repo.delete_review(created.id)
                raise

        self._audit(actor, "review.assigned", created, {"reviewer_id": reviewer_id})
        if submission.status == SubmissionStatus.UNDER_REVIEW:
            self.notifier.send(
                NotificationEvent(
                    user_id=reviewer_id,
                    type="review_invite",
                    title="Review invitation",
                    content=f"Please review submission {submission.code} (round {target_round})",
                    submission_id=submission_id,
                )
            )
        logger.info(
            "reviewer %s assigned to submission %s round %s by %s",
            reviewer_id,
            submission_id,
            target_round,
            actor.actor_id,
        )
        return created

    # ------------------------------------------------------------------ submit

    def submit_review(self, review_id: str, actor: Actor, form_data: dict[str, Any]) -> Review:
        review = self.repo.get_review(review_id)
        if review.reviewer_id != actor.actor_id or not can_access(
            actor.role, Resource.REVIEW_ASSIGNED, Action.REVIEW
        ):
            raise PermissionDenied(actor.role.value, Resource.REVIEW_ASSIGNED.value, Action.REVIEW.value)
        self._ensure_submittable(review)

        try:
            form = ReviewForm.model_validate(form_data or {})
        except PydanticValidationError as e:
            raise ValidationError("Review form is incomplete or invalid", errors=_form_errors(e)) from e

        with self.locks.hold(review.submission_id):
            # 锁内重新读取：锁外读取之后可能已被拒绝或提交
            review = self.repo.get_review(review_id)
            self._ensure_submittable(review)
            submission = self.repo.get_submission(review.submission_id)
            if submission.status != SubmissionStatus.UNDER_REVIEW or review.round_no != submission.current_round:
                raise InvalidTransition(
                    submission.status.value,
                    SubmissionStatus.UNDER_REVIEW.value,
                    message="Reviews can only be submitted for the current round while UNDER_REVIEW",
                )
            submitted = self.repo.mark_review_submitted(
                review_id,
                {
                    "submitted_at": self.now().isoformat(),
                    "score": form.score,
                    "recommendation": form.recommendation.value,
                    "form": form.form_payload(),
                },
            )
            if submitted is None:
                # 跨进程竞争失败，按最新状态报告原因
                self._ensure_submittable(self.repo.get_review(review_id))
                raise AlreadySubmitted("Review has already been submitted", review_id=review_id)
            completed: list[Deadline] = []
            try:
                self._complete_review_deadline(submitted, completed)
            except Exception:
                logger.exception("review %s submit failed after commit, compensating", review_id)
                self._rollback_review(review, completed)
                raise

        self._audit(
            actor,
            "review.submitted",
            submitted,
            {"recommendation": form.recommendation.value, "score": form.score},
        )
        if review.assigned_by:
            self.notifier.send(
                NotificationEvent(
                    user_id=review.assigned_by,
                    type="review_submitted",
                    title="Review submitted",
                    content=f"A review for submission {submission.code} was submitted",
                    submission_id=submission.id,
                )
            )
        logger.info("review %s submitted by %s", review_id, actor.actor_id)
        return submitted

    # ----------------------------------------------------------------- decline

    def decline_review(self, review_id: str, actor: Actor) -> Review:
        review = self.repo.get_review(review_id)
        own = review.reviewer_id == actor.actor_id and can_access(
            actor.role, Resource.REVIEW_ASSIGNED, Action.UPDATE
        )
        if not own and not can_access(actor.role, Resource.REVIEW, Action.ASSIGN):
            raise PermissionDenied(actor.role.value, Resource.REVIEW.value, Action.ASSIGN.value)

        with self.locks.hold(review.submission_id):
            review = self.repo.get_review(review_id)
            declined = self.repo.mark_review_declined(review_id, self.now().isoformat())
            if declined is None:
                raise AlreadyDeclined(review_id)
            completed: list[Deadline] = []
            try:
                self._complete_review_deadline(declined, completed)
            except Exception:
                logger.exception("review %s decline failed after commit, compensating", review_id)
                self._rollback_review(review, completed)
                raise

        self._audit(actor, "review.declined", declined, {"by_reviewer": own})
        if own and review.assigned_by:
            self.notifier.send(
                NotificationEvent(
                    user_id=review.assigned_by,
                    type="review_declined",
                    title="Review declined",
                    content="A reviewer declined the invitation",
                    submission_id=review.submission_id,
                )
            )
        return declined

    # ------------------------------------------------------------------- reads

    def list_reviews(self, submission_id: str, actor: Actor) -> list[ReviewView]:
        submission = self.repo.get_submission(submission_id)
        reviews = self.repo.list_reviews(submission_id)
        return reviews_visible_to(actor, reviews, submission, self.settings_service.load())

    def view_review(self, review_id: str, actor: Actor) -> ReviewView:
        review = self.repo.get_review(review_id)
        submission = self.repo.get_submission(review.submission_id)
        return view_review_for(actor, review, submission, self.settings_service.load())
