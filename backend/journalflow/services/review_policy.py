from __future__ import annotations

from typing import Iterable

from journalflow.core.errors import PermissionDenied
from journalflow.core.permissions import Action, Resource, can_access
from journalflow.models.actor import Actor
from journalflow.models.review import CONFIDENTIAL_FORM_KEY, Review, ReviewView
from journalflow.models.review_settings import ReviewSettings
from journalflow.models.submission import AUTHOR_IDENTITY_FIELDS, Submission, SubmissionView

# 中文注释：
# - 盲审可见性规则全部是纯函数，ReviewSettings 作为参数显式传入（不读全局配置）。
# - 机密意见对作者无条件隐藏，与 blind_review_mode 无关。

REVIEWER_IDENTITY_FIELDS = ("reviewer_id", "reviewer_name")


def _submission_view(submission: Submission, redacted: Iterable[str] = ()) -> SubmissionView:
    data = submission.model_dump(exclude={"version"})
    redacted_fields = list(redacted)
    for key in redacted_fields:
        data[key] = None
    return SubmissionView(**data, redacted_fields=redacted_fields)


def full_submission_view(submission: Submission) -> SubmissionView:
    return _submission_view(submission)


def project_submission_for_reviewer(submission: Submission, settings: ReviewSettings) -> SubmissionView:
    """审稿人视图：hide_author_from_reviewer 时去掉作者身份/单位/邮箱。"""
    if settings.hide_author_from_reviewer:
        return _submission_view(submission, AUTHOR_IDENTITY_FIELDS)
    return _submission_view(submission)


def _review_view(review: Review, *, redacted: Iterable[str] = (), drop_confidential: bool) -> ReviewView:
    form = dict(review.form or {})
    if drop_confidential:
        form.pop(CONFIDENTIAL_FORM_KEY, None)
    redacted_fields = list(redacted)
    return ReviewView(
        id=review.id,
        submission_id=review.submission_id,
        round_no=review.round_no,
        reviewer_id=None if "reviewer_id" in redacted_fields else review.reviewer_id,
        reviewer_name=None if "reviewer_name" in redacted_fields else review.reviewer_name,
        submitted_at=review.submitted_at,
        score=review.score,
        recommendation=review.recommendation,
        form=form,
        redacted_fields=redacted_fields,
    )


def full_review_view(review: Review) -> ReviewView:
    return _review_view(review, drop_confidential=False)


def project_review_for_author(review: Review, settings: ReviewSettings) -> ReviewView:
    """作者视图：机密意见永远移除；hide_reviewer_from_author 时再去掉审稿人身份。"""
    redacted = REVIEWER_IDENTITY_FIELDS if settings.hide_reviewer_from_author else ()
    return _review_view(review, redacted=redacted, drop_confidential=True)


def is_assigned_reviewer(actor_id: str, reviews: Iterable[Review]) -> bool:
    return any(r.reviewer_id == actor_id and r.is_active for r in reviews)


def view_submission_for(
    actor: Actor,
    submission: Submission,
    settings: ReviewSettings,
    reviews: Iterable[Review],
) -> SubmissionView:
    """
    按查看者身份选择投影:
    - 持有 SUBMISSION:READ 的编辑角色 / 作者本人：完整视图
    - 被分配（未拒绝）的审稿人：审稿人投影
    - 其他人：PermissionDenied
    """
    if can_access(actor.role, Resource.SUBMISSION, Action.READ):
        return full_submission_view(submission)
    if submission.author_id == actor.actor_id and can_access(
        actor.role, Resource.SUBMISSION_OWN, Action.READ
    ):
        return full_submission_view(submission)
    if can_access(actor.role, Resource.REVIEW_ASSIGNED, Action.READ) and is_assigned_reviewer(
        actor.actor_id, reviews
    ):
        return project_submission_for_reviewer(submission, settings)
    raise PermissionDenied(actor.role.value, Resource.SUBMISSION.value, Action.READ.value)


def view_review_for(
    actor: Actor,
    review: Review,
    submission: Submission,
    settings: ReviewSettings,
) -> ReviewView:
    if can_access(actor.role, Resource.REVIEW, Action.READ):
        return full_review_view(review)
    if review.reviewer_id == actor.actor_id and can_access(
        actor.role, Resource.REVIEW_ASSIGNED, Action.READ
    ):
        return full_review_view(review)
    if submission.author_id == actor.actor_id and can_access(
        actor.role, Resource.SUBMISSION_OWN, Action.READ
    ):
        # 作者只能看到已提交的评审
        if review.is_submitted:
            return project_review_for_author(review, settings)
    raise PermissionDenied(actor.role.value, Resource.REVIEW.value, Action.READ.value)


def reviews_visible_to(
    actor: Actor,
    reviews: Iterable[Review],
    submission: Submission,
    settings: ReviewSettings,
) -> list[ReviewView]:
    """列表版本：无权查看的条目直接跳过（不抛错）。"""
    out: list[ReviewView] = []
    for review in reviews:
        try:
            out.append(view_review_for(actor, review, submission, settings))
        except PermissionDenied:
            continue
    return out

