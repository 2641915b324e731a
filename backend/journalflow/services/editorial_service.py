from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from journalflow.core.clock import Clock, utc_now
from journalflow.core.config import WorkflowConfig
from journalflow.core.errors import (
    ConcurrencyConflict,
    InvalidTransition,
    PermissionDenied,
    RevisionNotAllowed,
    SubmissionInUse,
    ValidationError,
)
from journalflow.core.locks import SubmissionLocks, submission_locks
from journalflow.core.permissions import Action, Resource, can_access, is_editor
from journalflow.models.actor import Actor
from journalflow.models.audit import AuditEvent, NotificationEvent
from journalflow.models.deadline import Deadline, DeadlineType
from journalflow.models.review import Review
from journalflow.models.review_settings import ReviewSettings
from journalflow.models.submission import (
    ACTION_RULES,
    ActionRule,
    Submission,
    SubmissionCreate,
    SubmissionStatus,
    SubmissionView,
    WorkflowAction,
    parse_action,
)
from journalflow.services.audit_service import AuditSink, SupabaseAuditSink
from journalflow.services.deadline_service import (
    DEADLINES_CLOSED_ON_EXIT,
    plan_deadlines,
    with_current_status_age,
)
from journalflow.services.notification_service import NotificationService
from journalflow.services.repository import WorkflowRepository
from journalflow.services.review_policy import view_submission_for
from journalflow.services.review_settings_service import ReviewSettingsService

logger = logging.getLogger("journalflow.workflow")

CODE_ATTEMPTS = 5


@dataclass(frozen=True)
class TransitionResult:
    """一次状态流转的结果：新状态 + 审计事件（由 sink 负责持久化）。"""

    submission: Submission
    audit: AuditEvent
    created_deadlines: list[Deadline] = field(default_factory=list)
    completed_deadlines: list[Deadline] = field(default_factory=list)
    carried_reviews: list[Review] = field(default_factory=list)


def submission_ref(submission_id: str) -> str:
    return f"submission:{submission_id}"


def _status_snapshot(submission: Submission) -> dict[str, Any]:
    return {"status": submission.status.value, "round": submission.current_round}


class EditorialService:
    """
    稿件状态机（transitionStatus / submitRevision / submitManuscript / deleteSubmission）。

    中文注释:
    - 所有流转必须先过权限矩阵，再校验状态机；非法流转抛 InvalidTransition，绝不静默忽略。
    - 提交点是带 version 条件的稿件更新；之后的 deadline/审稿记录写入失败时执行补偿，保证全有或全无。
    - 审计与通知是尽力而为的副作用，失败不回滚流转。
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

    def load_settings(self) -> ReviewSettings:
        return self.settings_service.load()

    def generate_code(self, now: datetime) -> str:
        # {prefix}-YYYYMMDD-HHMMSSNN，NN 为百分之一秒
        return f"{self.config.code_prefix}-{now:%Y%m%d}-{now:%H%M%S}{now.microsecond // 10000:02d}"

    # ------------------------------------------------------------------ intake

    def submit_manuscript(self, actor: Actor, payload: SubmissionCreate) -> Submission:
        if not can_access(actor.role, Resource.SUBMISSION_OWN, Action.CREATE):
            raise PermissionDenied(actor.role.value, Resource.SUBMISSION_OWN.value, Action.CREATE.value)

        now = self.now()
        created: Optional[Submission] = None
        for attempt in range(CODE_ATTEMPTS):
            # 同一 1/100 秒内的并发投稿会撞号：顺延 10ms 重新生成
            code = self.generate_code(now + timedelta(milliseconds=10 * attempt))
            if self.repo.submission_code_exists(code):
                continue
            created = self.repo.insert_submission(
                Submission(
                    id=str(uuid.uuid4()),
                    code=code,
                    title=payload.title.strip(),
                    abstract=payload.abstract.strip(),
                    abstract_en=payload.abstract_en,
                    keywords=payload.keywords,
                    category_id=payload.category_id,
                    author_id=actor.actor_id,
                    author_name=payload.author_name or actor.name,
                    author_email=payload.author_email or actor.email,
                    author_organization=payload.author_organization,
                    status=SubmissionStatus.NEW,
                    current_round=1,
                    last_status_change_at=now,
                    created_at=now,
                )
            )
            if created is not None:
                break
            logger.info("submission code %s already taken, retrying", code)
        if created is None:
            raise ConcurrencyConflict(code, "Could not allocate a unique submission code, retry later")

        inserted: list[Deadline] = []
        try:
            for d in plan_deadlines(
                created,
                SubmissionStatus.NEW,
                now=now,
                config=self.config,
                settings=self.load_settings(),
            ):
                inserted.append(self.repo.insert_deadline(d))
        except Exception:
            logger.exception("submission %s intake failed, rolling back", created.id)
            for d in inserted:
                self.repo.delete_deadline(d.id)
            self.repo.delete_submission(created.id)
            raise

        self.audit_sink.record(
            AuditEvent(
                actor_id=actor.actor_id,
                action="submission.created",
                object=submission_ref(created.id),
                before={},
                after=_status_snapshot(created),
                created_at=now,
                payload={"code": created.code},
            )
        )
        logger.info("submission %s (%s) created by %s", created.id, created.code, actor.actor_id)
        return created

    # ------------------------------------------------------------- transitions

    def check_action(
        self,
        actor: Actor,
        submission: Submission,
        action: WorkflowAction,
        *,
        via_decision: bool = False,
    ) -> ActionRule:
        """
        校验顺序：权限矩阵 -> 角色附加约束 -> 状态机合法性。
        """
        rule = ACTION_RULES[action]
        if not can_access(actor.role, rule.resource, rule.action):
            raise PermissionDenied(actor.role.value, rule.resource.value, rule.action.value)
        if rule.editor_only and not is_editor(actor.role):
            raise PermissionDenied(actor.role.value, rule.resource.value, rule.action.value)
        if rule.owner_only and submission.author_id != actor.actor_id:
            raise PermissionDenied(actor.role.value, rule.resource.value, rule.action.value)

        current = submission.status
        if current not in rule.sources or rule.target not in SubmissionStatus.allowed_next(current):
            raise InvalidTransition(current.value, rule.target.value)
        if not via_decision and current in rule.decision_only_from:
            raise InvalidTransition(
                current.value,
                rule.target.value,
                message=f"{current.value} -> {rule.target.value} requires an editorial decision",
            )
        return rule

    def available_actions(self, actor: Actor, submission: Submission) -> list[WorkflowAction]:
        out: list[WorkflowAction] = []
        for action in WorkflowAction:
            try:
                self.check_action(actor, submission, action)
            except (PermissionDenied, InvalidTransition):
                continue
            out.append(action)
        return out

    def transition_status(self, submission_id: str, actor: Actor, action: Any) -> TransitionResult:
        parsed = parse_action(action)
        if parsed is None:
            raise ValidationError.for_field("action", f"Unknown workflow action: {action!r}")
        if parsed == WorkflowAction.SUBMIT_REVISION:
            return self.submit_revision(submission_id, actor)
        with self.locks.hold(submission_id):
            submission = self.repo.get_submission(submission_id)
            return self.apply_transition(submission, actor, parsed)

    def submit_revision(self, submission_id: str, actor: Actor) -> TransitionResult:
        with self.locks.hold(submission_id):
            submission = self.repo.get_submission(submission_id)
            if submission.author_id != actor.actor_id or not can_access(
                actor.role, Resource.SUBMISSION_OWN, Action.UPDATE
            ):
                raise PermissionDenied(
                    actor.role.value, Resource.SUBMISSION_OWN.value, Action.UPDATE.value
                )
            if submission.status != SubmissionStatus.REVISION:
                raise RevisionNotAllowed(submission.status.value)
            return self.apply_transition(submission, actor, WorkflowAction.SUBMIT_REVISION)

    def apply_transition(
        self,
        submission: Submission,
        actor: Actor,
        action: WorkflowAction,
        *,
        via_decision: bool = False,
        audit_payload: Optional[dict[str, Any]] = None,
    ) -> TransitionResult:
        """
        执行一次流转（调用方必须已持有该稿件的锁）。

        中文注释:
        1) 条件更新稿件（version 不匹配 -> ConcurrencyConflict），这是提交点；
        2) 关闭离开状态的 open deadline，REVISION -> UNDER_REVIEW 时轮次 +1 并延续上一轮已提交的审稿人；
        3) 为新状态创建 deadline；2)/3) 任一步失败都会补偿并恢复稿件，然后原样抛出。
        """
        rule = self.check_action(actor, submission, action, via_decision=via_decision)
        target = rule.target
        now = self.now()
        now_iso = now.isoformat()
        settings = self.load_settings()

        new_round = submission.current_round
        if submission.status == SubmissionStatus.REVISION and target == SubmissionStatus.UNDER_REVIEW:
            new_round += 1

        updated = self.repo.update_submission(
            submission.id,
            expected_version=submission.version,
            changes={
                "status": target.value,
                "current_round": new_round,
                "last_status_change_at": now_iso,
                "days_in_current_status": 0,
                "is_overdue": False,
            },
        )

        closed: list[Deadline] = []
        created: list[Deadline] = []
        carried: list[Review] = []
        review_deadlines: list[tuple[Review, Optional[datetime]]] = []
        try:
            open_deadlines = self.repo.list_deadlines(submission_id=submission.id, open_only=True)
            closing_types = DEADLINES_CLOSED_ON_EXIT.get(submission.status, frozenset())
            for d in open_deadlines:
                if d.type in closing_types and self.repo.complete_deadline(d.id, now_iso) is not None:
                    closed.append(d)

            reviews = self.repo.list_reviews(submission.id)
            if new_round > submission.current_round:
                for previous in reviews:
                    if previous.round_no != submission.current_round or not previous.is_submitted:
                        continue
                    carried.append(
                        self.repo.insert_review(
                            Review(
                                id=str(uuid.uuid4()),
                                submission_id=submission.id,
                                reviewer_id=previous.reviewer_id,
                                reviewer_name=previous.reviewer_name,
                                round_no=new_round,
                                invited_at=now,
                                assigned_by=actor.actor_id,
                            )
                        )
                    )
                reviews = reviews + carried

            closed_ids = {d.id for d in closed}
            planned = plan_deadlines(
                updated,
                target,
                now=now,
                config=self.config,
                settings=settings,
                reviews=reviews,
                editor_id=actor.actor_id if is_editor(actor.role) else None,
                existing_open=[d for d in open_deadlines if d.id not in closed_ids],
            )
            for d in planned:
                created.append(self.repo.insert_deadline(d))
                if d.type != DeadlineType.REVIEW:
                    continue
                for review in reviews:
                    if review.round_no == new_round and review.reviewer_id == d.assigned_to and review.is_active:
                        review_deadlines.append((review, review.deadline))
                        self.repo.update_review(review.id, {"deadline": d.due_date.isoformat()})
        except Exception:
            logger.exception(
                "transition %s on submission %s failed after commit, compensating",
                action.value,
                submission.id,
            )
            self._compensate(submission, updated, closed, created, carried, review_deadlines)
            raise

        event = AuditEvent(
            actor_id=actor.actor_id,
            action=f"submission.{action.value}",
            object=submission_ref(submission.id),
            before=_status_snapshot(submission),
            after=_status_snapshot(updated),
            created_at=now,
            payload={"via_decision": via_decision, **(audit_payload or {})},
        )
        self.audit_sink.record(event)
        self._notify_transition(updated, submission.status, reviews)
        logger.info(
            "submission %s: %s -> %s (action=%s actor=%s round=%s)",
            submission.id,
            submission.status.value,
            updated.status.value,
            action.value,
            actor.actor_id,
            updated.current_round,
        )
        return TransitionResult(
            submission=with_current_status_age(updated, now),
            audit=event,
            created_deadlines=created,
            completed_deadlines=closed,
            carried_reviews=carried,
        )

    def _compensate(
        self,
        before: Submission,
        updated: Submission,
        closed: list[Deadline],
        created: list[Deadline],
        carried: list[Review],
        review_deadlines: list[tuple[Review, Optional[datetime]]],
    ) -> None:
        try:
            for review, previous_deadline in review_deadlines:
                self.repo.update_review(
                    review.id,
                    {"deadline": previous_deadline.isoformat() if previous_deadline else None},
                )
            for d in created:
                self.repo.delete_deadline(d.id)
            for r in carried:
                self.repo.delete_review(r.id)
            for d in closed:
                self.repo.undo_deadline_completion(d)
            if not self.repo.restore_submission(before, current_version=updated.version):
                logger.error("submission %s could not be restored (modified concurrently)", before.id)
        except Exception:
            logger.exception("compensation for submission %s failed", before.id)

    def _notify_transition(
        self, submission: Submission, previous: SubmissionStatus, reviews: list[Review]
    ) -> None:
        status = submission.status
        if status == SubmissionStatus.UNDER_REVIEW:
            for review in reviews:
                if review.round_no != submission.current_round or not review.is_active or review.is_submitted:
                    continue
                self.notifier.send(
                    NotificationEvent(
                        user_id=review.reviewer_id,
                        type="review_invite",
                        title="Review invitation",
                        content=f"Please review submission {submission.code} (round {submission.current_round})",
                        submission_id=submission.id,
                    )
                )
        if previous == SubmissionStatus.REVISION and status == SubmissionStatus.UNDER_REVIEW:
            # 作者自己提交修回稿，无需再通知作者
            return
        self.notifier.send(
            NotificationEvent(
                user_id=submission.author_id,
                type="revision_requested" if status == SubmissionStatus.REVISION else "status_changed",
                title=f"Submission {submission.code}",
                content=f"Status changed: {previous.value} -> {status.value}",
                submission_id=submission.id,
            )
        )

    # ------------------------------------------------------------------ reads

    def get_submission(self, submission_id: str) -> Submission:
        return with_current_status_age(self.repo.get_submission(submission_id), self.now())

    def view_submission(self, submission_id: str, actor: Actor) -> SubmissionView:
        submission = self.get_submission(submission_id)
        reviews = self.repo.list_reviews(submission_id)
        return view_submission_for(actor, submission, self.load_settings(), reviews)

    def get_timeline(self, submission_id: str, actor: Actor) -> list[dict[str, Any]]:
        submission = self.repo.get_submission(submission_id)
        allowed = (
            can_access(actor.role, Resource.SUBMISSION, Action.READ)
            or can_access(actor.role, Resource.AUDIT_LOG, Action.READ)
            or (
                submission.author_id == actor.actor_id
                and can_access(actor.role, Resource.SUBMISSION_OWN, Action.READ)
            )
        )
        if not allowed:
            raise PermissionDenied(actor.role.value, Resource.AUDIT_LOG.value, Action.READ.value)
        return self.audit_sink.list_for(submission_ref(submission_id))

    # ------------------------------------------------------------------ delete

    def delete_submission(self, submission_id: str, actor: Actor) -> None:
        if not can_access(actor.role, Resource.SUBMISSION, Action.DELETE):
            raise PermissionDenied(actor.role.value, Resource.SUBMISSION.value, Action.DELETE.value)
        with self.locks.hold(submission_id):
            submission = self.repo.get_submission(submission_id)
            decisions = len(self.repo.list_decisions(submission_id))
            articles = self.repo.count_articles(submission_id)
            if decisions or articles:
                raise SubmissionInUse(submission_id, decisions=decisions, articles=articles)
            for review in self.repo.list_reviews(submission_id):
                self.repo.delete_review(review.id)
            self.repo.delete_deadlines_for(submission_id)
            self.repo.delete_submission(submission_id)

        self.audit_sink.record(
            AuditEvent(
                actor_id=actor.actor_id,
                action="submission.deleted",
                object=submission_ref(submission_id),
                before=_status_snapshot(submission),
                after={},
                created_at=self.now(),
                payload={"code": submission.code},
            )
        )
        logger.info("submission %s deleted by %s", submission_id, actor.actor_id)
