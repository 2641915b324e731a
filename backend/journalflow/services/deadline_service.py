from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timedelta
from typing import Iterable, Optional

from journalflow.core.clock import Clock, ensure_utc, utc_now
from journalflow.core.config import WorkflowConfig
from journalflow.core.errors import DeadlineAlreadyCompleted, PermissionDenied
from journalflow.core.locks import SubmissionLocks, submission_locks
from journalflow.core.permissions import Action, Resource, can_access, is_editor
from journalflow.models.actor import Actor
from journalflow.models.audit import NotificationEvent
from journalflow.models.deadline import (
    ClassifiedDeadline,
    Deadline,
    DeadlineScope,
    DeadlineState,
    DeadlineSummary,
    DeadlineType,
)
from journalflow.models.review import Review
from journalflow.models.review_settings import ReviewSettings
from journalflow.models.submission import TERMINAL_STATUSES, Submission, SubmissionStatus
from journalflow.services.notification_service import NotificationService
from journalflow.services.repository import WorkflowRepository

logger = logging.getLogger("journalflow.deadlines")

MAX_REMINDERS = 2

# 离开某状态时需要关闭的 open deadline 类型
DEADLINES_CLOSED_ON_EXIT: dict[SubmissionStatus, frozenset[DeadlineType]] = {
    SubmissionStatus.NEW: frozenset({DeadlineType.EDITOR_ASSIGNMENT}),
    SubmissionStatus.UNDER_REVIEW: frozenset({DeadlineType.REVIEW}),
    SubmissionStatus.REVISION: frozenset({DeadlineType.REVISION}),
    SubmissionStatus.ACCEPTED: frozenset({DeadlineType.COPYEDIT}),
    SubmissionStatus.IN_PRODUCTION: frozenset({DeadlineType.PRODUCTION, DeadlineType.PUBLICATION}),
}


def classify(
    deadline: Deadline, now: datetime, *, urgent_window_days: int = 3
) -> DeadlineState:
    """
    纯函数：根据 (due_date, now) 分类，每次读取都重新计算。

    - completed: completed_at 非空
    - overdue:   due_date < now
    - urgent:    due_date <= now + urgent_window（边界含等号）
    - upcoming:  其余
    """
    if deadline.completed_at is not None:
        return DeadlineState.COMPLETED
    due = ensure_utc(deadline.due_date)
    current = ensure_utc(now)
    if due < current:
        return DeadlineState.OVERDUE
    if due <= current + timedelta(days=urgent_window_days):
        return DeadlineState.URGENT
    return DeadlineState.UPCOMING


def days_left(deadline: Deadline, now: datetime) -> int:
    delta = ensure_utc(deadline.due_date) - ensure_utc(now)
    return math.floor(delta.total_seconds() / 86400)


def days_in_status(submission: Submission, now: datetime) -> int:
    """now - last_status_change_at（整天数，UTC 墙钟）。"""
    delta = ensure_utc(now) - ensure_utc(submission.last_status_change_at)
    return max(0, delta.days)


def with_current_status_age(submission: Submission, now: datetime) -> Submission:
    # 库里的 days_in_current_status 只是扫描写入的缓存，读路径一律按 now 重新计算
    return submission.model_copy(update={"days_in_current_status": days_in_status(submission, now)})


def is_submission_overdue(
    submission: Submission,
    open_deadlines: Iterable[Deadline],
    now: datetime,
    config: WorkflowConfig,
) -> bool:
    """
    稿件级 SLA：
    - 终态不计逾期；
    - 在当前状态停留天数超过该状态 SLA，或任一 open deadline 已逾期，即视为逾期。
    """
    if submission.status in TERMINAL_STATUSES:
        return False
    sla = config.sla_for(submission.status.value)
    if sla and days_in_status(submission, now) > sla:
        return True
    return any(
        classify(d, now, urgent_window_days=config.urgent_window_days) == DeadlineState.OVERDUE
        for d in open_deadlines
    )


def _new_deadline(
    submission: Submission,
    type: DeadlineType,
    due: datetime,
    *,
    assigned_to: Optional[str],
    round_no: int,
    now: datetime,
    note: Optional[str] = None,
) -> Deadline:
    return Deadline(
        id=str(uuid.uuid4()),
        submission_id=submission.id,
        type=type,
        due_date=due,
        assigned_to=assigned_to,
        round_no=round_no,
        note=note,
        created_at=now,
    )


def plan_deadlines(
    submission: Submission,
    status: SubmissionStatus,
    *,
    now: datetime,
    config: WorkflowConfig,
    settings: ReviewSettings,
    reviews: Iterable[Review] = (),
    editor_id: Optional[str] = None,
    existing_open: Iterable[Deadline] = (),
) -> list[Deadline]:
    """
    进入 status 时应创建的 deadline 列表（纯函数，不落库）。

    中文注释:
    - UNDER_REVIEW：当前轮每个有效且未提交的审稿人一条 REVIEW，期限 = reviewDeadlineDays。
    - 同一 (类型, 轮次, 负责人) 已有 open deadline 时跳过，保证唯一。
    """
    round_no = submission.current_round
    planned: list[Deadline] = []
    if status == SubmissionStatus.NEW:
        planned.append(
            _new_deadline(
                submission,
                DeadlineType.EDITOR_ASSIGNMENT,
                now + timedelta(days=config.sla_for("NEW")),
                assigned_to=editor_id,
                round_no=round_no,
                now=now,
            )
        )
    elif status == SubmissionStatus.UNDER_REVIEW:
        for review in reviews:
            if review.round_no != round_no or not review.is_active or review.is_submitted:
                continue
            planned.append(
                _new_deadline(
                    submission,
                    DeadlineType.REVIEW,
                    now + timedelta(days=settings.review_deadline_days),
                    assigned_to=review.reviewer_id,
                    round_no=round_no,
                    now=now,
                )
            )
    elif status == SubmissionStatus.REVISION:
        planned.append(
            _new_deadline(
                submission,
                DeadlineType.REVISION,
                now + timedelta(days=config.sla_for("REVISION")),
                assigned_to=submission.author_id,
                round_no=round_no,
                now=now,
            )
        )
    elif status == SubmissionStatus.ACCEPTED:
        planned.append(
            _new_deadline(
                submission,
                DeadlineType.COPYEDIT,
                now + timedelta(days=config.sla_for("ACCEPTED")),
                assigned_to=editor_id,
                round_no=round_no,
                now=now,
            )
        )
    elif status == SubmissionStatus.IN_PRODUCTION:
        production_due = now + timedelta(days=config.sla_for("IN_PRODUCTION"))
        planned.append(
            _new_deadline(
                submission,
                DeadlineType.PRODUCTION,
                production_due,
                assigned_to=editor_id,
                round_no=round_no,
                now=now,
            )
        )
        planned.append(
            _new_deadline(
                submission,
                DeadlineType.PUBLICATION,
                production_due + timedelta(days=config.publication_days),
                assigned_to=editor_id,
                round_no=round_no,
                now=now,
            )
        )

    taken = {(d.type, d.round_no, d.assigned_to) for d in existing_open if d.is_open}
    out: list[Deadline] = []
    for d in planned:
        key = (d.type, d.round_no, d.assigned_to)
        if key in taken:
            continue
        taken.add(key)
        out.append(d)
    return out


class DeadlineService:
    """
    Deadline / SLA 跟踪：汇总、完成、定时逾期扫描。

    中文注释:
    - is_overdue 是扫描任务写入的缓存；汇总接口总是用 classify() 重新计算。
    - 完成 deadline 属于“稿件写操作”，需要持有该稿件的互斥锁。
    """

    def __init__(
        self,
        repo: Optional[WorkflowRepository] = None,
        *,
        config: Optional[WorkflowConfig] = None,
        notifier: Optional[NotificationService] = None,
        locks: Optional[SubmissionLocks] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.repo = repo or WorkflowRepository()
        self.config = config or WorkflowConfig.from_env()
        self.notifier = notifier or NotificationService(self.repo.client)
        self.locks = locks or submission_locks
        self.now = clock

    def _classify(self, deadline: Deadline, now: datetime) -> DeadlineState:
        return classify(deadline, now, urgent_window_days=self.config.urgent_window_days)

    def list_classified(self, scope: DeadlineScope) -> list[ClassifiedDeadline]:
        now = self.now()
        deadlines = self.repo.list_deadlines(
            submission_id=scope.submission_id,
            assigned_to=scope.assigned_to,
            type=scope.type,
        )
        return [
            ClassifiedDeadline(deadline=d, state=self._classify(d, now), days_left=days_left(d, now))
            for d in deadlines
        ]

    def get_deadline_summary(self, scope: DeadlineScope) -> DeadlineSummary:
        summary = DeadlineSummary()
        for item in self.list_classified(scope):
            summary.total += 1
            if item.state == DeadlineState.OVERDUE:
                summary.overdue += 1
            elif item.state == DeadlineState.URGENT:
                summary.urgent += 1
            elif item.state == DeadlineState.UPCOMING:
                summary.upcoming += 1
            else:
                summary.completed += 1
        return summary

    def summary_for(self, actor: Actor, scope: DeadlineScope) -> DeadlineSummary:
        # 非编辑角色只能看自己名下的 deadline
        if not is_editor(actor.role):
            scope = scope.model_copy(update={"assigned_to": actor.actor_id})
        return self.get_deadline_summary(scope)

    def complete_deadline(self, deadline_id: str, actor: Actor) -> Deadline:
        deadline = self.repo.get_deadline(deadline_id)
        if deadline.assigned_to != actor.actor_id and not can_access(
            actor.role, Resource.SUBMISSION, Action.UPDATE
        ):
            raise PermissionDenied(actor.role.value, Resource.SUBMISSION.value, Action.UPDATE.value)

        with self.locks.hold(deadline.submission_id):
            completed = self.repo.complete_deadline(deadline.id, self.now().isoformat())
            if completed is None:
                raise DeadlineAlreadyCompleted(deadline.id)
        logger.info("deadline %s (%s) completed by %s", deadline.id, deadline.type.value, actor.actor_id)
        return completed

    def run_overdue_sweep(self) -> dict[str, int]:
        """
        定时任务：刷新 deadline / 稿件的 is_overdue 缓存，并发送逾期通知与临期提醒。

        中文注释:
        - 只在“新变为逾期”时通知负责人，避免每次扫描重复打扰。
        - 临期（urgent）提醒最多发送 MAX_REMINDERS 次。
        """
        now = self.now()
        stats = {
            "deadlines_marked_overdue": 0,
            "deadlines_cleared": 0,
            "reminders_sent": 0,
            "submissions_marked_overdue": 0,
            "submissions_cleared": 0,
        }
        for d in self.repo.list_deadlines():
            state = self._classify(d, now)
            if state == DeadlineState.OVERDUE and not d.is_overdue:
                self.repo.update_deadline(d.id, {"is_overdue": True})
                stats["deadlines_marked_overdue"] += 1
                if d.assigned_to:
                    self.notifier.send(
                        NotificationEvent(
                            user_id=d.assigned_to,
                            type="deadline_overdue",
                            title="Deadline overdue",
                            content=f"{d.type.value} deadline was due {ensure_utc(d.due_date).date().isoformat()}",
                            submission_id=d.submission_id,
                        )
                    )
            elif state != DeadlineState.OVERDUE and d.is_overdue:
                self.repo.update_deadline(d.id, {"is_overdue": False})
                stats["deadlines_cleared"] += 1

            if state == DeadlineState.URGENT and d.assigned_to and d.reminders_sent < MAX_REMINDERS:
                self.notifier.send(
                    NotificationEvent(
                        user_id=d.assigned_to,
                        type="deadline_reminder",
                        title="Deadline approaching",
                        content=f"{days_left(d, now)} day(s) left for {d.type.value}",
                        submission_id=d.submission_id,
                    )
                )
                self.repo.update_deadline(d.id, {"reminders_sent": d.reminders_sent + 1})
                stats["reminders_sent"] += 1

        active = [s.value for s in SubmissionStatus if s not in TERMINAL_STATUSES]
        for s in self.repo.list_submissions(statuses=active):
            open_deadlines = self.repo.list_deadlines(submission_id=s.id, open_only=True)
            overdue = is_submission_overdue(s, open_deadlines, now, self.config)
            days = days_in_status(s, now)
            if overdue != s.is_overdue or days != s.days_in_current_status:
                self.repo.set_submission_overdue(s.id, is_overdue=overdue, days=days)
            if overdue and not s.is_overdue:
                stats["submissions_marked_overdue"] += 1
            elif s.is_overdue and not overdue:
                stats["submissions_cleared"] += 1

        logger.info("overdue sweep finished: %s", stats)
        return stats
