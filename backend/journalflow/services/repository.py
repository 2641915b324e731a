from __future__ import annotations

from typing import Any, Iterable, Optional

from postgrest.exceptions import APIError

from journalflow.core.errors import ConcurrencyConflict, NotFound
from journalflow.lib.api_client import supabase_admin
from journalflow.models.deadline import Deadline, DeadlineType
from journalflow.models.decision import Decision
from journalflow.models.review import Review
from journalflow.models.submission import Submission

# 提交/拒绝评审时会改写的列（补偿时整体恢复）
REVIEW_OUTCOME_FIELDS = ("submitted_at", "declined_at", "score", "recommendation", "form")


def _rows(resp: Any) -> list[dict[str, Any]]:
    return getattr(resp, "data", None) or []


class WorkflowRepository:
    """
    工作流数据访问层（PostgREST / service_role）。

    中文注释:
    - 所有表的读写集中在这里，服务层只处理领域模型。
    - 稿件更新一律带 version 条件（乐观并发）：0 行受影响 = 被并发修改，抛 ConcurrencyConflict。
    - 审稿提交 / deadline 完成使用 `is null` 条件更新，保证“只写一次”。
    """

    def __init__(self, client: Any | None = None) -> None:
        self.client = client if client is not None else supabase_admin

    # ---------------------------------------------------------------- submissions

    def get_submission(self, submission_id: str) -> Submission:
        resp = self.client.table("submissions").select("*").eq("id", submission_id).limit(1).execute()
        rows = _rows(resp)
        if not rows:
            raise NotFound("Submission", submission_id)
        return Submission.from_row(rows[0])

    def list_submissions(self, *, statuses: Optional[Iterable[str]] = None) -> list[Submission]:
        q = self.client.table("submissions").select("*")
        if statuses is not None:
            q = q.in_("status", [getattr(s, "value", s) for s in statuses])
        return [Submission.from_row(r) for r in _rows(q.execute())]

    def submission_code_exists(self, code: str) -> bool:
        resp = self.client.table("submissions").select("id").eq("code", code).limit(1).execute()
        return bool(_rows(resp))

    def insert_submission(self, submission: Submission) -> Optional[Submission]:
        """插入稿件；稿件编号撞上唯一约束（23505）时返回 None，由调用方换号重试。"""
        try:
            rows = _rows(self.client.table("submissions").insert(submission.to_row()).execute())
        except APIError as e:
            text = str(e).lower()
            code = str(getattr(e, "code", "") or "").lower()
            if "23505" in code or "23505" in text:
                return None
            raise
        return Submission.from_row(rows[0]) if rows else submission

    def update_submission(
        self, submission_id: str, *, expected_version: int, changes: dict[str, Any]
    ) -> Submission:
        payload = dict(changes)
        payload["version"] = expected_version + 1
        resp = (
            self.client.table("submissions")
            .update(payload)
            .eq("id", submission_id)
            .eq("version", expected_version)
            .execute()
        )
        rows = _rows(resp)
        if not rows:
            raise ConcurrencyConflict(submission_id)
        return Submission.from_row(rows[0])

    def restore_submission(self, previous: Submission, *, current_version: int) -> bool:
        """补偿：把稿件恢复到 previous（仅当期间没有其他写入）。"""
        payload = previous.to_row()
        payload.pop("id", None)
        resp = (
            self.client.table("submissions")
            .update(payload)
            .eq("id", previous.id)
            .eq("version", current_version)
            .execute()
        )
        return bool(_rows(resp))

    def set_submission_overdue(self, submission_id: str, *, is_overdue: bool, days: int) -> None:
        # 缓存字段，不参与版本控制
        (
            self.client.table("submissions")
            .update({"is_overdue": is_overdue, "days_in_current_status": days})
            .eq("id", submission_id)
            .execute()
        )

    def delete_submission(self, submission_id: str) -> None:
        self.client.table("submissions").delete().eq("id", submission_id).execute()

    # -------------------------------------------------------------------- reviews

    def get_review(self, review_id: str) -> Review:
        resp = self.client.table("reviews").select("*").eq("id", review_id).limit(1).execute()
        rows = _rows(resp)
        if not rows:
            raise NotFound("Review", review_id)
        return Review.from_row(rows[0])

    def list_reviews(self, submission_id: str, *, round_no: Optional[int] = None) -> list[Review]:
        q = self.client.table("reviews").select("*").eq("submission_id", submission_id)
        if round_no is not None:
            q = q.eq("round_no", round_no)
        rows = _rows(q.order("invited_at").execute())
        return [Review.from_row(r) for r in rows]

    def list_pending_reviews_for_reviewer(self, reviewer_id: str) -> list[Review]:
        resp = (
            self.client.table("reviews")
            .select("*")
            .eq("reviewer_id", reviewer_id)
            .is_("submitted_at", "null")
            .is_("declined_at", "null")
            .execute()
        )
        return [Review.from_row(r) for r in _rows(resp)]

    def insert_review(self, review: Review) -> Review:
        rows = _rows(self.client.table("reviews").insert(review.to_row()).execute())
        return Review.from_row(rows[0]) if rows else review

    def mark_review_submitted(self, review_id: str, changes: dict[str, Any]) -> Optional[Review]:
        """条件更新：只提交仍未提交且未拒绝的分配；竞争失败返回 None。"""
        resp = (
            self.client.table("reviews")
            .update(changes)
            .eq("id", review_id)
            .is_("submitted_at", "null")
            .is_("declined_at", "null")
            .execute()
        )
        rows = _rows(resp)
        return Review.from_row(rows[0]) if rows else None

    def mark_review_declined(self, review_id: str, declined_at: str) -> Optional[Review]:
        resp = (
            self.client.table("reviews")
            .update({"declined_at": declined_at})
            .eq("id", review_id)
            .is_("declined_at", "null")
            .execute()
        )
        rows = _rows(resp)
        return Review.from_row(rows[0]) if rows else None

    def update_review(self, review_id: str, changes: dict[str, Any]) -> None:
        self.client.table("reviews").update(changes).eq("id", review_id).execute()

    def restore_review(self, previous: Review) -> None:
        """补偿：把提交/拒绝相关字段恢复为操作前的快照。"""
        row = previous.to_row()
        (
            self.client.table("reviews")
            .update({key: row[key] for key in REVIEW_OUTCOME_FIELDS})
            .eq("id", previous.id)
            .execute()
        )

    def delete_review(self, review_id: str) -> None:
        self.client.table("reviews").delete().eq("id", review_id).execute()

    # ------------------------------------------------------------------ deadlines

    def get_deadline(self, deadline_id: str) -> Deadline:
        resp = self.client.table("deadlines").select("*").eq("id", deadline_id).limit(1).execute()
        rows = _rows(resp)
        if not rows:
            raise NotFound("Deadline", deadline_id)
        return Deadline.from_row(rows[0])

    def list_deadlines(
        self,
        *,
        submission_id: Optional[str] = None,
        assigned_to: Optional[str] = None,
        type: Optional[DeadlineType] = None,
        open_only: bool = False,
    ) -> list[Deadline]:
        q = self.client.table("deadlines").select("*")
        if submission_id:
            q = q.eq("submission_id", submission_id)
        if assigned_to:
            q = q.eq("assigned_to", assigned_to)
        if type is not None:
            q = q.eq("type", DeadlineType(type).value)
        if open_only:
            q = q.is_("completed_at", "null")
        rows = _rows(q.order("due_date").execute())
        return [Deadline.from_row(r) for r in rows]

    def insert_deadline(self, deadline: Deadline) -> Deadline:
        rows = _rows(self.client.table("deadlines").insert(deadline.to_row()).execute())
        return Deadline.from_row(rows[0]) if rows else deadline

    def complete_deadline(self, deadline_id: str, completed_at: str) -> Optional[Deadline]:
        """只完成仍处于 open 的 deadline；已完成返回 None。"""
        resp = (
            self.client.table("deadlines")
            .update({"completed_at": completed_at, "is_overdue": False})
            .eq("id", deadline_id)
            .is_("completed_at", "null")
            .execute()
        )
        rows = _rows(resp)
        return Deadline.from_row(rows[0]) if rows else None

    def undo_deadline_completion(self, deadline: Deadline) -> None:
        """补偿：撤销同一事务内刚写入的 completed_at（仅用于回滚失败的流转）。"""
        (
            self.client.table("deadlines")
            .update({"completed_at": None, "is_overdue": deadline.is_overdue})
            .eq("id", deadline.id)
            .execute()
        )

    def update_deadline(self, deadline_id: str, changes: dict[str, Any]) -> None:
        self.client.table("deadlines").update(changes).eq("id", deadline_id).execute()

    def delete_deadline(self, deadline_id: str) -> None:
        self.client.table("deadlines").delete().eq("id", deadline_id).execute()

    def delete_deadlines_for(self, submission_id: str) -> None:
        self.client.table("deadlines").delete().eq("submission_id", submission_id).execute()

    # ------------------------------------------------------------------ decisions

    def list_decisions(self, submission_id: str, *, round_no: Optional[int] = None) -> list[Decision]:
        q = self.client.table("decisions").select("*").eq("submission_id", submission_id)
        if round_no is not None:
            q = q.eq("round_no", round_no)
        rows = _rows(q.order("decided_at").execute())
        return [Decision.from_row(r) for r in rows]

    def insert_decision(self, decision: Decision) -> Decision:
        rows = _rows(self.client.table("decisions").insert(decision.to_row()).execute())
        return Decision.from_row(rows[0]) if rows else decision

    def delete_decision(self, decision_id: str) -> None:
        self.client.table("decisions").delete().eq("id", decision_id).execute()

    # ------------------------------------------------------------------- articles

    def count_articles(self, submission_id: str) -> int:
        resp = self.client.table("articles").select("id").eq("submission_id", submission_id).execute()
        return len(_rows(resp))

    # ---------------------------------------------------------------------- audit

    def insert_audit_log(self, row: dict[str, Any]) -> None:
        self.client.table("audit_logs").insert(row).execute()

    def list_audit_logs(self, object_ref: str) -> list[dict[str, Any]]:
        resp = (
            self.client.table("audit_logs")
            .select("*")
            .eq("object", object_ref)
            .order("created_at")
            .execute()
        )
        return _rows(resp)
