from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from journalflow.core.permissions import Action, Resource


class SubmissionStatus(str, Enum):
    """
    稿件生命周期状态枚举。

    中文注释:
    - 数据库存储的是固定字符串（NEW/UNDER_REVIEW/...），历史数据依赖这些 token，不可改名。
    - 服务层只使用枚举；仅在持久化边界序列化为字符串。
    """

    NEW = "NEW"
    DESK_REJECT = "DESK_REJECT"
    UNDER_REVIEW = "UNDER_REVIEW"
    REVISION = "REVISION"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    IN_PRODUCTION = "IN_PRODUCTION"
    PUBLISHED = "PUBLISHED"

    @classmethod
    def allowed_next(cls, current: "SubmissionStatus | str") -> set["SubmissionStatus"]:
        """
        状态机规则必须显性可见：

        - NEW -> UNDER_REVIEW / DESK_REJECT
        - UNDER_REVIEW -> REVISION / ACCEPTED / REJECTED
        - REVISION -> UNDER_REVIEW / REJECTED
        - ACCEPTED -> IN_PRODUCTION
        - IN_PRODUCTION -> PUBLISHED
        - DESK_REJECT / REJECTED / PUBLISHED 为终态
        """
        c = normalize_status(current)
        if c == cls.NEW:
            return {cls.UNDER_REVIEW, cls.DESK_REJECT}
        if c == cls.UNDER_REVIEW:
            return {cls.REVISION, cls.ACCEPTED, cls.REJECTED}
        if c == cls.REVISION:
            return {cls.UNDER_REVIEW, cls.REJECTED}
        if c == cls.ACCEPTED:
            return {cls.IN_PRODUCTION}
        if c == cls.IN_PRODUCTION:
            return {cls.PUBLISHED}
        return set()

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {SubmissionStatus.DESK_REJECT, SubmissionStatus.REJECTED, SubmissionStatus.PUBLISHED}
)


def normalize_status(value: Any) -> Optional[SubmissionStatus]:
    if isinstance(value, SubmissionStatus):
        return value
    if value is None:
        return None
    v = str(value).strip().upper()
    if not v:
        return None
    try:
        return SubmissionStatus(v)
    except ValueError:
        return None


class WorkflowAction(str, Enum):
    SEND_TO_REVIEW = "send_to_review"
    DESK_REJECT = "desk_reject"
    REQUEST_REVISION = "request_revision"
    ACCEPT = "accept"
    REJECT = "reject"
    START_PRODUCTION = "start_production"
    PUBLISH = "publish"
    SUBMIT_REVISION = "submit_revision"


@dataclass(frozen=True)
class ActionRule:
    target: SubmissionStatus
    sources: frozenset[SubmissionStatus]
    resource: Resource
    action: Action
    # 只能由决策聚合（recordDecision）驱动的流转
    decision_only_from: frozenset[SubmissionStatus] = frozenset()
    editor_only: bool = False
    owner_only: bool = False


S = SubmissionStatus

ACTION_RULES: dict[WorkflowAction, ActionRule] = {
    WorkflowAction.SEND_TO_REVIEW: ActionRule(
        target=S.UNDER_REVIEW,
        sources=frozenset({S.NEW, S.REVISION}),
        resource=Resource.SUBMISSION,
        action=Action.UPDATE,
    ),
    WorkflowAction.DESK_REJECT: ActionRule(
        target=S.DESK_REJECT,
        sources=frozenset({S.NEW}),
        resource=Resource.SUBMISSION,
        action=Action.UPDATE,
        editor_only=True,
    ),
    WorkflowAction.REQUEST_REVISION: ActionRule(
        target=S.REVISION,
        sources=frozenset({S.UNDER_REVIEW}),
        resource=Resource.SUBMISSION,
        action=Action.APPROVE,
        decision_only_from=frozenset({S.UNDER_REVIEW}),
    ),
    WorkflowAction.ACCEPT: ActionRule(
        target=S.ACCEPTED,
        sources=frozenset({S.UNDER_REVIEW}),
        resource=Resource.SUBMISSION,
        action=Action.APPROVE,
        decision_only_from=frozenset({S.UNDER_REVIEW}),
    ),
    WorkflowAction.REJECT: ActionRule(
        target=S.REJECTED,
        sources=frozenset({S.UNDER_REVIEW, S.REVISION}),
        resource=Resource.SUBMISSION,
        action=Action.REJECT,
        decision_only_from=frozenset({S.UNDER_REVIEW}),
    ),
    WorkflowAction.START_PRODUCTION: ActionRule(
        target=S.IN_PRODUCTION,
        sources=frozenset({S.ACCEPTED}),
        resource=Resource.PRODUCTION,
        action=Action.CREATE,
    ),
    WorkflowAction.PUBLISH: ActionRule(
        target=S.PUBLISHED,
        sources=frozenset({S.IN_PRODUCTION}),
        resource=Resource.SUBMISSION,
        action=Action.PUBLISH,
    ),
    WorkflowAction.SUBMIT_REVISION: ActionRule(
        target=S.UNDER_REVIEW,
        sources=frozenset({S.REVISION}),
        resource=Resource.SUBMISSION_OWN,
        action=Action.UPDATE,
        owner_only=True,
    ),
}


def parse_action(value: Any) -> Optional[WorkflowAction]:
    if isinstance(value, WorkflowAction):
        return value
    raw = str(value or "").strip().lower()
    try:
        return WorkflowAction(raw)
    except ValueError:
        return None


class Submission(BaseModel):
    id: str
    code: str
    title: str
    abstract: str
    abstract_en: Optional[str] = None
    keywords: list[str] = Field(default_factory=list)
    category_id: Optional[str] = None
    author_id: str
    author_name: Optional[str] = None
    author_email: Optional[str] = None
    author_organization: Optional[str] = None
    status: SubmissionStatus = SubmissionStatus.NEW
    current_round: int = 1
    is_overdue: bool = False
    days_in_current_status: int = 0
    last_status_change_at: datetime
    created_at: datetime
    version: int = 1

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> SubmissionStatus:
        status = normalize_status(value)
        if status is None:
            raise ValueError(f"unknown submission status: {value!r}")
        return status

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Submission":
        return cls.model_validate(row)

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class SubmissionCreate(BaseModel):
    """作者投稿请求。"""

    title: str = Field(..., min_length=5, max_length=500)
    abstract: str = Field(..., min_length=20)
    abstract_en: Optional[str] = None
    keywords: list[str] = Field(default_factory=list)
    category_id: Optional[str] = None
    author_name: Optional[str] = None
    author_email: Optional[str] = None
    author_organization: Optional[str] = None

    @field_validator("keywords")
    @classmethod
    def _clean_keywords(cls, value: list[str]) -> list[str]:
        out: list[str] = []
        for raw in value or []:
            kw = str(raw or "").strip()
            if kw and kw not in out:
                out.append(kw)
        return out


AUTHOR_IDENTITY_FIELDS = ("author_id", "author_name", "author_email", "author_organization")


class SubmissionView(BaseModel):
    """
    按查看者角色投影后的稿件视图。

    中文注释：被隐藏的字段记录在 redacted_fields 中，as_dict() 输出时直接移除这些 key。
    """

    id: str
    code: str
    title: str
    abstract: str
    abstract_en: Optional[str] = None
    keywords: list[str] = Field(default_factory=list)
    category_id: Optional[str] = None
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    author_email: Optional[str] = None
    author_organization: Optional[str] = None
    status: SubmissionStatus
    current_round: int
    is_overdue: bool
    days_in_current_status: int
    last_status_change_at: datetime
    created_at: datetime
    redacted_fields: list[str] = Field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", exclude={"redacted_fields"})
        for key in self.redacted_fields:
            data.pop(key, None)
        return data
