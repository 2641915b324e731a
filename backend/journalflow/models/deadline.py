from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


class DeadlineType(str, Enum):
    EDITOR_ASSIGNMENT = "EDITOR_ASSIGNMENT"
    REVIEW = "REVIEW"
    REVISION = "REVISION"
    COPYEDIT = "COPYEDIT"
    PRODUCTION = "PRODUCTION"
    PUBLICATION = "PUBLICATION"


class DeadlineState(str, Enum):
    OVERDUE = "overdue"
    URGENT = "urgent"
    UPCOMING = "upcoming"
    COMPLETED = "completed"


class Deadline(BaseModel):
    """
    与稿件、负责人绑定的业务期限（SLA）。

    中文注释:
    - is_overdue 只是定时扫描写入的缓存；读取时总是用 classify() 重新计算。
    - completed_at 一旦写入即为终态，不允许重新打开。
    """

    id: str
    submission_id: str
    type: DeadlineType
    due_date: datetime
    completed_at: Optional[datetime] = None
    is_overdue: bool = False
    assigned_to: Optional[str] = None
    round_no: int = 1
    note: Optional[str] = None
    reminders_sent: int = 0
    created_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _completed_never_overdue(self) -> "Deadline":
        # 已完成的期限不能显示为逾期，即使扫描任务尚未运行
        if self.completed_at is not None and self.is_overdue:
            self.is_overdue = False
        return self

    @property
    def is_open(self) -> bool:
        return self.completed_at is None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Deadline":
        return cls.model_validate(row)

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class DeadlineScope(BaseModel):
    """getDeadlineSummary 的过滤条件（均可选）。"""

    submission_id: Optional[str] = None
    assigned_to: Optional[str] = None
    type: Optional[DeadlineType] = None


class DeadlineSummary(BaseModel):
    total: int = 0
    overdue: int = 0
    urgent: int = 0
    upcoming: int = 0
    completed: int = 0


class ClassifiedDeadline(BaseModel):
    deadline: Deadline
    state: DeadlineState
    days_left: int = Field(..., description="距离到期的整天数（逾期为负数）")
