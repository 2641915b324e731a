from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from journalflow.models.submission import SubmissionStatus, WorkflowAction


class DecisionValue(str, Enum):
    ACCEPT = "ACCEPT"
    MINOR = "MINOR"
    MAJOR = "MAJOR"
    REJECT = "REJECT"
    DESK_REJECT = "DESK_REJECT"


# 决策 -> (下一状态, 驱动状态机的动作)
DECISION_OUTCOMES: dict[DecisionValue, tuple[SubmissionStatus, WorkflowAction]] = {
    DecisionValue.ACCEPT: (SubmissionStatus.ACCEPTED, WorkflowAction.ACCEPT),
    DecisionValue.REJECT: (SubmissionStatus.REJECTED, WorkflowAction.REJECT),
    DecisionValue.MINOR: (SubmissionStatus.REVISION, WorkflowAction.REQUEST_REVISION),
    DecisionValue.MAJOR: (SubmissionStatus.REVISION, WorkflowAction.REQUEST_REVISION),
    DecisionValue.DESK_REJECT: (SubmissionStatus.DESK_REJECT, WorkflowAction.DESK_REJECT),
}


class Decision(BaseModel):
    """
    编辑决策（只追加，不修改）。

    中文注释：同一稿件同一轮只有第一条决策有效；最新决策（decided_at）决定权威的下一状态。
    """

    id: str
    submission_id: str
    round_no: int
    editor_id: str
    decision: DecisionValue
    note: Optional[str] = None
    decided_at: datetime

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Decision":
        return cls.model_validate(row)

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class DecisionRequest(BaseModel):
    decision: DecisionValue
    note: Optional[str] = Field(default=None, max_length=5000)


class DecisionEligibility(BaseModel):
    """canDecide 的明细（便于前端解释“为什么还不能决策”）。"""

    submission_id: str
    status: SubmissionStatus
    round_no: int
    can_decide: bool
    required: int
    submitted: int
    pending: int
    active: int
    suggestion: Optional[SubmissionStatus] = None
    latest_decision: Optional[Decision] = None
