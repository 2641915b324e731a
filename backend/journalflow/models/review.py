from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class Recommendation(str, Enum):
    ACCEPT = "ACCEPT"
    MINOR = "MINOR"
    MAJOR = "MAJOR"
    REJECT = "REJECT"


# 中文注释：机密意见存放在 form 中；任何面向作者的视图都必须无条件移除（与盲审模式无关）。
CONFIDENTIAL_FORM_KEY = "confidential_comments"


class Review(BaseModel):
    """
    单个审稿人对单轮稿件的评审记录。

    中文注释:
    - submitted_at 为空 = 待提交；只允许写入一次，之后不可修改。
    - declined_at 为空 = 有效分配。
    - 历史轮次的记录永不删除。
    """

    id: str
    submission_id: str
    reviewer_id: str
    reviewer_name: Optional[str] = None
    round_no: int = 1
    invited_at: datetime
    deadline: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    score: Optional[int] = None
    recommendation: Optional[Recommendation] = None
    form: dict[str, Any] = Field(default_factory=dict)
    assigned_by: Optional[str] = None

    @property
    def is_submitted(self) -> bool:
        return self.submitted_at is not None

    @property
    def is_active(self) -> bool:
        return self.declined_at is None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Review":
        return cls.model_validate(row)

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ReviewForm(BaseModel):
    """审稿表单（全部必填，机密意见可选）。"""

    score: int = Field(..., ge=0, le=100)
    recommendation: Recommendation
    novelty: str = Field(..., min_length=1)
    methodology: str = Field(..., min_length=1)
    results: str = Field(..., min_length=1)
    presentation: str = Field(..., min_length=1)
    references: str = Field(..., min_length=1)
    strengths: str = Field(..., min_length=1)
    weaknesses: str = Field(..., min_length=1)
    comments: str = Field(..., min_length=1)
    confidential_comments: Optional[str] = None

    def form_payload(self) -> dict[str, Any]:
        data = self.model_dump(exclude={"score", "recommendation"})
        data[CONFIDENTIAL_FORM_KEY] = self.confidential_comments or ""
        return data


class AssignReviewerRequest(BaseModel):
    reviewer_id: str = Field(..., min_length=1)
    reviewer_name: Optional[str] = None
    round_no: Optional[int] = Field(default=None, ge=1)


class ReviewView(BaseModel):
    id: str
    submission_id: str
    round_no: int
    reviewer_id: Optional[str] = None
    reviewer_name: Optional[str] = None
    submitted_at: Optional[datetime] = None
    score: Optional[int] = None
    recommendation: Optional[Recommendation] = None
    form: dict[str, Any] = Field(default_factory=dict)
    redacted_fields: list[str] = Field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", exclude={"redacted_fields"})
        for key in self.redacted_fields:
            data.pop(key, None)
        return data
