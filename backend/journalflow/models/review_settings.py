from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class BlindReviewMode(str, Enum):
    NONE = "NONE"
    SINGLE_BLIND = "SINGLE_BLIND"
    DOUBLE_BLIND = "DOUBLE_BLIND"


# 模式 -> (hide_author_from_reviewer, hide_reviewer_from_author)
BLIND_FLAGS: dict[BlindReviewMode, tuple[bool, bool]] = {
    BlindReviewMode.NONE: (False, False),
    BlindReviewMode.SINGLE_BLIND: (False, True),
    BlindReviewMode.DOUBLE_BLIND: (True, True),
}


def derive_blind_flags(mode: BlindReviewMode | str) -> tuple[bool, bool]:
    return BLIND_FLAGS[BlindReviewMode(mode)]


class ReviewSettings(BaseModel):
    """
    全局审稿配置（带版本号，显式传入各策略函数）。

    中文注释:
    - 两个布尔可见性开关只能由 blind_review_mode 推导：无论传入什么旧值，构造时一律覆盖。
    - 这是业务不变量而非 UI 约束：任何绕过 derive_blind_flags() 设置布尔值的路径都视为 bug。
    - 模型冻结；修改配置请用 with_mode()/updated()，二者都会递增 version。
    """

    model_config = ConfigDict(frozen=True)

    blind_review_mode: BlindReviewMode = BlindReviewMode.DOUBLE_BLIND
    hide_author_from_reviewer: bool = True
    hide_reviewer_from_author: bool = True
    minimum_reviewers: int = Field(default=2, ge=1)
    review_deadline_days: int = Field(default=14, ge=1)
    auto_assign_reviewers: bool = False
    allow_reviewer_communication: bool = False
    version: int = Field(default=1, ge=1)

    @model_validator(mode="before")
    @classmethod
    def _derive_flags(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        values = dict(data)
        mode = values.get("blind_review_mode") or BlindReviewMode.DOUBLE_BLIND
        hide_author, hide_reviewer = derive_blind_flags(mode)
        values["hide_author_from_reviewer"] = hide_author
        values["hide_reviewer_from_author"] = hide_reviewer
        return values

    def with_mode(self, mode: BlindReviewMode | str) -> "ReviewSettings":
        return self.updated(blind_review_mode=BlindReviewMode(mode))

    def updated(self, **changes: Any) -> "ReviewSettings":
        changes.pop("hide_author_from_reviewer", None)
        changes.pop("hide_reviewer_from_author", None)
        data = self.model_dump()
        data.update(changes)
        data["version"] = self.version + 1
        return ReviewSettings.model_validate(data)


class ReviewSettingsUpdate(BaseModel):
    """后台保存请求：不接受两个布尔开关，避免绕过模式推导。"""

    model_config = ConfigDict(extra="forbid")

    blind_review_mode: BlindReviewMode | None = None
    minimum_reviewers: int | None = Field(default=None, ge=1)
    review_deadline_days: int | None = Field(default=None, ge=1)
    auto_assign_reviewers: bool | None = None
    allow_reviewer_communication: bool | None = None
