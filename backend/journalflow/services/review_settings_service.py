from __future__ import annotations

import logging
from typing import Any, Optional

from journalflow.core.clock import Clock, utc_now
from journalflow.core.errors import PermissionDenied
from journalflow.core.permissions import Action, Resource, can_access
from journalflow.lib.api_client import supabase_admin
from journalflow.models.actor import Actor
from journalflow.models.review_settings import ReviewSettings, ReviewSettingsUpdate
from journalflow.services.audit_service import AuditSink, SupabaseAuditSink
from journalflow.services.repository import WorkflowRepository

logger = logging.getLogger("journalflow.review_settings")

SETTINGS_TABLE = "site_settings"
SETTINGS_CATEGORY = "review"
SETTINGS_REF = "settings:review"

# 模型字段 -> 存储 key（沿用后台配置页的 camelCase key）
_KEYS: dict[str, str] = {
    "blind_review_mode": "blindReviewMode",
    "hide_author_from_reviewer": "hideAuthorFromReviewer",
    "hide_reviewer_from_author": "hideReviewerFromAuthor",
    "minimum_reviewers": "minimumReviewers",
    "review_deadline_days": "reviewDeadlineDays",
    "auto_assign_reviewers": "autoAssignReviewers",
    "allow_reviewer_communication": "allowReviewerCommunication",
    "version": "reviewSettingsVersion",
}

_DESCRIPTIONS: dict[str, str] = {
    "blindReviewMode": "Blind review mode (NONE / SINGLE_BLIND / DOUBLE_BLIND)",
    "hideAuthorFromReviewer": "Derived from blind review mode",
    "hideReviewerFromAuthor": "Derived from blind review mode",
    "minimumReviewers": "Submitted reviews required before a decision",
    "reviewDeadlineDays": "Days a reviewer has to submit a review",
    "autoAssignReviewers": "Automatically invite suggested reviewers",
    "allowReviewerCommunication": "Allow reviewers to message the editorial office",
    "reviewSettingsVersion": "Review settings version",
}


def _parse_value(field_name: str, raw: Any) -> Any:
    # 存储值统一为字符串；布尔/整数在这里还原
    if raw is None:
        return None
    text = str(raw).strip()
    if field_name in {"minimum_reviewers", "review_deadline_days", "version"}:
        try:
            return int(text)
        except ValueError:
            return None
    if field_name in {"auto_assign_reviewers", "allow_reviewer_communication"}:
        return text.lower() in {"1", "true", "yes", "on"}
    if field_name == "blind_review_mode":
        return text.upper() or None
    return text


class ReviewSettingsService:
    """
    审稿配置的读取 / 保存（site_settings 键值表，category='review'）。

    中文注释:
    - 读取时缺失或非法的 key 回落默认值，不抛异常（与后台配置页的容错一致）。
    - 保存时两个布尔开关不接受外部输入，只由 blind_review_mode 推导后写回。
    """

    def __init__(
        self,
        client: Any | None = None,
        *,
        audit_sink: Optional[AuditSink] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.client = client if client is not None else supabase_admin
        self.audit_sink = audit_sink or SupabaseAuditSink(WorkflowRepository(self.client))
        self.now = clock

    def load(self) -> ReviewSettings:
        resp = (
            self.client.table(SETTINGS_TABLE)
            .select("key,value")
            .eq("category", SETTINGS_CATEGORY)
            .execute()
        )
        by_key = {r.get("key"): r.get("value") for r in (getattr(resp, "data", None) or [])}
        data: dict[str, Any] = {}
        for field_name, key in _KEYS.items():
            value = _parse_value(field_name, by_key.get(key))
            if value is not None:
                data[field_name] = value
        try:
            return ReviewSettings.model_validate(data)
        except Exception as e:
            logger.warning("invalid review settings in storage, using defaults: %s", e)
            return ReviewSettings()

    def save(self, actor: Actor, update: ReviewSettingsUpdate) -> ReviewSettings:
        if not can_access(actor.role, Resource.SYSTEM_SETTINGS, Action.UPDATE):
            raise PermissionDenied(actor.role.value, Resource.SYSTEM_SETTINGS.value, Action.UPDATE.value)

        current = self.load()
        updated = current.updated(**update.model_dump(exclude_none=True))
        rows = []
        for field_name, key in _KEYS.items():
            value = getattr(updated, field_name)
            if isinstance(value, bool):
                text = "true" if value else "false"
            else:
                text = str(getattr(value, "value", value))
            rows.append(
                {
                    "key": key,
                    "value": text,
                    "category": SETTINGS_CATEGORY,
                    "description": _DESCRIPTIONS.get(key, ""),
                    "updated_by": actor.actor_id,
                }
            )
        self.client.table(SETTINGS_TABLE).upsert(rows, on_conflict="key").execute()
        self.audit_sink.persist_audit_record(
            actor.actor_id,
            "review_settings.updated",
            SETTINGS_REF,
            current.model_dump(mode="json"),
            updated.model_dump(mode="json"),
            created_at=self.now(),
        )
        logger.info(
            "review settings v%s saved by %s (mode=%s)",
            updated.version,
            actor.actor_id,
            updated.blind_review_mode.value,
        )
        return updated
