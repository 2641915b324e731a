from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from postgrest.exceptions import APIError

from journalflow.core.monitoring import report_side_effect_failure
from journalflow.lib.api_client import supabase_admin
from journalflow.models.audit import NotificationEvent

logger = logging.getLogger("journalflow.notifications")


class NotificationService:
    """
    通知服务：封装 notifications 表的写入（sendNotification）。

    中文注释:
    1) 写入使用 supabase_admin（service_role），避免 RLS 导致写入失败。
    2) 通知是“尽力而为”的副作用：任何失败只记录日志 + 计数，绝不向上抛出。
    """

    def __init__(self, client: Any | None = None) -> None:
        self.client = client if client is not None else supabase_admin
        self.failures = 0

    @staticmethod
    def _default_action_url(type: str, submission_id: Optional[str]) -> str:
        if type in {"review_invite", "deadline_reminder"}:
            return "/dashboard?tab=reviewer"
        if submission_id:
            return f"/dashboard/submissions/{submission_id}"
        return "/dashboard/notifications"

    def send(self, event: NotificationEvent) -> Optional[Dict[str, Any]]:
        return self.create_notification(
            user_id=event.user_id,
            submission_id=event.submission_id,
            type=event.type,
            title=event.title,
            content=event.content,
        )

    def create_notification(
        self,
        *,
        user_id: str,
        submission_id: Optional[str],
        type: str,
        title: str,
        content: str,
        action_url: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        payload = {
            "user_id": user_id,
            "submission_id": submission_id,
            "action_url": action_url or self._default_action_url(type, submission_id),
            "type": type,
            "title": title,
            "content": content,
            "is_read": False,
        }
        try:
            res = self.client.table("notifications").insert(payload).execute()
            rows = getattr(res, "data", None) or []
            return rows[0] if rows else None
        except APIError as e:
            # 中文注释:
            # - notifications.user_id 外键指向 auth.users；演示账号可能不存在对应用户（23503）。
            # - 该情况对主流程无影响，只记 debug 日志，不计入失败。
            text = str(e).lower()
            code = str(getattr(e, "code", "") or "").lower()
            if ("23503" in code or "23503" in text) and "foreign key" in text:
                logger.debug("notification skipped for unknown user %s", user_id)
                return None
            self.failures += 1
            report_side_effect_failure("notification", e, user_id=user_id, type=type)
            return None
        except Exception as e:
            self.failures += 1
            report_side_effect_failure("notification", e, user_id=user_id, type=type)
            return None
