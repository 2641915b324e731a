from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional, Protocol

from journalflow.core.monitoring import report_side_effect_failure
from journalflow.models.audit import AuditEvent
from journalflow.services.repository import WorkflowRepository

logger = logging.getLogger("journalflow.audit")


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> bool: ...

    def persist_audit_record(
        self,
        actor_id: Optional[str],
        action: str,
        object: str,
        before: dict[str, Any],
        after: dict[str, Any],
        *,
        created_at: datetime,
        payload: Optional[dict[str, Any]] = None,
    ) -> bool: ...


class SupabaseAuditSink:
    """
    审计事件持久化（audit_logs 表）。

    中文注释:
    - 状态机只“返回”事件，这里负责落库；写入失败不回滚主流程。
    - failures 为本实例的失败计数，全局计数见 core.monitoring。
    """

    def __init__(self, repo: Optional[WorkflowRepository] = None) -> None:
        self.repo = repo or WorkflowRepository()
        self.failures = 0

    def record(self, event: AuditEvent) -> bool:
        try:
            self.repo.insert_audit_log(event.to_row())
            return True
        except Exception as e:
            self.failures += 1
            report_side_effect_failure("audit", e, action=event.action, object=event.object)
            return False

    def persist_audit_record(
        self,
        actor_id: Optional[str],
        action: str,
        object: str,
        before: dict[str, Any],
        after: dict[str, Any],
        *,
        created_at: datetime,
        payload: Optional[dict[str, Any]] = None,
    ) -> bool:
        """审计落库的通用入口（非状态机的写操作，例如配置变更）；同样尽力而为。"""
        return self.record(
            AuditEvent(
                actor_id=actor_id,
                action=action,
                object=object,
                before=before,
                after=after,
                created_at=created_at,
                payload=dict(payload or {}),
            )
        )

    def list_for(self, object_ref: str) -> list[dict[str, Any]]:
        return self.repo.list_audit_logs(object_ref)
