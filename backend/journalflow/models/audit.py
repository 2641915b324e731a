from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class AuditEvent:
    """
    状态机返回的审计事件（与新状态一起返回，由可替换的 sink 负责持久化）。
    """

    actor_id: Optional[str]
    action: str
    object: str
    before: dict[str, Any]
    after: dict[str, Any]
    created_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)

    def to_row(self) -> dict[str, Any]:
        return {
            "actor_id": self.actor_id,
            "action": self.action,
            "object": self.object,
            "before": self.before,
            "after": self.after,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class NotificationEvent:
    user_id: str
    type: str
    title: str
    content: str
    submission_id: Optional[str] = None
