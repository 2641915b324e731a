from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from journalflow.core.permissions import Role


@dataclass(frozen=True)
class Actor:
    """
    当前操作人（由 getSession 解析得到）。

    中文注释：服务层只依赖 (actor_id, role)，不关心鉴权方式。
    """

    actor_id: str
    role: Role
    email: Optional[str] = None
    name: Optional[str] = None
