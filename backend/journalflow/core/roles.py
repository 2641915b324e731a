import logging
import os
from typing import Optional, Set

from fastapi import Depends

from journalflow.core.auth_utils import get_current_user
from journalflow.core.permissions import Role, parse_role
from journalflow.lib.api_client import supabase_admin
from journalflow.models.actor import Actor

logger = logging.getLogger("journalflow.auth")


def _parse_admin_emails() -> Set[str]:
    raw = os.environ.get("ADMIN_EMAILS", "")
    return {e.strip().lower() for e in raw.split(",") if e.strip()}


def _is_admin_email(email: Optional[str]) -> bool:
    if not email:
        return False
    return email.strip().lower() in _parse_admin_emails()


def _load_profile(user_id: str) -> dict:
    resp = supabase_admin.table("user_profiles").select("id,role,full_name").eq("id", user_id).limit(1).execute()
    rows = getattr(resp, "data", None) or []
    return rows[0] if rows else {}


async def get_session(current_user: dict = Depends(get_current_user)) -> Actor:
    """
    getSession：把已验证的用户解析为 (actor_id, role)。

    中文注释:
    1) 角色来自 user_profiles.role；缺失或非法时按 AUTHOR（默认投稿人身份）处理。
    2) ADMIN_EMAILS 中的邮箱直接提升为 SYSADMIN，便于本地/演示环境。
    3) profile 查询失败时降级为 AUTHOR，不阻断只读接口；越权操作仍会被权限矩阵拒绝。
    """
    user_id = current_user["id"]
    email = current_user.get("email")

    if _is_admin_email(email):
        return Actor(actor_id=user_id, role=Role.SYSADMIN, email=email)

    try:
        profile = _load_profile(user_id)
    except Exception as e:
        logger.warning("Failed to fetch user profile %s: %s", user_id, e)
        profile = {}

    role = parse_role(profile.get("role")) or Role.AUTHOR
    return Actor(actor_id=user_id, role=role, email=email, name=profile.get("full_name"))
