from fastapi import APIRouter, Depends, HTTPException

from journalflow.core.permissions import get_role_permissions, parse_role
from journalflow.core.roles import get_session
from journalflow.models.actor import Actor

router = APIRouter(prefix="/permissions", tags=["Permissions"])


@router.get("/roles/{role}")
async def role_permissions(role: str, _actor: Actor = Depends(get_session)):
    """
    返回角色的全部 (resource, action)，供前端按能力渲染按钮
    """
    parsed = parse_role(role)
    if parsed is None:
        raise HTTPException(status_code=404, detail="Unknown role")
    pairs = sorted(get_role_permissions(parsed), key=lambda p: (p[0].value, p[1].value))
    return {
        "success": True,
        "data": {
            "role": parsed.value,
            "permissions": [{"resource": r.value, "action": a.value} for r, a in pairs],
        },
    }
