import logging
import os

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

logger = logging.getLogger("journalflow.auth")

# === Auth 核心配置 ===
# 中文注释:
# 1. 会话签发由外部认证服务负责，这里只校验 HS256 JWT 并取出 sub/email。
# 2. 密钥来自 SUPABASE_JWT_SECRET；audience 固定为 authenticated。
SUPABASE_JWT_SECRET = os.environ.get("SUPABASE_JWT_SECRET", "mock-secret-replace-later")
ALGORITHM = "HS256"

security = HTTPBearer()


def decode_token(token: str) -> dict:
    """
    解码并验证 JWT，返回 {"id", "email"}。
    """
    try:
        payload = jwt.decode(token, SUPABASE_JWT_SECRET, algorithms=[ALGORITHM], audience="authenticated")
    except JWTError as e:
        logger.info("JWT 验证失败: %s", e)
        raise HTTPException(status_code=401, detail="Token 验证失败或已过期")
    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(status_code=401, detail="无效的身份载荷")
    return {"id": str(user_id), "email": payload.get("email")}


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    return decode_token(credentials.credentials)
