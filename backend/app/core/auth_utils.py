import logging
import os
from typing import Any

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

logger = logging.getLogger("journalflow.auth")

# === Auth 核心配置 ===
# 中文注释:
# 1. 密钥来源于 Supabase Project Settings 中的 JWT Secret。
# 2. 我们使用 HTTPBearer 作为验证头。
ALGORITHM = "HS256"

security = HTTPBearer()


def _jwt_secret() -> str:
    return os.environ.get("SUPABASE_JWT_SECRET", "mock-secret-replace-later")


def _extract_roles(payload: dict[str, Any]) -> list[str]:
    """
    角色声明优先读 app_metadata.roles（Supabase 推荐位置），其次读顶层 roles。
    """
    app_metadata = payload.get("app_metadata")
    if isinstance(app_metadata, dict):
        roles = app_metadata.get("roles")
        if isinstance(roles, list):
            return [str(r) for r in roles]
        role = app_metadata.get("role")
        if isinstance(role, str) and role:
            return [role]
    roles = payload.get("roles")
    if isinstance(roles, list):
        return [str(r) for r in roles]
    return []


def decode_token(token: str) -> dict:
    """
    解码并验证 Supabase JWT Token，返回 {id, email, roles}
    """
    try:
        payload = jwt.decode(token, _jwt_secret(), algorithms=[ALGORITHM], audience="authenticated")
    except JWTError as e:
        logger.info("JWT 验证失败: %s", e)
        raise HTTPException(status_code=401, detail="Token 验证失败或已过期")

    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(status_code=401, detail="无效的身份载荷")
    return {
        "id": str(user_id),
        "email": payload.get("email"),
        "roles": _extract_roles(payload),
    }


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    return decode_token(credentials.credentials)
