"""
认证与授权模块

身份来自 Bearer JWT 的 sub（用户 ID）；授权以策略引擎 enforce(user, path, method) 为准。
"""
import logging
from datetime import datetime, timedelta, UTC
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from rbac_core.security.policy_store import IPolicyStore, PolicyStoreError
from rbac_sync.config import settings
from rbac_sync.database import get_db
from rbac_sync.system.services.policy_rules import holds_enabled_role, user_subject

logger = logging.getLogger(__name__)

security = HTTPBearer()


def create_access_token(user_id: int, expires_minutes: Optional[int] = None) -> str:
    """创建 JWT token（签发由外部登录服务负责，这里供测试与运维脚本使用）"""
    minutes = expires_minutes if expires_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    expire = datetime.now(UTC) + timedelta(minutes=minutes)
    to_encode = {"sub": str(user_id), "exp": expire}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    """解码 JWT token"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="无效的认证凭证"
        )


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> int:
    """获取当前登录用户 ID"""
    payload = decode_token(credentials.credentials)
    sub = payload.get("sub")
    try:
        return int(sub)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="无效的认证凭证"
        )


def get_policy_store(request: Request) -> IPolicyStore:
    """依赖注入：应用启动时构建的策略存储"""
    store = getattr(request.app.state, "policy_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="策略引擎未初始化"
        )
    return store


def _request_object(request: Request) -> str:
    """策略对象取路由模板（如 /system/roles/{role_id}），没有匹配路由时取实际路径"""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


async def require_api_permission(
    request: Request,
    user_id: int = Depends(get_current_user_id),
    policy_store: IPolicyStore = Depends(get_policy_store),
    db: Session = Depends(get_db),
) -> int:
    """按当前请求的 path + method 做 enforce 检查；持有超级管理员角色的用户直接放行"""
    subject = user_subject(user_id)
    obj = _request_object(request)
    act = request.method.upper()
    try:
        role_codes = policy_store.get_roles_for_user(subject)
        if holds_enabled_role(db, role_codes, settings.SUPER_ADMIN_ROLE_CODE):
            return user_id
        allowed = policy_store.enforce(subject, obj, act)
    except PolicyStoreError as e:
        logger.error(f"鉴权失败 {subject} {act} {obj}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="策略引擎不可用"
        )
    if not allowed:
        logger.info(f"拒绝访问: user={subject} {act} {obj}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="权限不足"
        )
    return user_id
