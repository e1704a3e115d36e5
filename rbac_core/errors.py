"""
rbac_core/errors.py

权限同步错误分类 - 区分"请求被直接拒绝"与"已部分生效，可安全重试"两类错误
"""
from enum import Enum
from typing import Any, Dict


class ErrorKind(str, Enum):
    """错误类型"""

    NOT_FOUND = "NOT_FOUND"
    INVALID_PERMISSION_SHAPE = "INVALID_PERMISSION_SHAPE"
    DUPLICATE_CODE = "DUPLICATE_CODE"
    DUPLICATE_API = "DUPLICATE_API"
    ROLE_IN_USE = "ROLE_IN_USE"
    INVALID_MENU_PARENT = "INVALID_MENU_PARENT"
    MENU_HAS_CHILDREN = "MENU_HAS_CHILDREN"
    POLICY_STORE_FAILURE = "POLICY_STORE_FAILURE"
    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"
    CANCELLED = "CANCELLED"

    @property
    def retry_safe(self) -> bool:
        """操作可能已部分生效，重试（或执行全量同步）是安全的"""
        return self in _RETRY_SAFE

    @property
    def rejected(self) -> bool:
        """请求被直接拒绝，没有任何状态变更"""
        return not self.retry_safe


_RETRY_SAFE = frozenset({
    ErrorKind.POLICY_STORE_FAILURE,
    ErrorKind.PERSISTENCE_FAILURE,
    ErrorKind.CANCELLED,
})


class PermissionSyncError(Exception):
    """权限同步异常

    Attributes:
        kind: 错误类型
        message: 错误描述
        details: 附加上下文（如 role_id、menu_id）
    """

    def __init__(self, kind: ErrorKind, message: str, **details: Any):
        self.kind = kind
        self.message = message
        self.details: Dict[str, Any] = details
        super().__init__(message)

    def __repr__(self) -> str:
        return f"PermissionSyncError({self.kind.value}, {self.message!r})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "retry_safe": self.kind.retry_safe,
            "details": self.details,
        }


def not_found(entity: str, entity_id: Any) -> PermissionSyncError:
    """构造 NOT_FOUND 异常"""
    return PermissionSyncError(
        ErrorKind.NOT_FOUND,
        f"{entity} ID {entity_id} 不存在",
        entity=entity,
        entity_id=entity_id,
    )


__all__ = ["ErrorKind", "PermissionSyncError", "not_found"]
