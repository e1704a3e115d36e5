"""
rbac_core - 权限同步框架层

包含与存储无关的核心组件：
- errors: 错误分类 (ErrorKind / PermissionSyncError)
- security: 策略存储接口 (IPolicyStore)
- locks: 按键加锁 (KeyedLock)
- context: 操作上下文 (截止时间 / 取消)
- sync_report: 批量同步结果

使用方式:
    >>> from rbac_core import ErrorKind, PermissionSyncError, OperationContext
    >>> ctx = OperationContext.with_timeout(5)
    >>> ctx.check()
"""
from rbac_core.errors import ErrorKind, PermissionSyncError, not_found
from rbac_core.context import OperationContext, background
from rbac_core.locks import KeyedLock, resource_locks
from rbac_core.security import IPolicyStore, PolicyRule, PolicyStoreError
from rbac_core.sync_report import PolicyDiff, SyncReport

__all__ = [
    "ErrorKind",
    "PermissionSyncError",
    "not_found",
    "OperationContext",
    "background",
    "KeyedLock",
    "resource_locks",
    "IPolicyStore",
    "PolicyRule",
    "PolicyStoreError",
    "PolicyDiff",
    "SyncReport",
]
