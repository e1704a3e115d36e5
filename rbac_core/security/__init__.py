"""
rbac_core/security - 安全模块

- policy_store: 策略存储接口（Casbin 风格）
"""
from rbac_core.security.policy_store import (
    IPolicyStore,
    PolicyRule,
    PolicyStoreError,
)

__all__ = [
    "IPolicyStore",
    "PolicyRule",
    "PolicyStoreError",
]
