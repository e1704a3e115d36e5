"""
Casbin 策略存储 — IPolicyStore 的 Casbin 实现

规则持久化在业务库的 casbin_rule 表中（casbin_sqlalchemy_adapter）。
所有 enforcer 调用经由同一把可重入锁串行化，第三方异常统一转换为 PolicyStoreError。
"""
import logging
import threading
from typing import Any, Callable, List, Optional

import casbin
import casbin_sqlalchemy_adapter
from casbin.model import Model

from rbac_core.security.policy_store import IPolicyStore, PolicyRule, PolicyStoreError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = """
[request_definition]
r = sub, obj, act

[policy_definition]
p = sub, obj, act

[role_definition]
g = _, _

[policy_effect]
e = some(where (p.eft == allow))

[matchers]
m = g(r.sub, p.sub) && r.obj == p.obj && r.act == p.act
"""


def load_model(model_path: Optional[str] = None) -> Model:
    """加载 Casbin 模型，未指定路径时使用内置 RBAC 模型"""
    model = Model()
    if model_path:
        model.load_model(model_path)
    else:
        model.load_model_from_text(DEFAULT_MODEL)
    return model


def build_enforcer(engine=None, model_path: Optional[str] = None,
                   auto_save: bool = True) -> casbin.Enforcer:
    """创建 enforcer；engine 为空时规则只保存在内存中"""
    adapter = casbin_sqlalchemy_adapter.Adapter(engine) if engine is not None else None
    enforcer = casbin.Enforcer(load_model(model_path), adapter)
    if adapter is not None:
        enforcer.enable_auto_save(auto_save)
    return enforcer


class CasbinPolicyStore(IPolicyStore):
    """基于 casbin.Enforcer 的策略存储"""

    def __init__(self, enforcer: casbin.Enforcer):
        self._enforcer = enforcer
        self._lock = threading.RLock()

    @property
    def enforcer(self) -> casbin.Enforcer:
        return self._enforcer

    def _call(self, operation: str, fn: Callable[..., Any], *args: Any) -> Any:
        with self._lock:
            try:
                return fn(*args)
            except Exception as e:
                logger.error(f"Casbin {operation}{args} failed: {e}")
                raise PolicyStoreError(f"策略引擎调用失败: {operation}: {e}", operation=operation) from e

    # ===== 鉴权 =====

    def enforce(self, subject: str, obj: str, action: str) -> bool:
        result = bool(self._call("enforce", self._enforcer.enforce, subject, obj, action))
        logger.debug(f"enforce({subject}, {obj}, {action}) -> {result}")
        return result

    # ===== p 规则 =====

    def add_policy(self, subject: str, obj: str, action: str) -> bool:
        return bool(self._call("add_policy", self._enforcer.add_policy, subject, obj, action))

    def remove_policy(self, subject: str, obj: str, action: str) -> bool:
        return bool(self._call("remove_policy", self._enforcer.remove_policy, subject, obj, action))

    def remove_filtered_policy(self, field_index: int, *field_values: str) -> bool:
        return bool(self._call(
            "remove_filtered_policy", self._enforcer.remove_filtered_policy, field_index, *field_values
        ))

    def get_filtered_policy(self, field_index: int, *field_values: str) -> List[PolicyRule]:
        rows = self._call(
            "get_filtered_policy", self._enforcer.get_filtered_policy, field_index, *field_values
        )
        return [PolicyRule(*row[:3]) for row in rows]

    def get_policy(self) -> List[PolicyRule]:
        rows = self._call("get_policy", self._enforcer.get_policy)
        return [PolicyRule(*row[:3]) for row in rows]

    # ===== g 分组 =====

    def add_grouping_policy(self, user: str, role: str) -> bool:
        return bool(self._call("add_grouping_policy", self._enforcer.add_grouping_policy, user, role))

    def remove_grouping_policy(self, user: str, role: str) -> bool:
        return bool(self._call("remove_grouping_policy", self._enforcer.remove_grouping_policy, user, role))

    def remove_filtered_grouping_policy(self, field_index: int, *field_values: str) -> bool:
        return bool(self._call(
            "remove_filtered_grouping_policy",
            self._enforcer.remove_filtered_grouping_policy, field_index, *field_values,
        ))

    def get_filtered_grouping_policy(self, field_index: int, *field_values: str) -> List[List[str]]:
        rows = self._call(
            "get_filtered_grouping_policy",
            self._enforcer.get_filtered_grouping_policy, field_index, *field_values,
        )
        return [list(row) for row in rows]

    def get_roles_for_user(self, user: str) -> List[str]:
        return list(self._call("get_roles_for_user", self._enforcer.get_roles_for_user, user))

    def get_users_for_role(self, role: str) -> List[str]:
        return list(self._call("get_users_for_role", self._enforcer.get_users_for_role, role))

    def reload(self) -> None:
        """从持久化适配器重新加载全部规则"""
        self._call("load_policy", self._enforcer.load_policy)
