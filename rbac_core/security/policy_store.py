"""
rbac_core/security/policy_store.py — 策略存储接口

定义 IPolicyStore 抽象接口（Casbin 风格的 subject/object/action 规则 + 用户→角色分组），
app 层实现此接口并通过构造函数注入到各服务中，测试可替换为内存实现。
"""
from abc import ABC, abstractmethod
from typing import List, NamedTuple


class PolicyRule(NamedTuple):
    """一条授权规则 (subject, object, action)"""

    subject: str
    obj: str
    action: str

    def __str__(self) -> str:
        return f"({self.subject}, {self.obj}, {self.action})"


class PolicyStoreError(Exception):
    """策略引擎调用失败"""

    def __init__(self, message: str, operation: str = ""):
        self.operation = operation
        super().__init__(message)


class IPolicyStore(ABC):
    """策略存储接口

    所有写操作都是幂等的：重复添加已存在的规则、删除不存在的规则均返回 False 而不是报错。
    实现必须是线程安全的。失败时抛出 PolicyStoreError。
    """

    @abstractmethod
    def enforce(self, subject: str, obj: str, action: str) -> bool:
        """检查 subject 是否可以对 obj 执行 action"""

    @abstractmethod
    def add_policy(self, subject: str, obj: str, action: str) -> bool:
        """添加规则，返回是否新增"""

    @abstractmethod
    def remove_policy(self, subject: str, obj: str, action: str) -> bool:
        """删除规则，返回是否删除"""

    @abstractmethod
    def remove_filtered_policy(self, field_index: int, *field_values: str) -> bool:
        """按字段过滤删除规则"""

    @abstractmethod
    def get_filtered_policy(self, field_index: int, *field_values: str) -> List[PolicyRule]:
        """按字段过滤查询规则"""

    @abstractmethod
    def get_policy(self) -> List[PolicyRule]:
        """查询全部规则"""

    @abstractmethod
    def add_grouping_policy(self, user: str, role: str) -> bool:
        """添加用户→角色分组"""

    @abstractmethod
    def remove_grouping_policy(self, user: str, role: str) -> bool:
        """删除用户→角色分组"""

    @abstractmethod
    def remove_filtered_grouping_policy(self, field_index: int, *field_values: str) -> bool:
        """按字段过滤删除分组"""

    @abstractmethod
    def get_filtered_grouping_policy(self, field_index: int, *field_values: str) -> List[List[str]]:
        """按字段过滤查询分组"""

    @abstractmethod
    def get_roles_for_user(self, user: str) -> List[str]:
        """获取用户直接拥有的角色编码"""

    @abstractmethod
    def get_users_for_role(self, role: str) -> List[str]:
        """获取直接拥有该角色的用户"""


__all__ = ["IPolicyStore", "PolicyRule", "PolicyStoreError"]
