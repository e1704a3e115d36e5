"""
rbac_core/sync_report.py

批量同步结果 - 关系库部分已提交，策略引擎部分逐条记录成功/失败
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set, Tuple

from rbac_core.security.policy_store import PolicyRule


@dataclass
class SyncReport:
    """
    Attributes:
        added_rules: 新写入策略引擎的规则
        unchanged_rules: 已存在、无需写入的规则数
        removed_rules: 被删除的规则
        failed_rules: 写入/删除失败的规则及原因
        skipped: 被跳过的实体 ID（按实体类型分组）
    """

    added_rules: List[PolicyRule] = field(default_factory=list)
    unchanged_rules: int = 0
    removed_rules: List[PolicyRule] = field(default_factory=list)
    failed_rules: List[Tuple[PolicyRule, str]] = field(default_factory=list)
    skipped: Dict[str, List[Any]] = field(default_factory=dict)

    @property
    def partial(self) -> bool:
        """关系库已生效但策略引擎有规则未同步；可通过全量同步修复"""
        return bool(self.failed_rules)

    def skip(self, entity: str, entity_id: Any) -> None:
        self.skipped.setdefault(entity, []).append(entity_id)

    def merge(self, other: "SyncReport") -> None:
        self.added_rules.extend(other.added_rules)
        self.unchanged_rules += other.unchanged_rules
        self.removed_rules.extend(other.removed_rules)
        self.failed_rules.extend(other.failed_rules)
        for entity, ids in other.skipped.items():
            self.skipped.setdefault(entity, []).extend(ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "partial": self.partial,
            "added": [list(r) for r in self.added_rules],
            "unchanged": self.unchanged_rules,
            "removed": [list(r) for r in self.removed_rules],
            "failed": [{"rule": list(r), "error": err} for r, err in self.failed_rules],
            "skipped": self.skipped,
        }


@dataclass
class PolicyDiff:
    """关系库推导出的规则集合与策略引擎实际规则集合的差异"""

    missing: Set[PolicyRule] = field(default_factory=set)
    extra: Set[PolicyRule] = field(default_factory=set)

    @property
    def consistent(self) -> bool:
        return not self.missing and not self.extra

    def to_dict(self) -> Dict[str, Any]:
        return {
            "consistent": self.consistent,
            "missing": sorted(list(r) for r in self.missing),
            "extra": sorted(list(r) for r in self.extra),
        }


__all__ = ["SyncReport", "PolicyDiff"]
