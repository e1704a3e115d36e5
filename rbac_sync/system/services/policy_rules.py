"""
策略规则推导与下发

关系库是推导的来源：role --RoleMenu--> menu --MenuAPI--> api  ⇒  (role.code, api.path, api.method)
下发到策略引擎时逐条执行，单条失败只记录到 SyncReport，不中断批次。
"""
import logging
from typing import Any, Callable, Iterable, Optional, Set

from sqlalchemy.orm import Session

from rbac_core.context import OperationContext, background
from rbac_core.errors import ErrorKind, PermissionSyncError
from rbac_core.security.policy_store import IPolicyStore, PolicyRule, PolicyStoreError
from rbac_core.sync_report import SyncReport
from rbac_sync.system.models import SysApi, SysMenuApi, SysRole, SysRoleMenu

logger = logging.getLogger(__name__)


def user_subject(user_id: int) -> str:
    """用户在策略引擎中的 subject"""
    return str(user_id)


def holds_enabled_role(db: Session, role_codes: Iterable[str], code: Optional[str]) -> bool:
    """role_codes 中包含 code，且 code 对应的角色存在并已启用"""
    if not code or code not in set(role_codes):
        return False
    return db.query(SysRole.id).filter(SysRole.code == code, SysRole.enabled == True).first() is not None


def derive_rules(db: Session, role_ids: Optional[Iterable[int]] = None) -> Set[PolicyRule]:
    """从关系库推导规则；role_ids 为 None 表示全部角色"""
    query = (
        db.query(SysRole.code, SysApi.path, SysApi.method)
        .join(SysRoleMenu, SysRoleMenu.role_id == SysRole.id)
        .join(SysMenuApi, SysMenuApi.menu_id == SysRoleMenu.menu_id)
        .join(SysApi, SysApi.id == SysMenuApi.api_id)
    )
    if role_ids is not None:
        role_ids = list(role_ids)
        if not role_ids:
            return set()
        query = query.filter(SysRole.id.in_(role_ids))
    return {PolicyRule(code, path, method) for code, path, method in query.all()}


def role_ids_holding_menus(db: Session, menu_ids: Iterable[int]) -> Set[int]:
    menu_ids = list(menu_ids)
    if not menu_ids:
        return set()
    rows = db.query(SysRoleMenu.role_id).filter(SysRoleMenu.menu_id.in_(menu_ids)).distinct().all()
    return {r[0] for r in rows}


def apply_rules(policy_store: IPolicyStore, rules: Iterable[PolicyRule], report: SyncReport,
                ctx: Optional[OperationContext] = None) -> SyncReport:
    """逐条 add_policy（幂等），失败记录后继续"""
    ctx = ctx or background()
    for rule in sorted(rules):
        ctx.check()
        try:
            added = policy_store.add_policy(*rule)
        except PolicyStoreError as e:
            logger.error(f"添加策略失败 {rule}: {e}")
            report.failed_rules.append((rule, str(e)))
            continue
        if added:
            report.added_rules.append(rule)
        else:
            report.unchanged_rules += 1
    return report


def revoke_rules(policy_store: IPolicyStore, rules: Iterable[PolicyRule], report: SyncReport,
                 ctx: Optional[OperationContext] = None) -> SyncReport:
    """逐条 remove_policy（幂等），失败记录后继续"""
    ctx = ctx or background()
    for rule in sorted(rules):
        ctx.check()
        try:
            removed = policy_store.remove_policy(*rule)
        except PolicyStoreError as e:
            logger.error(f"删除策略失败 {rule}: {e}")
            report.failed_rules.append((rule, str(e)))
            continue
        if removed:
            report.removed_rules.append(rule)
    return report


def reconcile_roles(db: Session, policy_store: IPolicyStore, role_ids: Iterable[int],
                    before: Set[PolicyRule], report: SyncReport) -> SyncReport:
    """关系库变更提交后，对受影响角色收敛规则：撤销不再被推导出的旧规则，补齐新规则"""
    after = derive_rules(db, role_ids)
    revoke_rules(policy_store, before - after, report)
    apply_rules(policy_store, after - before, report)
    return report


def policy_call(operation: str, fn: Callable[..., Any], *args: Any) -> Any:
    """调用必须成功的策略引擎操作，失败时转换为 POLICY_STORE_FAILURE"""
    try:
        return fn(*args)
    except PolicyStoreError as e:
        raise PermissionSyncError(
            ErrorKind.POLICY_STORE_FAILURE, f"策略引擎操作失败: {operation}", operation=operation
        ) from e
