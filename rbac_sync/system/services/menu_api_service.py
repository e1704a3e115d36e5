"""
菜单/API/角色关联同步服务

写入顺序：关系库（单事务提交）→ 策略引擎（逐条、幂等）。
策略引擎写入失败不回滚关系库，记录在 SyncReport 中，由 sync_menu_api_permissions 修复。
"""
import logging
from typing import Iterable, List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from rbac_core.context import OperationContext, background
from rbac_core.errors import not_found
from rbac_core.locks import resource_locks
from rbac_core.security.policy_store import IPolicyStore, PolicyRule
from rbac_core.sync_report import PolicyDiff, SyncReport
from rbac_sync.database import transaction
from rbac_sync.system.models import (
    PermissionType, SysApi, SysMenu, SysMenuApi, SysPermission, SysRole, SysRoleMenu,
)
from rbac_sync.system.services.permission_service import PermissionService
from rbac_sync.system.services.policy_rules import (
    apply_rules, derive_rules, policy_call, revoke_rules, user_subject,
)

logger = logging.getLogger(__name__)


class MenuApiService:
    """菜单-API 分配、角色-菜单分配与策略全量同步"""

    def __init__(self, db: Session, policy_store: IPolicyStore):
        self.db = db
        self.policy_store = policy_store
        self.permissions = PermissionService(db)

    # ===== 查询 =====

    def get_menu_apis(self, menu_id: int) -> List[SysApi]:
        self._require(SysMenu, menu_id, "菜单")
        return (
            self.db.query(SysApi)
            .join(SysMenuApi, SysMenuApi.api_id == SysApi.id)
            .filter(SysMenuApi.menu_id == menu_id)
            .order_by(SysApi.id)
            .all()
        )

    def get_api_roles(self, api_id: int) -> List[SysRole]:
        """持有任一关联了该 API 的菜单的角色"""
        self._require(SysApi, api_id, "API")
        return (
            self.db.query(SysRole)
            .join(SysRoleMenu, SysRoleMenu.role_id == SysRole.id)
            .join(SysMenuApi, SysMenuApi.menu_id == SysRoleMenu.menu_id)
            .filter(SysMenuApi.api_id == api_id)
            .distinct()
            .order_by(SysRole.id)
            .all()
        )

    def _permissions_of_roles(self, role_ids: List[int]) -> List[SysPermission]:
        if not role_ids:
            return []
        menu_ids = select(SysRoleMenu.menu_id).where(SysRoleMenu.role_id.in_(role_ids))
        api_ids = select(SysMenuApi.api_id).where(SysMenuApi.menu_id.in_(menu_ids))
        return (
            self.db.query(SysPermission)
            .filter(or_(
                and_(SysPermission.perm_type == PermissionType.MENU.value, SysPermission.menu_id.in_(menu_ids)),
                and_(SysPermission.perm_type == PermissionType.BUTTON.value, SysPermission.button_id.in_(menu_ids)),
                and_(SysPermission.perm_type == PermissionType.API.value, SysPermission.api_id.in_(api_ids)),
            ))
            .order_by(SysPermission.id)
            .all()
        )

    def get_role_permissions(self, role_id: int) -> List[SysPermission]:
        """角色经 RoleMenu 持有的权限：菜单/按钮权限，以及菜单关联 API 的权限（只读）"""
        self._require(SysRole, role_id, "角色")
        return self._permissions_of_roles([role_id])

    def get_user_permissions(self, user_id: int) -> List[SysPermission]:
        """用户经策略引擎分组、启用角色持有的权限（只读）"""
        codes = policy_call("get_roles_for_user", self.policy_store.get_roles_for_user, user_subject(user_id))
        if not codes:
            return []
        role_ids = [
            r[0] for r in self.db.query(SysRole.id)
            .filter(SysRole.code.in_(codes), SysRole.enabled == True)
            .all()
        ]
        return self._permissions_of_roles(role_ids)

    def _require(self, model, entity_id: int, label: str, for_update: bool = False):
        q = self.db.query(model).filter(model.id == entity_id)
        if for_update:
            q = q.with_for_update()
        obj = q.first()
        if obj is None:
            raise not_found(label, entity_id)
        return obj

    # ===== 菜单-API 分配 =====

    def assign_apis_to_menu(self, menu_id: int, api_ids: Iterable[int],
                            ctx: Optional[OperationContext] = None) -> SyncReport:
        """整体替换菜单的 API 关联，并为已持有该菜单的角色补齐策略规则

        不撤销旧关联留下的规则，由 sync_menu_api_permissions(prune=True) 清理。
        """
        ctx = ctx or background()
        report = SyncReport()
        with resource_locks.hold(("menu", menu_id)):
            with transaction(self.db, "assign_apis_to_menu"):
                menu = self._require(SysMenu, menu_id, "菜单", for_update=True)
                self.db.query(SysMenuApi).filter(SysMenuApi.menu_id == menu_id).delete()
                self.permissions.release_api_permissions(menu_id)

                linked: List[SysApi] = []
                for api_id in dict.fromkeys(api_ids):
                    ctx.check()
                    api = self.db.query(SysApi).filter(SysApi.id == api_id).first()
                    if api is None:
                        logger.warning(f"菜单 {menu_id} 分配 API 时跳过不存在的 API ID {api_id}")
                        report.skip("api", api_id)
                        continue
                    self.db.add(SysMenuApi(menu_id=menu_id, api_id=api_id))
                    if self.permissions.upsert_api_permission(menu, api) is None:
                        report.skip("permission", api.permission_code)
                    linked.append(api)

                role_codes = [
                    r[0] for r in self.db.query(SysRole.code)
                    .join(SysRoleMenu, SysRoleMenu.role_id == SysRole.id)
                    .filter(SysRoleMenu.menu_id == menu_id)
                    .all()
                ]
                rules = {PolicyRule(code, api.path, api.method) for code in role_codes for api in linked}

            apply_rules(self.policy_store, rules, report, ctx)
        logger.info(
            f"菜单 {menu_id} 关联 {len(linked)} 个 API, 角色 {len(role_codes)} 个, "
            f"新增策略 {len(report.added_rules)}, 失败 {len(report.failed_rules)}"
        )
        return report

    # ===== 角色-菜单分配 =====

    def assign_menus_to_role(self, role_id: int, menu_ids: Iterable[int],
                             ctx: Optional[OperationContext] = None) -> SyncReport:
        """整体替换角色的菜单，并为新菜单集合下的 API 写入策略规则

        被移除菜单对应的规则不会在这里撤销。
        """
        ctx = ctx or background()
        report = SyncReport()
        with resource_locks.hold(("role", role_id)):
            with transaction(self.db, "assign_menus_to_role"):
                role = self._require(SysRole, role_id, "角色", for_update=True)
                self.db.query(SysRoleMenu).filter(SysRoleMenu.role_id == role_id).delete()
                assigned = []
                for menu_id in dict.fromkeys(menu_ids):
                    ctx.check()
                    if not self.db.query(SysMenu.id).filter(SysMenu.id == menu_id).first():
                        logger.warning(f"角色 {role.code} 分配菜单时跳过不存在的菜单 ID {menu_id}")
                        report.skip("menu", menu_id)
                        continue
                    self.db.add(SysRoleMenu(role_id=role_id, menu_id=menu_id))
                    assigned.append(menu_id)
                self.db.flush()
                rules = derive_rules(self.db, [role_id])
                role_code = role.code

            apply_rules(self.policy_store, rules, report, ctx)
        logger.info(
            f"角色 {role_code} 分配 {len(assigned)} 个菜单, "
            f"新增策略 {len(report.added_rules)}, 失败 {len(report.failed_rules)}"
        )
        return report

    # ===== 全量同步 =====

    def _managed_role_codes(self) -> set:
        return {r[0] for r in self.db.query(SysRole.code).all()}

    def sync_menu_api_permissions(self, prune: bool = False,
                                  ctx: Optional[OperationContext] = None) -> SyncReport:
        """按关系库重建 API 权限并重新下发全部推导规则（幂等）

        同一 API 被多个菜单关联时，权限的来源菜单取 ID 最小者。
        prune=True 时额外删除受管角色名下、不再被任何 RoleMenu/MenuAPI 推导出的规则；
        分组规则和非受管 subject 的规则不受影响。
        """
        ctx = ctx or background()
        report = SyncReport()
        with transaction(self.db, "sync_menu_api_permissions"):
            codes = set()
            conflicts = set()
            for menu in self.db.query(SysMenu).order_by(SysMenu.id).all():
                ctx.check()
                apis = (
                    self.db.query(SysApi)
                    .join(SysMenuApi, SysMenuApi.api_id == SysApi.id)
                    .filter(SysMenuApi.menu_id == menu.id)
                    .order_by(SysApi.id)
                    .all()
                )
                for api in apis:
                    code = api.permission_code
                    if code in codes or code in conflicts:
                        continue
                    if self.permissions.upsert_api_permission(menu, api) is None:
                        conflicts.add(code)
                        report.skip("permission", code)
                        continue
                    codes.add(code)

            stale = self.db.query(SysPermission).filter(
                SysPermission.perm_type == PermissionType.API.value,
                SysPermission.code.notin_(codes),
            ).all()
            for perm in stale:
                self.db.delete(perm)
            rules = derive_rules(self.db)
            managed = self._managed_role_codes()

        apply_rules(self.policy_store, rules, report, ctx)
        if prune:
            current = policy_call("get_policy", self.policy_store.get_policy)
            extra = {r for r in current if r.subject in managed and r not in rules}
            revoke_rules(self.policy_store, extra, report, ctx)
        logger.info(
            f"全量同步完成: API 权限 {len(codes)} 条, 删除过期权限 {len(stale)} 条, "
            f"规则 {len(rules)} 条 (新增 {len(report.added_rules)}, 删除 {len(report.removed_rules)}, "
            f"失败 {len(report.failed_rules)})"
        )
        return report

    def diff_policies(self) -> PolicyDiff:
        """只读：对比关系库推导规则与策略引擎中受管角色的规则"""
        derived = derive_rules(self.db)
        managed = self._managed_role_codes()
        actual = {
            r for r in policy_call("get_policy", self.policy_store.get_policy)
            if r.subject in managed
        }
        return PolicyDiff(missing=derived - actual, extra=actual - derived)
