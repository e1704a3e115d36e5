"""
菜单服务 — 菜单 CRUD、菜单树、用户可见菜单与权限标识
"""
import logging
from typing import List, Optional, Set

from sqlalchemy.orm import Session

from rbac_core.errors import ErrorKind, PermissionSyncError, not_found
from rbac_core.locks import resource_locks
from rbac_core.security.policy_store import IPolicyStore
from rbac_core.sync_report import SyncReport
from rbac_sync.config import settings
from rbac_sync.database import transaction
from rbac_sync.system.models import (
    MenuType, SysMenu, SysMenuApi, SysPermission, SysRole, SysRoleMenu,
)
from rbac_sync.system.services.menu_tree import ROOT_PARENT_ID, MenuTreeNode, build_tree
from rbac_sync.system.services.permission_service import PermissionService
from rbac_sync.system.services.policy_rules import (
    derive_rules, holds_enabled_role, policy_call, reconcile_roles, role_ids_holding_menus,
    user_subject,
)

logger = logging.getLogger(__name__)


class MenuService:
    """菜单管理服务"""

    def __init__(self, db: Session, policy_store: IPolicyStore,
                 super_admin_role_code: Optional[str] = None):
        self.db = db
        self.policy_store = policy_store
        self.super_admin_role_code = super_admin_role_code or settings.SUPER_ADMIN_ROLE_CODE

    # ===== 查询 =====

    def get_menus(self, include_disabled: bool = True) -> List[SysMenu]:
        q = self.db.query(SysMenu)
        if not include_disabled:
            q = q.filter(SysMenu.enabled == True)
        return q.order_by(SysMenu.order_num, SysMenu.id).all()

    def get_menu_by_id(self, menu_id: int) -> Optional[SysMenu]:
        return self.db.query(SysMenu).filter(SysMenu.id == menu_id).first()

    def require_menu(self, menu_id: int, for_update: bool = False) -> SysMenu:
        q = self.db.query(SysMenu).filter(SysMenu.id == menu_id)
        if for_update:
            q = q.with_for_update()
        menu = q.first()
        if not menu:
            raise not_found("菜单", menu_id)
        return menu

    def get_menu_tree(self, include_disabled: bool = True) -> List[MenuTreeNode]:
        """管理端完整菜单树"""
        return build_tree(self.get_menus(include_disabled=include_disabled))

    # ===== 校验 =====

    @staticmethod
    def _validate_type(menu_type: str) -> str:
        try:
            return MenuType(menu_type).value
        except ValueError:
            raise ValueError(f"未知的菜单类型 '{menu_type}'") from None

    def _validate_parent(self, menu_id: Optional[int], parent_id: int) -> None:
        """parent_id 为 0，或指向已存在、非自身、且不会形成环的菜单"""
        if not parent_id:
            return
        if menu_id is not None and parent_id == menu_id:
            raise PermissionSyncError(
                ErrorKind.INVALID_MENU_PARENT, "菜单的父菜单不能是自身", menu_id=menu_id
            )
        parent = self.get_menu_by_id(parent_id)
        if not parent:
            raise PermissionSyncError(
                ErrorKind.INVALID_MENU_PARENT, f"父菜单 ID {parent_id} 不存在", parent_id=parent_id
            )
        if menu_id is None:
            return
        # 沿父链向上，遇到自身即成环
        seen: Set[int] = set()
        current = parent
        while current is not None and current.parent_id and current.id not in seen:
            seen.add(current.id)
            if current.parent_id == menu_id:
                raise PermissionSyncError(
                    ErrorKind.INVALID_MENU_PARENT,
                    f"把菜单 {menu_id} 挂到 {parent_id} 下会形成环",
                    menu_id=menu_id, parent_id=parent_id,
                )
            current = self.get_menu_by_id(current.parent_id)

    # ===== 写操作 =====

    def create_menu(self, name: str, parent_id: int = ROOT_PARENT_ID, path: str = "",
                    component: str = "", icon: str = "", order_num: int = 0,
                    menu_type: str = MenuType.MENU.value, enabled: bool = True,
                    perms: str = "") -> SysMenu:
        self._validate_type(menu_type)
        with transaction(self.db, "create_menu"):
            self._validate_parent(None, parent_id)
            menu = SysMenu(
                name=name, parent_id=parent_id or ROOT_PARENT_ID, path=path, component=component,
                icon=icon, order_num=order_num, menu_type=menu_type, enabled=enabled, perms=perms,
            )
            self.db.add(menu)
        self.db.refresh(menu)
        return menu

    def update_menu(self, menu_id: int, **kwargs) -> SysMenu:
        if "menu_type" in kwargs:
            self._validate_type(kwargs["menu_type"])
        with resource_locks.hold(("menu", menu_id)):
            with transaction(self.db, "update_menu"):
                menu = self.require_menu(menu_id, for_update=True)
                if "parent_id" in kwargs:
                    kwargs["parent_id"] = kwargs["parent_id"] or ROOT_PARENT_ID
                    self._validate_parent(menu_id, kwargs["parent_id"])
                for key, value in kwargs.items():
                    if hasattr(menu, key):
                        setattr(menu, key, value)
        self.db.refresh(menu)
        return menu

    def delete_menu(self, menu_id: int) -> SyncReport:
        """删除菜单：有子菜单时拒绝；级联删除 API 关联、角色关联、权限，并撤销因此失效的策略规则"""
        report = SyncReport()
        with resource_locks.hold(("menu", menu_id)):
            with transaction(self.db, "delete_menu"):
                menu = self.require_menu(menu_id, for_update=True)
                child = self.db.query(SysMenu.id).filter(SysMenu.parent_id == menu_id).first()
                if child:
                    raise PermissionSyncError(
                        ErrorKind.MENU_HAS_CHILDREN, f"菜单 '{menu.name}' 存在子菜单，不能删除",
                        menu_id=menu_id,
                    )
                role_ids = role_ids_holding_menus(self.db, [menu_id])
                before = derive_rules(self.db, role_ids)

                self.db.query(SysMenuApi).filter(SysMenuApi.menu_id == menu_id).delete()
                self.db.query(SysRoleMenu).filter(SysRoleMenu.menu_id == menu_id).delete()
                PermissionService(self.db).release_api_permissions(menu_id)
                self.db.query(SysPermission).filter(
                    (SysPermission.menu_id == menu_id) | (SysPermission.button_id == menu_id)
                ).delete()
                self.db.delete(menu)

            reconcile_roles(self.db, self.policy_store, role_ids, before, report)
        logger.info(f"菜单 {menu_id} 已删除, 撤销 {len(report.removed_rules)} 条策略")
        return report

    # ===== 用户视角 =====

    def _user_role_codes(self, user_id: int) -> List[str]:
        return policy_call(
            "get_roles_for_user", self.policy_store.get_roles_for_user, user_subject(user_id)
        )

    def _user_menu_ids(self, user_id: int) -> Optional[Set[int]]:
        """用户经启用角色可见的菜单 ID；None 表示超级管理员（全部菜单）"""
        codes = self._user_role_codes(user_id)
        if not codes:
            return set()
        if holds_enabled_role(self.db, codes, self.super_admin_role_code):
            return None
        rows = (
            self.db.query(SysRoleMenu.menu_id)
            .join(SysRole, SysRole.id == SysRoleMenu.role_id)
            .filter(SysRole.code.in_(codes), SysRole.enabled == True)
            .distinct()
            .all()
        )
        return {r[0] for r in rows}

    def get_user_menus(self, user_id: int, exclude_buttons: bool = False) -> List[SysMenu]:
        menu_ids = self._user_menu_ids(user_id)
        if menu_ids is not None and not menu_ids:
            return []
        q = self.db.query(SysMenu).filter(SysMenu.enabled == True)
        if menu_ids is not None:
            q = q.filter(SysMenu.id.in_(menu_ids))
        if exclude_buttons:
            q = q.filter(SysMenu.menu_type != MenuType.BUTTON.value)
        return q.order_by(SysMenu.order_num, SysMenu.id).all()

    def build_user_tree(self, user_id: int, exclude_buttons: bool = False) -> List[MenuTreeNode]:
        """用户可见菜单树；没有角色的用户得到空森林"""
        return build_tree(self.get_user_menus(user_id, exclude_buttons=exclude_buttons))

    def get_menu_perms_by_user_id(self, user_id: int) -> List[str]:
        """用户可见菜单上的权限标识，排序去重（仅供前端显示控制）"""
        perms = {m.perms for m in self.get_user_menus(user_id) if m.perms}
        return sorted(perms)

    def get_menu_permissions(self, menu_id: int) -> List[SysPermission]:
        """菜单自身、其按钮、以及来源于该菜单的 API 权限"""
        self.require_menu(menu_id)
        return self.db.query(SysPermission).filter(
            (SysPermission.menu_id == menu_id)
            | (SysPermission.button_id == menu_id)
            | (SysPermission.source_menu_id == menu_id)
        ).order_by(SysPermission.id).all()
