"""
RBAC Service — 角色管理 + 用户角色分配

用户→角色分组以策略引擎为准，sys_user_role 只是镜像（列表/界面用），可由 rebuild_user_roles_from_policy 重建。
"""
import logging
from typing import List, Optional, Set

from sqlalchemy.orm import Session

from rbac_core.errors import ErrorKind, PermissionSyncError, not_found
from rbac_core.locks import resource_locks
from rbac_core.security.policy_store import IPolicyStore, PolicyStoreError
from rbac_sync.database import transaction
from rbac_sync.system.models import SysRole, SysRoleMenu, SysUserRole
from rbac_sync.system.services.policy_rules import policy_call, user_subject

logger = logging.getLogger(__name__)


class RoleService:
    """角色管理服务"""

    def __init__(self, db: Session, policy_store: IPolicyStore):
        self.db = db
        self.policy_store = policy_store

    # ===== 查询 =====

    def get_roles(self, include_disabled: bool = False) -> List[SysRole]:
        q = self.db.query(SysRole)
        if not include_disabled:
            q = q.filter(SysRole.enabled == True)
        return q.order_by(SysRole.sort, SysRole.id).all()

    def get_role_by_id(self, role_id: int) -> Optional[SysRole]:
        return self.db.query(SysRole).filter(SysRole.id == role_id).first()

    def get_role_by_code(self, code: str) -> Optional[SysRole]:
        return self.db.query(SysRole).filter(SysRole.code == code).first()

    def require_role(self, role_id: int, for_update: bool = False) -> SysRole:
        q = self.db.query(SysRole).filter(SysRole.id == role_id)
        if for_update:
            q = q.with_for_update()
        role = q.first()
        if not role:
            raise not_found("角色", role_id)
        return role

    def get_role_menu_ids(self, role_id: int) -> List[int]:
        rows = self.db.query(SysRoleMenu.menu_id).filter(
            SysRoleMenu.role_id == role_id
        ).order_by(SysRoleMenu.menu_id).all()
        return [r[0] for r in rows]

    def get_roles_by_menu_id(self, menu_id: int) -> List[SysRole]:
        return (
            self.db.query(SysRole)
            .join(SysRoleMenu, SysRoleMenu.role_id == SysRole.id)
            .filter(SysRoleMenu.menu_id == menu_id)
            .order_by(SysRole.id)
            .all()
        )

    # ===== 角色 CRUD =====

    def create_role(self, code: str, name: str, description: str = "",
                    sort: int = 0, enabled: bool = True) -> SysRole:
        with transaction(self.db, "create_role"):
            if self.get_role_by_code(code):
                raise PermissionSyncError(ErrorKind.DUPLICATE_CODE, f"角色编码 '{code}' 已存在", code=code)
            role = SysRole(code=code, name=name, description=description, sort=sort, enabled=enabled)
            self.db.add(role)
        self.db.refresh(role)
        return role

    def update_role(self, role_id: int, **kwargs) -> SysRole:
        """更新角色；编码变更时同步改写策略引擎中的 subject 与分组"""
        with resource_locks.hold(("role", role_id)):
            with transaction(self.db, "update_role"):
                role = self.require_role(role_id, for_update=True)
                old_code = role.code
                new_code = kwargs.get("code", old_code)
                if new_code != old_code and self.get_role_by_code(new_code):
                    raise PermissionSyncError(
                        ErrorKind.DUPLICATE_CODE, f"角色编码 '{new_code}' 已存在", code=new_code
                    )
                for key, value in kwargs.items():
                    if hasattr(role, key):
                        setattr(role, key, value)

            if new_code != old_code:
                self._rename_subject(old_code, new_code)
        self.db.refresh(role)
        return role

    def _rename_subject(self, old_code: str, new_code: str) -> None:
        failures = []
        try:
            rules = self.policy_store.get_filtered_policy(0, old_code)
            users = self.policy_store.get_users_for_role(old_code)
        except PolicyStoreError as e:
            raise PermissionSyncError(
                ErrorKind.POLICY_STORE_FAILURE, f"读取角色 '{old_code}' 的策略失败",
                old_code=old_code, new_code=new_code,
            ) from e

        for rule in rules:
            try:
                self.policy_store.add_policy(new_code, rule.obj, rule.action)
                self.policy_store.remove_policy(*rule)
            except PolicyStoreError as e:
                logger.error(f"改写策略 {rule} 失败: {e}")
                failures.append(str(rule))
        for user in users:
            try:
                self.policy_store.add_grouping_policy(user, new_code)
                self.policy_store.remove_grouping_policy(user, old_code)
            except PolicyStoreError as e:
                logger.error(f"改写用户 {user} 的角色分组失败: {e}")
                failures.append(f"g({user}, {old_code})")

        if failures:
            raise PermissionSyncError(
                ErrorKind.POLICY_STORE_FAILURE,
                f"角色编码已改为 '{new_code}'，但有 {len(failures)} 条策略未能改写",
                old_code=old_code, new_code=new_code, failed=failures,
            )
        logger.info(f"角色编码 {old_code} -> {new_code}: 改写 {len(rules)} 条策略, {len(users)} 个用户分组")

    def users_of_role(self, role: SysRole) -> Set[str]:
        """引用该角色的用户（策略引擎分组 ∪ 关系库镜像）"""
        users = set(policy_call("get_users_for_role", self.policy_store.get_users_for_role, role.code))
        rows = self.db.query(SysUserRole.user_id).filter(SysUserRole.role_id == role.id).all()
        users.update(user_subject(r[0]) for r in rows)
        return users

    def delete_role(self, role_id: int) -> None:
        """删除角色

        1. 仍有用户分组引用时拒绝（ROLE_IN_USE），不级联删除用户
        2. 删除角色菜单关联
        3. 删除策略引擎中以该角色为 subject 的规则和以它为角色的分组；失败时保留角色行以便重试
        4. 删除角色
        """
        with resource_locks.hold(("role", role_id)):
            with transaction(self.db, "delete_role.menus"):
                role = self.require_role(role_id, for_update=True)
                code = role.code
                users = self.users_of_role(role)
                if users:
                    raise PermissionSyncError(
                        ErrorKind.ROLE_IN_USE,
                        f"角色 '{role.name}' 已分配给 {len(users)} 个用户，不能删除",
                        role_id=role_id, users=sorted(users),
                    )
                self.db.query(SysRoleMenu).filter(SysRoleMenu.role_id == role_id).delete()

            try:
                self.policy_store.remove_filtered_policy(0, code)
                self.policy_store.remove_filtered_grouping_policy(1, code)
            except PolicyStoreError as e:
                logger.error(f"删除角色 {code} 的策略失败，角色保留以便重试: {e}")
                raise PermissionSyncError(
                    ErrorKind.POLICY_STORE_FAILURE,
                    f"删除角色 '{code}' 的策略失败，角色未删除，可重试",
                    role_id=role_id,
                ) from e

            with transaction(self.db, "delete_role"):
                self.db.query(SysUserRole).filter(SysUserRole.role_id == role_id).delete()
                self.db.query(SysRole).filter(SysRole.id == role_id).delete()
        logger.info(f"角色 {code} (ID {role_id}) 已删除")

    # ===== 用户-角色 =====

    def get_user_roles(self, user_id: int) -> List[SysRole]:
        """用户的启用角色（以策略引擎分组为准）"""
        codes = policy_call(
            "get_roles_for_user", self.policy_store.get_roles_for_user, user_subject(user_id)
        )
        if not codes:
            return []
        return self.db.query(SysRole).filter(
            SysRole.code.in_(codes),
            SysRole.enabled == True,
        ).order_by(SysRole.sort, SysRole.id).all()

    def get_user_role_ids_mirror(self, user_id: int) -> List[int]:
        rows = self.db.query(SysUserRole.role_id).filter(
            SysUserRole.user_id == user_id
        ).order_by(SysUserRole.role_id).all()
        return [r[0] for r in rows]

    def assign_roles_to_user(self, user_id: int, role_ids: List[int]) -> List[SysRole]:
        """整体替换用户的角色：先写关系库镜像，提交后再改写策略引擎分组"""
        subject = user_subject(user_id)
        with transaction(self.db, "assign_roles_to_user"):
            unique_ids = list(dict.fromkeys(role_ids))
            roles = self.db.query(SysRole).filter(SysRole.id.in_(unique_ids)).all() if unique_ids else []
            missing = set(unique_ids) - {r.id for r in roles}
            if missing:
                raise not_found("角色", sorted(missing)[0])
            self.db.query(SysUserRole).filter(SysUserRole.user_id == user_id).delete()
            for role in roles:
                self.db.add(SysUserRole(user_id=user_id, role_id=role.id))
            new_codes = {r.code for r in roles}

        current = set(policy_call("get_roles_for_user", self.policy_store.get_roles_for_user, subject))
        for code in sorted(current - new_codes):
            policy_call("remove_grouping_policy", self.policy_store.remove_grouping_policy, subject, code)
        for code in sorted(new_codes - current):
            policy_call("add_grouping_policy", self.policy_store.add_grouping_policy, subject, code)
        logger.info(f"用户 {user_id} 角色已设置为 {sorted(new_codes)}")
        return sorted(roles, key=lambda r: (r.sort, r.id))

    def rebuild_user_roles_from_policy(self) -> int:
        """按策略引擎分组重建 sys_user_role，返回写入行数"""
        with transaction(self.db, "rebuild_user_roles"):
            roles = self.db.query(SysRole).all()
            self.db.query(SysUserRole).delete()
            count = 0
            for role in roles:
                users = policy_call("get_users_for_role", self.policy_store.get_users_for_role, role.code)
                for user in users:
                    if not str(user).isdigit():
                        logger.warning(f"跳过非数字用户 subject '{user}' (角色 {role.code})")
                        continue
                    self.db.add(SysUserRole(user_id=int(user), role_id=role.id))
                    count += 1
        logger.info(f"用户角色镜像已重建: {count} 行")
        return count
