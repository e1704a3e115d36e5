"""
API 目录服务

path/method 变更会改写派生权限编码并收敛受影响角色的策略规则；删除 API 级联删除关联与权限并清除其策略规则。
"""
import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from rbac_core.errors import ErrorKind, PermissionSyncError, not_found
from rbac_core.locks import resource_locks
from rbac_core.security.policy_store import IPolicyStore, PolicyRule, PolicyStoreError
from rbac_core.sync_report import SyncReport
from rbac_sync.database import transaction
from rbac_sync.system.models import SysApi, SysMenuApi, SysPermission
from rbac_sync.system.services.policy_rules import derive_rules, reconcile_roles, role_ids_holding_menus

logger = logging.getLogger(__name__)


def normalize_method(method: str) -> str:
    return (method or "").strip().upper()


class ApiService:
    """API 目录管理服务"""

    def __init__(self, db: Session, policy_store: IPolicyStore):
        self.db = db
        self.policy_store = policy_store

    # ===== 查询 =====

    def get_apis(self, group: Optional[str] = None, include_disabled: bool = True) -> List[SysApi]:
        q = self.db.query(SysApi)
        if group:
            q = q.filter(SysApi.group == group)
        if not include_disabled:
            q = q.filter(SysApi.enabled == True)
        return q.order_by(SysApi.group, SysApi.path, SysApi.method).all()

    def get_api_by_id(self, api_id: int) -> Optional[SysApi]:
        return self.db.query(SysApi).filter(SysApi.id == api_id).first()

    def get_api_by_path(self, path: str, method: str) -> Optional[SysApi]:
        return self.db.query(SysApi).filter(
            SysApi.path == path, SysApi.method == normalize_method(method)
        ).first()

    def require_api(self, api_id: int, for_update: bool = False) -> SysApi:
        q = self.db.query(SysApi).filter(SysApi.id == api_id)
        if for_update:
            q = q.with_for_update()
        api = q.first()
        if not api:
            raise not_found("API", api_id)
        return api

    def _linked_menu_ids(self, api_id: int) -> List[int]:
        rows = self.db.query(SysMenuApi.menu_id).filter(SysMenuApi.api_id == api_id).all()
        return [r[0] for r in rows]

    # ===== 写操作 =====

    def create_api(self, path: str, method: str, name: str = "", group: str = "",
                   enabled: bool = True) -> SysApi:
        method = normalize_method(method)
        with transaction(self.db, "create_api"):
            if self.get_api_by_path(path, method):
                raise PermissionSyncError(
                    ErrorKind.DUPLICATE_API, f"API {method} {path} 已存在", path=path, method=method
                )
            api = SysApi(path=path, method=method, name=name, group=group, enabled=enabled)
            self.db.add(api)
        self.db.refresh(api)
        return api

    def update_api(self, api_id: int, **kwargs) -> Tuple[SysApi, SyncReport]:
        """更新 API；path/method 变化时改写权限编码，并把受影响角色的规则迁移到新端点"""
        report = SyncReport()
        if "method" in kwargs:
            kwargs["method"] = normalize_method(kwargs["method"])
        with resource_locks.hold(("api", api_id)):
            with transaction(self.db, "update_api"):
                api = self.require_api(api_id, for_update=True)
                old_code = api.permission_code
                new_path = kwargs.get("path", api.path)
                new_method = kwargs.get("method", api.method)
                endpoint_changed = (new_path, new_method) != (api.path, api.method)

                if endpoint_changed:
                    other = self.get_api_by_path(new_path, new_method)
                    if other and other.id != api_id:
                        raise PermissionSyncError(
                            ErrorKind.DUPLICATE_API, f"API {new_method} {new_path} 已存在",
                            path=new_path, method=new_method,
                        )
                role_ids = role_ids_holding_menus(self.db, self._linked_menu_ids(api_id))
                before = derive_rules(self.db, role_ids)

                for key, value in kwargs.items():
                    if hasattr(api, key):
                        setattr(api, key, value)

                if endpoint_changed:
                    new_code = f"{new_path}:{new_method}"
                    clash = self.db.query(SysPermission).filter(SysPermission.code == new_code).first()
                    if clash:
                        raise PermissionSyncError(
                            ErrorKind.DUPLICATE_CODE, f"权限编码 '{new_code}' 已存在", code=new_code
                        )
                    self.db.query(SysPermission).filter(
                        SysPermission.code == old_code,
                        SysPermission.api_id == api_id,
                    ).update({SysPermission.code: new_code})

            if endpoint_changed:
                reconcile_roles(self.db, self.policy_store, role_ids, before, report)
                logger.info(f"API {api_id} 端点变更 {old_code} -> {api.permission_code}, "
                            f"迁移 {len(report.added_rules)} 条策略")
        self.db.refresh(api)
        return api, report

    def delete_api(self, api_id: int) -> SyncReport:
        """删除 API：级联删除菜单关联和 API 权限，并清除该端点的全部策略规则"""
        report = SyncReport()
        with resource_locks.hold(("api", api_id)):
            with transaction(self.db, "delete_api"):
                api = self.require_api(api_id, for_update=True)
                path, method = api.path, api.method
                self.db.query(SysMenuApi).filter(SysMenuApi.api_id == api_id).delete()
                self.db.query(SysPermission).filter(SysPermission.api_id == api_id).delete()
                self.db.delete(api)

            try:
                self.policy_store.remove_filtered_policy(1, path, method)
            except PolicyStoreError as e:
                logger.error(f"清除 API {method} {path} 的策略失败: {e}")
                report.failed_rules.append((PolicyRule("*", path, method), str(e)))
            else:
                logger.info(f"API {method} {path} (ID {api_id}) 已删除")
        return report
