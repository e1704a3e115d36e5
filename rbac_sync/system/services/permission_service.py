"""
权限字典服务

写入时校验"恰好一个外键且与类型对应"，编码全局唯一。
API 类型的权限只由菜单 API 分配产生（upsert_api_permission），不对外开放创建。
"""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from rbac_core.errors import ErrorKind, PermissionSyncError, not_found
from rbac_sync.database import transaction
from rbac_sync.system.models import (
    MenuType, PermissionType, SysApi, SysMenu, SysMenuApi, SysPermission,
)

logger = logging.getLogger(__name__)

_FK_BY_TYPE = {
    PermissionType.MENU.value: "menu_id",
    PermissionType.BUTTON.value: "button_id",
    PermissionType.API.value: "api_id",
}

_API_MANAGED_FIELDS = {"code", "perm_type", "menu_id", "button_id", "api_id", "source_menu_id"}


def _normalize_fk(value: Optional[int]) -> Optional[int]:
    return value or None


def validate_shape(perm_type: str, menu_id: Optional[int] = None,
                   button_id: Optional[int] = None, api_id: Optional[int] = None) -> None:
    """恰好一个外键非零，且就是 perm_type 对应的那一个"""
    fks = {"menu_id": _normalize_fk(menu_id), "button_id": _normalize_fk(button_id),
           "api_id": _normalize_fk(api_id)}
    present = [name for name, value in fks.items() if value is not None]
    expected = _FK_BY_TYPE.get(perm_type)
    if expected is None:
        raise PermissionSyncError(
            ErrorKind.INVALID_PERMISSION_SHAPE, f"未知的权限类型 '{perm_type}'", perm_type=perm_type
        )
    if present != [expected]:
        raise PermissionSyncError(
            ErrorKind.INVALID_PERMISSION_SHAPE,
            f"{perm_type} 类型的权限必须且只能设置 {expected}，实际设置了 {present or '无'}",
            perm_type=perm_type, fks=present,
        )


class PermissionService:
    """权限字典管理服务"""

    def __init__(self, db: Session):
        self.db = db

    # ===== 查询 =====

    def get_permissions(self, perm_type: Optional[str] = None,
                        include_disabled: bool = True) -> List[SysPermission]:
        q = self.db.query(SysPermission)
        if perm_type:
            q = q.filter(SysPermission.perm_type == perm_type)
        if not include_disabled:
            q = q.filter(SysPermission.enabled == True)
        return q.order_by(SysPermission.id).all()

    def get_permission_by_id(self, perm_id: int) -> Optional[SysPermission]:
        return self.db.query(SysPermission).filter(SysPermission.id == perm_id).first()

    def get_permission_by_code(self, code: str) -> Optional[SysPermission]:
        return self.db.query(SysPermission).filter(SysPermission.code == code).first()

    def get_permissions_by_source_menu(self, menu_id: int) -> List[SysPermission]:
        return self.db.query(SysPermission).filter(
            SysPermission.source_menu_id == menu_id,
            SysPermission.perm_type == PermissionType.API.value,
        ).order_by(SysPermission.id).all()

    # ===== 公开写操作 =====

    def create_permission(self, name: str, code: str, perm_type: str,
                          menu_id: Optional[int] = None, button_id: Optional[int] = None,
                          api_id: Optional[int] = None, description: str = "",
                          enabled: bool = True) -> SysPermission:
        validate_shape(perm_type, menu_id, button_id, api_id)
        if perm_type == PermissionType.API.value:
            raise PermissionSyncError(
                ErrorKind.INVALID_PERMISSION_SHAPE,
                "API 权限由菜单 API 分配自动维护，不能直接创建",
                perm_type=perm_type,
            )
        with transaction(self.db, "create_permission"):
            if self.get_permission_by_code(code):
                raise PermissionSyncError(ErrorKind.DUPLICATE_CODE, f"权限编码 '{code}' 已存在", code=code)
            self._check_target(perm_type, _normalize_fk(menu_id), _normalize_fk(button_id))
            perm = SysPermission(
                name=name, code=code, perm_type=perm_type,
                menu_id=_normalize_fk(menu_id), button_id=_normalize_fk(button_id),
                description=description, enabled=enabled,
            )
            self.db.add(perm)
        self.db.refresh(perm)
        return perm

    def update_permission(self, perm_id: int, **kwargs) -> SysPermission:
        with transaction(self.db, "update_permission"):
            perm = self.get_permission_by_id(perm_id)
            if not perm:
                raise not_found("权限", perm_id)

            if perm.perm_type == PermissionType.API.value:
                if _API_MANAGED_FIELDS & kwargs.keys():
                    raise PermissionSyncError(
                        ErrorKind.INVALID_PERMISSION_SHAPE,
                        "API 权限的编码和关联由菜单 API 分配维护，只能修改名称、描述和启用状态",
                        perm_id=perm_id,
                    )
                for key, value in kwargs.items():
                    if hasattr(perm, key):
                        setattr(perm, key, value)
                return perm

            merged = {
                "perm_type": kwargs.get("perm_type", perm.perm_type),
                "menu_id": kwargs.get("menu_id", perm.menu_id),
                "button_id": kwargs.get("button_id", perm.button_id),
                "api_id": kwargs.get("api_id", perm.api_id),
            }
            validate_shape(**merged)
            if merged["perm_type"] == PermissionType.API.value:
                raise PermissionSyncError(
                    ErrorKind.INVALID_PERMISSION_SHAPE, "不能把权限改为 API 类型", perm_id=perm_id
                )
            self._check_target(merged["perm_type"], _normalize_fk(merged["menu_id"]),
                               _normalize_fk(merged["button_id"]))

            if "code" in kwargs and kwargs["code"] != perm.code:
                if self.get_permission_by_code(kwargs["code"]):
                    raise PermissionSyncError(
                        ErrorKind.DUPLICATE_CODE, f"权限编码 '{kwargs['code']}' 已存在", code=kwargs["code"]
                    )

            for key, value in kwargs.items():
                if key in ("menu_id", "button_id", "api_id"):
                    value = _normalize_fk(value)
                if hasattr(perm, key):
                    setattr(perm, key, value)
        self.db.refresh(perm)
        return perm

    def delete_permission(self, perm_id: int) -> None:
        with transaction(self.db, "delete_permission"):
            perm = self.get_permission_by_id(perm_id)
            if not perm:
                raise not_found("权限", perm_id)
            if perm.perm_type == PermissionType.API.value:
                raise PermissionSyncError(
                    ErrorKind.INVALID_PERMISSION_SHAPE,
                    "API 权限随菜单 API 关联一起删除，不能单独删除",
                    perm_id=perm_id,
                )
            self.db.delete(perm)

    def _check_target(self, perm_type: str, menu_id: Optional[int], button_id: Optional[int]) -> None:
        if perm_type == PermissionType.MENU.value:
            if not self.db.query(SysMenu.id).filter(SysMenu.id == menu_id).first():
                raise not_found("菜单", menu_id)
        elif perm_type == PermissionType.BUTTON.value:
            button = self.db.query(SysMenu).filter(SysMenu.id == button_id).first()
            if not button or button.menu_type != MenuType.BUTTON.value:
                raise not_found("按钮", button_id)

    # ===== 供菜单 API 同步使用（不提交事务） =====

    def upsert_api_permission(self, menu: SysMenu, api: SysApi) -> Optional[SysPermission]:
        """按编码 "{path}:{method}" 创建或更新 API 权限，来源菜单记为 menu

        编码已被菜单/按钮权限占用时不做任何改动，返回 None。
        """
        code = api.permission_code
        perm = self.get_permission_by_code(code)
        if perm is None:
            perm = SysPermission(code=code)
            self.db.add(perm)
        elif perm.perm_type != PermissionType.API.value:
            logger.warning(f"权限编码 '{code}' 已被 {perm.perm_type} 类型权限 (ID {perm.id}) 占用，跳过 API 权限")
            return None
        perm.name = f"{menu.name}-{api.name or api.path}"
        perm.perm_type = PermissionType.API.value
        perm.menu_id = None
        perm.button_id = None
        perm.api_id = api.id
        perm.source_menu_id = menu.id
        perm.description = f"菜单[{menu.name}]关联的API[{api.method} {api.path}]"
        perm.enabled = True
        self.db.flush()
        return perm

    def release_api_permissions(self, menu_id: int) -> int:
        """菜单的 API 关联被清除后调用：来源为该菜单的 API 权限

        若该 API 仍被其他菜单关联，则改挂到其中 ID 最小的菜单；否则删除。返回删除条数。
        """
        deleted = 0
        for perm in self.get_permissions_by_source_menu(menu_id):
            other = self.db.query(SysMenuApi.menu_id).filter(
                SysMenuApi.api_id == perm.api_id,
                SysMenuApi.menu_id != menu_id,
            ).order_by(SysMenuApi.menu_id).first()
            if other is not None:
                perm.source_menu_id = other[0]
            else:
                self.db.delete(perm)
                deleted += 1
        self.db.flush()
        return deleted
