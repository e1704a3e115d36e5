"""
系统管理 ORM 模型
"""
from rbac_sync.system.models.menu import MenuType, SysMenu, SysMenuApi
from rbac_sync.system.models.api import SysApi
from rbac_sync.system.models.rbac import (
    PermissionType, SysRole, SysPermission, SysRoleMenu, SysUserRole,
)

__all__ = [
    "MenuType", "SysMenu", "SysMenuApi",
    "SysApi",
    "PermissionType", "SysRole", "SysPermission", "SysRoleMenu", "SysUserRole",
]
