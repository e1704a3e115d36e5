"""
系统管理服务层
"""
from rbac_sync.system.services.api_service import ApiService
from rbac_sync.system.services.casbin_policy_store import CasbinPolicyStore, build_enforcer
from rbac_sync.system.services.menu_api_service import MenuApiService
from rbac_sync.system.services.menu_service import MenuService
from rbac_sync.system.services.permission_service import PermissionService
from rbac_sync.system.services.rbac_service import RoleService

__all__ = [
    "ApiService",
    "CasbinPolicyStore",
    "build_enforcer",
    "MenuApiService",
    "MenuService",
    "PermissionService",
    "RoleService",
]
