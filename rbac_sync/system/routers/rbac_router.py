"""
RBAC API 路由 — 角色管理 + 权限管理 + 用户角色分配 + 策略同步
前缀: /system/roles, /system/permissions, /system/users, /system/sync
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from rbac_core.context import OperationContext, background
from rbac_core.errors import PermissionSyncError
from rbac_core.security.policy_store import IPolicyStore
from rbac_sync.database import get_db
from rbac_sync.security.auth import get_policy_store, require_api_permission
from rbac_sync.system.routers.errors import http_error, report_response
from rbac_sync.system.schemas import (
    PermissionCreate, PermissionResponse, PermissionUpdate, PolicyDiffResponse,
    RoleCreate, RoleDetailResponse, RoleMenuAssign, RoleResponse, RoleUpdate,
    UserRoleAssign, UserRoleResponse,
)
from rbac_sync.system.services.menu_api_service import MenuApiService
from rbac_sync.system.services.permission_service import PermissionService
from rbac_sync.system.services.rbac_service import RoleService


# ========== Role Router ==========

role_router = APIRouter(prefix="/system/roles", tags=["角色管理"])


@role_router.get("", response_model=List[RoleResponse])
def list_roles(
    include_disabled: bool = False,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """获取角色列表"""
    return RoleService(db, policy_store).get_roles(include_disabled=include_disabled)


@role_router.get("/{role_id}", response_model=RoleDetailResponse)
def get_role(
    role_id: int,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """获取角色详情（含菜单 ID）"""
    service = RoleService(db, policy_store)
    role = service.get_role_by_id(role_id)
    if not role:
        raise HTTPException(status_code=404, detail="角色不存在")
    resp = RoleDetailResponse.model_validate(role)
    resp.menu_ids = service.get_role_menu_ids(role_id)
    return resp


@role_router.post("", response_model=RoleResponse, status_code=201)
def create_role(
    data: RoleCreate,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """创建角色"""
    try:
        return RoleService(db, policy_store).create_role(**data.model_dump())
    except PermissionSyncError as e:
        raise http_error(e)


@role_router.put("/{role_id}", response_model=RoleResponse)
def update_role(
    role_id: int,
    data: RoleUpdate,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """更新角色（编码变更会改写策略引擎中的规则和分组）"""
    try:
        return RoleService(db, policy_store).update_role(role_id, **data.model_dump(exclude_unset=True))
    except PermissionSyncError as e:
        raise http_error(e)


@role_router.delete("/{role_id}", status_code=204)
def delete_role(
    role_id: int,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """删除角色（仍有用户时拒绝）"""
    try:
        RoleService(db, policy_store).delete_role(role_id)
    except PermissionSyncError as e:
        raise http_error(e)


@role_router.get("/{role_id}/menus", response_model=List[int])
def get_role_menus(
    role_id: int,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    service = RoleService(db, policy_store)
    try:
        service.require_role(role_id)
    except PermissionSyncError as e:
        raise http_error(e)
    return service.get_role_menu_ids(role_id)


@role_router.put("/{role_id}/menus")
def assign_role_menus(
    role_id: int,
    data: RoleMenuAssign,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """整体设置角色的菜单"""
    try:
        report = MenuApiService(db, policy_store).assign_menus_to_role(role_id, data.menu_ids)
    except PermissionSyncError as e:
        raise http_error(e)
    return report_response(report, message="菜单分配成功")


@role_router.get("/{role_id}/permissions", response_model=List[PermissionResponse])
def get_role_permissions(
    role_id: int,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """角色经菜单持有的权限"""
    try:
        return MenuApiService(db, policy_store).get_role_permissions(role_id)
    except PermissionSyncError as e:
        raise http_error(e)


# ========== Permission Router ==========

permission_router = APIRouter(prefix="/system/permissions", tags=["权限管理"])


@permission_router.get("", response_model=List[PermissionResponse])
def list_permissions(
    perm_type: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: int = Depends(require_api_permission),
):
    """获取权限列表（可按类型过滤）"""
    return PermissionService(db).get_permissions(perm_type=perm_type)


@permission_router.get("/{perm_id}", response_model=PermissionResponse)
def get_permission(
    perm_id: int,
    db: Session = Depends(get_db),
    current_user: int = Depends(require_api_permission),
):
    perm = PermissionService(db).get_permission_by_id(perm_id)
    if not perm:
        raise HTTPException(status_code=404, detail="权限不存在")
    return perm


@permission_router.post("", response_model=PermissionResponse, status_code=201)
def create_permission(
    data: PermissionCreate,
    db: Session = Depends(get_db),
    current_user: int = Depends(require_api_permission),
):
    """创建菜单/按钮权限（API 权限由菜单 API 分配自动生成）"""
    try:
        return PermissionService(db).create_permission(**data.model_dump())
    except PermissionSyncError as e:
        raise http_error(e)


@permission_router.put("/{perm_id}", response_model=PermissionResponse)
def update_permission(
    perm_id: int,
    data: PermissionUpdate,
    db: Session = Depends(get_db),
    current_user: int = Depends(require_api_permission),
):
    try:
        return PermissionService(db).update_permission(perm_id, **data.model_dump(exclude_unset=True))
    except PermissionSyncError as e:
        raise http_error(e)


@permission_router.delete("/{perm_id}", status_code=204)
def delete_permission(
    perm_id: int,
    db: Session = Depends(get_db),
    current_user: int = Depends(require_api_permission),
):
    try:
        PermissionService(db).delete_permission(perm_id)
    except PermissionSyncError as e:
        raise http_error(e)


# ========== User Role Router ==========

user_role_router = APIRouter(prefix="/system/users", tags=["用户角色"])


@user_role_router.get("/{user_id}/roles", response_model=UserRoleResponse)
def get_user_roles(
    user_id: int,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """获取用户的启用角色"""
    try:
        roles = RoleService(db, policy_store).get_user_roles(user_id)
    except PermissionSyncError as e:
        raise http_error(e)
    return UserRoleResponse(user_id=user_id, roles=[RoleResponse.model_validate(r) for r in roles])


@user_role_router.put("/{user_id}/roles", response_model=UserRoleResponse)
def assign_user_roles(
    user_id: int,
    data: UserRoleAssign,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """整体设置用户角色"""
    try:
        roles = RoleService(db, policy_store).assign_roles_to_user(user_id, data.role_ids)
    except PermissionSyncError as e:
        raise http_error(e)
    return UserRoleResponse(user_id=user_id, roles=[RoleResponse.model_validate(r) for r in roles])


@user_role_router.get("/{user_id}/permissions", response_model=List[PermissionResponse])
def get_user_permissions(
    user_id: int,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """用户经启用角色持有的权限"""
    try:
        return MenuApiService(db, policy_store).get_user_permissions(user_id)
    except PermissionSyncError as e:
        raise http_error(e)


@user_role_router.post("/roles/rebuild")
def rebuild_user_roles(
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """按策略引擎分组重建用户角色镜像表"""
    try:
        count = RoleService(db, policy_store).rebuild_user_roles_from_policy()
    except PermissionSyncError as e:
        raise http_error(e)
    return {"message": "重建完成", "rows": count}


# ========== Sync Router ==========

sync_router = APIRouter(prefix="/system/sync", tags=["策略同步"])


@sync_router.post("")
def sync_policies(
    prune: bool = False,
    timeout: Optional[float] = Query(None, gt=0, description="超时秒数"),
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """全量同步：重建 API 权限并重新下发全部规则；prune=true 时删除多余规则"""
    ctx = OperationContext.with_timeout(timeout) if timeout else background()
    try:
        report = MenuApiService(db, policy_store).sync_menu_api_permissions(prune=prune, ctx=ctx)
    except PermissionSyncError as e:
        raise http_error(e)
    return report_response(report, message="同步完成")


@sync_router.get("/diff", response_model=PolicyDiffResponse)
def diff_policies(
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """只读检查关系库与策略引擎的差异"""
    try:
        return MenuApiService(db, policy_store).diff_policies().to_dict()
    except PermissionSyncError as e:
        raise http_error(e)
