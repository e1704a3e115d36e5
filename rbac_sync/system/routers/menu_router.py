"""
菜单管理 API 路由 — 菜单 CRUD、菜单树、菜单 API 分配
前缀: /system/menus
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from rbac_core.errors import PermissionSyncError
from rbac_core.security.policy_store import IPolicyStore
from rbac_sync.database import get_db
from rbac_sync.security.auth import get_current_user_id, get_policy_store, require_api_permission
from rbac_sync.system.routers.errors import http_error, report_response
from rbac_sync.system.schemas import (
    ApiResponse, MenuApiAssign, MenuCreate, MenuResponse, MenuTreeResponse, MenuUpdate,
    PermissionResponse,
)
from rbac_sync.system.services.menu_api_service import MenuApiService
from rbac_sync.system.services.menu_service import MenuService

router = APIRouter(prefix="/system/menus", tags=["菜单管理"])


# ---- 当前用户 ----

@router.get("/user/tree", response_model=List[MenuTreeResponse])
def get_user_menu_tree(
    exclude_buttons: bool = True,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    user_id: int = Depends(get_current_user_id),
):
    """当前用户可见的菜单树（默认不含按钮）"""
    service = MenuService(db, policy_store)
    try:
        tree = service.build_user_tree(user_id, exclude_buttons=exclude_buttons)
    except PermissionSyncError as e:
        raise http_error(e)
    return [node.to_dict() for node in tree]


@router.get("/user/perms", response_model=List[str])
def get_user_menu_perms(
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    user_id: int = Depends(get_current_user_id),
):
    """当前用户的菜单权限标识（前端按钮显示控制用）"""
    service = MenuService(db, policy_store)
    try:
        return service.get_menu_perms_by_user_id(user_id)
    except PermissionSyncError as e:
        raise http_error(e)


# ---- 管理端 ----

@router.get("", response_model=List[MenuResponse])
def list_menus(
    include_disabled: bool = True,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """获取菜单列表"""
    return MenuService(db, policy_store).get_menus(include_disabled=include_disabled)


@router.get("/tree", response_model=List[MenuTreeResponse])
def get_menu_tree(
    include_disabled: bool = True,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """获取完整菜单树"""
    tree = MenuService(db, policy_store).get_menu_tree(include_disabled=include_disabled)
    return [node.to_dict() for node in tree]


@router.get("/{menu_id}", response_model=MenuResponse)
def get_menu(
    menu_id: int,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """获取菜单详情"""
    menu = MenuService(db, policy_store).get_menu_by_id(menu_id)
    if not menu:
        raise HTTPException(status_code=404, detail="菜单不存在")
    return menu


@router.post("", response_model=MenuResponse, status_code=201)
def create_menu(
    data: MenuCreate,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """创建菜单"""
    service = MenuService(db, policy_store)
    try:
        return service.create_menu(**data.model_dump())
    except PermissionSyncError as e:
        raise http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/{menu_id}", response_model=MenuResponse)
def update_menu(
    menu_id: int,
    data: MenuUpdate,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """更新菜单"""
    service = MenuService(db, policy_store)
    try:
        return service.update_menu(menu_id, **data.model_dump(exclude_unset=True))
    except PermissionSyncError as e:
        raise http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/{menu_id}")
def delete_menu(
    menu_id: int,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """删除菜单（级联删除关联与权限，撤销失效的策略规则）"""
    service = MenuService(db, policy_store)
    try:
        report = service.delete_menu(menu_id)
    except PermissionSyncError as e:
        raise http_error(e)
    return report_response(report, message="菜单已删除")


@router.get("/{menu_id}/permissions", response_model=List[PermissionResponse])
def get_menu_permissions(
    menu_id: int,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """菜单相关的权限（菜单、按钮、API）"""
    try:
        return MenuService(db, policy_store).get_menu_permissions(menu_id)
    except PermissionSyncError as e:
        raise http_error(e)


@router.get("/{menu_id}/apis", response_model=List[ApiResponse])
def get_menu_apis(
    menu_id: int,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """菜单关联的 API"""
    try:
        return MenuApiService(db, policy_store).get_menu_apis(menu_id)
    except PermissionSyncError as e:
        raise http_error(e)


@router.put("/{menu_id}/apis")
def assign_menu_apis(
    menu_id: int,
    data: MenuApiAssign,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """整体设置菜单关联的 API"""
    service = MenuApiService(db, policy_store)
    try:
        report = service.assign_apis_to_menu(menu_id, data.api_ids)
    except PermissionSyncError as e:
        raise http_error(e)
    return report_response(report, message="API 分配成功")
