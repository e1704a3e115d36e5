"""
API 目录路由
前缀: /system/apis
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from rbac_core.errors import PermissionSyncError
from rbac_core.security.policy_store import IPolicyStore
from rbac_sync.database import get_db
from rbac_sync.security.auth import get_policy_store, require_api_permission
from rbac_sync.system.routers.errors import http_error, report_response
from rbac_sync.system.schemas import ApiCreate, ApiResponse, ApiUpdate, RoleResponse
from rbac_sync.system.services.api_service import ApiService
from rbac_sync.system.services.menu_api_service import MenuApiService

router = APIRouter(prefix="/system/apis", tags=["API管理"])


@router.get("", response_model=List[ApiResponse])
def list_apis(
    group: Optional[str] = None,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """获取 API 列表（可按分组过滤）"""
    return ApiService(db, policy_store).get_apis(group=group)


@router.get("/{api_id}", response_model=ApiResponse)
def get_api(
    api_id: int,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    api = ApiService(db, policy_store).get_api_by_id(api_id)
    if not api:
        raise HTTPException(status_code=404, detail="API 不存在")
    return api


@router.post("", response_model=ApiResponse, status_code=201)
def create_api(
    data: ApiCreate,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    try:
        return ApiService(db, policy_store).create_api(**data.model_dump())
    except PermissionSyncError as e:
        raise http_error(e)


@router.put("/{api_id}")
def update_api(
    api_id: int,
    data: ApiUpdate,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """更新 API；端点变化时策略规则随之迁移"""
    try:
        api, report = ApiService(db, policy_store).update_api(
            api_id, **data.model_dump(exclude_unset=True)
        )
    except PermissionSyncError as e:
        raise http_error(e)
    return report_response(report, api=ApiResponse.model_validate(api).model_dump(mode="json"))


@router.delete("/{api_id}")
def delete_api(
    api_id: int,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    try:
        report = ApiService(db, policy_store).delete_api(api_id)
    except PermissionSyncError as e:
        raise http_error(e)
    return report_response(report, message="API 已删除")


@router.get("/{api_id}/roles", response_model=List[RoleResponse])
def get_api_roles(
    api_id: int,
    db: Session = Depends(get_db),
    policy_store: IPolicyStore = Depends(get_policy_store),
    current_user: int = Depends(require_api_permission),
):
    """可访问该 API 的角色"""
    try:
        return MenuApiService(db, policy_store).get_api_roles(api_id)
    except PermissionSyncError as e:
        raise http_error(e)
