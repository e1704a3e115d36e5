"""
系统管理 Pydantic schemas — 菜单、API、权限、角色、同步结果
"""
from datetime import datetime
from typing import Any, ClassVar, Dict, FrozenSet, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

MenuTypeLiteral = Literal["directory", "menu", "button"]


class PartialUpdate(BaseModel):
    """部分更新：未提交的字段保持不变，显式 null 只允许用于 nullable_fields"""

    nullable_fields: ClassVar[FrozenSet[str]] = frozenset()

    @model_validator(mode="after")
    def reject_nulls(self):
        nulls = sorted(
            name for name in self.model_fields_set
            if getattr(self, name) is None and name not in self.nullable_fields
        )
        if nulls:
            raise ValueError(f"字段不能为 null: {', '.join(nulls)}")
        return self


# ========== Menu ==========

class MenuCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    parent_id: int = Field(default=0, ge=0)
    path: str = Field(default="", max_length=200)
    component: str = Field(default="", max_length=200)
    icon: str = Field(default="", max_length=50)
    order_num: int = 0
    menu_type: MenuTypeLiteral = "menu"
    enabled: bool = True
    perms: str = Field(default="", max_length=100)


class MenuUpdate(PartialUpdate):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    parent_id: Optional[int] = Field(None, ge=0)
    path: Optional[str] = Field(None, max_length=200)
    component: Optional[str] = Field(None, max_length=200)
    icon: Optional[str] = Field(None, max_length=50)
    order_num: Optional[int] = None
    menu_type: Optional[MenuTypeLiteral] = None
    enabled: Optional[bool] = None
    perms: Optional[str] = Field(None, max_length=100)


class MenuResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    parent_id: int
    name: str
    path: Optional[str] = ""
    component: Optional[str] = ""
    icon: Optional[str] = ""
    order_num: Optional[int] = 0
    menu_type: str
    enabled: bool
    perms: Optional[str] = ""
    created_at: Optional[datetime] = None


class MenuTreeResponse(BaseModel):
    id: int
    parent_id: int
    name: str
    path: Optional[str] = ""
    component: Optional[str] = ""
    icon: Optional[str] = ""
    order_num: Optional[int] = 0
    menu_type: str
    enabled: bool
    perms: Optional[str] = ""
    children: List["MenuTreeResponse"] = []


MenuTreeResponse.model_rebuild()


class MenuApiAssign(BaseModel):
    api_ids: List[int] = Field(default_factory=list)


# ========== API ==========

class ApiCreate(BaseModel):
    path: str = Field(..., min_length=1, max_length=200)
    method: str = Field(..., min_length=1, max_length=10)
    name: str = Field(default="", max_length=100)
    group: str = Field(default="", max_length=50)
    enabled: bool = True


class ApiUpdate(PartialUpdate):
    path: Optional[str] = Field(None, min_length=1, max_length=200)
    method: Optional[str] = Field(None, min_length=1, max_length=10)
    name: Optional[str] = Field(None, max_length=100)
    group: Optional[str] = Field(None, max_length=50)
    enabled: Optional[bool] = None


class ApiResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    path: str
    method: str
    name: Optional[str] = ""
    group: Optional[str] = ""
    enabled: bool
    created_at: Optional[datetime] = None


# ========== Permission ==========

class PermissionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    code: str = Field(..., min_length=1, max_length=200)
    perm_type: Literal["menu", "button", "api"]
    menu_id: Optional[int] = None
    button_id: Optional[int] = None
    api_id: Optional[int] = None
    description: str = Field(default="", max_length=200)
    enabled: bool = True


class PermissionUpdate(PartialUpdate):
    nullable_fields: ClassVar[FrozenSet[str]] = frozenset({"menu_id", "button_id", "api_id"})

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    code: Optional[str] = Field(None, min_length=1, max_length=200)
    perm_type: Optional[Literal["menu", "button", "api"]] = None
    menu_id: Optional[int] = None
    button_id: Optional[int] = None
    api_id: Optional[int] = None
    description: Optional[str] = Field(None, max_length=200)
    enabled: Optional[bool] = None


class PermissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    code: str
    perm_type: str
    menu_id: Optional[int] = None
    button_id: Optional[int] = None
    api_id: Optional[int] = None
    source_menu_id: Optional[int] = None
    description: Optional[str] = ""
    enabled: bool


# ========== Role ==========

class RoleCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=50)
    description: str = Field(default="", max_length=200)
    sort: int = 0
    enabled: bool = True


class RoleUpdate(PartialUpdate):
    code: Optional[str] = Field(None, min_length=1, max_length=100)
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=200)
    sort: Optional[int] = None
    enabled: Optional[bool] = None


class RoleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    description: Optional[str] = ""
    sort: Optional[int] = 0
    enabled: bool


class RoleDetailResponse(RoleResponse):
    menu_ids: List[int] = []


class RoleMenuAssign(BaseModel):
    menu_ids: List[int] = Field(default_factory=list)


class UserRoleAssign(BaseModel):
    role_ids: List[int] = Field(default_factory=list)


class UserRoleResponse(BaseModel):
    user_id: int
    roles: List[RoleResponse] = []


# ========== Sync ==========

class SyncReportResponse(BaseModel):
    partial: bool
    added: List[List[str]] = []
    unchanged: int = 0
    removed: List[List[str]] = []
    failed: List[Dict[str, Any]] = []
    skipped: Dict[str, List[Any]] = {}


class PolicyDiffResponse(BaseModel):
    consistent: bool
    missing: List[List[str]] = []
    extra: List[List[str]] = []
