"""
RBAC ORM 模型 — 角色、权限字典、角色/菜单关联、用户/角色关联

sys_user_role 是策略引擎分组规则 g(user, role_code) 的关系库镜像，授权以策略引擎为准
"""
from datetime import datetime, UTC
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from rbac_sync.database import Base


class PermissionType(str, PyEnum):
    """权限类型枚举"""
    MENU = "menu"
    BUTTON = "button"
    API = "api"


class SysRole(Base):
    __tablename__ = "sys_role"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False, comment="角色名称")
    code = Column(String(100), unique=True, nullable=False, comment="角色编码, 即策略引擎 subject")
    enabled = Column(Boolean, default=True)
    sort = Column(Integer, default=0)
    description = Column(String(200), default="")
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))
    updated_at = Column(DateTime, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))

    def __repr__(self) -> str:
        return f"<SysRole(id={self.id}, code={self.code!r})>"


class SysPermission(Base):
    """权限字典

    menu_id / button_id / api_id 三者恰好一个非空，且与 perm_type 对应；
    source_menu_id 仅用于 API 权限，记录由哪个菜单的 API 分配产生
    """
    __tablename__ = "sys_permission"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, comment="权限名称")
    code = Column(String(200), unique=True, nullable=False, comment="权限编码")
    perm_type = Column(String(20), nullable=False, comment="类型: menu|button|api")
    menu_id = Column(Integer, ForeignKey("sys_menu.id"), nullable=True, index=True)
    button_id = Column(Integer, ForeignKey("sys_menu.id"), nullable=True, index=True)
    api_id = Column(Integer, ForeignKey("sys_api.id"), nullable=True, index=True)
    source_menu_id = Column(Integer, ForeignKey("sys_menu.id"), nullable=True, index=True,
                            comment="API 权限的来源菜单")
    description = Column(String(200), default="")
    enabled = Column(Boolean, default=True)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))
    updated_at = Column(DateTime, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))

    def __repr__(self) -> str:
        return f"<SysPermission(id={self.id}, code={self.code!r}, type={self.perm_type})>"


class SysRoleMenu(Base):
    """角色 ↔ 菜单关联表"""
    __tablename__ = "sys_role_menu"
    __table_args__ = (UniqueConstraint("role_id", "menu_id", name="uq_role_menu"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    role_id = Column(Integer, ForeignKey("sys_role.id"), nullable=False, index=True)
    menu_id = Column(Integer, ForeignKey("sys_menu.id"), nullable=False, index=True)


class SysUserRole(Base):
    """用户 ↔ 角色关联表（策略引擎分组规则的镜像）"""
    __tablename__ = "sys_user_role"
    __table_args__ = (UniqueConstraint("user_id", "role_id", name="uq_user_role"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    role_id = Column(Integer, ForeignKey("sys_role.id"), nullable=False, index=True)
