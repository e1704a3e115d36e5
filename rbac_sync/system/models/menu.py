"""
菜单管理 ORM 模型 — 菜单 + 菜单/API 关联

parent_id = 0 表示根菜单；children 只在内存中组装（见 services/menu_tree.py），不持久化
"""
from datetime import datetime, UTC
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from rbac_sync.database import Base


class MenuType(str, PyEnum):
    """菜单类型枚举"""
    DIRECTORY = "directory"  # 目录
    MENU = "menu"            # 菜单
    BUTTON = "button"        # 按钮


class SysMenu(Base):
    __tablename__ = "sys_menu"

    id = Column(Integer, primary_key=True, autoincrement=True)
    parent_id = Column(Integer, default=0, nullable=False, index=True, comment="父菜单ID, 0 为根")
    name = Column(String(100), nullable=False, comment="菜单名称")
    path = Column(String(200), default="", comment="前端路由路径")
    component = Column(String(200), default="", comment="前端组件路径")
    icon = Column(String(50), default="", comment="图标名称")
    order_num = Column(Integer, default=0, comment="排序号")
    menu_type = Column(String(20), default=MenuType.MENU.value, comment="类型: directory|menu|button")
    enabled = Column(Boolean, default=True, comment="是否启用")
    perms = Column(String(100), default="", comment="权限标识")
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))
    updated_at = Column(DateTime, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))

    def __repr__(self) -> str:
        return f"<SysMenu(id={self.id}, parent_id={self.parent_id}, name={self.name!r})>"


class SysMenuApi(Base):
    """菜单 ↔ API 关联表"""
    __tablename__ = "sys_menu_api"
    __table_args__ = (UniqueConstraint("menu_id", "api_id", name="uq_menu_api"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    menu_id = Column(Integer, ForeignKey("sys_menu.id"), nullable=False, index=True)
    api_id = Column(Integer, ForeignKey("sys_api.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))
