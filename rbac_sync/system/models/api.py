"""
API 目录 ORM 模型 — 可被保护的 path + method 端点
"""
from datetime import datetime, UTC

from sqlalchemy import Column, Integer, String, Boolean, DateTime, UniqueConstraint
from rbac_sync.database import Base


class SysApi(Base):
    __tablename__ = "sys_api"
    __table_args__ = (UniqueConstraint("path", "method", name="uq_api_path_method"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    path = Column(String(200), nullable=False, comment="API路径")
    method = Column(String(10), nullable=False, comment="请求方法(GET,POST,PUT,DELETE)")
    name = Column(String(100), default="", comment="API名称")
    group = Column("api_group", String(50), default="", comment="API分组")
    enabled = Column(Boolean, default=True)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))
    updated_at = Column(DateTime, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))

    @property
    def permission_code(self) -> str:
        """派生权限编码 "{path}:{method}" """
        return f"{self.path}:{self.method}"

    def __repr__(self) -> str:
        return f"<SysApi(id={self.id}, {self.method} {self.path})>"
