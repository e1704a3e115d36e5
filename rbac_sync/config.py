"""
应用配置
从环境变量 / .env 读取配置
"""
from typing import Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用设置"""

    # 应用基础配置
    APP_NAME: str = "RBAC Sync"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # 数据库配置（策略表 casbin_rule 与业务表在同一个库中）
    DATABASE_URL: str = "sqlite:///./rbac_sync.db"

    # JWT 配置（仅用于解析管理端请求中的用户身份）
    SECRET_KEY: str = "your-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 480

    # Casbin 配置
    CASBIN_MODEL_PATH: Optional[str] = None  # 为空时使用内置 RBAC 模型
    CASBIN_AUTO_SAVE: bool = True

    # 拥有该角色编码的用户可看到全部启用菜单；为空表示不启用
    SUPER_ADMIN_ROLE_CODE: Optional[str] = None

    model_config = ConfigDict(env_file=".env", case_sensitive=True)


# 全局设置实例
settings = Settings()
