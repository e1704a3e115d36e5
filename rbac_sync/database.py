"""
数据库配置 - SQLAlchemy 持久化层
业务表（菜单/API/权限/角色及关联表）与 Casbin 策略表共用同一个数据库
"""
import logging
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker, declarative_base

from rbac_core.errors import ErrorKind, PermissionSyncError
from rbac_sync.config import settings

logger = logging.getLogger(__name__)

SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL

_connect_args = {"check_same_thread": False} if SQLALCHEMY_DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args=_connect_args,
    pool_pre_ping=True,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """依赖注入：获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session, operation: str):
    """在一个数据库事务中执行，正常退出时提交

    任何异常都会回滚；SQLAlchemy 异常转换为 PERSISTENCE_FAILURE。
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"{operation}: 数据库操作失败: {e}")
        raise PermissionSyncError(
            ErrorKind.PERSISTENCE_FAILURE, f"数据库操作失败: {operation}", operation=operation
        ) from e
    except Exception:
        db.rollback()
        raise


def init_db(bind=None):
    """初始化数据库表"""
    from rbac_sync.system import models  # noqa
    Base.metadata.create_all(bind=bind or engine)
