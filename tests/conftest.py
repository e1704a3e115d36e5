"""
Pytest 配置和共享 fixtures
"""
import os

# 应用模块在导入时读取配置
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SUPER_ADMIN_ROLE_CODE", "super_admin")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rbac_core.security.policy_store import PolicyStoreError
from rbac_sync.database import Base, get_db
from rbac_sync.main import app
from rbac_sync.security.auth import create_access_token
from rbac_sync.system import models  # noqa: F401
from rbac_sync.system.models import MenuType, SysApi, SysMenu, SysRole
from rbac_sync.system.services.casbin_policy_store import CasbinPolicyStore, build_enforcer

ADMIN_USER_ID = 1


class FlakyPolicyStore(CasbinPolicyStore):
    """fail_on 中列出的操作抛出 PolicyStoreError，其余照常执行"""

    def __init__(self, enforcer, fail_on=()):
        super().__init__(enforcer)
        self.fail_on = set(fail_on)

    def _call(self, operation, fn, *args):
        if operation in self.fail_on:
            raise PolicyStoreError(f"{operation} unavailable", operation=operation)
        return super()._call(operation, fn, *args)


@pytest.fixture(scope="function")
def db_engine():
    """创建内存数据库引擎"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine):
    """创建数据库会话"""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def policy_store():
    """纯内存 Casbin 策略存储"""
    return CasbinPolicyStore(build_enforcer())


@pytest.fixture
def flaky_store():
    """可按操作注入故障的内存策略存储"""
    return FlakyPolicyStore(build_enforcer())


@pytest.fixture(scope="function")
def client(db_session, policy_store):
    """创建测试客户端"""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.state.policy_store = policy_store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.policy_store = None


# ============== 认证相关 Fixtures ==============

@pytest.fixture
def auth_headers(policy_store, make_role):
    """超级管理员用户的请求头"""
    make_role("super_admin")
    policy_store.add_grouping_policy(str(ADMIN_USER_ID), "super_admin")
    token = create_access_token(ADMIN_USER_ID)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers():
    """没有任何角色的普通用户"""
    token = create_access_token(42)
    return {"Authorization": f"Bearer {token}"}


# ============== 数据 Fixtures ==============

@pytest.fixture
def make_menu(db_session):
    def _make(name, parent_id=0, order_num=0, menu_type=MenuType.MENU.value, enabled=True, perms=""):
        menu = SysMenu(name=name, parent_id=parent_id, order_num=order_num,
                       menu_type=menu_type, enabled=enabled, perms=perms)
        db_session.add(menu)
        db_session.commit()
        db_session.refresh(menu)
        return menu
    return _make


@pytest.fixture
def make_api(db_session):
    def _make(path, method="GET", name="", group=""):
        api = SysApi(path=path, method=method, name=name, group=group)
        db_session.add(api)
        db_session.commit()
        db_session.refresh(api)
        return api
    return _make


@pytest.fixture
def make_role(db_session):
    def _make(code, name=None, enabled=True, sort=0):
        role = SysRole(code=code, name=name or code, enabled=enabled, sort=sort)
        db_session.add(role)
        db_session.commit()
        db_session.refresh(role)
        return role
    return _make
