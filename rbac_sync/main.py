"""
RBAC Sync 主应用入口
菜单 / API / 角色与 Casbin 策略引擎的同步管理服务
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rbac_sync.config import settings
from rbac_sync.database import engine, init_db
from rbac_sync.system.routers import api_router, menu_router, rbac_router
from rbac_sync.system.services.casbin_policy_store import CasbinPolicyStore, build_enforcer

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    # 初始化数据库
    init_db()

    # 策略存储可由调用方（如测试）预先注入
    if getattr(app.state, "policy_store", None) is None:
        enforcer = build_enforcer(
            engine,
            model_path=settings.CASBIN_MODEL_PATH,
            auto_save=settings.CASBIN_AUTO_SAVE,
        )
        app.state.policy_store = CasbinPolicyStore(enforcer)
        logger.info(f"Casbin 策略引擎已加载: {len(enforcer.get_policy())} 条规则")

    yield


# 创建应用
app = FastAPI(
    title=settings.APP_NAME,
    description="菜单、API、角色与策略引擎规则的同步与对账",
    version="1.0.0",
    lifespan=lifespan
)

# CORS 配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 生产环境应限制具体域名
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(menu_router.router)
app.include_router(api_router.router)
app.include_router(rbac_router.role_router)
app.include_router(rbac_router.permission_router)
app.include_router(rbac_router.user_role_router)
app.include_router(rbac_router.sync_router)


@app.get("/")
def root():
    """根路径"""
    return {
        "name": settings.APP_NAME,
        "version": "1.0.0",
    }


@app.get("/health")
def health_check():
    """健康检查"""
    return {"status": "healthy"}
