"""FastAPI应用主文件.

Review note:
- lifespan 中显式构造 Database / ModelCatalog / 工具注册表 / 编排器 / 对账器，
  全部挂到 app.state，路由通过依赖读取，不使用模块级单例。
- 启动时先做一次对账，之后按 RECONCILE_INTERVAL_SEC 周期运行。
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager, suppress
import asyncio
import logging
from typing import Optional

from app.config import Settings, settings as default_settings
from app.database import Database
from app.services.crypto import build_cipher
from app.services.generation.ledger import GenerationLedger
from app.services.generation.model_profile import ModelCatalog
from app.services.generation.orchestrator import GenerationOrchestrator
from app.services.generation.reconciler import StaleReconciler
from app.services.persistence import PersistenceGateway
from app.services.tools.registry import ToolRegistry
from app.utils.openai_helper import ModelStreamer

logger = logging.getLogger("uvicorn.error")


def build_services(app: FastAPI, settings: Settings, streamer: Optional[ModelStreamer] = None) -> None:
    """构造服务对象并挂到 app.state"""
    db = Database(settings.DATABASE_URL, echo=settings.DEBUG)
    catalog = ModelCatalog.from_settings(settings)
    gateway = PersistenceGateway(db.session_maker, build_cipher(settings.CONTENT_ENCRYPTION_KEY))
    ledger = GenerationLedger(db.session_maker)
    reconciler = StaleReconciler(
        db.session_maker,
        gateway,
        stale_threshold_sec=settings.STALE_GENERATION_THRESHOLD_SEC,
        retention_sec=settings.LEDGER_RETENTION_SEC,
    )
    tool_registry = ToolRegistry(settings)

    app.state.settings = settings
    app.state.db = db
    app.state.catalog = catalog
    app.state.gateway = gateway
    app.state.ledger = ledger
    app.state.reconciler = reconciler
    app.state.tool_registry = tool_registry
    app.state.orchestrator = GenerationOrchestrator(
        db.session_maker,
        catalog,
        streamer or ModelStreamer.from_settings(settings),
        tool_registry,
        gateway,
        ledger,
        reconciler,
        max_steps=settings.GENERATION_MAX_STEPS,
        timeout_sec=settings.GENERATION_TIMEOUT_SEC,
        checkpoint_interval_sec=settings.CHECKPOINT_INTERVAL_SEC,
        title_model=settings.TITLE_MODEL,
        auto_reasoning_model=settings.AUTO_REASONING_MODEL,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    settings: Settings = app.state.settings if hasattr(app.state, "settings") else default_settings
    logger.info("启动 %s 后端...", settings.APP_NAME)

    if not hasattr(app.state, "orchestrator"):
        build_services(app, settings)

    # 初始化数据库
    await app.state.db.init_db()
    logger.info("数据库初始化完成")
    logger.info(
        "models=%s tools=%s",
        ",".join(p.model_id for p in app.state.catalog.profiles()),
        ",".join(app.state.tool_registry.available_capabilities()) or "-",
    )

    reconcile_task = asyncio.create_task(
        app.state.reconciler.run_forever(settings.RECONCILE_INTERVAL_SEC),
        name="stale-reconciler",
    )

    yield

    # 关闭时执行
    logger.info("关闭 %s 后端...", settings.APP_NAME)
    reconcile_task.cancel()
    with suppress(asyncio.CancelledError):
        await reconcile_task
    await app.state.orchestrator.shutdown()
    await app.state.db.dispose()


def create_app(settings: Optional[Settings] = None, streamer: Optional[ModelStreamer] = None) -> FastAPI:
    """
    创建FastAPI应用

    传入 settings / streamer 时立即构造服务（测试用）；否则在 lifespan 中构造。
    """
    app = FastAPI(
        title=(settings or default_settings).APP_NAME,
        version=(settings or default_settings).APP_VERSION,
        description="对话生成编排后端API",
        lifespan=lifespan,
    )
    if settings is not None:
        build_services(app, settings, streamer)

    # 配置CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=(settings or default_settings).cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        """健康检查"""
        current = app.state.settings if hasattr(app.state, "settings") else default_settings
        return {
            "status": "healthy",
            "service": current.APP_NAME,
            "version": current.APP_VERSION,
        }

    # 导入并注册路由
    from app.api.v1 import chat, chats, settings as settings_api
    app.include_router(chat.router, prefix="/api/v1", tags=["chat"])
    app.include_router(chats.router, prefix="/api/v1", tags=["chats"])
    app.include_router(settings_api.router, prefix="/api/v1", tags=["settings"])
    return app


# 创建FastAPI应用
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
