"""AOVault 主应用入口."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from aovault import __version__
from aovault.api import works
from aovault.config import get_settings
from aovault.fetcher import close_orchestrator
from aovault.models.database import close_db, init_db
from aovault.scheduler import create_scheduler, shutdown_scheduler

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """应用生命周期管理."""
    app_settings = get_settings()

    # 启动时初始化
    logger.info("正在初始化数据库...")
    await init_db(app_settings.database_url)

    Path(app_settings.storage_dir).mkdir(parents=True, exist_ok=True)

    logger.info("正在启动定时任务...")
    create_scheduler(app_settings)

    logger.info("AOVault 启动完成！")
    yield

    # 关闭时清理
    logger.info("正在关闭...")
    await shutdown_scheduler()
    await close_orchestrator()
    await close_db()
    logger.info("AOVault 已关闭")


app = FastAPI(
    title="AOVault",
    description="AO3 同人作品收藏与离线阅读",
    version=__version__,
    lifespan=lifespan,
)

# CORS 配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(works.router)


@app.get("/")
async def root() -> dict:
    """根路径."""
    return {
        "name": "AOVault",
        "version": __version__,
        "description": "AO3 同人作品收藏与离线阅读",
    }


@app.get("/health")
async def health() -> dict:
    """健康检查."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "aovault.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
