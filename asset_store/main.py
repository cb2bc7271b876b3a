from contextlib import asynccontextmanager

from fastapi import FastAPI

from asset_store.core.global_exception import register_exception_handlers
from asset_store.core.logger import logger
from asset_store.infra.db.session import create_db_and_tables, dispose_engine
from asset_store.services.file.variant_dispatcher import get_variant_dispatcher


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 应用启动中，正在初始化资源...")

    # 初始化数据库
    await create_db_and_tables()
    logger.info("✅ 所有资源初始化完成")

    yield

    # 等待还在运行的后台变体任务，再释放连接池
    await get_variant_dispatcher().drain()
    await dispose_engine()
    logger.info("🛑 应用已关闭")


def create_app(**kwargs) -> FastAPI:
    """
    创建挂载了资产存储异常处理的 FastAPI 应用。
    路由由宿主应用自行定义，通过 asset_store.api.dependencies.services 获取服务。
    """
    app = FastAPI(title="Asset Store", lifespan=lifespan, **kwargs)
    register_exception_handlers(app)
    return app
