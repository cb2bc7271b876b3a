from typing import AsyncGenerator

from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from asset_store.config.settings import settings
from asset_store.models.files.file_asset import FileAsset  # noqa: F401  注册 table 模型


DATABASE_URL = settings.database.url

# 初始化数据库引擎和 Session
engine = create_async_engine(DATABASE_URL, echo=settings.database.echo)
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    提供一个数据库会话，并采用明确的事务控制。
    """
    session = AsyncSessionLocal()
    try:
        yield session
        # 如果路由函数成功执行（没有抛出异常），则在最后提交所有更改。
        await session.commit()
    except Exception:
        # 如果在处理过程中发生任何异常，则回滚所有更改。
        await session.rollback()
        raise
    finally:
        await session.close()


# 初始化数据库（启动时调用）
async def create_db_and_tables():
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def dispose_engine():
    await engine.dispose()
