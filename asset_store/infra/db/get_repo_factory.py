from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from asset_store.core.request_scope import get_request_scope
from asset_store.infra.db.repository_factory_auto import RepositoryFactory
from asset_store.infra.db.session import get_session, AsyncSessionLocal


# --- 版本一：为 FastAPI 依赖注入系统提供的工厂获取器 ---
def get_repository_factory(
        session: AsyncSession = Depends(get_session),
        context: dict = Depends(get_request_scope),
) -> RepositoryFactory:
    """
    专为 FastAPI API 请求设计的依赖注入函数。
    会话的提交与回滚由 get_session 负责。
    """
    return RepositoryFactory(db=session, user_id=context.get("user_id"), context=context)


# --- 版本二：为独立脚本/后台任务提供的工厂获取器 ---
@asynccontextmanager
async def get_standalone_repository_factory(
        context: Optional[dict] = None
) -> AsyncGenerator[RepositoryFactory, None]:
    """
    不依赖 FastAPI 请求的上下文管理器，用于后台变体生成等场景。
    正常退出时提交，异常时回滚。

    用法:
    async with get_standalone_repository_factory() as repo_factory:
        ...
    """
    session = AsyncSessionLocal()
    try:
        final_context = context or {}
        yield RepositoryFactory(db=session, context=final_context)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
