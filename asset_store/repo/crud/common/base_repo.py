from typing import TypeVar, Generic, Optional, Type, Union, Dict, Any

from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from asset_store.core.logger import get_logger
from asset_store.core.types.common import ModelType
from asset_store.enums.file_enums import FileStatus
from asset_store.enums.query_enums import ViewMode
from asset_store.infra.db.repo_registrar import RepositoryRegistrar
from asset_store.metrics.repo_metrics import repository_sql_duration
from asset_store.models._model_utils.datetime import utcnow


CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)
UpdateSchemaType = TypeVar("UpdateSchemaType", bound=BaseModel)

logger = get_logger(__name__)


class BaseRepository(Generic[ModelType, CreateSchemaType, UpdateSchemaType], RepositoryRegistrar):
    def __init__(self, db: AsyncSession, model: Type[ModelType], context: dict = None):
        self.db = db
        self.model = model
        self.context = context or {}

    # ==========================
    # 数据创建方法 (Create)
    # ==========================

    async def create(self, obj_in: Union[CreateSchemaType, Dict[str, Any]]) -> ModelType:
        """
        创建一个新的对象实例，并将其添加到会话中。
        """
        create_data = obj_in if isinstance(obj_in, dict) else obj_in.model_dump(exclude_unset=False)
        db_obj = self.model(**create_data)
        self.db.add(db_obj)
        await self.db.flush()
        await self.db.refresh(db_obj)
        return db_obj

    # ==========================
    # 数据更新方法 (Update)
    # ==========================

    async def update(self, db_obj: ModelType, obj_in: Union[UpdateSchemaType, Dict[str, Any]]) -> ModelType:
        """
        在内存中更新一个ORM对象的属性 (Read-Modify-Write模式)。
        只有被赋值的列会出现在 UPDATE 语句里。
        """
        update_data = obj_in if isinstance(obj_in, dict) else obj_in.model_dump(exclude_unset=True)
        for field, value in update_data.items():
            setattr(db_obj, field, value)

        # 自动更新 updated_at 字段 (如果存在)
        if hasattr(db_obj, "updated_at"):
            setattr(db_obj, "updated_at", utcnow())

        self.db.add(db_obj)
        await self.db.flush()
        await self.db.refresh(db_obj)
        return db_obj

    # ==========================
    # 数据查询方法 (Query)
    # ==========================

    def _base_stmt(self, view_mode: str = ViewMode.ACTIVE):
        """
        构建基础查询语句。
        模型带 status 字段时，ACTIVE 排除已删除记录，DELETED 只看已删除记录。
        """
        stmt = select(self.model)
        status_col = getattr(self.model, "status", None)
        if status_col is None or view_mode == ViewMode.ALL:
            return stmt
        if view_mode == ViewMode.DELETED:
            return stmt.where(status_col == FileStatus.DELETED)
        return stmt.where(status_col != FileStatus.DELETED)

    async def get_by_id(self, id: Any, view_mode: str = ViewMode.ALL, fresh: bool = False) -> Optional[ModelType]:
        """
        fresh=True 时强制用数据库中的值覆盖会话里已加载的对象。
        """
        stmt = self._base_stmt(view_mode=view_mode).where(self.model.id == id)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        return await self._run_and_scalar(stmt, "get_by_id")

    async def count(self, view_mode: str = ViewMode.ACTIVE) -> int:
        stmt = select(func.count()).select_from(self._base_stmt(view_mode=view_mode).subquery())
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def _run_and_scalar(self, stmt, method: str):
        try:
            with repository_sql_duration.labels(self.__class__.__name__, method).time():
                result = await self.db.execute(stmt)
            return result.scalar_one_or_none()
        except Exception as e:
            logger.error(f"[{method}] Failed: {e}")
            raise

    async def _run_and_scalars(self, stmt, method: str):
        try:
            with repository_sql_duration.labels(self.__class__.__name__, method).time():
                result = await self.db.execute(stmt)
            return result.scalars().all()
        except Exception as e:
            logger.error(f"[{method}] Failed: {e}")
            raise
