from typing import Optional, List, Dict, Any
from uuid import UUID

from math import ceil

from sqlalchemy import update, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from asset_store.enums.query_enums import ViewMode
from asset_store.models._model_utils.datetime import utcnow
from asset_store.models.files.file_asset import FileAsset
from asset_store.repo.crud.common.base_repo import BaseRepository
from asset_store.schemas.common.page_schemas import PageResponse
from asset_store.schemas.file.file_asset_schemas import FileAssetCreate, FileAssetRead


class FileAssetRepository(BaseRepository[FileAsset, FileAssetCreate, FileAssetRead]):
    """
    FileAssetRepository 提供文件资产的持久化操作。
    除 BaseRepository 的通用方法外，还包含按内容哈希去重查询和 variants 字段的乐观锁写入。
    """
    def __init__(self, db: AsyncSession, context: Optional[dict] = None):
        super().__init__(db, FileAsset, context)

    async def get_by_content_hash(self, content_hash: str) -> Optional[FileAsset]:
        """
        查找该哈希对应的未删除记录。正常情况下最多只有一条。
        """
        stmt = (
            self._base_stmt(view_mode=ViewMode.ACTIVE)
            .where(self.model.content_hash == content_hash)
            .order_by(self.model.created_at.asc())
            .limit(1)
        )
        return await self._run_and_scalar(stmt, "get_by_content_hash")

    async def get_by_storage_key(self, storage_key: str, view_mode: str = ViewMode.ALL) -> Optional[FileAsset]:
        stmt = self._base_stmt(view_mode=view_mode).where(self.model.storage_key == storage_key).limit(1)
        return await self._run_and_scalar(stmt, "get_by_storage_key")

    async def find_siblings(self, content_hash: str, exclude_id: UUID) -> List[FileAsset]:
        """
        同一内容哈希下的其他未删除记录，用于跨文件复用变体。
        """
        stmt = (
            self._base_stmt(view_mode=ViewMode.ACTIVE)
            .where(self.model.content_hash == content_hash)
            .where(self.model.id != exclude_id)
            .order_by(self.model.created_at.asc())
        )
        return await self._run_and_scalars(stmt, "find_siblings")

    async def is_key_referenced_elsewhere(self, key: str, content_hash: str, exclude_id: UUID) -> bool:
        """
        判断某个对象键是否仍被其他未删除的同内容记录引用。
        原始文件键和变体键都只由内容哈希和年月决定，所以只需要在兄弟记录里找。
        """
        for sibling in await self.find_siblings(content_hash, exclude_id):
            if sibling.storage_key == key or any(v.key == key for v in sibling.get_variants()):
                return True
        return False

    async def update_variants_if_version(
            self,
            file_id: UUID,
            expected_version: int,
            variants: List[Dict[str, Any]],
    ) -> bool:
        """
        【乐观锁】只写 variants 字段，并且只在版本号未变化时生效。

        Returns:
            True 表示写入成功 (版本号 +1)，False 表示期间有其他写入者抢先提交。
        """
        stmt = (
            update(self.model)
            .where(self.model.id == file_id)
            .where(self.model.version == expected_version)
            .values(variants=variants, version=expected_version + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount > 0

    async def list_by_owner(self, owner_id: str, limit: int = 50, offset: int = 0) -> PageResponse[FileAsset]:
        """
        按上传者列出未删除的文件，最新的在前。
        """
        stmt = self._base_stmt(view_mode=ViewMode.ACTIVE).where(self.model.owner_id == owner_id)

        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = (await self.db.execute(count_stmt)).scalar_one_or_none() or 0

        stmt = stmt.order_by(self.model.created_at.desc()).offset(offset).limit(limit)
        items = await self._run_and_scalars(stmt, "list_by_owner") if total else []

        return PageResponse(
            items=items,
            total=total,
            page=offset // limit + 1 if limit > 0 else 1,
            per_page=limit,
            total_pages=ceil(total / limit) if limit > 0 else 0,
        )
