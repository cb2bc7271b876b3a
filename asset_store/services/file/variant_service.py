from typing import List, Optional, Dict
from uuid import UUID

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from asset_store.config.config_schema import AssetSettings, VariantPresetConfig
from asset_store.core.exceptions import (
    BaseBusinessException,
    InvalidStateException,
    NotFoundException,
    UnsupportedVariantException,
    UpstreamFailureException,
)
from asset_store.enums.file_enums import FileStatus
from asset_store.infra.db.repository_factory_auto import RepositoryFactory
from asset_store.metrics.asset_metrics import (
    variant_cache_hits,
    variant_commit_conflicts,
    variant_generation_duration,
)
from asset_store.models._model_utils.datetime import utcnow
from asset_store.models.files.file_asset import FileAsset, merge_variants
from asset_store.repo.crud.file.file_asset_repo import FileAssetRepository
from asset_store.schemas.file.file_asset_schemas import FileVariant
from asset_store.services._base_service import BaseService
from asset_store.services.file.blob_service import BlobService
from asset_store.services.file.variant_engine import VariantEngine
from asset_store.utils.storage_keys import build_variant_key

# 这些类型的变体管线只有占位约定，不生成任何产物
PLACEHOLDER_MIME_PREFIXES = ("video/", "application/pdf")


class VariantVersionConflict(Exception):
    """条件更新落空：记录在读取之后被其他写入者改过。只在服务内部用于驱动重试。"""

    def __init__(self, file_id: UUID, version: int):
        super().__init__(f"Variant commit conflict on file {file_id} at version {version}")
        self.file_id = file_id
        self.version = version


class VariantService(BaseService):
    """
    派生产物（变体）的缓存服务。

    ensure_variant 的解析顺序:
      1. 记录里已就绪且对象仍存在 -> 直接返回
      2. 同一内容哈希的其他文件已有该变体 -> 复用同一个键
      3. 读原图、缩放、写入确定性的变体键

    variants 字段的持久化走乐观锁: 只写这一列，版本冲突时重新读取、按 type 合并后重试。
    """

    def __init__(
            self,
            repo_factory: RepositoryFactory,
            blob_service: BlobService,
            engine: VariantEngine,
            asset_settings: Optional[AssetSettings] = None,
    ):
        super().__init__()
        self.factory = repo_factory
        self.file_repo: FileAssetRepository = repo_factory.get_repo_by_type(FileAssetRepository)
        self.blob = blob_service
        self.engine = engine
        self.asset_settings = asset_settings or self.settings.assets
        self._image_presets: Dict[str, VariantPresetConfig] = {
            preset.type: preset for preset in self.asset_settings.image_variants
        }

    # ==========================
    # 预设
    # ==========================

    def get_presets(self, mime_type: str) -> List[VariantPresetConfig]:
        if self.engine.supports(mime_type):
            return list(self._image_presets.values())
        return []

    def _resolve_preset(self, file: FileAsset, variant_type: str) -> VariantPresetConfig:
        preset = self._image_presets.get(variant_type) if self.engine.supports(file.mime_type) else None
        if preset is None:
            raise UnsupportedVariantException(
                message=f"Variant '{variant_type}' is not supported for mime type '{file.mime_type}'.",
                extra={"file_id": str(file.id), "variant_type": variant_type},
            )
        return preset

    # ==========================
    # 公共接口
    # ==========================

    async def ensure_variant(self, file_id: UUID, variant_type: str) -> FileVariant:
        file = await self._load_live_file(file_id)
        expected_version = file.version

        recorded = file.find_variant(variant_type)
        if recorded and recorded.is_ready and await self.blob.exists(recorded.key):
            variant_cache_hits.labels("recorded").inc()
            return recorded

        preset = self._resolve_preset(file, variant_type)

        variant = await self._find_sibling_variant(file, variant_type)
        if variant is not None:
            source = "dedup"
            self.logger.info(f"Reusing variant '{variant_type}' of identical content for file {file.id}")
        else:
            source = "generated"
            variant = await self._generate(file, preset)

        await self.commit_variants(file.id, expected_version, [variant])
        variant_cache_hits.labels(source).inc()
        return variant

    async def generate_all(self, file_id: UUID) -> List[FileVariant]:
        """
        生成文件所属 MIME 类别的全部变体。
        同内容的其他文件已有就绪变体时，整体复制后直接返回。
        """
        file = await self._load_live_file(file_id)

        presets = self.get_presets(file.mime_type)
        if not presets:
            if file.mime_type.lower().startswith(PLACEHOLDER_MIME_PREFIXES):
                self.logger.info(f"Variant pipeline for {file.mime_type} is a placeholder, skipping file {file.id}")
            else:
                self.logger.debug(f"No variant pipeline for {file.mime_type}, skipping file {file.id}")
            return []

        copied = await self._collect_sibling_variants(file)
        if copied:
            await self.commit_variants(file.id, file.version, copied)
            variant_cache_hits.labels("dedup").inc(len(copied))
            self.logger.info(f"Copied {len(copied)} variants from identical content for file {file.id}")
            return copied

        results: List[FileVariant] = []
        for preset in presets:
            try:
                results.append(await self.ensure_variant(file.id, preset.type))
            except BaseBusinessException as e:
                self.logger.warning(f"Variant '{preset.type}' failed for file {file.id}: {e}")
        return results

    async def get_variants(self, file_id: UUID) -> List[FileVariant]:
        """只返回已就绪的变体。"""
        file = await self.file_repo.get_by_id(file_id, fresh=True)
        if file is None:
            raise NotFoundException(message="File not found")
        return file.get_ready_variants()

    async def is_variant_ready(self, file_id: UUID, variant_type: str) -> bool:
        file = await self.file_repo.get_by_id(file_id, fresh=True)
        if file is None:
            return False
        variant = file.find_variant(variant_type)
        return bool(variant and variant.is_ready)

    async def commit_variants(self, file_id: UUID, expected_version: int, variants: List[FileVariant]) -> FileAsset:
        """
        【乐观锁】把 variants（本次新增或更新的条目）合并进记录。

        每一轮: 读取最新记录，按 type 合并（本次写入者覆盖同 type，其余 type 保留），
        再以读到的版本号做条件更新。条件更新落空说明有并发写入，线性退避后重试，
        重试 commit_retries 次仍失败则抛出 UpstreamFailureException。
        调用方传入的 expected_version 过期不算冲突，不占用重试次数。
        """
        max_retries = self.asset_settings.commit_retries
        backoff = self.asset_settings.commit_backoff_ms / 1000

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(VariantVersionConflict),
            wait=wait_incrementing(start=backoff, increment=backoff),
            stop=stop_after_attempt(max_retries + 1),
            before_sleep=self._log_commit_retry,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    stale_check = expected_version if attempt.retry_state.attempt_number == 1 else None
                    return await self._try_commit_variants(file_id, variants, stale_check)
        except RetryError as e:
            self.logger.error(f"Giving up variant commit on file {file_id} after {max_retries + 1} attempts")
            raise UpstreamFailureException(
                message="Failed to commit variants after concurrent updates.",
                extra={"file_id": str(file_id), "retries": max_retries},
            ) from e

    async def _try_commit_variants(
            self,
            file_id: UUID,
            variants: List[FileVariant],
            expected_version: Optional[int] = None,
    ) -> FileAsset:
        current = await self._reload(file_id)
        if expected_version is not None and current.version != expected_version:
            self.logger.debug(
                f"File {file_id} moved from version {expected_version} to {current.version}, merging onto latest"
            )

        merged = merge_variants(current.get_variants(), variants)
        written = await self.file_repo.update_variants_if_version(
            file_id, current.version, FileAsset.dump_variants(merged)
        )
        if not written:
            variant_commit_conflicts.inc()
            raise VariantVersionConflict(file_id, current.version)
        return await self._reload(file_id)

    def _log_commit_retry(self, retry_state: RetryCallState) -> None:
        conflict = retry_state.outcome.exception()
        self.logger.warning(
            f"{conflict} (attempt {retry_state.attempt_number}), "
            f"retrying in {retry_state.next_action.sleep:.3f}s"
        )

    # ==========================
    # 内部辅助方法
    # ==========================

    async def _reload(self, file_id: UUID) -> FileAsset:
        file = await self.file_repo.get_by_id(file_id, fresh=True)
        if file is None:
            raise NotFoundException(message="File not found")
        return file

    async def _load_live_file(self, file_id: UUID) -> FileAsset:
        file = await self._reload(file_id)
        if file.status == FileStatus.DELETED:
            raise InvalidStateException(message="Cannot build variants for a deleted file")
        return file

    async def _find_sibling_variant(self, file: FileAsset, variant_type: str) -> Optional[FileVariant]:
        for sibling in await self.file_repo.find_siblings(file.content_hash, exclude_id=file.id):
            candidate = sibling.find_variant(variant_type)
            if candidate and candidate.is_ready and await self.blob.exists(candidate.key):
                return candidate.model_copy()
        return None

    async def _collect_sibling_variants(self, file: FileAsset) -> List[FileVariant]:
        for sibling in await self.file_repo.find_siblings(file.content_hash, exclude_id=file.id):
            ready = sibling.get_ready_variants()
            if ready:
                return [v.model_copy() for v in ready]
        return []

    async def _generate(self, file: FileAsset, preset: VariantPresetConfig) -> FileVariant:
        key = build_variant_key(file.content_hash, preset.type, preset.format.value, file.created_at)

        with variant_generation_duration.labels(preset.type).time():
            original = await self.blob.get(file.storage_key)
            rendered = await self.engine.render(original, preset)
            await self.blob.put(key, rendered.data, rendered.content_type)

        self.logger.info(
            f"Generated variant '{preset.type}' for file {file.id}: {rendered.width}x{rendered.height}, "
            f"{rendered.size} bytes"
        )
        return FileVariant(
            type=preset.type,
            key=key,
            width=rendered.width,
            height=rendered.height,
            size=rendered.size,
            ready_at=utcnow(),
            metadata={"format": preset.format.value, "quality": preset.quality},
        )
