import hashlib
import re
from typing import Optional, Union
from uuid import UUID

from asset_store.config.config_schema import AssetSettings
from asset_store.core.exceptions import (
    AccessDeniedException,
    ConflictException,
    InvalidArgumentException,
    InvalidStateException,
    NotFoundException,
    StorageInconsistencyException,
    UpstreamFailureException,
)
from asset_store.enums.file_enums import FileStatus, FileVisibility
from asset_store.infra.db.repository_factory_auto import RepositoryFactory
from asset_store.infra.db.session_hooks import call_after_commit
from asset_store.metrics.asset_metrics import background_task_failures
from asset_store.models._model_utils.datetime import utcnow
from asset_store.models.files.file_asset import FileAsset
from asset_store.repo.crud.file.file_asset_repo import FileAssetRepository
from asset_store.schemas.common.page_schemas import PageResponse
from asset_store.schemas.file.file_asset_schemas import (
    AssetCompleteRequest,
    AssetDeleteSummary,
    AssetInitResponse,
    AssetLinkRequest,
    FileAssetCreate,
    FileAssetRead,
    FileLink,
)
from asset_store.services._base_service import BaseService
from asset_store.services.file.asset_policies import (
    AccessGate,
    EntityTypeVisibilityPolicy,
    OwnerVisibilityGate,
    VisibilityPolicy,
)
from asset_store.services.file.blob_service import BlobService
from asset_store.services.file.variant_dispatcher import VariantDispatcher
from asset_store.services.file.variant_service import VariantService
from asset_store.utils.storage_keys import build_content_key, get_extension_from_mime

SHA256_HEX = re.compile(r"^[0-9a-f]{64}$")


class AssetService(BaseService):
    """
    资产存储的业务编排层。

    负责两阶段上传、引用计数 (link / unlink) 驱动的状态机、删除与恢复、可见性以及下载地址签发。
    字节级别的工作委托给 BlobService 与 VariantService，记录的读写通过 FileAssetRepository。

    状态机:
        active --(最后一个 link 被移除)--> trash
        trash  --(restore 或新的 link)--> active
        任意   --(delete)--> deleted (终态)
    """

    def __init__(
            self,
            repo_factory: RepositoryFactory,
            blob_service: BlobService,
            variant_service: VariantService,
            dispatcher: VariantDispatcher,
            visibility_policy: Optional[VisibilityPolicy] = None,
            access_gate: Optional[AccessGate] = None,
            asset_settings: Optional[AssetSettings] = None,
    ):
        super().__init__()
        self.repo_factory = repo_factory
        self.file_repo: FileAssetRepository = repo_factory.get_repo_by_type(FileAssetRepository)
        self.blob = blob_service
        self.variant_service = variant_service
        self.dispatcher = dispatcher
        self.asset_settings = asset_settings or self.settings.assets
        self.visibility_policy = visibility_policy or EntityTypeVisibilityPolicy(
            self.asset_settings.public_entity_types
        )
        self.access_gate = access_gate or OwnerVisibilityGate()

    # ==========================
    # 上传协议 (两阶段)
    # ==========================

    async def init_upload(
            self,
            owner_id: str,
            expected_hash: str,
            expected_size: int,
            expected_mime: str,
    ) -> AssetInitResponse:
        """
        第一阶段：登记记录并签发上传地址。

        相同内容已存在（未删除）时不新建记录，重新签发指向已有 storage_key 的上传地址，
        不同用户上传同一份内容会落到同一条记录、同一个对象上。
        """
        content_hash = self._normalize_hash(expected_hash)
        if expected_size < 0:
            raise InvalidArgumentException(message="expected_size must not be negative")
        if not expected_mime:
            raise InvalidArgumentException(message="expected_mime is required")

        ttl = self.asset_settings.upload_url_ttl

        existing = await self.file_repo.get_by_content_hash(content_hash)
        if existing:
            self.logger.info(f"Content {content_hash} already stored as file {existing.id}, reusing it")
            upload_url = await self.blob.presign_upload(existing.storage_key, expected_mime, ttl)
            return AssetInitResponse(upload_url=upload_url, file_id=existing.id, content_hash=content_hash)

        created_at = utcnow()
        storage_key = build_content_key(content_hash, expected_mime, created_at)
        file = await self.file_repo.create(FileAssetCreate(
            content_hash=content_hash,
            size=expected_size,
            mime_type=expected_mime,
            extension=get_extension_from_mime(expected_mime),
            owner_id=owner_id,
            storage_key=storage_key,
            status=FileStatus.ACTIVE,
            created_at=created_at,
        ))

        upload_url = await self.blob.presign_upload(storage_key, expected_mime, ttl)
        self.logger.info(f"Asset upload initialized: file={file.id}, key={storage_key}")
        return AssetInitResponse(upload_url=upload_url, file_id=file.id, content_hash=content_hash)

    async def complete_upload(self, request: AssetCompleteRequest) -> FileAsset:
        """
        第二阶段：确认对象已写入存储，补全描述信息，并在事务提交后提交后台变体生成。
        变体生成失败不会影响本次调用的结果。
        """
        file = await self._get_file_or_404(request.file_id)
        # 同一内容删除后重新上传会落到同一个键，不能借此改写已删除的记录
        self._ensure_not_deleted(file, "complete")

        if not await self.blob.exists(file.storage_key):
            raise StorageInconsistencyException(
                message="Uploaded object not found in storage",
                extra={"file_id": str(file.id), "storage_key": file.storage_key},
            )

        update_data = {
            "original_name": request.original_name,
            "size": request.size,
            "mime_type": request.mime,
        }
        if request.visibility:
            update_data["visibility"] = request.visibility
        if request.metadata is not None:
            update_data["metadata_"] = dict(request.metadata)

        file = await self.file_repo.update(file, update_data)
        self.logger.info(f"Asset upload completed: file={file.id}, name={file.original_name}")

        self._queue_variant_generation(file.id)
        return file

    @staticmethod
    def calculate_sha256(data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()

    # ==========================
    # 引用计数 / 状态机
    # ==========================

    async def link(self, file_id: UUID, request: AssetLinkRequest) -> FileAsset:
        file = await self._get_file_or_404(file_id)
        self._ensure_not_deleted(file, "link")

        if file.find_link(request.app, request.entity_type, request.entity_id):
            return file

        links = file.get_links()
        links.append(FileLink(
            app=request.app,
            entity_type=request.entity_type,
            entity_id=request.entity_id,
            created_by=request.created_by,
        ))
        update_data = {"links": [link.model_dump(mode="json") for link in links]}

        # 显式指定优先；推断结果为 private 时保持原值，不做降级
        if request.visibility:
            update_data["visibility"] = request.visibility
        else:
            inferred = self.visibility_policy.infer(request.app, request.entity_type)
            if inferred != FileVisibility.PRIVATE:
                update_data["visibility"] = inferred

        if file.status == FileStatus.TRASH:
            update_data["status"] = FileStatus.ACTIVE

        file = await self.file_repo.update(file, update_data)
        self.logger.info(
            f"File {file.id} linked to {request.app}/{request.entity_type}/{request.entity_id} "
            f"({len(links)} links)"
        )
        return file

    async def unlink(self, file_id: UUID, app: str, entity_type: str, entity_id: str) -> FileAsset:
        file = await self._get_file_or_404(file_id)
        self._ensure_not_deleted(file, "unlink")

        links = file.get_links()
        remaining = [link for link in links if not link.matches(app, entity_type, entity_id)]
        if len(remaining) == len(links):
            return file

        update_data = {"links": [link.model_dump(mode="json") for link in remaining]}
        if not remaining and file.status == FileStatus.ACTIVE:
            update_data["status"] = FileStatus.TRASH

        file = await self.file_repo.update(file, update_data)
        self.logger.info(
            f"File {file.id} unlinked from {app}/{entity_type}/{entity_id} "
            f"({len(remaining)} links left, status={file.status.value})"
        )
        return file

    async def restore(self, file_id: UUID) -> FileAsset:
        file = await self._get_file_or_404(file_id)
        if file.status != FileStatus.TRASH:
            raise InvalidStateException(
                message="File is not in trash",
                extra={"file_id": str(file.id), "status": file.status.value},
            )
        file = await self.file_repo.update(file, {"status": FileStatus.ACTIVE})
        self.logger.info(f"File {file.id} restored from trash")
        return file

    async def get_deletion_summary(self, file_id: UUID) -> AssetDeleteSummary:
        file = await self._get_file_or_404(file_id)
        return self._build_deletion_summary(file)

    async def delete(self, file_id: UUID, force: bool = False) -> AssetDeleteSummary:
        """
        永久删除。仍有引用且未指定 force 时抛出 ConflictException。
        存储对象逐个尽力删除，单个失败只记录日志；仍被同内容的其他记录使用的对象会保留。
        """
        file = await self._get_file_or_404(file_id)
        summary = self._build_deletion_summary(file)

        if file.status == FileStatus.DELETED:
            self.logger.info(f"File {file.id} is already deleted")
            return summary

        if not summary.would_delete and not force:
            raise ConflictException(
                message="Cannot delete file with active links. Use force=true to override.",
                extra=summary.model_dump(mode="json"),
            )

        keys = [file.storage_key] + [v.key for v in file.get_variants()]
        for key in dict.fromkeys(keys):
            if await self.file_repo.is_key_referenced_elsewhere(key, file.content_hash, file.id):
                self.logger.info(f"Keeping {key}: still referenced by identical content")
                continue
            try:
                await self.blob.delete(key)
            except UpstreamFailureException as e:
                self.logger.warning(f"Failed to delete object {key} of file {file.id}: {e}")

        await self.file_repo.update(file, {"status": FileStatus.DELETED})
        self.logger.info(f"File {file.id} deleted (force={force}, links={summary.remaining_links})")
        return summary

    # ==========================
    # 可见性 / 访问
    # ==========================

    async def update_visibility(self, file_id: UUID, visibility: FileVisibility) -> FileAsset:
        file = await self._get_file_or_404(file_id)
        self._ensure_not_deleted(file, "change visibility of")
        file = await self.file_repo.update(file, {"visibility": visibility})
        self.logger.info(f"File {file.id} visibility set to {visibility.value}")
        return file

    async def get_file(self, file_id_or_key: Union[UUID, str]) -> Optional[FileAsset]:
        """
        按 id 查找；不是合法 UUID 时回退到旧数据的 storage_key 查找。
        TODO: 旧客户端全部改为传 id 之后删除 storage_key 回退分支。
        """
        if isinstance(file_id_or_key, UUID):
            return await self.file_repo.get_by_id(file_id_or_key)

        try:
            file_id = UUID(str(file_id_or_key))
        except ValueError:
            self.logger.warning(f"'{file_id_or_key}' is not a file id, trying legacy storage key lookup")
            file = await self.file_repo.get_by_storage_key(str(file_id_or_key))
            if file:
                self.logger.info(f"Resolved legacy storage key {file_id_or_key} to file {file.id}")
            return file

        return await self.file_repo.get_by_id(file_id)

    async def get_file_url(
            self,
            file_id: Union[UUID, str],
            viewer_id: Optional[str] = None,
            variant: Optional[str] = None,
            expires_in: Optional[int] = None,
            context: Optional[dict] = None,
    ) -> str:
        file = await self.get_file(file_id)
        if file is None or file.status == FileStatus.DELETED:
            raise NotFoundException(message="File not found")

        if file.visibility != FileVisibility.PUBLIC:
            if not await self.access_gate.can_access(file, viewer_id=viewer_id, context=context):
                raise AccessDeniedException(
                    message="Access to this file is denied",
                    extra={"file_id": str(file.id)},
                )

        storage_key = file.storage_key
        if variant:
            ensured = await self.variant_service.ensure_variant(file.id, variant)
            storage_key = ensured.key

        # 先确认对象存在，避免签发一个必然 404 的地址
        if not await self.blob.exists(storage_key):
            raise StorageInconsistencyException(
                message="File not found in storage",
                extra={"file_id": str(file.id), "storage_key": storage_key},
            )

        ttl = expires_in or self.asset_settings.download_url_ttl
        url = await self.blob.presign_download(storage_key, ttl)
        self.logger.debug(f"Generated download URL for file {file.id} (variant={variant}, key={storage_key})")
        return url

    async def list_files_by_user(self, owner_id: str, limit: int = 50, offset: int = 0) -> PageResponse[FileAssetRead]:
        if limit <= 0 or offset < 0:
            raise InvalidArgumentException(message="limit must be positive and offset must not be negative")
        page = await self.file_repo.list_by_owner(owner_id, limit=limit, offset=offset)
        return PageResponse[FileAssetRead](
            items=[FileAssetRead.model_validate(item) for item in page.items],
            total=page.total,
            page=page.page,
            per_page=page.per_page,
            total_pages=page.total_pages,
        )

    # ==========================
    # 内部辅助方法
    # ==========================

    @staticmethod
    def _normalize_hash(value: str) -> str:
        content_hash = (value or "").strip().lower()
        if not SHA256_HEX.match(content_hash):
            raise InvalidArgumentException(
                message="Content hash must be a 64-character hex SHA-256 digest",
                extra={"content_hash": value},
            )
        return content_hash

    async def _get_file_or_404(self, file_id: UUID) -> FileAsset:
        file = await self.file_repo.get_by_id(file_id)
        if file is None:
            raise NotFoundException(message="File not found", extra={"file_id": str(file_id)})
        return file

    @staticmethod
    def _ensure_not_deleted(file: FileAsset, action: str) -> None:
        if file.status == FileStatus.DELETED:
            raise InvalidStateException(
                message=f"Cannot {action} a deleted file",
                extra={"file_id": str(file.id)},
            )

    @staticmethod
    def _build_deletion_summary(file: FileAsset) -> AssetDeleteSummary:
        links = file.get_links()
        return AssetDeleteSummary(
            file_id=file.id,
            would_delete=len(links) == 0,
            affected_apps=list(dict.fromkeys(link.app for link in links)),
            remaining_links=len(links),
            variants=[v.type for v in file.get_variants()],
        )

    def _queue_variant_generation(self, file_id: UUID) -> None:
        # 后台任务使用独立会话读取记录，必须等本次事务提交后再提交任务
        call_after_commit(
            self.repo_factory.get_session(),
            lambda: self._submit_variant_job(file_id),
        )

    def _submit_variant_job(self, file_id: UUID) -> None:
        try:
            self.dispatcher.submit(file_id)
        except Exception as e:
            background_task_failures.labels("queue_variants").inc()
            self.logger.error(f"Failed to queue variant generation for file {file_id}: {e}")
