import asyncio
from contextlib import AbstractAsyncContextManager
from typing import Callable, Optional, Set
from uuid import UUID

from asset_store.config.settings import settings
from asset_store.core.logger import get_logger
from asset_store.infra.db.get_repo_factory import get_standalone_repository_factory
from asset_store.infra.db.repository_factory_auto import RepositoryFactory
from asset_store.infra.imaging.image_pipeline import PillowImagePipeline
from asset_store.infra.storage.storage_factory import get_storage_factory
from asset_store.metrics.asset_metrics import background_task_failures
from asset_store.services.file.blob_service import BlobService
from asset_store.services.file.variant_engine import VariantEngine
from asset_store.services.file.variant_service import VariantService

logger = get_logger(__name__)

FactoryProvider = Callable[[], AbstractAsyncContextManager[RepositoryFactory]]
ServiceBuilder = Callable[[RepositoryFactory], VariantService]


def build_default_variant_service(repo_factory: RepositoryFactory) -> VariantService:
    blob_service = BlobService(get_storage_factory().get_blob_store())
    return VariantService(repo_factory, blob_service, VariantEngine(PillowImagePipeline()))


class VariantDispatcher:
    """
    上传完成后的变体生成任务提交器。

    每个任务是一个独立的 asyncio.Task，使用自己的数据库会话；
    失败只记录日志并计数，不会影响已经提交的上传结果。
    """

    def __init__(
            self,
            max_concurrency: int = 2,
            factory_provider: FactoryProvider = get_standalone_repository_factory,
            service_builder: ServiceBuilder = build_default_variant_service,
    ):
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._factory_provider = factory_provider
        self._service_builder = service_builder
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, file_id: UUID) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, variant generation for file {file_id} not scheduled")
            return None

        task = loop.create_task(self._run(file_id), name=f"generate-variants-{file_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug(f"Queued variant generation for file {file_id}")
        return task

    async def _run(self, file_id: UUID) -> None:
        async with self._semaphore:
            async with self._factory_provider() as repo_factory:
                service = self._service_builder(repo_factory)
                variants = await service.generate_all(file_id)
        logger.info(f"Variant generation finished for file {file_id}: {len(variants)} variants")

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Variant task {task.get_name()} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            background_task_failures.labels("generate_variants").inc()
            logger.opt(exception=exc).error(f"Variant task {task.get_name()} failed: {exc}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """等待所有已提交的任务结束，用于应用关闭时。"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


_dispatcher: Optional[VariantDispatcher] = None


def get_variant_dispatcher() -> VariantDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = VariantDispatcher(max_concurrency=settings.assets.max_concurrent_generations)
    return _dispatcher
