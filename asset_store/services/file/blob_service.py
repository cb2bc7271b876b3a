from typing import Callable, TypeVar

from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from asset_store.core.exceptions import UpstreamFailureException
from asset_store.infra.storage.storage_interface import BlobStoreInterface
from asset_store.metrics.asset_metrics import upstream_failures
from asset_store.services._base_service import BaseService

R = TypeVar("R")

# 可以重试的底层错误：网络抖动、5xx、连接断开
TRANSIENT_ERRORS = (ClientError, BotoCoreError, ConnectionError, TimeoutError)


class BlobService(BaseService):
    """
    对象存储的异步门面。

    每个阻塞调用都放进线程池执行，瞬时错误自动重试，
    重试耗尽后统一转换为 UpstreamFailureException，调用方不会看到存储后端特有的异常。
    """

    def __init__(self, blob_store: BlobStoreInterface):
        super().__init__()
        self.blob_store = blob_store

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        wait=wait_fixed(0.5),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _run(self, func: Callable[..., R], *args, **kwargs) -> R:
        return await run_in_threadpool(func, *args, **kwargs)

    async def _call(self, operation: str, key: str, func: Callable[..., R], *args, **kwargs) -> R:
        try:
            return await self._run(func, *args, **kwargs)
        except TRANSIENT_ERRORS as e:
            self.logger.error(f"Blob store '{operation}' failed for {key}: {e}")
            upstream_failures.labels(operation).inc()
            raise UpstreamFailureException(
                message=f"Object storage '{operation}' failed.",
                extra={"key": key},
            ) from e
        except Exception as e:
            self.logger.exception(f"Unexpected error during blob store '{operation}' for {key}: {e}")
            upstream_failures.labels(operation).inc()
            raise UpstreamFailureException(
                message=f"Unexpected error during object storage '{operation}'.",
                extra={"key": key},
            ) from e

    # --- 公共服务接口 ---

    async def exists(self, key: str) -> bool:
        return await self._call("exists", key, self.blob_store.exists, key)

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        self.logger.info(f"Uploading {key} ({len(data)} bytes, {content_type})")
        await self._call("put", key, self.blob_store.put, key, data, content_type)

    async def get(self, key: str) -> bytes:
        return await self._call("get", key, self.blob_store.get, key)

    async def delete(self, key: str) -> None:
        await self._call("delete", key, self.blob_store.delete, key)

    async def presign_upload(self, key: str, content_type: str, ttl: int) -> str:
        return await self._call("presign_upload", key, self.blob_store.presign_upload, key, content_type, ttl)

    async def presign_download(self, key: str, ttl: int) -> str:
        return await self._call("presign_download", key, self.blob_store.presign_download, key, ttl)
