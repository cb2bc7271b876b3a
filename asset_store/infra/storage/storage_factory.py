import threading
from typing import Optional

from asset_store.config.config_schema import S3ClientConfig
from asset_store.config.settings import settings
from asset_store.core.logger import logger
from asset_store.infra.storage.storage_interface import BlobStoreInterface
from asset_store.infra.storage.s3_client import S3BlobStore


class StorageFactory:
    """
    一个单例的存储客户端工厂。

    首次访问时根据 settings.storage 创建底层客户端，之后复用同一个实例。
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls, *args, **kwargs):
        if not cls._instance:
            with cls._lock:
                # Double-checked locking
                if not cls._instance:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, config: Optional[S3ClientConfig] = None):
        if getattr(self, "_initialized", False):
            return

        with self._lock:
            if getattr(self, "_initialized", False):
                return
            self._config = config
            self._blob_store: Optional[BlobStoreInterface] = None
            self._initialized = True

    def get_blob_store(self) -> BlobStoreInterface:
        if self._blob_store is None:
            with self._lock:
                if self._blob_store is None:
                    self._blob_store = self._create_blob_store()
        return self._blob_store

    def _create_blob_store(self) -> BlobStoreInterface:
        config = self._config
        if config is None:
            config = settings.storage

        logger.info(f"Initializing blob store of type '{config.type}'...")
        if isinstance(config, S3ClientConfig):
            return S3BlobStore(config=config)
        raise NotImplementedError(f"Storage type '{config.type}' is not supported.")


def get_storage_factory() -> StorageFactory:
    return StorageFactory()
