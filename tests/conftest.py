import os

# config.yaml 通过 ${VAR} 读取这些值，必须在导入 asset_store 之前设置
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("S3_ENDPOINT", "localhost:9000")
os.environ.setdefault("S3_PUBLIC_ENDPOINT", "cdn.example.test")
os.environ.setdefault("S3_ACCESS_KEY", "test")
os.environ.setdefault("S3_SECRET_KEY", "test")
os.environ.setdefault("S3_BUCKET", "assets-test")

import hashlib
from typing import Dict, List, Optional, Set, Tuple
from uuid import UUID

import pytest
import pytest_asyncio
from botocore.exceptions import ClientError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from tenacity import wait_none

from asset_store.config.config_schema import AssetSettings
from asset_store.infra.db.repository_factory_auto import RepositoryFactory
from asset_store.infra.imaging.image_pipeline import ImageMetadata, ImagePipelineInterface, ResizeOptions
from asset_store.infra.storage.storage_interface import BlobStoreInterface
from asset_store.models.files.file_asset import FileAsset
from asset_store.repo.crud.file.file_asset_repo import FileAssetRepository
from asset_store.schemas.file.file_asset_schemas import FileAssetCreate
from asset_store.services.file.asset_service import AssetService
from asset_store.services.file.blob_service import BlobService
from asset_store.services.file.variant_engine import VariantEngine
from asset_store.services.file.variant_service import VariantService
from asset_store.utils.storage_keys import build_content_key, get_extension_from_mime
from asset_store.models._model_utils.datetime import utcnow

PNG_BYTES = b"\x89PNG\r\n\x1a\n fake png payload"


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FakeBlobStore(BlobStoreInterface):
    """内存中的对象存储，可以按操作名注入失败。"""

    def __init__(self):
        self.objects: Dict[str, Tuple[bytes, str]] = {}
        self.deleted: List[str] = []
        self.failing: Dict[str, Set[Optional[str]]] = {}
        self.calls: Dict[str, int] = {}

    def fail(self, operation: str, key: Optional[str] = None) -> None:
        """key 为 None 时该操作对所有键失败。"""
        self.failing.setdefault(operation, set()).add(key)

    def _check(self, operation: str, key: str) -> None:
        self.calls[operation] = self.calls.get(operation, 0) + 1
        keys = self.failing.get(operation)
        if keys and (None in keys or key in keys):
            raise ClientError({"Error": {"Code": "500", "Message": "backend down"}}, operation)

    def exists(self, key: str) -> bool:
        self._check("exists", key)
        return key in self.objects

    def put(self, key: str, data: bytes, content_type: str) -> None:
        self._check("put", key)
        self.objects[key] = (data, content_type)

    def get(self, key: str) -> bytes:
        self._check("get", key)
        if key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return self.objects[key][0]

    def delete(self, key: str) -> None:
        self._check("delete", key)
        self.objects.pop(key, None)
        self.deleted.append(key)

    def presign_upload(self, key: str, content_type: str, ttl: int) -> str:
        self._check("presign_upload", key)
        return f"https://blob.test/{key}?method=PUT&content-type={content_type}&ttl={ttl}"

    def presign_download(self, key: str, ttl: int) -> str:
        self._check("presign_download", key)
        return f"https://blob.test/{key}?method=GET&ttl={ttl}"


class FakeImagePipeline(ImagePipelineInterface):
    """
    假装原图是 source_size 大小，输出字节里编码了结果尺寸，read_metadata 再解析回来。
    """

    def __init__(self, source_size: Tuple[int, int] = (1000, 800)):
        self.source_size = source_size
        self.resize_calls: List[ResizeOptions] = []
        self.should_fail = False

    def resize(self, data: bytes, options: ResizeOptions) -> bytes:
        self.resize_calls.append(options)
        if self.should_fail:
            raise OSError("cannot identify image file")
        width, height = self.source_size
        scale = min(1.0, (options.width or width) / width, (options.height or height) / height)
        out_w, out_h = max(1, round(width * scale)), max(1, round(height * scale))
        return f"{options.format.value}:{out_w}x{out_h}".encode()

    def read_metadata(self, data: bytes) -> ImageMetadata:
        dims = data.decode().split(":", 1)[1]
        width, height = dims.split("x")
        return ImageMetadata(width=int(width), height=int(height))


class RecordingDispatcher:
    def __init__(self):
        self.submitted: List[UUID] = []

    def submit(self, file_id: UUID):
        self.submitted.append(file_id)
        return None


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    monkeypatch.setattr(BlobService._run.retry, "wait", wait_none())


@pytest_asyncio.fixture
async def engine():
    # StaticPool 让所有会话共用同一个内存库连接
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as db:
        yield db


@pytest.fixture
def repo_factory(session) -> RepositoryFactory:
    return RepositoryFactory(db=session, context={"user_id": "tester"})


@pytest.fixture
def file_repo(repo_factory) -> FileAssetRepository:
    return repo_factory.get_repo_by_type(FileAssetRepository)


@pytest.fixture
def asset_settings() -> AssetSettings:
    return AssetSettings(commit_backoff_ms=0)


@pytest.fixture
def fake_blob() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def fake_pipeline() -> FakeImagePipeline:
    return FakeImagePipeline()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def blob_service(fake_blob) -> BlobService:
    return BlobService(fake_blob)


@pytest.fixture
def variant_service(repo_factory, blob_service, fake_pipeline, asset_settings) -> VariantService:
    return VariantService(repo_factory, blob_service, VariantEngine(fake_pipeline), asset_settings=asset_settings)


@pytest.fixture
def asset_service(repo_factory, blob_service, variant_service, dispatcher, asset_settings) -> AssetService:
    return AssetService(
        repo_factory,
        blob_service=blob_service,
        variant_service=variant_service,
        dispatcher=dispatcher,
        asset_settings=asset_settings,
    )


@pytest.fixture
def make_file(file_repo, fake_blob):
    """直接在仓储里建一条记录，并把原始字节放进假存储。"""

    async def _make(
            data: bytes = PNG_BYTES,
            mime: str = "image/png",
            owner_id: str = "u1",
            store_bytes: bool = True,
    ) -> FileAsset:
        content_hash = sha256_hex(data)
        created_at = utcnow()
        storage_key = build_content_key(content_hash, mime, created_at)
        file = await file_repo.create(FileAssetCreate(
            content_hash=content_hash,
            size=len(data),
            mime_type=mime,
            extension=get_extension_from_mime(mime),
            owner_id=owner_id,
            storage_key=storage_key,
            created_at=created_at,
        ))
        if store_bytes:
            fake_blob.objects[storage_key] = (data, mime)
        return file

    return _make
