# asset_store/api/dependencies/services.py
from fastapi import Depends

from asset_store.infra.db.get_repo_factory import get_repository_factory, RepositoryFactory
from asset_store.infra.imaging.image_pipeline import PillowImagePipeline
from asset_store.infra.storage.storage_factory import get_storage_factory
from asset_store.services.file.asset_policies import AccessGate, OwnerVisibilityGate
from asset_store.services.file.asset_service import AssetService
from asset_store.services.file.blob_service import BlobService
from asset_store.services.file.variant_dispatcher import get_variant_dispatcher
from asset_store.services.file.variant_engine import VariantEngine
from asset_store.services.file.variant_service import VariantService

variant_engine_instance = VariantEngine(PillowImagePipeline())


def get_blob_service() -> BlobService:
    """BlobService 无状态，底层客户端由 StorageFactory 复用。"""
    return BlobService(get_storage_factory().get_blob_store())


def get_access_gate() -> AccessGate:
    """宿主应用可以通过 app.dependency_overrides 换成自己的访问判定。"""
    return OwnerVisibilityGate()


def get_variant_service(
    repo_factory: RepositoryFactory = Depends(get_repository_factory),
    blob_service: BlobService = Depends(get_blob_service),
) -> VariantService:
    return VariantService(repo_factory, blob_service, variant_engine_instance)


def get_asset_service(
    repo_factory: RepositoryFactory = Depends(get_repository_factory),
    blob_service: BlobService = Depends(get_blob_service),
    variant_service: VariantService = Depends(get_variant_service),
    access_gate: AccessGate = Depends(get_access_gate),
) -> AssetService:
    return AssetService(
        repo_factory,
        blob_service=blob_service,
        variant_service=variant_service,
        dispatcher=get_variant_dispatcher(),
        access_gate=access_gate,
    )
