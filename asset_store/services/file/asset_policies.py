from abc import ABC, abstractmethod
from typing import Iterable, Optional

from asset_store.enums.file_enums import FileVisibility
from asset_store.models.files.file_asset import FileAsset


class VisibilityPolicy(ABC):
    """link 时调用方没有显式指定可见性，由它推断。"""

    @abstractmethod
    def infer(self, app: str, entity_type: str) -> FileVisibility:
        pass


class EntityTypeVisibilityPolicy(VisibilityPolicy):
    """
    实体类型在白名单内（不区分大小写）推断为 public，否则 private。
    白名单来自 assets.public_entity_types 配置。
    """

    def __init__(self, public_entity_types: Iterable[str]):
        self.public_entity_types = {t.lower() for t in public_entity_types}

    def infer(self, app: str, entity_type: str) -> FileVisibility:
        if (entity_type or "").lower() in self.public_entity_types:
            return FileVisibility.PUBLIC
        return FileVisibility.PRIVATE


class AccessGate(ABC):
    """
    下载地址签发前的访问判定。它的结论是最终结论，资产存储不做二次判断。
    """

    @abstractmethod
    async def can_access(self, file: FileAsset, viewer_id: Optional[str] = None, context: Optional[dict] = None) -> bool:
        pass


class OwnerVisibilityGate(AccessGate):
    """public / unlisted 任何人可访问，private 只有上传者本人。"""

    async def can_access(self, file: FileAsset, viewer_id: Optional[str] = None, context: Optional[dict] = None) -> bool:
        if file.visibility in (FileVisibility.PUBLIC, FileVisibility.UNLISTED):
            return True
        return viewer_id is not None and viewer_id == file.owner_id
