from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import datetime

from pydantic import BaseModel, Field

from asset_store.enums.file_enums import FileStatus, FileVisibility
from asset_store.models._model_utils.datetime import utcnow


class FileLink(BaseModel):
    """
    一条来自外部业务实体的引用。(app, entity_type, entity_id) 三元组在同一文件内唯一。
    """
    app: str
    entity_type: str
    entity_id: str
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    def matches(self, app: str, entity_type: str, entity_id: str) -> bool:
        return (self.app, self.entity_type, self.entity_id) == (app, entity_type, entity_id)


class FileVariant(BaseModel):
    """
    由原始文件派生的缓存产物（缩略图、不同宽度的转码图等）。
    ready_at 为空时视为未就绪。
    """
    type: str
    key: str
    width: Optional[int] = None
    height: Optional[int] = None
    size: Optional[int] = None
    ready_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_ready(self) -> bool:
        return self.ready_at is not None


class FileAssetCreate(BaseModel):
    content_hash: str
    size: int
    mime_type: str
    extension: str = ""
    owner_id: str
    storage_key: str
    status: FileStatus = FileStatus.ACTIVE
    visibility: FileVisibility = FileVisibility.PRIVATE
    created_at: datetime = Field(default_factory=utcnow)


class FileAssetRead(BaseModel):
    """
    用于返回文件资产信息的模型。
    """
    id: UUID
    content_hash: str
    size: int
    mime_type: str
    extension: str
    owner_id: str
    status: FileStatus
    visibility: FileVisibility
    storage_key: str
    links: List[FileLink] = Field(default_factory=list)
    variants: List[FileVariant] = Field(default_factory=list)
    original_name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    created_at: datetime
    updated_at: datetime

    model_config = {
        "from_attributes": True,
    }


class AssetInitRequest(BaseModel):
    owner_id: str
    expected_hash: str = Field(..., description="原始内容的 SHA-256（十六进制）")
    expected_size: int = Field(..., ge=0)
    expected_mime: str


class AssetInitResponse(BaseModel):
    upload_url: str
    file_id: UUID
    content_hash: str


class AssetCompleteRequest(BaseModel):
    file_id: UUID
    original_name: str
    size: int = Field(..., ge=0)
    mime: str
    visibility: Optional[FileVisibility] = None
    metadata: Optional[Dict[str, Any]] = None


class AssetLinkRequest(BaseModel):
    app: str
    entity_type: str
    entity_id: str
    created_by: Optional[str] = None
    visibility: Optional[FileVisibility] = None


class AssetDeleteSummary(BaseModel):
    """
    删除影响评估：只有没有任何引用时才会直接删除。
    """
    file_id: UUID
    would_delete: bool
    affected_apps: List[str] = Field(default_factory=list)
    remaining_links: int = 0
    variants: List[str] = Field(default_factory=list)
