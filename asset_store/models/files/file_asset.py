from typing import Optional, List, Dict, Any

from sqlalchemy import Column, JSON
from sqlmodel import Field

from asset_store.enums.file_enums import FileStatus, FileVisibility
from asset_store.models.base.base_model import BaseModel
from asset_store.schemas.file.file_asset_schemas import FileLink, FileVariant


class FileAsset(BaseModel, table=True):
    """
    内容寻址的文件资产实体。
    每一份唯一内容（按 SHA-256）只对应一条未删除的记录，多个业务实体通过 links 引用它。

    links / variants 以 JSON 列存储，通过下面的访问方法读取为 pydantic 模型。
    写入时总是赋值一个新列表，SQLAlchemy 才能感知到变更。
    """
    __tablename__ = "file_asset"

    # --- 内容标识 ---
    content_hash: str = Field(..., index=True, max_length=64, description="原始内容的 SHA-256（小写十六进制）")
    size: int = Field(..., description="文件大小（字节）")
    mime_type: str = Field(..., description="文件的 MIME 类型")
    extension: str = Field(default="", description="由 MIME 推断的扩展名，例如 '.png'")
    storage_key: str = Field(..., index=True, description="原始文件在对象存储中的键")

    # --- 归属与状态 ---
    owner_id: str = Field(..., index=True, description="首次上传该内容的用户")
    status: FileStatus = Field(default=FileStatus.ACTIVE, index=True)
    visibility: FileVisibility = Field(default=FileVisibility.PRIVATE)

    # --- 引用与派生产物 ---
    links: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    variants: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)

    # 【乐观锁】只保护 variants 字段的并发写入
    version: int = Field(default=1, description="variants 字段的乐观锁版本号")

    # --- 描述信息（complete 时写入）---
    original_name: Optional[str] = Field(default=None, description="文件的原始名称")
    metadata_: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON))

    # ==========================
    # links 访问方法
    # ==========================
    def get_links(self) -> List[FileLink]:
        return [FileLink.model_validate(item) for item in (self.links or [])]

    def find_link(self, app: str, entity_type: str, entity_id: str) -> Optional[FileLink]:
        for link in self.get_links():
            if link.matches(app, entity_type, entity_id):
                return link
        return None

    # ==========================
    # variants 访问方法
    # ==========================
    def get_variants(self) -> List[FileVariant]:
        return [FileVariant.model_validate(item) for item in (self.variants or [])]

    def find_variant(self, variant_type: str) -> Optional[FileVariant]:
        for variant in self.get_variants():
            if variant.type == variant_type:
                return variant
        return None

    def get_ready_variants(self) -> List[FileVariant]:
        return [v for v in self.get_variants() if v.is_ready]

    @staticmethod
    def dump_variants(variants: List[FileVariant]) -> List[Dict[str, Any]]:
        return [v.model_dump(mode="json") for v in variants]


def merge_variants(base: List[FileVariant], incoming: List[FileVariant]) -> List[FileVariant]:
    """
    按 type 合并：同一 type 以 incoming 为准，其余 type 全部保留，顺序按首次出现。
    """
    merged: Dict[str, FileVariant] = {v.type: v for v in base}
    for variant in incoming:
        merged[variant.type] = variant
    return list(merged.values())
