from enum import Enum


class FileStatus(str, Enum):
    """
    文件生命周期状态。
    active -> trash 由最后一个引用被移除触发，trash -> active 由 restore 或新的 link 触发，
    deleted 是终态。
    """
    ACTIVE = "active"
    TRASH = "trash"
    DELETED = "deleted"


class FileVisibility(str, Enum):
    """文件可见性，决定下载地址签发前是否需要访问判定。"""
    PRIVATE = "private"
    PUBLIC = "public"
    UNLISTED = "unlisted"


class ImageFormat(str, Enum):
    """变体输出编码。"""
    WEBP = "webp"
    JPEG = "jpeg"
    PNG = "png"

    @property
    def content_type(self) -> str:
        return f"image/{self.value}"
