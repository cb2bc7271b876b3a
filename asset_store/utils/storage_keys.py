# asset_store/utils/storage_keys.py
from datetime import datetime

MIME_EXTENSION_MAP = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
    "video/mpeg": ".mpeg",
    "video/quicktime": ".mov",
    "audio/mpeg": ".mp3",
    "audio/wav": ".wav",
    "application/pdf": ".pdf",
    "text/plain": ".txt",
    "application/json": ".json",
    "application/zip": ".zip",
}


def get_extension_from_mime(mime_type: str) -> str:
    """未知类型返回空字符串。"""
    return MIME_EXTENSION_MAP.get((mime_type or "").lower(), "")


def _date_prefix(created_at: datetime) -> str:
    return f"{created_at.year:04d}/{created_at.month:02d}"


def build_content_key(content_hash: str, mime_type: str, created_at: datetime) -> str:
    """
    原始文件键：content/{yyyy}/{mm}/{hash[:2]}/{hash}{ext}
    年月取自记录创建时间，保证键稳定。
    """
    ext = get_extension_from_mime(mime_type)
    return f"content/{_date_prefix(created_at)}/{content_hash[:2]}/{content_hash}{ext}"


def build_variant_key(content_hash: str, variant_type: str, fmt: str, created_at: datetime) -> str:
    """变体文件键：variants/{yyyy}/{mm}/{hash[:2]}/{hash}/{variant_type}.{format}"""
    return f"variants/{_date_prefix(created_at)}/{content_hash[:2]}/{content_hash}/{variant_type}.{fmt}"
