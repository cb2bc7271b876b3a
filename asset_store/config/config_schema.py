from typing import Optional, Literal, List

from pydantic import BaseModel, Field

from asset_store.enums.file_enums import ImageFormat


class StorageCapabilities(BaseModel):
    """
    描述对象存储服务的特性与能力集。
    默认值代表一个“功能齐全”的 S3 兼容服务 (如 MinIO, AWS S3)。
    """

    supports_acl: bool = Field(
        default=True,
        description="是否支持对象 ACL 控制 (S3/MinIO: True, R2: False)"
    )

    supports_bucket_creation: bool = Field(
        default=True,
        description="是否允许通过API创建bucket"
    )

    rewrite_presigned_host: bool = Field(
        default=False,
        description="是否应将 Boto3 生成的预签名 URL 的 host 替换为 public_endpoint (仅 MinIO 等内网部署需要)"
    )

    signature_version: Literal["v2", "v4"] = Field(
        default="v4",
        description="支持的签名算法版本 (v4 是现代标准)"
    )

    path_style: Literal["auto", "path", "virtual"] = Field(
        default="auto",
        description="默认寻址风格 (auto 适用于 S3/R2，本地 MinIO 可能需要手动设为 'path')"
    )


class S3Params(BaseModel):
    """
    MinIO 或 S3 兼容服务的客户端参数
    """

    endpoint: Optional[str] = None
    """
    服务地址 (不含 http/https)。
    - AWS S3: 留空 (None)，Boto3 会根据 region 自动生成。
    - MinIO/R2: 必须填写, e.g., 'your-minio:9000'
    """

    region: str = "us-east-1"
    access_key: str
    secret_key: str
    bucket_name: str
    secure: bool = True

    default_acl: Optional[str] = None
    """
    写入对象时使用的 ACL。内容寻址的原始文件默认私有，由预签名 URL 控制访问。
    """

    public_endpoint: Optional[str] = None
    """
    公网访问端点 (不含 http/https, 不含 bucket)。
    用于替换预签名 URL 中的内网 endpoint。
    """

    connect_timeout: int = 60
    read_timeout: int = 60

    capabilities: StorageCapabilities = Field(
        default_factory=StorageCapabilities,
        description="描述当前存储服务的特性与行为差异"
    )


class S3ClientConfig(BaseModel):
    type: Literal['minio', 's3', 'r2']
    params: S3Params


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"
    api_prefix: str = "/api/v1"
    env: str = "dev"


class DatabaseConfig(BaseModel):
    url: str
    echo: bool = False


class LoggingConfig(BaseModel):
    enable_file: bool = True
    log_dir: str = "../logs"
    rotation: str = "1 week"
    retention: str = "1 month"


class VariantPresetConfig(BaseModel):
    """单个变体的生成参数。width / height 只给一个时按比例缩放。"""
    type: str = Field(..., description="变体类型名称, e.g. 'thumb', 'w640'")
    width: Optional[int] = Field(None, gt=0)
    height: Optional[int] = Field(None, gt=0)
    quality: int = Field(82, ge=1, le=100)
    format: ImageFormat = ImageFormat.WEBP


def _default_image_variants() -> List[VariantPresetConfig]:
    return [
        VariantPresetConfig(type="thumb", width=256, height=256),
        VariantPresetConfig(type="w320", width=320),
        VariantPresetConfig(type="w640", width=640),
        VariantPresetConfig(type="w1280", width=1280),
        VariantPresetConfig(type="w2048", width=2048),
    ]


class AssetSettings(BaseModel):
    """资产存储的业务参数"""
    upload_url_ttl: int = Field(3600, gt=0, description="上传预签名 URL 有效期（秒）")
    download_url_ttl: int = Field(3600, gt=0, description="下载预签名 URL 有效期（秒）")

    commit_retries: int = Field(3, ge=0, description="变体乐观锁提交的最大重试次数")
    commit_backoff_ms: int = Field(60, ge=0, description="每次重试的线性退避基数（毫秒）")

    max_concurrent_generations: int = Field(2, gt=0, description="后台变体生成的并发上限")

    public_entity_types: List[str] = Field(
        default_factory=lambda: [
            "avatar",
            "profile-avatar",
            "user-avatar",
            "profile-banner",
            "profile-cover",
            "public-profile-content",
        ],
        description="link 时未显式指定可见性，这些实体类型会被推断为 public"
    )

    image_variants: List[VariantPresetConfig] = Field(default_factory=_default_image_variants)


# ========================================================================================
#
#   所有配置模型都要写在APPconfig上方
#
# ========================================================================================
class AppConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    storage: S3ClientConfig
    assets: AssetSettings = Field(default_factory=AssetSettings)
