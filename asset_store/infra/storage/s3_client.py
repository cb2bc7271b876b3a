import io
from typing import Optional
from urllib.parse import urlparse, urlunparse

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import ClientError

from asset_store.config.config_schema import S3ClientConfig
from asset_store.core.logger import logger
from asset_store.infra.storage.storage_interface import BlobStoreInterface

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class S3BlobStore(BlobStoreInterface):
    """
    基于 boto3 的 S3 兼容存储实现 (AWS S3 / MinIO / R2)。
    """

    def __init__(self, config: S3ClientConfig):
        self.s3_conf = config.params
        self.capabilities = self.s3_conf.capabilities
        self.endpoint_url = self._get_base_url()
        self.bucket_name = self.s3_conf.bucket_name
        self.public_base_url = self._get_public_base_url()

        # Boto3 接受: 'auto' (None), 'path', 'virtual'
        addressing_style = self.capabilities.path_style
        if addressing_style == 'auto':
            addressing_style = None

        # Pydantic: "v4" -> Boto3: "s3v4", "v2" -> "s3" (legacy)
        signature_version_map = {"v4": "s3v4", "v2": "s3"}
        signature_version = signature_version_map.get(self.capabilities.signature_version, "s3v4")

        client_config = BotoConfig(
            signature_version=signature_version,
            s3={'addressing_style': addressing_style},
            connect_timeout=self.s3_conf.connect_timeout,
            read_timeout=self.s3_conf.read_timeout
        )

        self.s3 = boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=self.s3_conf.access_key,
            aws_secret_access_key=self.s3_conf.secret_key,
            config=client_config,
            region_name=self.s3_conf.region
        )

        if self.capabilities.supports_bucket_creation:
            self.create_bucket_if_not_exists(self.bucket_name)
        else:
            logger.debug(
                f"[S3 Driver] Skipping bucket check/creation for '{self.bucket_name}' (disabled by capabilities).")

    def _get_base_url(self) -> Optional[str]:
        # AWS S3 不需要 endpoint，由 region 推导
        if not self.s3_conf.endpoint:
            return None
        protocol = "https" if self.s3_conf.secure else "http"
        return f"{protocol}://{self.s3_conf.endpoint}"

    def _get_public_base_url(self) -> Optional[str]:
        if not self.s3_conf.public_endpoint:
            return None
        protocol = "https" if self.s3_conf.secure else "http"
        return f"{protocol}://{self.s3_conf.public_endpoint}"

    # ==========================
    # BlobStoreInterface
    # ==========================

    def exists(self, key: str) -> bool:
        try:
            self.s3.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in NOT_FOUND_CODES:
                return False
            raise

    def put(self, key: str, data: bytes, content_type: str) -> None:
        logger.info(f"[S3 Driver] Putting object: {key} ({len(data)} bytes)")
        extra_args = {"ContentType": content_type}

        if self.capabilities.supports_acl and self.s3_conf.default_acl:
            extra_args["ACL"] = self.s3_conf.default_acl

        self.s3.upload_fileobj(
            Fileobj=io.BytesIO(data),
            Bucket=self.bucket_name,
            Key=key,
            ExtraArgs=extra_args,
        )

    def get(self, key: str) -> bytes:
        response = self.s3.get_object(Bucket=self.bucket_name, Key=key)
        body = response["Body"]
        try:
            return body.read()
        finally:
            body.close()

    def delete(self, key: str) -> None:
        logger.info(f"[S3 Driver] Removing object: {key}")
        self.s3.delete_object(Bucket=self.bucket_name, Key=key)

    def presign_upload(self, key: str, content_type: str, ttl: int) -> str:
        url = self.s3.generate_presigned_url(
            ClientMethod="put_object",
            Params={"Bucket": self.bucket_name, "Key": key, "ContentType": content_type},
            ExpiresIn=ttl
        )
        return self._rewrite_host(url)

    def presign_download(self, key: str, ttl: int) -> str:
        url = self.s3.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket_name, "Key": key},
            ExpiresIn=ttl
        )
        return self._rewrite_host(url)

    # ==========================
    # 内部辅助方法
    # ==========================

    def _rewrite_host(self, presigned_url: str) -> str:
        """
        MinIO 等内网部署时，把 Boto3 生成的内网 host 换成 public_endpoint。
        签名只覆盖 path 和 query，替换 scheme/host 不影响校验。
        """
        if not (self.capabilities.rewrite_presigned_host and self.public_base_url):
            return presigned_url

        original_parts = urlparse(presigned_url)
        public_parts = urlparse(self.public_base_url)
        return urlunparse((
            public_parts.scheme,
            public_parts.netloc,
            original_parts.path,
            original_parts.params,
            original_parts.query,
            original_parts.fragment
        ))

    def create_bucket_if_not_exists(self, bucket_name: str):
        try:
            self.s3.head_bucket(Bucket=bucket_name)
            logger.debug(f"[S3 Driver] Bucket '{bucket_name}' already exists.")
        except ClientError as e:
            if e.response['Error']['Code'] not in NOT_FOUND_CODES:
                logger.error(f"[S3 Driver] Error checking bucket: {e}")
                raise

            logger.info(f"[S3 Driver] Bucket '{bucket_name}' not found. Creating...")
            # 对于非 us-east-1 的 AWS S3，创建时必须指定区域
            if self.s3_conf.region != "us-east-1" and not self.s3_conf.endpoint:
                self.s3.create_bucket(
                    Bucket=bucket_name,
                    CreateBucketConfiguration={'LocationConstraint': self.s3_conf.region}
                )
            else:
                self.s3.create_bucket(Bucket=bucket_name)
            logger.info(f"[S3 Driver] Successfully created bucket '{bucket_name}'.")
