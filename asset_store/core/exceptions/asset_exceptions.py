# asset_store/core/exceptions/asset_exceptions.py
from typing import Optional

from asset_store.core.exceptions.base_exception import BaseBusinessException
from asset_store.core.response_codes import ResponseCodeEnum


class ConflictException(BaseBusinessException):
    """
    文件仍有引用时执行非强制删除。
    重复 link 不属于冲突，是幂等的空操作。
    """
    def __init__(self, message: str = "资源仍被引用，操作冲突", extra: Optional[dict] = None):
        super().__init__(ResponseCodeEnum.CONFLICT, status_code=409, message=message, extra=extra)


class InvalidStateException(BaseBusinessException):
    """当前生命周期状态不允许该操作，例如对已删除文件 link，或 restore 非 trash 文件。"""
    def __init__(self, message: str = "当前状态不允许该操作", extra: Optional[dict] = None):
        super().__init__(ResponseCodeEnum.INVALID_STATE, status_code=409, message=message, extra=extra)


class StorageInconsistencyException(BaseBusinessException):
    """记录声称对象存在，但对象存储中找不到。"""
    def __init__(self, message: str = "存储与记录不一致", extra: Optional[dict] = None):
        super().__init__(ResponseCodeEnum.STORAGE_INCONSISTENCY, status_code=502, message=message, extra=extra)


class UnsupportedVariantException(BaseBusinessException):
    def __init__(self, message: str = "不支持的文件变体", extra: Optional[dict] = None):
        super().__init__(ResponseCodeEnum.UNSUPPORTED_VARIANT, status_code=415, message=message, extra=extra)


class UpstreamFailureException(BaseBusinessException):
    """
    对象存储或图像处理调用在重试后仍失败，或变体提交的乐观锁重试耗尽。
    调用方只会看到这一种形态，不会看到 botocore / Pillow 的原始异常。
    """
    def __init__(self, message: str = "上游存储或图像服务调用失败", extra: Optional[dict] = None):
        super().__init__(ResponseCodeEnum.UPSTREAM_FAILURE, status_code=502, message=message, extra=extra)
