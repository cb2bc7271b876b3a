# asset_store/core/exceptions/base_exception.py

from typing import Optional

from asset_store.core.response_codes import ResponseCodeEnum


class BaseBusinessException(Exception):
    def __init__(
            self,
            code_enum: Optional[ResponseCodeEnum] = None,
            code: Optional[int] = None,
            status_code: int = 400,
            message: Optional[str] = None,
            extra: Optional[dict] = None,
    ):
        self.code = code if code is not None else code_enum.code
        self.message = message or code_enum.message
        self.status_code = status_code
        self.extra = extra or {}
        super().__init__(self.message)

    def __str__(self):
        return f"[{self.code}] {self.message}"


class NotFoundException(BaseBusinessException):
    """
    当请求的资源在数据库中不存在时抛出。
    """
    def __init__(self, message: str = "资源不存在", extra: Optional[dict] = None):
        super().__init__(ResponseCodeEnum.NOT_FOUND, status_code=404, message=message, extra=extra)


class InvalidArgumentException(BaseBusinessException):
    """参数本身不合法（例如哈希格式错误）。"""
    def __init__(self, message: str = "参数验证失败", extra: Optional[dict] = None):
        super().__init__(ResponseCodeEnum.VALIDATION_ERROR, status_code=400, message=message, extra=extra)


class AccessDeniedException(BaseBusinessException):
    """
    权限不足
    """
    def __init__(self, message: str = "没有权限", extra: Optional[dict] = None):
        super().__init__(ResponseCodeEnum.FORBIDDEN, status_code=403, message=message, extra=extra)
