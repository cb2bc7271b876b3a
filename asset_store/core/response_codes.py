from enum import Enum


class ResponseCodeEnum(Enum):

    # === 通用响应码 ===
    SUCCESS = (0, "请求成功")
    CREATED = (201, "资源创建成功")
    VALIDATION_ERROR = (40001, "参数验证失败")
    FORBIDDEN = (40300, "没有权限")
    NOT_FOUND = (40400, "资源不存在")
    SERVER_ERROR = (50000, "服务器内部错误")

    # === 资源状态 ===
    CONFLICT = (40900, "资源仍被引用，操作冲突")
    INVALID_STATE = (40901, "当前状态不允许该操作")

    # === 存储 / 变体 ===
    UNSUPPORTED_VARIANT = (41500, "不支持的文件变体")
    STORAGE_INCONSISTENCY = (50010, "存储与记录不一致")
    UPSTREAM_FAILURE = (50200, "上游存储或图像服务调用失败")

    def __init__(self, code: int, message: str):
        self._code = code
        self._message = message

    @property
    def code(self):
        return self._code

    @property
    def message(self):
        return self._message
