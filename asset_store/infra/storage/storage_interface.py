from abc import ABC, abstractmethod


class BlobStoreInterface(ABC):
    """
    一个抽象基类 (ABC)，定义了对象存储后端必须实现的统一接口。
    键是不透明的字符串，实现方不解析对象内容。
    所有方法都是阻塞调用，由 BlobService 放到线程池中执行。
    """

    @abstractmethod
    def exists(self, key: str) -> bool:
        """对象是否存在。不存在返回 False，其他错误直接抛出。"""
        pass

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str) -> None:
        """写入一个对象。"""
        pass

    @abstractmethod
    def get(self, key: str) -> bytes:
        """读取对象的全部字节。"""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """删除一个对象。对象不存在时不报错。"""
        pass

    @abstractmethod
    def presign_upload(self, key: str, content_type: str, ttl: int) -> str:
        """
        生成预签名 PUT URL。
        :param ttl: 有效期（秒），过期由存储后端自行校验
        """
        pass

    @abstractmethod
    def presign_download(self, key: str, ttl: int) -> str:
        """生成预签名 GET URL。"""
        pass
