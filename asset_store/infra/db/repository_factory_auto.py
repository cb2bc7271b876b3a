# asset_store/infra/db/repository_factory_auto.py
from typing import Optional, Type, TypeVar, Dict

from sqlalchemy.ext.asyncio import AsyncSession

from asset_store.core.request_scope import get_request_scope
from asset_store.infra.db.repo_registrar import RepositoryRegistrar
from asset_store.repo.crud.common.base_repo import BaseRepository
# 导入具体 Repository，确保它们在注册表中
from asset_store.repo.crud.file.file_asset_repo import FileAssetRepository  # noqa: F401

# =====================
# 类型定义
# =====================
RepoType = TypeVar("RepoType", bound=BaseRepository)


# =====================
# 自定义异常
# =====================
class RepositoryNotFoundError(Exception):
    pass


# =====================
# Repository Factory
# =====================
class RepositoryFactory:
    """
    RepositoryFactory 负责按类型实例化并缓存 Repository。
    同一个工厂内的 Repository 共享一个会话，提交与回滚由会话的提供方负责。
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        user_id: Optional[str] = None,
        context: Optional[dict] = None
    ):
        self._db = db
        if context:
            self.context = context
        elif user_id:
            self.context = {"user_id": user_id}
        else:
            self.context = get_request_scope()
        self._registry: Dict[str, BaseRepository] = {}

    # ==========
    # 通过类型获取 Repository
    # ==========
    def get_repo_by_type(self, repo_type: Type[RepoType]) -> RepoType:
        for repo in self._registry.values():
            if isinstance(repo, repo_type):
                return repo

        # 如果未加载，则动态实例化并缓存
        for name, cls in RepositoryRegistrar.registry.items():
            if issubclass(cls, repo_type):
                instance = cls(self._db, context=self.context)
                self._registry[name] = instance
                return instance

        raise RepositoryNotFoundError(f"Repository of type '{repo_type.__name__}' not found.")

    def get_session(self) -> AsyncSession:
        return self._db
