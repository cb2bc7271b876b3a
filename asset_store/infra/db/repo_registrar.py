# asset_store/infra/db/repo_registrar.py

class RepositoryRegistrar:
    """Repository 子类在定义时自动登记，RepositoryFactory 按类型查找。"""
    registry: dict[str, type] = {}

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if cls.__name__ == "BaseRepository":
            return
        RepositoryRegistrar.registry[cls.registry_name()] = cls

    @classmethod
    def registry_name(cls) -> str:
        return cls.__name__.replace("Repository", "").lower()
