from asset_store.config.config_schema import AppConfig
from asset_store.config.settings import settings
from asset_store.core.logger import get_logger


class BaseService:
    def __init__(self) -> None:
        self.settings: AppConfig = settings
        self.logger = get_logger(self.__class__.__name__)
