from asset_store.config.config_manager import get_app_config
from asset_store.core.logger import configure_file_sinks

settings = get_app_config()

if settings.logging.enable_file:
    configure_file_sinks(
        settings.logging.log_dir,
        rotation=settings.logging.rotation,
        retention=settings.logging.retention,
    )
