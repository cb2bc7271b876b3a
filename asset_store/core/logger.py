# asset_store/core/logger.py
from loguru import logger
import sys
import os
from pathlib import Path

# 获取运行环境
ENV = os.getenv("ENV", "development").lower()

# 清除默认 handler
logger.remove()

# 控制台输出
logger.add(
    sys.stderr,
    level="DEBUG" if ENV == "development" else "INFO",
    colorize=True,
    enqueue=True,
    backtrace=True,
    diagnose=True,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
           "<level>{level: <8}</level> | "
           "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
           "<level>{message}</level>"
)

_file_sinks_configured = False


def configure_file_sinks(log_dir: str, rotation: str = "1 week", retention: str = "1 month") -> None:
    """
    按配置追加文件日志输出（文本 + JSON）。
    配置加载完成后调用一次，重复调用会被忽略。
    """
    global _file_sinks_configured
    if _file_sinks_configured:
        return

    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)

    # 普通文本日志输出到文件
    logger.add(
        path / "asset_store.log",
        level="DEBUG",
        rotation=rotation,
        retention=retention,
        encoding="utf-8",
        enqueue=True,
        backtrace=True,
        diagnose=True
    )

    # JSON 结构化日志输出
    logger.add(
        path / "asset_store.json",
        level="WARNING",  # 只记录警告及以上
        rotation=rotation,
        retention=retention,
        serialize=True,
        encoding="utf-8",
        enqueue=True
    )
    _file_sinks_configured = True
    logger.debug(f"File log sinks enabled at {path.resolve()}")


def get_logger(name: str = None):
    """仿 logging.getLogger() 实现的 loguru logger 工厂方法"""
    if name:
        return logger.bind(module=name)
    return logger


#打印当前日志环境
logger.debug(f"Log system initialized in {ENV} mode.")
