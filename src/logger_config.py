"""
日志配置

控制台 + 滚动文件双输出。各模块通过 get_logger("模块名") 获取子 logger，
入口处调用 setup_logger 完成一次性初始化。
"""

import logging
import os
from logging.handlers import RotatingFileHandler

_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
LOG_DIR = os.path.join(_PROJECT_ROOT, "logs")
LOG_FILE = os.path.join(LOG_DIR, "dicebot.log")

_ROOT_NAME = "DiceBot"
_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured = False


def setup_logger(name: str = "Main", level: int = logging.INFO, log_file: str = LOG_FILE) -> logging.Logger:
    """初始化根 logger（控制台 + 文件），重复调用只生效一次。"""
    global _configured
    root = logging.getLogger(_ROOT_NAME)
    if not _configured:
        root.setLevel(level)
        formatter = logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT)

        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

        if log_file:
            try:
                os.makedirs(os.path.dirname(log_file), exist_ok=True)
                file_handler = RotatingFileHandler(
                    log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8",
                )
                file_handler.setFormatter(formatter)
                root.addHandler(file_handler)
            except OSError as e:
                root.warning("日志文件不可写，仅输出到控制台: %s", e)
        _configured = True
    return get_logger(name)


def get_logger(name: str) -> logging.Logger:
    """获取挂在 DiceBot 根 logger 下的子 logger。"""
    return logging.getLogger(f"{_ROOT_NAME}.{name}")
