"""
日志

- 控制台：终端下按级别着色，否则纯文本
- JSON：orjson 序列化，一行一条
- 文件：按大小轮转，错误另存一份

环境变量：PINYIN_IME_LOG_LEVEL / PINYIN_IME_LOG_DIR / PINYIN_IME_LOG_TO_FILE
"""

import os
import sys
import time
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, List, Optional

import orjson

ROOT_LOGGER = 'pinyin_ime'
ENGINE_LOGGER = 'pinyin_ime.engine'
API_LOGGER = 'pinyin_ime.api'

CONSOLE_FORMAT = '%(asctime)s | %(levelname)-8s | %(message)s'
FILE_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s'

# 通过 extra= 附加、需要写入 JSON 的字段
EXTRA_FIELDS = ('duration_ms', 'session_event', 'request_id')

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class LogSettings:
    """日志参数"""
    level: str = "INFO"
    log_dir: Path = Path("logs")
    to_file: bool = False
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5

    @classmethod
    def from_env(cls) -> "LogSettings":
        return cls(
            level=os.getenv("PINYIN_IME_LOG_LEVEL", "INFO").upper(),
            log_dir=Path(os.getenv("PINYIN_IME_LOG_DIR", "logs")),
            to_file=os.getenv("PINYIN_IME_LOG_TO_FILE", "").strip().lower() in _TRUE_VALUES,
        )


def get_log_dir() -> Path:
    return LogSettings.from_env().log_dir


class JsonFormatter(logging.Formatter):
    """一条记录一个 JSON 对象"""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            'ts': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'msg': record.getMessage(),
            'where': f"{record.module}.{record.funcName}:{record.lineno}",
        }
        for key in EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload['exc'] = self.formatException(record.exc_info)
        return orjson.dumps(payload, option=orjson.OPT_NON_STR_KEYS).decode()


class ColorFormatter(logging.Formatter):
    """按级别给级别名着色"""

    PALETTE = {
        logging.DEBUG: '\033[36m',
        logging.INFO: '\033[32m',
        logging.WARNING: '\033[33m',
        logging.ERROR: '\033[31m',
        logging.CRITICAL: '\033[35m',
    }

    def format(self, record: logging.LogRecord) -> str:
        # 着色作用于副本，文件 handler 看到的仍是原始级别名
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{self.PALETTE.get(record.levelno, '')}{record.levelname}\033[0m"
        return super().format(colored)


def _console_handler(json_format: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(JsonFormatter())
    elif sys.stdout.isatty():
        handler.setFormatter(ColorFormatter(CONSOLE_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    return handler


def _file_handlers(name: str, settings: LogSettings, json_format: bool) -> List[logging.Handler]:
    settings.log_dir.mkdir(parents=True, exist_ok=True)

    def rotating(filename: str, level: int, formatter: logging.Formatter) -> logging.Handler:
        handler = RotatingFileHandler(
            settings.log_dir / filename,
            maxBytes=settings.max_bytes,
            backupCount=settings.backup_count,
            encoding='utf-8',
        )
        handler.setLevel(level)
        handler.setFormatter(formatter)
        return handler

    text = logging.Formatter(FILE_FORMAT)
    return [
        rotating(f'{name}.log', logging.DEBUG, JsonFormatter() if json_format else text),
        rotating(f'{name}_error.log', logging.ERROR, text),
    ]


def setup_logging(
    name: str = ROOT_LOGGER,
    level: Optional[str] = None,
    log_to_file: Optional[bool] = None,
    log_to_console: bool = True,
    json_format: bool = False,
) -> logging.Logger:
    """
    (重新)配置一个日志器

    Args:
        name: 日志器名称
        level: 级别，缺省取环境变量
        log_to_file: 是否写文件，缺省取环境变量（默认不写）
        log_to_console: 是否输出到 stdout
        json_format: 控制台与主日志文件是否用 JSON

    Returns:
        logging.Logger
    """
    settings = LogSettings.from_env()
    if level:
        settings.level = level.upper()
    if log_to_file is not None:
        settings.to_file = log_to_file

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, settings.level, logging.INFO))
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if log_to_console:
        logger.addHandler(_console_handler(json_format))
    if settings.to_file:
        for handler in _file_handlers(name, settings, json_format):
            logger.addHandler(handler)

    return logger


_configured: Dict[str, logging.Logger] = {}


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """取日志器，首次使用时按环境变量配置"""
    if name not in _configured:
        logger = logging.getLogger(name)
        _configured[name] = logger if logger.handlers else setup_logging(name)
    return _configured[name]


def get_engine_logger() -> logging.Logger:
    return get_logger(ENGINE_LOGGER)


def get_api_logger() -> logging.Logger:
    return get_logger(API_LOGGER)


def log_execution_time(logger: Optional[logging.Logger] = None):
    """装饰器：debug 级别记录耗时"""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                elapsed = round((time.perf_counter() - start) * 1000, 2)
                (logger or get_engine_logger()).debug(
                    f"{func.__qualname__} 耗时 {elapsed}ms", extra={'duration_ms': elapsed}
                )
        return wrapper
    return decorator
