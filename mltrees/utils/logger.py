"""
Logging Utilities

Centralised logger creation for the mltrees package. The package logger is
silent unless the application calls setup_logging or configures logging
itself.
"""

import logging
import sys
from datetime import datetime
from typing import Optional, Union

PACKAGE_LOGGER_NAME = "mltrees"

logging.getLogger(PACKAGE_LOGGER_NAME).addHandler(logging.NullHandler())


class MLTreesFormatter(logging.Formatter):
    """[timestamp] LEVEL | module | message 形式のフォーマッタ"""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return f"[{timestamp}] {record.levelname:8s} | {record.name:30s} | {message}"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    パッケージ配下のロガーを取得

    Parameters:
    -----------
    name : str, optional
        モジュール名（通常は __name__）

    Returns:
    --------
    logger : logging.Logger
        mltrees 以下のロガー
    """
    if not name:
        return logging.getLogger(PACKAGE_LOGGER_NAME)
    if name != PACKAGE_LOGGER_NAME and not name.startswith(PACKAGE_LOGGER_NAME + "."):
        name = f"{PACKAGE_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def setup_logging(level: Union[int, str] = logging.INFO, stream=None) -> logging.Logger:
    """
    パッケージロガーにストリームハンドラを設定

    Parameters:
    -----------
    level : int or str, default=logging.INFO
        ログレベル
    stream : file-like, optional
        出力先（デフォルトは sys.stderr）

    Returns:
    --------
    logger : logging.Logger
        設定済みのパッケージロガー
    """
    logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logger.setLevel(level)

    # 既存のストリームハンドラを置き換える
    for handler in list(logger.handlers):
        if isinstance(handler, logging.StreamHandler) and getattr(handler, "_mltrees", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(MLTreesFormatter())
    handler._mltrees = True
    logger.addHandler(handler)
    return logger
