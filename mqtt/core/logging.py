"""Logging.

パッケージ共通のロガーと、その設定を行う関数を提供するモジュール。

パッケージ内のモジュールは``logger``に出力するだけで、
ハンドラーはアプリケーションがsetup_loggingで設定します。
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from rich.console import Console
from rich.logging import RichHandler

from .exceptions import ERROR_MESSAGES

LOGGER_NAME = "mqtt"
FILE_FORMAT = "%(asctime)s [%(threadName)s] %(levelname)s %(message)s"

# パケットの向き
SENT = ">>"
RECEIVED = "<<"

logger = logging.getLogger(LOGGER_NAME)


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
) -> logging.Logger:
    """パッケージのロガーにハンドラーを設定します.

    呼び出す度に以前のハンドラーを外すため、出力は重複しません。
    コンソールにはスレッド名を出さないため、ワーカーと
    デリゲートのどちらのスレッドの出力かを見たい場合は
    ログファイルを指定してください。

    Args:
        level: ログレベル。送受信パケットのダンプはDEBUGで出力される
        log_file: 追記するログファイル。Noneの場合はコンソールのみ

    Returns:
        logging.Logger: 設定したロガー
    """
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers: List[logging.Handler] = [
        RichHandler(
            console=Console(stderr=True),
            show_path=level <= logging.DEBUG,
            markup=False,
            rich_tracebacks=True,
        )
    ]
    if log_file is not None:
        file_handler = logging.FileHandler(Path(log_file), encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        handlers.append(file_handler)

    logger.setLevel(level)
    for handler in handlers:
        handler.setLevel(level)
        logger.addHandler(handler)
    return logger


def log_packet(
    packet_type: str,
    data: bytes,
    direction: str = SENT,
    level: int = logging.DEBUG,
) -> None:
    """送受信したパケットを16進ダンプで記録します.

    Args:
        packet_type: パケットタイプ名
        data: パケット全体のバイト列
        direction: SENT または RECEIVED
        level: ログレベル
    """
    if not logger.isEnabledFor(level):
        return
    logger.log(
        level,
        f"{direction} {packet_type} ({len(data)} bytes): {data.hex(' ')}",
    )


def log_error(
    error_code: str,
    detail: Optional[Dict[str, Any]] = None,
    level: int = logging.ERROR,
) -> None:
    """ERROR_MESSAGESの定義に従ってエラーを記録します.

    Args:
        error_code: ERROR_MESSAGESのキー
        detail: メッセージの書式に渡す値
        level: ログレベル
    """
    template = ERROR_MESSAGES.get(error_code)
    try:
        message = template.format(**(detail or {}))
    except (AttributeError, KeyError):
        # 未定義のキー、または書式と値が合わない
        message = f"{error_code}: {detail}"
    logger.log(level, message)
