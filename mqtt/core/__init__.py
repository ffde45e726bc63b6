"""Core functionality.

コアとなる機能を提供するパッケージ。

以下の機能を提供します:
- ロギング機能
- 定数定義
- 例外クラス
"""

from .constants import (
    DELEGATE_THREAD_NAME,
    MAX_PACKET_ID,
    MAX_STRING_LENGTH,
    MQTT_DEFAULT_PORT,
    MQTT_KEEP_ALIVE,
    MQTT_MAX_KEEP_ALIVE,
    MQTT_PROTOCOL_NAME,
    MQTT_PROTOCOL_VERSION,
    MQTT_TLS_PORT,
    READ_SIZE,
    TEXT_ENCODING,
    TRANSPORT_TCP,
    TRANSPORT_WEBSOCKET,
    WORKER_THREAD_NAME,
    WS_PATH,
    WS_SUBPROTOCOL,
    SessionState,
)
from .exceptions import (
    ERROR_MESSAGES,
    AlreadyConnected,
    AlreadyConnecting,
    ClientError,
    ConfigError,
    ConnectDenied,
    ConnectionError,
    HasDisconnected,
    MQTTError,
    NotConnected,
    PacketError,
)
from .logging import (
    RECEIVED,
    SENT,
    log_error,
    log_packet,
    logger,
    setup_logging,
)

__all__ = [
    # ロギング関連
    "logger",
    "setup_logging",
    "log_packet",
    "log_error",
    "SENT",
    "RECEIVED",
    # 定数関連
    "SessionState",
    "MQTT_PROTOCOL_NAME",
    "MQTT_PROTOCOL_VERSION",
    "MQTT_KEEP_ALIVE",
    "MQTT_MAX_KEEP_ALIVE",
    "MQTT_DEFAULT_PORT",
    "MQTT_TLS_PORT",
    "MAX_PACKET_ID",
    "MAX_STRING_LENGTH",
    "TEXT_ENCODING",
    "WS_PATH",
    "WS_SUBPROTOCOL",
    "TRANSPORT_TCP",
    "TRANSPORT_WEBSOCKET",
    "READ_SIZE",
    "WORKER_THREAD_NAME",
    "DELEGATE_THREAD_NAME",
    # 例外クラス
    "MQTTError",
    "ConfigError",
    "ConnectionError",
    "ConnectDenied",
    "PacketError",
    "ClientError",
    "AlreadyConnected",
    "AlreadyConnecting",
    "HasDisconnected",
    "NotConnected",
    "ERROR_MESSAGES",
]
