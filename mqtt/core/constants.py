"""Constants definitions.

定数定義を提供するモジュール。
"""

from enum import IntEnum, unique
from typing import Final


@unique
class SessionState(IntEnum):
    """クライアントのセッション状態を表す列挙型.

    Attributes:
        DENIED (-1): CONNACKで接続が拒否された
        INITIALIZATION (0): クライアント生成直後
        CONNECTING (1): CONNECT送信済み、CONNACK待ち
        CONNECTED (2): CONNACKで接続が受理された
        DISCONNECTED (3): 切断済み、このセッションでは送信不可
    """

    DENIED = -1
    INITIALIZATION = 0
    CONNECTING = 1
    CONNECTED = 2
    DISCONNECTED = 3


# MQTT設定
MQTT_PROTOCOL_NAME: Final[str] = "MQTT"
MQTT_PROTOCOL_VERSION: Final[int] = 4
MQTT_KEEP_ALIVE: Final[int] = 60
MQTT_MAX_KEEP_ALIVE: Final[int] = 65535

# TCPポート 1883 / 8883 はIANAに登録済み(非TLS / TLS)
MQTT_DEFAULT_PORT: Final[int] = 1883
MQTT_TLS_PORT: Final[int] = 8883

MAX_PACKET_ID: Final[int] = 65535
# 文字列フィールドは2バイトの長さ + UTF-8
MAX_STRING_LENGTH: Final[int] = 65535
TEXT_ENCODING: Final[str] = "utf-8"

# WebSocket設定
WS_PATH: Final[str] = "/mqtt"
WS_SUBPROTOCOL: Final[str] = "mqtt"

# トランスポート設定
TRANSPORT_TCP: Final[str] = "tcp"
TRANSPORT_WEBSOCKET: Final[str] = "websocket"
READ_SIZE: Final[int] = 4096

# スレッド名
WORKER_THREAD_NAME: Final[str] = "mqtt-worker"
DELEGATE_THREAD_NAME: Final[str] = "mqtt-delegate"
