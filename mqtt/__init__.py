"""MQTT client session.

MQTTクライアントのセッション管理を提供するパッケージ。

主な機能:
- 接続状態の管理とパケットIDの払い出し
- キープアライブ(PINGREQ)の周期送信
- TCP / WebSocketトランスポート
- イベントのデリゲートへの非同期通知
"""

from .client import ClientConfig, MqttClient
from .core import (
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
    SessionState,
    logger,
    setup_logging,
)
from .delegate import ClientDelegate
from .packet import (
    ConnackReturnCode,
    PingRespPacket,
    PublishPacket,
    Qos,
    SubAckReturnCode,
)
from .session import Session
from .transport import TransportConfig

# パブリックAPIとして公開する要素を定義
__all__ = [
    # クライアント
    "MqttClient",
    "ClientConfig",
    "ClientDelegate",
    "Session",
    "TransportConfig",
    "SessionState",
    # パケット
    "PublishPacket",
    "PingRespPacket",
    "Qos",
    "SubAckReturnCode",
    "ConnackReturnCode",
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
    # ロギング
    "logger",
    "setup_logging",
]
