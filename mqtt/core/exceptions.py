"""Exception definitions.

例外定義を提供するモジュール。

このモジュールはMQTTクライアントで使用される例外クラスと
エラーメッセージの定義を提供します。
"""

from typing import Dict


class MQTTError(Exception):
    """MQTT関連の基本例外クラス.

    全てのMQTT関連の例外の基底クラスとして機能します。
    """


class ConfigError(MQTTError):
    """設定関連のエラー.

    クライアント設定の値が不正な場合に発生します。
    """


class ConnectionError(MQTTError):
    """接続関連のエラー.

    トランスポートの切断や通信エラーを表します。
    切断イベント経由でのみアプリケーションに通知されます。
    """


class ConnectDenied(ConnectionError):
    """ブローカーが接続を拒否した.

    CONNACKのリターンコードが受理以外だった場合に発生します。
    """

    def __init__(self, return_code: int) -> None:
        self.return_code = return_code
        super().__init__(
            ERROR_MESSAGES["CONNECT_DENIED"].format(code=return_code)
        )


class PacketError(MQTTError):
    """パケット処理のエラー.

    受信データの解析に失敗した場合に発生します。
    """


class ClientError(MQTTError):
    """クライアント操作の前提条件違反.

    呼び出し元に同期的に通知され、自動的に再試行されることはありません。
    """


class AlreadyConnected(ClientError):
    """接続済みの状態でconnectが呼ばれた."""


class AlreadyConnecting(ClientError):
    """接続中の状態でconnectが呼ばれた."""


class HasDisconnected(ClientError):
    """切断後に操作が試みられた."""


class NotConnected(ClientError):
    """未接続の状態で送信が試みられた."""


# エラーメッセージ定義
ERROR_MESSAGES: Dict[str, str] = {
    # 設定関連
    "INVALID_CLIENT_ID": "Invalid client id: {detail}",
    "INVALID_KEEP_ALIVE": "Keep alive must be 0-65535 seconds: {value}",
    "INVALID_TRANSPORT": "Unknown transport: {kind}",
    "INVALID_WILL": "Will message must be a PublishPacket: {detail}",
    "INVALID_STRING": "{field} must be UTF-8 of at most 65535 bytes: {detail}",
    # 接続関連
    "CONNECT_DENIED": "Connection refused by broker: return code {code}",
    "CONNECTION_CLOSED": "Connection closed by broker",
    "CONNECTION_FAILED": "Connection failed: {reason}",
    # クライアント関連
    "ALREADY_CONNECTED": "Client is already connected",
    "ALREADY_CONNECTING": "Client is already connecting",
    "HAS_DISCONNECTED": "Client has disconnected",
    "NOT_CONNECTED": "Client is not connected",
    # パケット関連
    "PACKET_TOO_SHORT": "Packet too short: {detail}",
    "MALFORMED_LENGTH": "Malformed remaining length",
    "UNEXPECTED_PACKET": "Unexpected packet from broker: {detail}",
    "PACKET_PARSE_ERROR": "Packet parse error: {detail}",
    # その他
    "DELEGATE_ERROR": "Delegate raised in {method}: {detail}",
    "UNEXPECTED_ERROR": "Unexpected error: {detail}",
}
