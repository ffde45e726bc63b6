"""Transport layer.

MQTTセッションが使用するトランスポートを提供するモジュール。

以下のトランスポートを提供します:
- TCP (asyncio streams)
- WebSocket (websockets、サブプロトコル "mqtt")
"""

import asyncio
from dataclasses import dataclass
from typing import Optional, cast

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK
from websockets.typing import Data, Subprotocol

from .core import (
    ERROR_MESSAGES,
    READ_SIZE,
    TRANSPORT_TCP,
    TRANSPORT_WEBSOCKET,
    WS_PATH,
    WS_SUBPROTOCOL,
    ConfigError,
    ConnectionError,
)


@dataclass
class TransportConfig:
    """トランスポートの設定.

    Attributes:
        kind: トランスポートの種類("tcp" または "websocket")
        path: WebSocketエンドポイントのパス
        subprotocol: WebSocketサブプロトコル
        read_size: TCPで1回に読み込む最大バイト数
    """

    kind: str = TRANSPORT_TCP
    path: str = WS_PATH
    subprotocol: str = WS_SUBPROTOCOL
    read_size: int = READ_SIZE

    def __post_init__(self) -> None:
        if self.kind not in (TRANSPORT_TCP, TRANSPORT_WEBSOCKET):
            raise ConfigError(
                ERROR_MESSAGES["INVALID_TRANSPORT"].format(kind=self.kind)
            )


def _format_address(peer: object, host: str, port: int) -> str:
    if isinstance(peer, tuple) and len(peer) >= 2:
        return f"{peer[0]}:{peer[1]}"
    return f"{host}:{port}"


class TcpTransport:
    """TCPトランスポート."""

    def __init__(self, host: str, port: int, config: TransportConfig) -> None:
        self.host = host
        self.port = port
        self.config = config
        self.address = f"{host}:{port}"
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    async def open(self) -> None:
        self._reader, self._writer = await asyncio.open_connection(
            self.host, self.port
        )
        self.address = _format_address(
            self._writer.get_extra_info("peername"), self.host, self.port
        )

    async def write(self, data: bytes) -> None:
        if self._writer is None:
            raise ConnectionError("TCP connection not established")
        self._writer.write(data)
        await self._writer.drain()

    async def read(self) -> bytes:
        """受信データを返します. 接続が閉じられた場合はb""を返します."""
        if self._reader is None:
            raise ConnectionError("TCP connection not established")
        return await self._reader.read(self.config.read_size)

    async def close(self) -> None:
        writer, self._writer = self._writer, None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass


class WebSocketTransport:
    """WebSocketトランスポート.

    MQTTパケットはバイナリフレームで送受信します。
    キープアライブはMQTTのPINGREQで行うため、
    WebSocketレベルのpingは無効化しています。
    """

    def __init__(self, host: str, port: int, config: TransportConfig) -> None:
        self.host = host
        self.port = port
        self.config = config
        self.url = f"ws://{host}:{port}{config.path}"
        self.address = f"{host}:{port}"
        self._ws: Optional[ClientConnection] = None

    async def open(self) -> None:
        self._ws = await connect(
            self.url,
            subprotocols=[Subprotocol(self.config.subprotocol)],
            ping_interval=None,
        )
        self.address = _format_address(
            self._ws.remote_address, self.host, self.port
        )

    async def write(self, data: bytes) -> None:
        if self._ws is None:
            raise ConnectionError("WebSocket connection not established")
        await self._ws.send(cast(Data, data))

    async def read(self) -> bytes:
        """受信データを返します. 正常に閉じられた場合はb""を返します."""
        if self._ws is None:
            raise ConnectionError("WebSocket connection not established")
        try:
            message = await self._ws.recv()
        except ConnectionClosedOK:
            return b""
        except ConnectionClosed as err:
            raise ConnectionError(
                ERROR_MESSAGES["CONNECTION_FAILED"].format(reason=str(err))
            ) from err
        if isinstance(message, str):
            raise ConnectionError("Text frame received on MQTT WebSocket")
        return message

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()


Transport = TcpTransport | WebSocketTransport


def create_transport(
    host: str, port: int, config: TransportConfig
) -> Transport:
    """設定に応じたトランスポートを生成します.

    Args:
        host: 接続先ホスト
        port: 接続先ポート
        config: トランスポート設定

    Returns:
        Transport: 未接続のトランスポート
    """
    if config.kind == TRANSPORT_WEBSOCKET:
        return WebSocketTransport(host, port, config)
    return TcpTransport(host, port, config)
