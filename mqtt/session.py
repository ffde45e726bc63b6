"""MQTT session.

1回の接続におけるトランスポートとプロトコル処理を提供するモジュール。

主な機能:
- トランスポートの接続とCONNECTの送信
- 送信キューと受信ループ
- 接続中のQoS応答(PUBACK / PUBREC / PUBREL / PUBCOMP)
- セッションイベントのデリゲートへの通知

再送や切断を跨いだQoS状態の保持は行いません。
"""

import asyncio
from typing import Any, Dict, Optional, Protocol

from websockets.exceptions import WebSocketException

from . import reference
from .core import (
    ERROR_MESSAGES,
    RECEIVED,
    SENT,
    ConnectDenied,
    ConnectionError,
    PacketError,
    log_error,
    log_packet,
    logger,
)
from .packet import (
    ConnackPacket,
    ConnectPacket,
    DisconnectPacket,
    Packet,
    PingRespPacket,
    PubackPacket,
    PubcompPacket,
    PublishPacket,
    PubrecPacket,
    PubrelPacket,
    Qos,
    SubackPacket,
    SubscribePacket,
    UnsubackPacket,
    UnsubscribePacket,
    decode_packet,
    encode_packet,
    split_frames,
)
from .transport import Transport, TransportConfig, create_transport
from .worker import LoopThread

# 送信キューを終了させる番兵
_CLOSE = object()

_TRANSPORT_ERRORS = (
    OSError,
    EOFError,
    ConnectionError,
    PacketError,
    WebSocketException,
)


class SessionDelegate(Protocol):
    """セッションイベントを受け取るインターフェース.

    全てのメソッドはワーカーのイベントループ上で呼ばれます。
    """

    def on_session_connected(self, session: "Session", address: str) -> None:
        ...

    def on_session_publish_received(
        self, session: "Session", packet: PublishPacket
    ) -> None:
        ...

    def on_session_publish_confirmed(
        self, session: "Session", packet: PublishPacket
    ) -> None:
        ...

    def on_session_packet_sent(self, session: "Session", packet: Any) -> None:
        ...

    def on_session_subscribed(
        self, session: "Session", results: Dict[str, Any]
    ) -> None:
        ...

    def on_session_unsubscribed(self, session: "Session", topics: Any) -> None:
        ...

    def on_session_disconnected(
        self, session: "Session", error: Optional[BaseException]
    ) -> None:
        ...

    def on_session_pong_received(
        self, session: "Session", packet: PingRespPacket
    ) -> None:
        ...


class Session:
    """1回の接続を担当するMQTTセッション.

    公開メソッドは任意のスレッドから呼び出すことができ、
    処理をワーカーのイベントループに予約してすぐに戻ります。
    デリゲートは弱参照で保持します。

    Attributes:
        host: 接続先ホスト
        port: 接続先ポート
        address: 接続先アドレス("host:port")
        connected: CONNACKで接続が受理されたかどうか
    """

    def __init__(
        self,
        host: str,
        port: int,
        delegate: SessionDelegate,
        *,
        worker: LoopThread,
        config: Optional[TransportConfig] = None,
        transport: Optional[Transport] = None,
    ) -> None:
        """Sessionを初期化します.

        Args:
            host: 接続先ホスト
            port: 接続先ポート
            delegate: イベントの通知先
            worker: I/Oを実行するイベントループスレッド
            config: トランスポート設定
            transport: 使用するトランスポート(省略時はconfigから生成)
        """
        self.host = host
        self.port = port
        self.address = f"{host}:{port}"
        self.connected = False

        self._delegate = reference.ref(delegate)
        self._worker = worker
        self._transport = transport or create_transport(
            host, port, config or TransportConfig()
        )
        self._outgoing: "asyncio.Queue[Any]" = asyncio.Queue()
        self._buffer = b""
        self._finished = False
        self._task: Optional["asyncio.Future[None]"] = None

        # 接続中のみ保持する応答待ちの状態
        self._outgoing_publishes: Dict[int, PublishPacket] = {}
        self._incoming_publishes: Dict[int, PublishPacket] = {}
        self._pending_subscribes: Dict[int, SubscribePacket] = {}
        self._pending_unsubscribes: Dict[int, UnsubscribePacket] = {}

    def __repr__(self) -> str:
        return f"Session({self.address}, connected={self.connected})"

    def connect(self, packet: ConnectPacket) -> None:
        """トランスポートを接続し、最初にCONNECTを送信します.

        Args:
            packet: 送信するCONNECTパケット
        """
        self._worker.call_soon(self._start, packet)

    def send(self, packet: Packet) -> None:
        """パケットを送信キューに追加します.

        DISCONNECTを送信した後、セッションはトランスポートを閉じます。

        Args:
            packet: 送信するパケット
        """
        self._worker.call_soon(self._outgoing.put_nowait, packet)

    def close(self) -> None:
        """DISCONNECTを送らずにセッションを終了します.

        CONNACK受信前の場合は接続処理を中断します。
        """
        self._worker.call_soon(self._close)

    def _start(self, packet: ConnectPacket) -> None:
        self._task = asyncio.ensure_future(self._run(packet))
        self._task.add_done_callback(self._task_done)

    def _close(self) -> None:
        self._outgoing.put_nowait(_CLOSE)
        if self._task is not None and not self.connected:
            self._task.cancel()

    def _task_done(self, task: "asyncio.Future[None]") -> None:
        # 開始前に中断された場合も切断を通知する
        if task.cancelled():
            self._finish(None)
        elif task.exception() is not None:
            self._finish(task.exception())

    async def _run(self, packet: ConnectPacket) -> None:
        error: Optional[BaseException] = None
        try:
            logger.info(f"接続を開始します: {self.address}")
            await self._transport.open()
            self.address = self._transport.address
            logger.debug(f"トランスポート接続完了: {self.address}")

            await self._write(packet)
            error = await self._serve()
        except asyncio.CancelledError:
            await self._close_transport()
            raise
        except _TRANSPORT_ERRORS as err:
            error = err
        except Exception as err:
            # エンコードの失敗など。接続中のままにせず切断として扱う
            log_error("UNEXPECTED_ERROR", {"detail": repr(err)})
            error = err

        await self._close_transport()
        self._finish(error)

    async def _serve(self) -> Optional[BaseException]:
        reader = asyncio.ensure_future(self._read_loop())
        writer = asyncio.ensure_future(self._write_loop())
        try:
            done, _ = await asyncio.wait(
                {reader, writer}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (reader, writer):
                task.cancel()
            await asyncio.gather(reader, writer, return_exceptions=True)

        # DISCONNECTを書き込み終えた場合は正常終了
        if writer in done and writer.exception() is None:
            return None
        for task in (reader, writer):
            if task in done and task.exception() is not None:
                return task.exception()
        return None

    async def _close_transport(self) -> None:
        try:
            await self._transport.close()
        except _TRANSPORT_ERRORS as err:
            logger.debug(f"トランスポートのクローズでエラー: {err}")

    async def _read_loop(self) -> None:
        while True:
            data = await self._transport.read()
            if not data:
                raise ConnectionError(ERROR_MESSAGES["CONNECTION_CLOSED"])

            self._buffer += data
            frames, self._buffer = split_frames(self._buffer)
            for frame in frames:
                log_packet(frame.packet_type.name, frame.packet, RECEIVED)
                self._handle(decode_packet(frame))

    async def _write_loop(self) -> None:
        while True:
            packet = await self._outgoing.get()
            if packet is _CLOSE:
                return
            await self._write(packet)
            if isinstance(packet, DisconnectPacket):
                return

    async def _write(self, packet: Packet) -> None:
        data = encode_packet(packet)

        # 書き込み中に応答が届いても照合できるよう先に登録する
        self._track(packet)
        log_packet(packet.packet_type.name, data, SENT)
        await self._transport.write(data)

        self._report("on_session_packet_sent", packet)
        if isinstance(packet, PublishPacket) and packet.qos == Qos.QOS0:
            self._report("on_session_publish_confirmed", packet)

    def _track(self, packet: Packet) -> None:
        if isinstance(packet, PublishPacket) and packet.qos > Qos.QOS0:
            self._outgoing_publishes[packet.packet_id] = packet
        elif isinstance(packet, SubscribePacket):
            self._pending_subscribes[packet.packet_id] = packet
        elif isinstance(packet, UnsubscribePacket):
            self._pending_unsubscribes[packet.packet_id] = packet

    def _handle(self, packet: Packet) -> None:
        """受信したパケットを処理します."""
        if isinstance(packet, ConnackPacket):
            self._handle_connack(packet)
            return

        if not self.connected:
            raise PacketError(
                ERROR_MESSAGES["UNEXPECTED_PACKET"].format(
                    detail=f"{packet.packet_type.name} before CONNACK"
                )
            )

        if isinstance(packet, PublishPacket):
            self._handle_publish(packet)
        elif isinstance(packet, PubrelPacket):
            self._outgoing.put_nowait(PubcompPacket(packet.packet_id))
            received = self._incoming_publishes.pop(packet.packet_id, None)
            if received is not None:
                self._report("on_session_publish_received", received)
        elif isinstance(packet, PubackPacket):
            self._confirm_publish(packet.packet_id)
        elif isinstance(packet, PubrecPacket):
            self._outgoing.put_nowait(PubrelPacket(packet.packet_id))
        elif isinstance(packet, PubcompPacket):
            self._confirm_publish(packet.packet_id)
        elif isinstance(packet, SubackPacket):
            self._handle_suback(packet)
        elif isinstance(packet, UnsubackPacket):
            request = self._pending_unsubscribes.pop(packet.packet_id, None)
            if request is None:
                logger.warning(f"不明なUNSUBACK: {packet.packet_id}")
                return
            self._report("on_session_unsubscribed", list(request.topics))
        elif isinstance(packet, PingRespPacket):
            logger.debug("PING応答受信")
            self._report("on_session_pong_received", packet)

    def _handle_connack(self, packet: ConnackPacket) -> None:
        if self.connected:
            raise PacketError(
                ERROR_MESSAGES["UNEXPECTED_PACKET"].format(
                    detail="duplicate CONNACK"
                )
            )
        if not packet.accepted:
            raise ConnectDenied(packet.return_code)

        self.connected = True
        logger.info(f"MQTT接続完了: {self.address}")
        self._report("on_session_connected", self.address)

    def _handle_publish(self, packet: PublishPacket) -> None:
        if packet.qos == Qos.QOS0:
            self._report("on_session_publish_received", packet)
        elif packet.qos == Qos.QOS1:
            self._outgoing.put_nowait(PubackPacket(packet.packet_id))
            self._report("on_session_publish_received", packet)
        else:
            # QoS 2はPUBREL受信時にアプリケーションへ渡す
            self._incoming_publishes[packet.packet_id] = packet
            self._outgoing.put_nowait(PubrecPacket(packet.packet_id))

    def _handle_suback(self, packet: SubackPacket) -> None:
        request = self._pending_subscribes.pop(packet.packet_id, None)
        if request is None:
            logger.warning(f"不明なSUBACK: {packet.packet_id}")
            return
        results = {
            topic: code
            for (topic, _), code in zip(request.topics, packet.return_codes)
        }
        self._report("on_session_subscribed", results)

    def _confirm_publish(self, packet_id: int) -> None:
        published = self._outgoing_publishes.pop(packet_id, None)
        if published is None:
            logger.warning(f"不明なPUBLISH応答: {packet_id}")
            return
        self._report("on_session_publish_confirmed", published)

    def _finish(self, error: Optional[BaseException]) -> None:
        if self._finished:
            return
        self._finished = True
        self.connected = False
        self._outgoing_publishes.clear()
        self._incoming_publishes.clear()
        self._pending_subscribes.clear()
        self._pending_unsubscribes.clear()

        if error is None:
            logger.info(f"切断しました: {self.address}")
        else:
            logger.error(f"切断: {self.address}, 理由: {error!r}")
        self._report("on_session_disconnected", error)

    def _report(self, method: str, *args: Any) -> None:
        delegate = self._delegate()
        if delegate is None:
            return
        try:
            getattr(delegate, method)(self, *args)
        except Exception as e:
            log_error("UNEXPECTED_ERROR", {"detail": f"{method}: {e!r}"})
