"""MQTT client.

MQTTブローカーとのセッションを管理するクライアントです。
以下の機能を提供します:

- 接続状態の管理(状態遷移は全てロックで直列化)
- パケットIDの払い出し
- PUBLISH / SUBSCRIBE / UNSUBSCRIBE / PINGREQの送信
- キープアライブ処理
- セッションイベントのデリゲートへの非同期通知

どの操作もネットワークの応答を待たずに戻ります。
結果はデリゲートへの通知で受け取ります。
"""

import functools
import threading
import weakref
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .core import (
    ERROR_MESSAGES,
    MAX_STRING_LENGTH,
    MQTT_DEFAULT_PORT,
    MQTT_KEEP_ALIVE,
    MQTT_MAX_KEEP_ALIVE,
    TEXT_ENCODING,
    AlreadyConnected,
    AlreadyConnecting,
    ConfigError,
    ConnectDenied,
    HasDisconnected,
    NotConnected,
    SessionState,
    logger,
)
from .delegate import ClientDelegate, DelegateDispatcher
from .heartbeat import HeartbeatTimer
from .identifier import PacketIdAllocator
from .packet import (
    ConnectPacket,
    DisconnectPacket,
    Packet,
    PingReqPacket,
    PingRespPacket,
    PublishPacket,
    Qos,
    SubAckReturnCode,
    SubscribePacket,
    UnsubscribePacket,
)
from .packet.models import encoded_length
from .session import Session
from .transport import TransportConfig
from .worker import LoopThread

SessionFactory = Callable[[str, int, "MqttClient"], Any]


@dataclass(frozen=True)
class ClientConfig:
    """クライアントの設定.

    生成後は変更できません。

    Attributes:
        client_id: クライアントID
        clean_session: クリーンセッションフラグ。Falseの場合、
            未確認のQoS 1以上の状態は再接続を跨いで保持されるべきですが、
            このクライアントは保持しません
        keep_alive: キープアライブ間隔(秒)。0はハートビート無効
        username: ユーザー名
        password: パスワード
        will_message: 異常切断時にブローカーが配信するメッセージ
    """

    client_id: str
    clean_session: bool = False
    keep_alive: int = MQTT_KEEP_ALIVE
    username: Optional[str] = None
    password: Optional[str] = None
    will_message: Optional[PublishPacket] = None

    def __post_init__(self) -> None:
        if not isinstance(self.client_id, str):
            raise ConfigError(
                ERROR_MESSAGES["INVALID_CLIENT_ID"].format(
                    detail=repr(self.client_id)
                )
            )
        if (
            not isinstance(self.keep_alive, int)
            or not 0 <= self.keep_alive <= MQTT_MAX_KEEP_ALIVE
        ):
            raise ConfigError(
                ERROR_MESSAGES["INVALID_KEEP_ALIVE"].format(
                    value=self.keep_alive
                )
            )
        if self.will_message is not None and not isinstance(
            self.will_message, PublishPacket
        ):
            raise ConfigError(
                ERROR_MESSAGES["INVALID_WILL"].format(
                    detail=type(self.will_message).__name__
                )
            )

        # CONNECTの各フィールドは2バイト長 + UTF-8
        for name in ("client_id", "username", "password"):
            value = getattr(self, name)
            if value is None:
                continue
            try:
                encoded_length(value)
            except ValueError as e:
                raise ConfigError(
                    ERROR_MESSAGES["INVALID_STRING"].format(
                        field=name, detail=e
                    )
                ) from None
        if (
            self.will_message is not None
            and len(self.will_message.payload) > MAX_STRING_LENGTH
        ):
            raise ConfigError(
                ERROR_MESSAGES["INVALID_WILL"].format(
                    detail=f"payload over {MAX_STRING_LENGTH} bytes"
                )
            )


def _release(
    worker: LoopThread,
    dispatcher: DelegateDispatcher,
    heartbeat: HeartbeatTimer,
) -> None:
    heartbeat.stop()
    dispatcher.shutdown(wait=False)
    worker.stop(timeout=None)


class MqttClient:
    """MQTTセッションコーディネーター.

    2つの実行コンテキストを使用します:
    ワーカースレッド(セッションI/Oとタイマー)と、
    デリゲートスレッド(アプリケーションへの通知)です。

    Attributes:
        config: クライアント設定
        transport_config: トランスポート設定
        delegate: イベントの通知先
    """

    def __init__(
        self,
        config: Union[ClientConfig, str],
        delegate: Optional[ClientDelegate] = None,
        transport_config: Optional[TransportConfig] = None,
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        """MqttClientを初期化します.

        Args:
            config: クライアント設定、またはクライアントID
            delegate: イベントの通知先
            transport_config: デフォルトのセッションが使うトランスポート設定
            session_factory: (host, port, client)からセッションを生成する関数
        """
        if isinstance(config, str):
            config = ClientConfig(client_id=config)
        self.config = config
        self.transport_config = transport_config or TransportConfig()
        self.delegate = delegate

        self._state_lock = threading.Lock()
        self._state = SessionState.INITIALIZATION
        self._session: Optional[Any] = None
        self._session_ended = threading.Event()
        self._session_ended.set()
        self._closed = False

        self._packet_ids = PacketIdAllocator()
        self._worker = LoopThread()
        self._worker.start()
        self._dispatcher = DelegateDispatcher()
        self._heartbeat = HeartbeatTimer(self._worker, self._heartbeat_fired)
        self._session_factory = session_factory or functools.partial(
            Session, worker=self._worker, config=self.transport_config
        )

        # 解放時にスレッドを停止する(selfを参照してはいけない)
        self._finalizer = weakref.finalize(
            self, _release, self._worker, self._dispatcher, self._heartbeat
        )

    def __repr__(self) -> str:
        return f"MqttClient({self.client_id!r}, state={self._state.name})"

    def __enter__(self) -> "MqttClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def state(self) -> SessionState:
        """現在のセッション状態."""
        with self._state_lock:
            return self._state

    @property
    def client_id(self) -> str:
        return self.config.client_id

    @property
    def clean_session(self) -> bool:
        return self.config.clean_session

    @property
    def keep_alive(self) -> int:
        return self.config.keep_alive

    @property
    def username(self) -> Optional[str]:
        return self.config.username

    @property
    def password(self) -> Optional[str]:
        return self.config.password

    @property
    def will_message(self) -> Optional[PublishPacket]:
        return self.config.will_message

    @property
    def heartbeat_active(self) -> bool:
        return self._heartbeat.active

    @property
    def heartbeat_interval(self) -> Optional[float]:
        return self._heartbeat.interval

    def _set_state(self, state: SessionState) -> None:
        # 呼び出し元が_state_lockを保持していること
        self._state = state
        logger.info(f"セッション状態: {state.name}")

    def connect(self, host: str, port: int = MQTT_DEFAULT_PORT) -> None:
        """ブローカーへの接続を開始します.

        CONNECTを送信するとすぐに戻ります。接続の結果は
        デリゲートのon_connect、またはon_disconnectで通知されます。

        Args:
            host: ブローカーのホスト
            port: ブローカーのポート(TLSは慣例として8883)

        Raises:
            AlreadyConnected: 接続済みの場合
            AlreadyConnecting: 接続中の場合
            HasDisconnected: close()済みの場合
        """
        with self._state_lock:
            if self._closed:
                raise HasDisconnected(ERROR_MESSAGES["HAS_DISCONNECTED"])
            if self._state == SessionState.CONNECTED:
                raise AlreadyConnected(ERROR_MESSAGES["ALREADY_CONNECTED"])
            if self._state == SessionState.CONNECTING:
                raise AlreadyConnecting(ERROR_MESSAGES["ALREADY_CONNECTING"])

            self._session = self._session_factory(host, port, self)
            self._session_ended.clear()

            packet = ConnectPacket(
                client_id=self.client_id,
                clean_session=self.clean_session,
                keep_alive=self.keep_alive,
                username=self.username,
                password=self.password,
                will_message=self.will_message,
            )
            self._session.connect(packet)
            self._set_state(SessionState.CONNECTING)

    def disconnect(self) -> None:
        """DISCONNECTを送信してセッションを終了します.

        接続済みでない場合は何もしません(パケット送信、状態変更、
        デリゲートへの通知のいずれも行わない)。
        """
        with self._state_lock:
            if self._state != SessionState.CONNECTED:
                return
            session = self._session
            session.send(DisconnectPacket())
            self._set_state(SessionState.DISCONNECTED)

        self._heartbeat.stop()

    def publish(
        self,
        topic: str,
        payload: Union[bytes, str],
        qos: Qos = Qos.QOS1,
        retain: bool = False,
    ) -> PublishPacket:
        """メッセージを発行します.

        Args:
            topic: トピック名
            payload: ペイロード。文字列はUTF-8でエンコードされる
            qos: QoSレベル
            retain: 保持フラグ

        Returns:
            PublishPacket: セッションに渡したパケット

        Raises:
            NotConnected: 接続済みでない場合
            ValueError: トピックが不正、またはパケットが大きすぎる場合
        """
        if isinstance(payload, str):
            payload = payload.encode(TEXT_ENCODING)
        qos = Qos(qos)
        packet_id = self._packet_ids.next_id() if qos > Qos.QOS0 else None

        packet = PublishPacket(
            topic=topic,
            payload=payload,
            qos=qos,
            retain=retain,
            packet_id=packet_id,
        )
        self._send(packet)
        return packet

    def subscribe(self, topic: str, qos: Qos = Qos.QOS1) -> SubscribePacket:
        """トピックを購読します.

        Raises:
            NotConnected: 接続済みでない場合
        """
        packet = SubscribePacket(
            packet_id=self._packet_ids.next_id(), topics=[(topic, qos)]
        )
        self._send(packet)
        return packet

    def unsubscribe(
        self, topics: Union[str, Sequence[str]]
    ) -> UnsubscribePacket:
        """トピックの購読を解除します.

        Raises:
            NotConnected: 接続済みでない場合
        """
        if isinstance(topics, str):
            topics = [topics]
        packet = UnsubscribePacket(
            packet_id=self._packet_ids.next_id(), topics=topics
        )
        self._send(packet)
        return packet

    def ping(self) -> None:
        """PINGREQを送信します.

        Raises:
            NotConnected: 接続済みでない場合
        """
        self._send(PingReqPacket())

    def _send(self, packet: Packet) -> None:
        with self._state_lock:
            session = self._session
            if session is None or self._state != SessionState.CONNECTED:
                raise NotConnected(ERROR_MESSAGES["NOT_CONNECTED"])
        session.send(packet)

    def _heartbeat_fired(self) -> None:
        try:
            self.ping()
        except NotConnected:
            logger.debug("未接続のためPINGREQを送信しませんでした")

    def flush_callbacks(self, timeout: Optional[float] = None) -> None:
        """予約済みのデリゲート呼び出しが完了するまで待ちます.

        デリゲートのメソッド内から呼んではいけません。
        """
        self._dispatcher.flush(timeout)

    def close(self, timeout: Optional[float] = 2.0) -> None:
        """クライアントを終了し、スレッドを解放します.

        接続済みの場合はDISCONNECTを送信します。
        close()後にconnect()を呼ぶとHasDisconnectedになります。

        Args:
            timeout: セッション終了の待機時間(秒)
        """
        self.disconnect()
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            session = self._session

        if session is not None:
            session.close()
            if not self._session_ended.wait(timeout):
                logger.warning("セッション終了の待機がタイムアウトしました")

        self._finalizer()

    def _is_session(self, session: Any) -> bool:
        # 呼び出し元が_state_lockを保持していること
        if session is self._session:
            return True
        logger.debug(f"古いセッションのイベントを無視します: {session!r}")
        return False

    def _is_current(self, session: Any) -> bool:
        with self._state_lock:
            return self._is_session(session)

    def on_session_connected(self, session: Any, address: str) -> None:
        with self._state_lock:
            if not self._is_session(session):
                return
            self._set_state(SessionState.CONNECTED)
            self._heartbeat.start(self.keep_alive)

        self._dispatcher.dispatch(self, "on_connect", address)

    def on_session_disconnected(
        self, session: Any, error: Optional[BaseException]
    ) -> None:
        with self._state_lock:
            if not self._is_session(session):
                return
            self._heartbeat.stop()
            self._session = None
            if isinstance(error, ConnectDenied):
                self._set_state(SessionState.DENIED)
            else:
                self._set_state(SessionState.DISCONNECTED)

        self._dispatcher.dispatch(self, "on_disconnect", error)
        self._session_ended.set()

    def on_session_publish_received(
        self, session: Any, packet: PublishPacket
    ) -> None:
        if self._is_current(session):
            logger.info(f"メッセージ受信: {packet.topic}")
            self._dispatcher.dispatch(self, "on_message", packet)

    def on_session_publish_confirmed(
        self, session: Any, packet: PublishPacket
    ) -> None:
        if self._is_current(session):
            self._dispatcher.dispatch(self, "on_publish", packet)

    def on_session_packet_sent(self, session: Any, packet: Packet) -> None:
        if self._is_current(session):
            self._dispatcher.dispatch(self, "on_packet_sent", packet)

    def on_session_subscribed(
        self, session: Any, results: Dict[str, SubAckReturnCode]
    ) -> None:
        if self._is_current(session):
            logger.info(f"購読結果: {results}")
            self._dispatcher.dispatch(self, "on_subscribe", results)

    def on_session_unsubscribed(self, session: Any, topics: List[str]) -> None:
        if self._is_current(session):
            logger.info(f"購読解除: {topics}")
            self._dispatcher.dispatch(self, "on_unsubscribe", topics)

    def on_session_pong_received(
        self, session: Any, packet: PingRespPacket
    ) -> None:
        if self._is_current(session):
            self._dispatcher.dispatch(self, "on_pong", packet)
