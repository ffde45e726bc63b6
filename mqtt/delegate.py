"""Application delegate.

アプリケーションへのイベント通知を提供するモジュール。

主な機能:
- デリゲートのインターフェース定義(デフォルト実装は何もしない)
- 専用スレッドでの非同期なイベント配送
"""

import concurrent.futures
import threading
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from . import reference
from .core import DELEGATE_THREAD_NAME, log_error, logger
from .packet import PingRespPacket, PublishPacket, SubAckReturnCode

if TYPE_CHECKING:
    from .client import MqttClient


class ClientDelegate:
    """クライアントのイベントを受け取るデリゲート.

    必要なメソッドだけをオーバーライドして使用します。
    同じメソッド名を持つ任意のオブジェクトもデリゲートとして利用でき、
    存在しないメソッドへの通知は無視されます。

    全てのメソッドはクライアントのデリゲートスレッド上で呼ばれます。
    """

    def on_connect(self, client: "MqttClient", address: str) -> None:
        """CONNACKで接続が受理された."""

    def on_publish(self, client: "MqttClient", packet: PublishPacket) -> None:
        """送信したPUBLISHの配信が確認された.

        QoS 0は送信完了時、QoS 1はPUBACK、QoS 2はPUBCOMP受信時です。
        """

    def on_message(self, client: "MqttClient", packet: PublishPacket) -> None:
        """ブローカーからPUBLISHを受信した."""

    def on_subscribe(
        self, client: "MqttClient", results: Dict[str, SubAckReturnCode]
    ) -> None:
        """SUBACKを受信した. トピック毎の結果を受け取ります."""

    def on_unsubscribe(self, client: "MqttClient", topics: List[str]) -> None:
        """UNSUBACKを受信した."""

    def on_disconnect(
        self, client: "MqttClient", error: Optional[BaseException]
    ) -> None:
        """セッションが終了した.

        正常切断の場合errorはNoneです。トランスポートのエラーは
        この通知でのみアプリケーションに伝えられます。
        """

    def on_pong(self, client: "MqttClient", packet: PingRespPacket) -> None:
        """PINGRESPを受信した."""

    def on_packet_sent(self, client: "MqttClient", packet: Any) -> None:
        """パケットをトランスポートに書き込んだ."""


class DelegateDispatcher:
    """デリゲート呼び出しを専用スレッドで順番に実行するディスパッチャー.

    ネットワークI/Oのスレッドとアプリケーションのコードを分離します。
    配送される処理はクライアントへの弱参照のみを保持するため、
    実行前にクライアントが解放された場合、その呼び出しは破棄されます。
    """

    def __init__(self, name: str = DELEGATE_THREAD_NAME) -> None:
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=name
        )
        self._lock = threading.Lock()
        self._closed = False

    def dispatch(self, client: "MqttClient", method: str, *args: Any) -> bool:
        """デリゲートの呼び出しを予約します.

        Args:
            client: イベントの発生元クライアント
            method: 呼び出すデリゲートのメソッド名
            *args: クライアントの後に渡す引数

        Returns:
            bool: 予約できた場合はTrue、停止済みの場合はFalse
        """
        client_ref = reference.ref(client)

        def deliver() -> None:
            client = client_ref()
            if client is None:
                logger.debug(f"解放済みクライアントへの通知を破棄: {method}")
                return
            self._invoke(client, method, args)

        with self._lock:
            if self._closed:
                logger.debug(f"停止済みのため通知を破棄: {method}")
                return False
            self._executor.submit(deliver)
        return True

    @staticmethod
    def _invoke(client: "MqttClient", method: str, args: tuple) -> None:
        delegate = client.delegate
        if delegate is None:
            return
        handler = getattr(delegate, method, None)
        if handler is None:
            return
        try:
            handler(client, *args)
        except Exception as e:
            log_error("DELEGATE_ERROR", {"method": method, "detail": repr(e)})

    def flush(self, timeout: Optional[float] = None) -> None:
        """予約済みの呼び出しが全て完了するまで待ちます.

        デリゲートスレッド上から呼んではいけません。
        """
        with self._lock:
            if self._closed:
                return
            future = self._executor.submit(lambda: None)
        future.result(timeout)

    def shutdown(self, wait: bool = False) -> None:
        """ディスパッチャーを停止します. 以降の通知は破棄されます."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=wait)
