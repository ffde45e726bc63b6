"""Worker execution context.

セッションI/Oとタイマーを実行するイベントループスレッドを提供するモジュール。
"""

import asyncio
import concurrent.futures
import threading
from typing import Any, Callable, Coroutine, Optional

from .core import WORKER_THREAD_NAME, logger


class LoopThread:
    """バックグラウンドスレッドで動作するasyncioイベントループ.

    クライアント毎に1つ生成され、セッションのソケットI/Oと
    キープアライブタイマーの発火を担当します。
    他のスレッドからはcall_soon / submitを通じてのみ操作します。

    Attributes:
        name: スレッド名
        loop: イベントループ
    """

    def __init__(self, name: str = WORKER_THREAD_NAME) -> None:
        self.name = name
        self.loop = asyncio.new_event_loop()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """イベントループスレッドを開始します(開始済みの場合は何もしない)."""
        with self._lock:
            if self._thread is not None:
                return
            self._thread = threading.Thread(
                target=self._run_loop, name=self.name, daemon=True
            )
            self._thread.start()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self.loop)
        try:
            self.loop.run_forever()
        finally:
            self._cancel_pending()
            self.loop.close()
            logger.debug(f"イベントループを終了しました: {self.name}")

    def _cancel_pending(self) -> None:
        pending = asyncio.all_tasks(self.loop)
        for task in pending:
            task.cancel()
        if pending:
            self.loop.run_until_complete(
                asyncio.gather(*pending, return_exceptions=True)
            )

    def stop(self, timeout: Optional[float] = 2.0) -> None:
        """イベントループを停止し、スレッドの終了を待ちます.

        Args:
            timeout: スレッド終了の待機時間(秒)
        """
        with self._lock:
            thread = self._thread
            if self.loop.is_closed():
                return
            if thread is None:
                self.loop.close()
                return
            try:
                self.loop.call_soon_threadsafe(self.loop.stop)
            except RuntimeError:
                # 別スレッドで既にクローズされた
                return

        if thread is not threading.current_thread():
            thread.join(timeout)

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> None:
        """イベントループ上でコールバックを実行します.

        停止済みのループに対する呼び出しは無視されます。
        """
        try:
            self.loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            logger.debug("停止済みのイベントループへの呼び出しを破棄しました")

    def submit(
        self, coro: Coroutine[Any, Any, Any]
    ) -> "concurrent.futures.Future[Any]":
        """コルーチンをイベントループ上で実行します.

        Args:
            coro: 実行するコルーチン

        Returns:
            concurrent.futures.Future: 実行結果
        """
        return asyncio.run_coroutine_threadsafe(coro, self.loop)
