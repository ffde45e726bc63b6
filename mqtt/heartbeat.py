"""Heartbeat scheduler.

キープアライブ用の周期タイマーを提供するモジュール。
"""

import asyncio
import threading
from typing import Callable, Optional

from . import reference
from .core import logger
from .worker import LoopThread


class HeartbeatTimer:
    """ワーカーのイベントループ上で周期的にコールバックを呼ぶタイマー.

    1つのインスタンスが同時に持つタイマーは最大1つです。
    start()は既存のタイマーを破棄してから新しいタイマーを開始し、
    stop()は次の発火より前に確実に効果を持ちます。
    世代番号で古いタイマーの発火を無効化するため、
    どのスレッドから呼び出しても安全です。

    コールバックは弱参照で保持され、参照先が解放されると
    タイマーは自動的に停止します。

    Attributes:
        interval: 現在の周期(秒)。停止中はNone
        fire_count: 発火回数
    """

    def __init__(
        self, worker: LoopThread, callback: Callable[[], None]
    ) -> None:
        self._worker = worker
        self._callback = reference.ref(callback)
        self._lock = threading.Lock()
        self._generation = 0
        self._handle: Optional[asyncio.TimerHandle] = None
        self.interval: Optional[float] = None
        self.fire_count = 0

    @property
    def active(self) -> bool:
        """タイマーが動作中かどうか."""
        with self._lock:
            return self.interval is not None

    def start(self, interval: float) -> None:
        """タイマーを開始します.

        既にタイマーが存在する場合は破棄してから開始します。
        周期が0以下の場合はタイマーを開始しません。

        Args:
            interval: 発火周期(秒)
        """
        with self._lock:
            self._cancel_locked()
            if interval <= 0:
                logger.debug("キープアライブが0のためハートビートを無効化します")
                return
            self.interval = interval
            generation = self._generation

        logger.debug(f"ハートビートを開始します: {interval}秒毎")
        self._worker.call_soon(self._schedule, generation)

    def stop(self) -> None:
        """タイマーを停止し破棄します(停止済みの場合は何もしない)."""
        with self._lock:
            if self.interval is None:
                return
            self._cancel_locked()
        logger.debug("ハートビートを停止しました")

    def _cancel_locked(self) -> None:
        self._generation += 1
        self.interval = None
        handle, self._handle = self._handle, None
        if handle is not None:
            self._worker.call_soon(handle.cancel)

    def _schedule(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self.interval is None:
                return
            self._handle = self._worker.loop.call_later(
                self.interval, self._fire, generation
            )

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self.interval is None:
                return
            self.fire_count += 1
            # 次回の発火を先に予約して周期を一定に保つ
            self._handle = self._worker.loop.call_later(
                self.interval, self._fire, generation
            )

        callback = self._callback()
        if callback is None:
            self.stop()
            return
        callback()
