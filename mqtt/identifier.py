"""Packet identifier allocation.

パケットIDの払い出しを提供するモジュール。
"""

import threading

from .core import MAX_PACKET_ID


class PacketIdAllocator:
    """16ビットのパケットIDを払い出すカウンター.

    カウンターは0から始まり、払い出し毎に1ずつ増加します。
    次の値が最大値(65535)に達する場合は0に戻してから増加させるため、
    0と65535が払い出されることはありません。

    払い出しは専用のロックで保護されており、複数スレッドから
    同時にpublish / subscribeが呼ばれても同じ値を返すことはありません。
    """

    def __init__(self) -> None:
        self._packet_id = 0
        self._lock = threading.Lock()

    @property
    def current(self) -> int:
        """最後に払い出したパケットID(未払い出しの場合は0)."""
        return self._packet_id

    def next_id(self) -> int:
        """次のパケットIDを取得します.

        Returns:
            int: パケットID (1-65534)
        """
        with self._lock:
            if self._packet_id + 1 >= MAX_PACKET_ID:
                self._packet_id = 0
            self._packet_id += 1
            return self._packet_id
