"""MQTT packet base.

ワイヤー上のMQTTパケット(固定ヘッダーとボディ)を提供するモジュール。
"""

from dataclasses import dataclass
from typing import List, Tuple

from ..core import ERROR_MESSAGES, PacketError
from .types import PacketType

# 残りの長さは最大4バイト(268,435,455)
MAX_REMAINING_LENGTH = 128**4 - 1
_MAX_LENGTH_BYTES = 4


def encode_remaining_length(length: int) -> List[int]:
    """残りの長さを可変長エンコードします.

    下位7ビットずつ、続きがある場合は最上位ビットを立てて出力します。

    Raises:
        PacketError: 4バイトで表現できない場合
    """
    if not 0 <= length <= MAX_REMAINING_LENGTH:
        raise PacketError(ERROR_MESSAGES["MALFORMED_LENGTH"])

    encoded = []
    while True:
        length, digit = divmod(length, 128)
        if not length:
            encoded.append(digit)
            return encoded
        encoded.append(digit | 0x80)


def decode_remaining_length(data: bytes, start: int = 1) -> Tuple[int, int]:
    """可変長の残りの長さをデコードします.

    Args:
        data: 受信データ
        start: 長さフィールドの先頭位置(通常は固定ヘッダーの2バイト目)

    Returns:
        Tuple[int, int]: (残りの長さ, ボディの先頭位置)

    Raises:
        IndexError: 長さフィールドがまだ揃っていない場合
        PacketError: 長さフィールドが4バイトを超える場合
    """
    value = 0
    for shift in range(_MAX_LENGTH_BYTES):
        index = start + shift
        if index >= len(data):
            raise IndexError("remaining length is incomplete")
        byte = data[index]
        value |= (byte & 0x7F) << (7 * shift)
        if not byte & 0x80:
            return value, index + 1

    raise PacketError(ERROR_MESSAGES["MALFORMED_LENGTH"])


@dataclass(repr=False)
class MQTTPacket:
    """ワイヤー上の1パケット.

    固定ヘッダーの残りの長さはボディから計算します。

    Attributes:
        packet_type: パケットタイプ
        flags: 固定ヘッダー1バイト目の下位4ビット
        body: 可変ヘッダーとペイロード
    """

    packet_type: PacketType
    flags: int = 0
    body: bytes = b""

    def __repr__(self) -> str:
        return (
            f"MQTTPacket({self.packet_type.name}, flags=0x{self.flags:x}, "
            f"length={self.remaining_length})"
        )

    @property
    def remaining_length(self) -> int:
        return len(self.body)

    @property
    def header(self) -> bytes:
        """固定ヘッダーのバイト列."""
        first_byte = (self.packet_type << 4) | self.flags
        return bytes(
            [first_byte, *encode_remaining_length(self.remaining_length)]
        )

    @property
    def packet(self) -> bytes:
        """パケット全体のバイト列."""
        return self.header + self.body
