"""MQTTパケット解析モジュール.

このモジュールはMQTTパケットの解析機能を提供します。
ストリームからのフレーム切り出し、固定ヘッダーの解析、および
ブローカーから届く各種パケットタイプの構造化を実装しています。
"""

import struct
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core import ERROR_MESSAGES, TEXT_ENCODING, PacketError
from .base import MQTTPacket, decode_remaining_length
from .models import (
    ConnackPacket,
    Packet,
    PingRespPacket,
    PubackPacket,
    PubcompPacket,
    PublishPacket,
    PubrecPacket,
    PubrelPacket,
    SubackPacket,
    UnsubackPacket,
)
from .types import ConnackReturnCode, PacketType, Qos


def parse_packet(data: bytes) -> Optional[MQTTPacket]:
    """バイナリデータから1つのMQTTパケットを解析します.

    Args:
        data: 解析対象のバイナリデータ(先頭がパケット境界)

    Returns:
        Optional[MQTTPacket]: 解析されたパケット、データ不足時はNone

    Raises:
        PacketError: パケットタイプや長さが不正な場合
    """
    frame, _ = _read_frame(data, 0)
    return frame


def split_frames(buffer: bytes) -> Tuple[List[MQTTPacket], bytes]:
    """受信バッファから完全なパケットを全て切り出します.

    TCPやWebSocketでは1回の受信に複数のパケットが含まれたり、
    1つのパケットが複数回に分かれて届くことがあります。

    Args:
        buffer: 受信済みで未処理のデータ

    Returns:
        Tuple[List[MQTTPacket], bytes]: 切り出したパケットと残りのデータ

    Raises:
        PacketError: パケットが不正な場合
    """
    frames = []
    pos = 0
    while pos < len(buffer):
        frame, next_pos = _read_frame(buffer, pos)
        if frame is None:
            break
        frames.append(frame)
        pos = next_pos
    return frames, buffer[pos:]


def _read_frame(data: bytes, start: int) -> Tuple[Optional[MQTTPacket], int]:
    if len(data) - start < 2:
        return None, start

    first_byte = data[start]
    try:
        packet_type = PacketType(first_byte >> 4)
    except ValueError:
        raise PacketError(
            ERROR_MESSAGES["PACKET_PARSE_ERROR"].format(
                detail=f"unknown packet type {first_byte >> 4}"
            )
        ) from None

    try:
        remaining_length, pos = decode_remaining_length(data, start + 1)
    except IndexError:
        return None, start

    end = pos + remaining_length
    if end > len(data):
        return None, start

    frame = MQTTPacket(
        packet_type, flags=first_byte & 0x0F, body=bytes(data[pos:end])
    )
    return frame, end


def decode_packet(frame: MQTTPacket) -> Packet:
    """ワイヤーフレームを構造化パケットに変換します.

    Args:
        frame: ブローカーから受信したパケット

    Returns:
        Packet: 構造化されたパケット

    Raises:
        PacketError: 解析に失敗した場合、またはクライアントが
            受信するはずのないパケットタイプの場合
    """
    try:
        decoder = _DECODERS[frame.packet_type]
    except KeyError:
        raise PacketError(
            ERROR_MESSAGES["UNEXPECTED_PACKET"].format(
                detail=frame.packet_type.name
            )
        ) from None

    try:
        return decoder(frame)
    except (struct.error, IndexError, UnicodeDecodeError, ValueError) as err:
        raise PacketError(
            ERROR_MESSAGES["PACKET_PARSE_ERROR"].format(
                detail=f"{frame.packet_type.name}: {err}"
            )
        ) from err


def parse_connack(frame: MQTTPacket) -> ConnackPacket:
    """CONNACKパケットを解析します."""
    _require_length(frame, 2)
    return ConnackPacket(
        session_present=bool(frame.body[0] & 0x01),
        return_code=ConnackReturnCode(frame.body[1]),
    )


def parse_publish(frame: MQTTPacket) -> PublishPacket:
    """PUBLISHパケットを解析します.

    Args:
        frame: PUBLISHパケット

    Returns:
        PublishPacket: トピック名、ペイロード、パケットIDを含むパケット
    """
    body = frame.body
    _require_length(frame, 2)

    # トピック名の長さを取得
    topic_length = struct.unpack("!H", body[0:2])[0]
    pos = 2 + topic_length
    if len(body) < pos:
        raise PacketError(
            ERROR_MESSAGES["PACKET_TOO_SHORT"].format(detail="PUBLISH topic")
        )
    topic = body[2:pos].decode(TEXT_ENCODING)

    # QoSレベルに応じてパケットIDを取得
    qos = Qos((frame.flags & 0x06) >> 1)
    packet_id = None
    if qos > Qos.QOS0:
        if len(body) < pos + 2:
            raise PacketError(
                ERROR_MESSAGES["PACKET_TOO_SHORT"].format(
                    detail="PUBLISH packet id"
                )
            )
        packet_id = struct.unpack("!H", body[pos : pos + 2])[0]
        pos += 2

    return PublishPacket(
        topic=topic,
        payload=body[pos:],
        qos=qos,
        retain=bool(frame.flags & 0x01),
        dup=bool(frame.flags & 0x08),
        packet_id=packet_id,
    )


def parse_suback(frame: MQTTPacket) -> SubackPacket:
    """SUBACKパケットを解析します."""
    _require_length(frame, 3)
    return SubackPacket(
        packet_id=struct.unpack("!H", frame.body[0:2])[0],
        return_codes=tuple(frame.body[2:]),
    )


def _parse_ack(cls: Callable[..., Packet]) -> Callable[[MQTTPacket], Packet]:
    def parse(frame: MQTTPacket) -> Packet:
        _require_length(frame, 2)
        return cls(packet_id=struct.unpack("!H", frame.body[0:2])[0])

    return parse


def _parse_pingresp(frame: MQTTPacket) -> PingRespPacket:
    return PingRespPacket()


def _require_length(frame: MQTTPacket, length: int) -> None:
    if frame.remaining_length < length:
        raise PacketError(
            ERROR_MESSAGES["PACKET_TOO_SHORT"].format(
                detail=frame.packet_type.name
            )
        )


_DECODERS: Dict[PacketType, Callable[[MQTTPacket], Any]] = {
    PacketType.CONNACK: parse_connack,
    PacketType.PUBLISH: parse_publish,
    PacketType.PUBACK: _parse_ack(PubackPacket),
    PacketType.PUBREC: _parse_ack(PubrecPacket),
    PacketType.PUBREL: _parse_ack(PubrelPacket),
    PacketType.PUBCOMP: _parse_ack(PubcompPacket),
    PacketType.SUBACK: parse_suback,
    PacketType.UNSUBACK: _parse_ack(UnsubackPacket),
    PacketType.PINGRESP: _parse_pingresp,
}
