"""MQTT packet builder.

MQTTパケットビルダーを提供するモジュール。

主な機能:
- CONNECTパケットの生成(ウィル、ユーザー名、パスワードを含む)
- PUBLISHパケットと各応答パケットの生成
- SUBSCRIBE / UNSUBSCRIBEパケットの生成
- PINGREQ / DISCONNECTパケットの生成
"""

import struct
from typing import Callable, Dict, Type

from ..core import MQTT_PROTOCOL_NAME, MQTT_PROTOCOL_VERSION, TEXT_ENCODING
from .base import MQTTPacket
from .models import (
    ConnectPacket,
    DisconnectPacket,
    Packet,
    PingReqPacket,
    PubackPacket,
    PubcompPacket,
    PublishPacket,
    PubrecPacket,
    PubrelPacket,
    SubscribePacket,
    UnsubscribePacket,
)
from .types import PacketType, Qos

# 接続フラグ
_FLAG_CLEAN_SESSION = 0x02
_FLAG_WILL = 0x04
_FLAG_WILL_RETAIN = 0x20
_FLAG_PASSWORD = 0x40
_FLAG_USERNAME = 0x80


def build_connect_packet(packet: ConnectPacket) -> MQTTPacket:
    """CONNECTパケットを生成する.

    Args:
        packet (ConnectPacket): 接続パラメーター

    Returns:
        MQTTPacket: 生成されたCONNECTパケット
    """
    flags = 0
    if packet.clean_session:
        flags |= _FLAG_CLEAN_SESSION
    if packet.will_message is not None:
        flags |= _FLAG_WILL
        flags |= packet.will_message.qos << 3
        if packet.will_message.retain:
            flags |= _FLAG_WILL_RETAIN
    if packet.username is not None:
        flags |= _FLAG_USERNAME
    if packet.password is not None:
        flags |= _FLAG_PASSWORD

    # 可変ヘッダーの構築
    var_header = (
        _encode_string(MQTT_PROTOCOL_NAME)
        + bytes([MQTT_PROTOCOL_VERSION, flags])
        + struct.pack("!H", packet.keep_alive)
    )

    # ペイロードの構築(順序は仕様で固定)
    payload = _encode_string(packet.client_id)
    if packet.will_message is not None:
        payload += _encode_string(packet.will_message.topic)
        payload += _encode_bytes(packet.will_message.payload)
    if packet.username is not None:
        payload += _encode_string(packet.username)
    if packet.password is not None:
        payload += _encode_string(packet.password)

    return MQTTPacket(PacketType.CONNECT, body=var_header + payload)


def build_publish_packet(packet: PublishPacket) -> MQTTPacket:
    """PUBLISHパケットを生成する.

    Args:
        packet (PublishPacket): 発行するメッセージ

    Returns:
        MQTTPacket: 生成されたPUBLISHパケット

    Raises:
        ValueError: QoS 1以上でパケットIDがない場合
    """
    flags = (packet.dup << 3) | (packet.qos << 1) | packet.retain

    var_header = _encode_string(packet.topic)

    # QoS > 0の場合はパケットIDを追加
    if packet.qos > Qos.QOS0:
        if packet.packet_id is None:
            raise ValueError("Packet id required for QoS > 0")
        var_header += struct.pack("!H", packet.packet_id)

    return MQTTPacket(
        PacketType.PUBLISH, flags=flags, body=var_header + packet.payload
    )


def build_ack_packet(packet: PubackPacket) -> MQTTPacket:
    """PUBACK / PUBREC / PUBREL / PUBCOMPパケットを生成する."""
    # PUBRELのみ予約フラグが0b0010
    flags = 2 if packet.packet_type == PacketType.PUBREL else 0
    return MQTTPacket(
        packet.packet_type,
        flags=flags,
        body=struct.pack("!H", packet.packet_id),
    )


def build_subscribe_packet(packet: SubscribePacket) -> MQTTPacket:
    """SUBSCRIBEパケットを生成する.

    Args:
        packet (SubscribePacket): 購読要求

    Returns:
        MQTTPacket: 生成されたSUBSCRIBEパケット
    """
    var_header = struct.pack("!H", packet.packet_id)

    # ペイロードの構築(トピックとQoSのペア)
    payload = b"".join(
        _encode_string(topic) + bytes([qos]) for topic, qos in packet.topics
    )

    return MQTTPacket(
        PacketType.SUBSCRIBE,
        flags=2,  # SUBSCRIBEは常にフラグ = 2
        body=var_header + payload,
    )


def build_unsubscribe_packet(packet: UnsubscribePacket) -> MQTTPacket:
    """UNSUBSCRIBEパケットを生成する."""
    var_header = struct.pack("!H", packet.packet_id)
    payload = b"".join(_encode_string(topic) for topic in packet.topics)

    return MQTTPacket(
        PacketType.UNSUBSCRIBE,
        flags=2,
        body=var_header + payload,
    )


def build_ping_packet(packet: PingReqPacket) -> MQTTPacket:
    """PINGREQパケットを生成する."""
    return MQTTPacket(PacketType.PINGREQ)


def build_disconnect_packet(packet: DisconnectPacket) -> MQTTPacket:
    """DISCONNECTパケットを生成する."""
    return MQTTPacket(PacketType.DISCONNECT)


_BUILDERS: Dict[Type, Callable[..., MQTTPacket]] = {
    ConnectPacket: build_connect_packet,
    PublishPacket: build_publish_packet,
    PubackPacket: build_ack_packet,
    PubrecPacket: build_ack_packet,
    PubrelPacket: build_ack_packet,
    PubcompPacket: build_ack_packet,
    SubscribePacket: build_subscribe_packet,
    UnsubscribePacket: build_unsubscribe_packet,
    PingReqPacket: build_ping_packet,
    DisconnectPacket: build_disconnect_packet,
}


def build_packet(packet: Packet) -> MQTTPacket:
    """構造化パケットからワイヤーフレームを生成する.

    Args:
        packet: クライアントが送信するパケット

    Returns:
        MQTTPacket: 生成されたパケット

    Raises:
        TypeError: クライアントから送信しないパケットの場合
    """
    try:
        builder = _BUILDERS[type(packet)]
    except KeyError:
        raise TypeError(
            f"Cannot build packet of type {type(packet).__name__}"
        ) from None
    return builder(packet)


def encode_packet(packet: Packet) -> bytes:
    """構造化パケットをバイト列にエンコードする."""
    return build_packet(packet).packet


def _encode_string(s: str) -> bytes:
    """文字列をMQTT形式でエンコードする.

    Args:
        s (str): エンコードする文字列

    Returns:
        bytes: エンコードされたバイト列
    """
    return _encode_bytes(s.encode(TEXT_ENCODING))


def _encode_bytes(data: bytes) -> bytes:
    return struct.pack("!H", len(data)) + data
