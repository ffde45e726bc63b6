"""MQTT packet handling.

MQTTパケット処理を提供するパッケージ。

主な機能:
- 構造化パケットのデータモデル
- パケットの構築と解析
- パケットタイプ、QoS、リターンコードの定義
"""

from .base import MQTTPacket, decode_remaining_length, encode_remaining_length
from .builder import build_packet, encode_packet
from .models import (
    ConnackPacket,
    ConnectPacket,
    DisconnectPacket,
    Packet,
    PingReqPacket,
    PingRespPacket,
    PubackPacket,
    PubcompPacket,
    PublishPacket,
    PubrecPacket,
    PubrelPacket,
    SubackPacket,
    SubscribePacket,
    UnsubackPacket,
    UnsubscribePacket,
    validate_topic_filter,
    validate_topic_name,
)
from .parser import decode_packet, parse_packet, split_frames
from .types import ConnackReturnCode, PacketType, Qos, SubAckReturnCode

__all__ = [
    # 基本クラス
    "MQTTPacket",
    "Packet",
    # 型定義
    "PacketType",
    "Qos",
    "SubAckReturnCode",
    "ConnackReturnCode",
    # パケットモデル
    "ConnectPacket",
    "ConnackPacket",
    "PublishPacket",
    "PubackPacket",
    "PubrecPacket",
    "PubrelPacket",
    "PubcompPacket",
    "SubscribePacket",
    "SubackPacket",
    "UnsubscribePacket",
    "UnsubackPacket",
    "PingReqPacket",
    "PingRespPacket",
    "DisconnectPacket",
    "validate_topic_name",
    "validate_topic_filter",
    # パケット構築
    "build_packet",
    "encode_packet",
    "encode_remaining_length",
    # パケット解析
    "parse_packet",
    "split_frames",
    "decode_packet",
    "decode_remaining_length",
]
