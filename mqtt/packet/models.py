"""MQTT packet models.

MQTTパケットの構造を表現するデータモデルを提供するモジュール。

各パケットは不変(frozen)のデータクラスとして表現され、
生成時に値の検証を行います。ワイヤー形式への変換はbuilder、
ワイヤー形式からの変換はparserが担当します。
"""

from dataclasses import dataclass, field
from typing import ClassVar, Optional, Sequence, Tuple, Union

from ..core import (
    MAX_PACKET_ID,
    MAX_STRING_LENGTH,
    MQTT_KEEP_ALIVE,
    TEXT_ENCODING,
)
from .base import MAX_REMAINING_LENGTH
from .types import ConnackReturnCode, PacketType, Qos, SubAckReturnCode


def encoded_length(text: str) -> int:
    """文字列フィールドのUTF-8でのバイト数を返す.

    Raises:
        ValueError: UTF-8にエンコードできない、または65535バイトを超える場合
    """
    try:
        length = len(text.encode(TEXT_ENCODING))
    except UnicodeEncodeError as e:
        raise ValueError(f"String is not valid UTF-8: {e}") from None
    if length > MAX_STRING_LENGTH:
        raise ValueError(
            f"String is {length} bytes, limit is {MAX_STRING_LENGTH}"
        )
    return length


def validate_topic_name(topic: str) -> None:
    """PUBLISH用のトピック名を検証する.

    Args:
        topic: 検証するトピック名

    Raises:
        ValueError: 空、ワイルドカードを含む、または長すぎる場合
    """
    if not topic:
        raise ValueError("Topic cannot be empty")
    if "+" in topic or "#" in topic:
        raise ValueError("Topic cannot contain wildcards (+ or #)")
    encoded_length(topic)


def validate_topic_filter(topic: str) -> None:
    """SUBSCRIBE用のトピックフィルターを検証する.

    - 単一レベルワイルドカード(+)はレベル全体を占める必要がある
    - 複数レベルワイルドカード(#)は最後のレベルにのみ置ける

    Args:
        topic: 検証するトピックフィルター

    Raises:
        ValueError: フィルターが不正な場合
    """
    if not topic:
        raise ValueError("Topic filter cannot be empty")

    segments = topic.split("/")
    for i, segment in enumerate(segments):
        if "+" in segment and segment != "+":
            raise ValueError(f"Invalid use of '+' in topic filter: {topic}")
        if "#" in segment and (segment != "#" or i != len(segments) - 1):
            raise ValueError(f"Invalid use of '#' in topic filter: {topic}")
    encoded_length(topic)


def _validate_packet_id(packet_id: int) -> None:
    if not 0 < packet_id <= MAX_PACKET_ID:
        raise ValueError(f"Packet id out of range: {packet_id}")


@dataclass(frozen=True)
class PublishPacket:
    """PUBLISHパケット.

    ウィルメッセージとしても使用されます。QoS 1以上で送信する場合は
    パケットIDが必要です(エンコード時に検証されます)。

    Attributes:
        topic: トピック名
        payload: ペイロード
        qos: QoSレベル
        retain: 保持フラグ
        dup: 再送フラグ
        packet_id: パケットID(QoS 0の場合はNone)
    """

    packet_type: ClassVar[PacketType] = PacketType.PUBLISH

    topic: str
    payload: bytes = b""
    qos: Qos = Qos.QOS0
    retain: bool = False
    dup: bool = False
    packet_id: Optional[int] = None

    def __post_init__(self) -> None:
        validate_topic_name(self.topic)

        if isinstance(self.payload, (bytearray, memoryview)):
            object.__setattr__(self, "payload", bytes(self.payload))
        if not isinstance(self.payload, bytes):
            raise TypeError("Payload must be bytes type")

        if not isinstance(self.qos, Qos):
            try:
                object.__setattr__(self, "qos", Qos(self.qos))
            except ValueError:
                raise ValueError(
                    f"Invalid QoS value: {self.qos}. Must be 0, 1, or 2"
                ) from None

        if self.packet_id is not None:
            _validate_packet_id(self.packet_id)

        if self.remaining_length > MAX_REMAINING_LENGTH:
            raise ValueError(
                f"PUBLISH too large: {self.remaining_length} bytes, "
                f"limit is {MAX_REMAINING_LENGTH}"
            )

    @property
    def remaining_length(self) -> int:
        """エンコード後の可変ヘッダーとペイロードのバイト数."""
        length = 2 + encoded_length(self.topic) + len(self.payload)
        if self.qos > Qos.QOS0:
            length += 2
        return length


@dataclass(frozen=True)
class ConnectPacket:
    """CONNECTパケット.

    Attributes:
        client_id: クライアントID
        clean_session: クリーンセッションフラグ
        keep_alive: キープアライブ間隔(秒)
        username: ユーザー名
        password: パスワード
        will_message: ウィルメッセージ
    """

    packet_type: ClassVar[PacketType] = PacketType.CONNECT

    client_id: str
    clean_session: bool = True
    keep_alive: int = MQTT_KEEP_ALIVE
    username: Optional[str] = None
    password: Optional[str] = None
    will_message: Optional[PublishPacket] = None

    def __post_init__(self) -> None:
        if not 0 <= self.keep_alive <= 0xFFFF:
            raise ValueError(f"Keep alive out of range: {self.keep_alive}")


@dataclass(frozen=True)
class ConnackPacket:
    """CONNACKパケット."""

    packet_type: ClassVar[PacketType] = PacketType.CONNACK

    session_present: bool
    return_code: ConnackReturnCode

    @property
    def accepted(self) -> bool:
        return self.return_code == ConnackReturnCode.ACCEPTED


@dataclass(frozen=True)
class _AckPacket:
    """パケットIDのみを持つ応答パケットの共通部分."""

    packet_id: int

    def __post_init__(self) -> None:
        _validate_packet_id(self.packet_id)


@dataclass(frozen=True)
class PubackPacket(_AckPacket):
    packet_type: ClassVar[PacketType] = PacketType.PUBACK


@dataclass(frozen=True)
class PubrecPacket(_AckPacket):
    packet_type: ClassVar[PacketType] = PacketType.PUBREC


@dataclass(frozen=True)
class PubrelPacket(_AckPacket):
    packet_type: ClassVar[PacketType] = PacketType.PUBREL


@dataclass(frozen=True)
class PubcompPacket(_AckPacket):
    packet_type: ClassVar[PacketType] = PacketType.PUBCOMP


@dataclass(frozen=True)
class UnsubackPacket(_AckPacket):
    packet_type: ClassVar[PacketType] = PacketType.UNSUBACK


@dataclass(frozen=True)
class SubscribePacket:
    """SUBSCRIBEパケット.

    Attributes:
        packet_id: パケットID
        topics: (トピックフィルター, QoS)のタプル列
    """

    packet_type: ClassVar[PacketType] = PacketType.SUBSCRIBE

    packet_id: int
    topics: Sequence[Tuple[str, Qos]] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        _validate_packet_id(self.packet_id)
        if not self.topics:
            raise ValueError("SUBSCRIBE requires at least one topic")

        topics = []
        for topic, qos in self.topics:
            validate_topic_filter(topic)
            topics.append((topic, Qos(qos)))
        object.__setattr__(self, "topics", tuple(topics))


@dataclass(frozen=True)
class SubackPacket:
    """SUBACKパケット."""

    packet_type: ClassVar[PacketType] = PacketType.SUBACK

    packet_id: int
    return_codes: Sequence[SubAckReturnCode] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "return_codes",
            tuple(SubAckReturnCode(code) for code in self.return_codes),
        )


@dataclass(frozen=True)
class UnsubscribePacket:
    """UNSUBSCRIBEパケット."""

    packet_type: ClassVar[PacketType] = PacketType.UNSUBSCRIBE

    packet_id: int
    topics: Sequence[str] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        _validate_packet_id(self.packet_id)
        if not self.topics:
            raise ValueError("UNSUBSCRIBE requires at least one topic")
        for topic in self.topics:
            validate_topic_filter(topic)
        object.__setattr__(self, "topics", tuple(self.topics))


@dataclass(frozen=True)
class PingReqPacket:
    packet_type: ClassVar[PacketType] = PacketType.PINGREQ


@dataclass(frozen=True)
class PingRespPacket:
    packet_type: ClassVar[PacketType] = PacketType.PINGRESP


@dataclass(frozen=True)
class DisconnectPacket:
    packet_type: ClassVar[PacketType] = PacketType.DISCONNECT


Packet = Union[
    ConnectPacket,
    ConnackPacket,
    PublishPacket,
    PubackPacket,
    PubrecPacket,
    PubrelPacket,
    PubcompPacket,
    SubscribePacket,
    SubackPacket,
    UnsubscribePacket,
    UnsubackPacket,
    PingReqPacket,
    PingRespPacket,
    DisconnectPacket,
]
