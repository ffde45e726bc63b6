"""Protocol enumerations.

MQTT 3.1.1の列挙値(パケットタイプ、QoS、リターンコード)。
"""

from enum import IntEnum, unique


@unique
class PacketType(IntEnum):
    """固定ヘッダー1バイト目の上位4ビット.

    0と15は予約値です。クライアントが送信するのは
    CONNECT、PUBLISH、PUBACK系、SUBSCRIBE、UNSUBSCRIBE、PINGREQ、
    DISCONNECTで、それ以外はブローカーからのみ届きます。
    """

    CONNECT = 1
    CONNACK = 2
    PUBLISH = 3
    PUBACK = 4
    PUBREC = 5
    PUBREL = 6
    PUBCOMP = 7
    SUBSCRIBE = 8
    SUBACK = 9
    UNSUBSCRIBE = 10
    UNSUBACK = 11
    PINGREQ = 12
    PINGRESP = 13
    DISCONNECT = 14


@unique
class Qos(IntEnum):
    """メッセージ単位の配信保証レベル.

    Attributes:
        QOS0 (0): 最大1回
        QOS1 (1): 最低1回
        QOS2 (2): 正確に1回
    """

    QOS0 = 0
    QOS1 = 1
    QOS2 = 2


@unique
class SubAckReturnCode(IntEnum):
    """SUBACKのトピック毎のリターンコード."""

    QOS0 = 0x00
    QOS1 = 0x01
    QOS2 = 0x02
    FAILURE = 0x80


@unique
class ConnackReturnCode(IntEnum):
    """CONNACKのリターンコード.

    ACCEPTED以外は全て接続拒否を表します。
    """

    ACCEPTED = 0
    UNACCEPTABLE_PROTOCOL_VERSION = 1
    IDENTIFIER_REJECTED = 2
    SERVER_UNAVAILABLE = 3
    BAD_USERNAME_OR_PASSWORD = 4
    NOT_AUTHORIZED = 5
