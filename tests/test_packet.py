import pytest

from mqtt.core import PacketError
from mqtt.packet import (
    ConnackReturnCode,
    ConnectPacket,
    DisconnectPacket,
    PacketType,
    PingReqPacket,
    PubackPacket,
    PublishPacket,
    PubrelPacket,
    Qos,
    SubAckReturnCode,
    SubscribePacket,
    UnsubscribePacket,
    decode_packet,
    decode_remaining_length,
    encode_packet,
    encode_remaining_length,
    parse_packet,
    split_frames,
)


def test_connect_minimal():
    packet = ConnectPacket(client_id='abc', clean_session=False, keep_alive=60)
    expected = b'\x10\x0f\x00\x04MQTT\x04\x00\x00\x3c\x00\x03abc'

    assert encode_packet(packet) == expected


def test_connect_all_fields():
    will = PublishPacket(topic='w', payload=b'bye', qos=Qos.QOS1, retain=True)
    packet = ConnectPacket(
        client_id='c',
        clean_session=True,
        keep_alive=10,
        username='u',
        password='p',
        will_message=will,
    )
    encoded = encode_packet(packet)

    # Clean session, will, will QoS 1, will retain, password, username.
    assert encoded[9] == 0xEE
    assert encoded[10:12] == b'\x00\x0a'

    payload = b'\x00\x01c' + b'\x00\x01w' + b'\x00\x03bye'
    payload += b'\x00\x01u' + b'\x00\x01p'
    assert encoded[12:] == payload


def test_publish():
    packet = PublishPacket(
        topic='a/b', payload=b'hi', qos=Qos.QOS1, packet_id=10
    )
    assert encode_packet(packet) == b'\x32\x09\x00\x03a/b\x00\x0ahi'

    packet = PublishPacket(topic='a/b', payload=b'hi', retain=True)
    assert encode_packet(packet) == b'\x31\x07\x00\x03a/bhi'


def test_publish_requires_identifier():
    packet = PublishPacket(topic='a', qos=Qos.QOS1)

    with pytest.raises(ValueError):
        encode_packet(packet)


def test_publish_validation():
    with pytest.raises(ValueError):
        PublishPacket(topic='a/+')

    with pytest.raises(ValueError):
        PublishPacket(topic='')

    with pytest.raises(ValueError):
        PublishPacket(topic='a', qos=3)

    with pytest.raises(ValueError):
        PublishPacket(topic='a', qos=Qos.QOS1, packet_id=0)

    with pytest.raises(TypeError):
        PublishPacket(topic='a', payload='text')

    packet = PublishPacket(topic='a', payload=bytearray(b'x'), qos=1)
    assert packet.payload == b'x'
    assert packet.qos is Qos.QOS1


def test_topic_length():
    # The length prefix is two bytes, measured in UTF-8.
    PublishPacket(topic='t' * 65535)

    with pytest.raises(ValueError):
        PublishPacket(topic='t' * 65536)

    with pytest.raises(ValueError):
        PublishPacket(topic='é' * 40000)

    with pytest.raises(ValueError):
        PublishPacket(topic='bad\ud800')

    with pytest.raises(ValueError):
        SubscribePacket(packet_id=1, topics=[('t' * 65536, Qos.QOS0)])

    with pytest.raises(ValueError):
        UnsubscribePacket(packet_id=1, topics=['\ud800'])


def test_publish_frame_limit(monkeypatch):
    monkeypatch.setattr('mqtt.packet.models.MAX_REMAINING_LENGTH', 10)

    # 2 + 1 byte topic, 7 bytes of payload: exactly at the limit.
    packet = PublishPacket(topic='a', payload=b'x' * 7)
    assert packet.remaining_length == 10
    assert len(encode_packet(packet)) == 12

    with pytest.raises(ValueError):
        PublishPacket(topic='a', payload=b'x' * 8)

    # The packet id counts against the limit at QoS 1 and 2.
    with pytest.raises(ValueError):
        PublishPacket(topic='a', payload=b'x' * 7, qos=Qos.QOS1, packet_id=1)


def test_subscribe():
    packet = SubscribePacket(packet_id=1, topics=[('a/#', Qos.QOS1)])
    assert encode_packet(packet) == b'\x82\x08\x00\x01\x00\x03a/#\x01'

    with pytest.raises(ValueError):
        SubscribePacket(packet_id=1, topics=[])

    with pytest.raises(ValueError):
        SubscribePacket(packet_id=1, topics=[('a/#/b', Qos.QOS0)])


def test_unsubscribe():
    packet = UnsubscribePacket(packet_id=2, topics=['a', 'b'])
    assert encode_packet(packet) == b'\xa2\x08\x00\x02\x00\x01a\x00\x01b'


def test_fixed_packets():
    assert encode_packet(PingReqPacket()) == b'\xc0\x00'
    assert encode_packet(DisconnectPacket()) == b'\xe0\x00'
    assert encode_packet(PubackPacket(5)) == b'\x40\x02\x00\x05'

    # PUBREL carries the reserved 0b0010 flags.
    assert encode_packet(PubrelPacket(5)) == b'\x62\x02\x00\x05'


def test_remaining_length():
    assert encode_remaining_length(0) == [0x00]
    assert encode_remaining_length(127) == [0x7F]
    assert encode_remaining_length(128) == [0x80, 0x01]
    assert encode_remaining_length(321) == [0xC1, 0x02]

    assert decode_remaining_length(b'\x30\xc1\x02') == (321, 3)

    with pytest.raises(PacketError):
        encode_remaining_length(128**4)

    with pytest.raises(IndexError):
        decode_remaining_length(b'\x30\x80')

    with pytest.raises(PacketError):
        decode_remaining_length(b'\x30\xff\xff\xff\xff\x01')


def test_split_frames():
    connack = b'\x20\x02\x00\x00'
    suback = b'\x90\x03\x00\x01\x01'
    buffer = connack + suback + b'\xd0'

    frames, rest = split_frames(buffer)

    assert [frame.packet_type for frame in frames] == [
        PacketType.CONNACK,
        PacketType.SUBACK,
    ]
    assert rest == b'\xd0'

    frames, rest = split_frames(rest + b'\x00')
    assert [frame.packet_type for frame in frames] == [PacketType.PINGRESP]
    assert rest == b''


def test_partial_frame():
    assert parse_packet(b'\x20') is None
    assert parse_packet(b'\x20\x02\x00') is None

    frames, rest = split_frames(b'\x30\x80')
    assert frames == []
    assert rest == b'\x30\x80'


def test_decode_connack():
    accepted = decode_packet(parse_packet(b'\x20\x02\x01\x00'))
    assert accepted.accepted
    assert accepted.session_present

    refused = decode_packet(parse_packet(b'\x20\x02\x00\x05'))
    assert not refused.accepted
    assert refused.return_code == ConnackReturnCode.NOT_AUTHORIZED


def test_decode_suback():
    packet = decode_packet(parse_packet(b'\x90\x04\x00\x07\x01\x80'))

    assert packet.packet_id == 7
    assert packet.return_codes == (
        SubAckReturnCode.QOS1,
        SubAckReturnCode.FAILURE,
    )


def test_decode_publish():
    packet = decode_packet(parse_packet(b'\x3b\x08\x00\x01t\x00\x09abc'))

    assert packet.topic == 't'
    assert packet.payload == b'abc'
    assert packet.qos == Qos.QOS1
    assert packet.packet_id == 9
    assert packet.retain
    assert packet.dup


def test_decode_errors():
    # Packet type 0 is reserved.
    with pytest.raises(PacketError):
        split_frames(b'\x00\x00')

    # Brokers never send PINGREQ.
    with pytest.raises(PacketError):
        decode_packet(parse_packet(b'\xc0\x00'))

    with pytest.raises(PacketError):
        decode_packet(parse_packet(b'\x20\x01\x00'))

    # Return code 6 is not defined.
    with pytest.raises(PacketError):
        decode_packet(parse_packet(b'\x20\x02\x00\x06'))

    # Topic length runs past the end of the packet.
    with pytest.raises(PacketError):
        decode_packet(parse_packet(b'\x30\x03\x00\x05t'))
