import asyncio
import socket
import struct
import threading
import time

import pytest
from websockets.asyncio.server import serve
from websockets.typing import Subprotocol

import mqtt
from mqtt.packet import (
    ConnackReturnCode,
    ConnectPacket,
    PacketType,
    PublishPacket,
    Qos,
    SubAckReturnCode,
    decode_packet,
    encode_packet,
    split_frames,
)
from mqtt.session import Session
from mqtt.worker import LoopThread


class StubBroker:
    """ Just enough of a broker to exercise a live session: it accepts or
        refuses the connection, acknowledges requests, and echoes every
        PUBLISH back to the sender at QoS 0.
    """

    def __init__(self, return_code=0, drop_on_ping=False):
        self.return_code = return_code
        self.drop_on_ping = drop_on_ping
        self.received = list()
        self.worker = LoopThread(name='stub-broker')
        self.server = None
        self.port = None

    def respond(self, frame):
        """ Return the replies for one incoming frame, or None if the
            broker should hang up.
        """

        self.received.append(frame.packet_type)
        kind = frame.packet_type

        if kind == PacketType.CONNECT:
            return [bytes([0x20, 0x02, 0x00, self.return_code])]

        if kind == PacketType.SUBSCRIBE:
            granted = frame.body[-1:]
            return [b'\x90\x03' + frame.body[:2] + granted]

        if kind == PacketType.UNSUBSCRIBE:
            return [b'\xb0\x02' + frame.body[:2]]

        if kind == PacketType.PUBLISH:
            publish = decode_packet(frame)
            echo = PublishPacket(topic=publish.topic, payload=publish.payload)
            replies = list()
            if publish.qos == Qos.QOS1:
                packet_id = struct.pack('!H', publish.packet_id)
                replies.append(b'\x40\x02' + packet_id)
            replies.append(encode_packet(echo))
            return replies

        if kind == PacketType.PINGREQ:
            if self.drop_on_ping:
                return None
            return [b'\xd0\x00']

        if kind == PacketType.DISCONNECT:
            return None

        return list()

    def start(self):
        self.worker.start()
        self.server = self.worker.submit(self.listen()).result(5)
        self.port = list(self.server.sockets)[0].getsockname()[1]

    def wait_received(self, kind, timeout=5):
        deadline = time.monotonic() + timeout
        while kind not in self.received:
            if time.monotonic() > deadline:
                return False
            time.sleep(0.01)
        return True

    def stop(self):
        self.worker.call_soon(self.server.close)
        self.worker.stop()

    async def listen(self):
        return await asyncio.start_server(self.handle, '127.0.0.1', 0)

    async def handle(self, reader, writer):
        buffer = b''
        try:
            while True:
                data = await reader.read(4096)
                if not data:
                    return
                buffer += data
                frames, buffer = split_frames(buffer)
                for frame in frames:
                    replies = self.respond(frame)
                    if replies is None:
                        return
                    for reply in replies:
                        writer.write(reply)
                await writer.drain()
        finally:
            writer.close()


class WebSocketStubBroker(StubBroker):

    async def listen(self):
        return await serve(
            self.handle,
            '127.0.0.1',
            0,
            subprotocols=[Subprotocol('mqtt')],
        )

    async def handle(self, connection):
        buffer = b''
        async for message in connection:
            buffer += message
            frames, buffer = split_frames(buffer)
            for frame in frames:
                replies = self.respond(frame)
                if replies is None:
                    await connection.close()
                    return
                for reply in replies:
                    await connection.send(reply)


@pytest.fixture
def broker():
    broker = StubBroker()
    broker.start()

    yield broker

    broker.stop()


def exchange(client, delegate, port):
    client.connect('127.0.0.1', port)
    assert delegate.wait_for('connect') is not None
    assert client.state == mqtt.SessionState.CONNECTED

    client.subscribe('greeting')
    event = delegate.wait_for('subscribe')
    assert event == ('subscribe', {'greeting': SubAckReturnCode.QOS1})

    sent = client.publish('greeting', 'hello')
    assert delegate.wait_for('publish') == ('publish', sent)

    event = delegate.wait_for('message')
    assert event[1].topic == 'greeting'
    assert event[1].payload == b'hello'

    client.unsubscribe('greeting')
    assert delegate.wait_for('unsubscribe') == ('unsubscribe', ['greeting'])

    client.ping()
    assert delegate.wait_for('pong') is not None

    client.disconnect()
    assert delegate.wait_for('disconnect') == ('disconnect', None)
    assert client.state == mqtt.SessionState.DISCONNECTED


def test_tcp_exchange(broker, delegate):
    with mqtt.MqttClient('tcp-client', delegate=delegate) as client:
        exchange(client, delegate, broker.port)

    assert broker.wait_received(PacketType.DISCONNECT)
    assert broker.received == [
        PacketType.CONNECT,
        PacketType.SUBSCRIBE,
        PacketType.PUBLISH,
        PacketType.UNSUBSCRIBE,
        PacketType.PINGREQ,
        PacketType.DISCONNECT,
    ]


def test_websocket_exchange(delegate):
    broker = WebSocketStubBroker()
    broker.start()

    transport = mqtt.TransportConfig(kind='websocket', path='/')
    try:
        with mqtt.MqttClient(
            'ws-client', delegate=delegate, transport_config=transport
        ) as client:
            exchange(client, delegate, broker.port)
        assert broker.wait_received(PacketType.DISCONNECT)
    finally:
        broker.stop()

    assert broker.received[0] == PacketType.CONNECT


def test_refused(delegate):
    broker = StubBroker(return_code=ConnackReturnCode.NOT_AUTHORIZED)
    broker.start()

    try:
        with mqtt.MqttClient('refused', delegate=delegate) as client:
            client.connect('127.0.0.1', broker.port)

            event = delegate.wait_for('disconnect')
            assert isinstance(event[1], mqtt.ConnectDenied)
            assert event[1].return_code == ConnackReturnCode.NOT_AUTHORIZED
            assert client.state == mqtt.SessionState.DENIED
            assert 'connect' not in delegate.names()
    finally:
        broker.stop()


def test_connection_lost(delegate):
    broker = StubBroker(drop_on_ping=True)
    broker.start()

    try:
        with mqtt.MqttClient('dropped', delegate=delegate) as client:
            client.connect('127.0.0.1', broker.port)
            assert delegate.wait_for('connect') is not None

            client.ping()
            event = delegate.wait_for('disconnect')
            assert isinstance(event[1], mqtt.ConnectionError)
            assert client.state == mqtt.SessionState.DISCONNECTED
    finally:
        broker.stop()


def test_unreachable(delegate):
    # Grab a port that nothing is listening on.
    listener = socket.socket()
    listener.bind(('127.0.0.1', 0))
    port = listener.getsockname()[1]
    listener.close()

    with mqtt.MqttClient('unreachable', delegate=delegate) as client:
        client.connect('127.0.0.1', port)

        event = delegate.wait_for('disconnect')
        assert isinstance(event[1], OSError)
        assert client.state == mqtt.SessionState.DISCONNECTED


class MemoryTransport:
    """ In-memory transport: the test feeds inbound bytes and inspects the
        bytes the session wrote.
    """

    def __init__(self):
        self.address = 'memory:0'
        self.inbound = asyncio.Queue()
        self.written = list()
        self.closed = False
        self.condition = threading.Condition()

    async def open(self):
        pass

    async def read(self):
        return await self.inbound.get()

    async def write(self, data):
        with self.condition:
            self.written.append(data)
            self.condition.notify_all()

    async def close(self):
        self.closed = True

    def wait_written(self, data, timeout=5):
        with self.condition:
            return self.condition.wait_for(
                lambda: data in self.written, timeout
            )


class SessionRecorder:

    def __init__(self):
        self.events = list()
        self.condition = threading.Condition()

    def record(self, name, *args):
        with self.condition:
            self.events.append((name,) + args)
            self.condition.notify_all()

    def names(self):
        with self.condition:
            return [event[0] for event in self.events]

    def wait_for(self, name, timeout=5):

        def find():
            for event in self.events:
                if event[0] == name:
                    return event

        with self.condition:
            self.condition.wait_for(find, timeout)
            return find()

    def on_session_connected(self, session, address):
        self.record('connected', address)

    def on_session_publish_received(self, session, packet):
        self.record('publish_received', packet)

    def on_session_publish_confirmed(self, session, packet):
        self.record('publish_confirmed', packet)

    def on_session_packet_sent(self, session, packet):
        self.record('packet_sent', packet)

    def on_session_subscribed(self, session, results):
        self.record('subscribed', results)

    def on_session_unsubscribed(self, session, topics):
        self.record('unsubscribed', topics)

    def on_session_disconnected(self, session, error):
        self.record('disconnected', error)

    def on_session_pong_received(self, session, packet):
        self.record('pong_received', packet)


@pytest.fixture
def worker():
    worker = LoopThread(name='session-worker')
    worker.start()

    yield worker

    worker.stop()


@pytest.fixture
def memory():
    return MemoryTransport()


@pytest.fixture
def recorder():
    return SessionRecorder()


@pytest.fixture
def session(worker, memory, recorder):
    session = Session(
        'memory', 0, recorder, worker=worker, transport=memory
    )
    session.connect(ConnectPacket(client_id='memory-client'))
    return session


def feed(worker, memory, data):
    worker.call_soon(memory.inbound.put_nowait, data)


def test_connect_packet_first(worker, memory, recorder, session):
    expected = encode_packet(ConnectPacket(client_id='memory-client'))
    assert memory.wait_written(expected)
    assert memory.written[0] == expected

    feed(worker, memory, b'\x20\x02\x00\x00')
    assert recorder.wait_for('connected') == ('connected', 'memory:0')
    assert session.connected


def test_inbound_qos2(worker, memory, recorder, session):
    feed(worker, memory, b'\x20\x02\x00\x00')
    recorder.wait_for('connected')

    # PUBLISH, QoS 2, topic "t", packet id 7, payload "x".
    feed(worker, memory, b'\x34\x06\x00\x01t\x00\x07x')
    assert memory.wait_written(b'\x50\x02\x00\x07')
    assert 'publish_received' not in recorder.names()

    feed(worker, memory, b'\x62\x02\x00\x07')
    assert memory.wait_written(b'\x70\x02\x00\x07')

    event = recorder.wait_for('publish_received')
    assert event[1].topic == 't'
    assert event[1].payload == b'x'
    assert event[1].qos == Qos.QOS2


def test_outbound_qos2(worker, memory, recorder, session):
    feed(worker, memory, b'\x20\x02\x00\x00')
    recorder.wait_for('connected')

    packet = PublishPacket(
        topic='t', payload=b'x', qos=Qos.QOS2, packet_id=3
    )
    session.send(packet)
    assert memory.wait_written(encode_packet(packet))
    assert 'publish_confirmed' not in recorder.names()

    feed(worker, memory, b'\x50\x02\x00\x03')
    assert memory.wait_written(b'\x62\x02\x00\x03')

    feed(worker, memory, b'\x70\x02\x00\x03')
    assert recorder.wait_for('publish_confirmed') == (
        'publish_confirmed',
        packet,
    )


def test_packet_before_connack(worker, memory, recorder, session):
    feed(worker, memory, b'\xd0\x00')

    event = recorder.wait_for('disconnected')
    assert isinstance(event[1], mqtt.PacketError)
    assert 'connected' not in recorder.names()
    assert memory.closed


def test_unencodable_connect(worker, memory, recorder):
    session = Session('memory', 0, recorder, worker=worker, transport=memory)
    session.connect(ConnectPacket(client_id='x' * 70000))

    event = recorder.wait_for('disconnected')
    assert event is not None
    assert isinstance(event[1], struct.error)
    assert memory.closed
    assert memory.written == list()
    assert 'connected' not in recorder.names()


def test_unencodable_credentials(worker, memory, delegate):
    config = mqtt.ClientConfig('c1')
    # ClientConfig refuses this password, so force it in after the fact.
    object.__setattr__(config, 'password', '\ud800')

    def create(host, port, client):
        return Session(host, port, client, worker=worker, transport=memory)

    with mqtt.MqttClient(
        config, delegate=delegate, session_factory=create
    ) as client:
        client.connect('memory', 0)

        event = delegate.wait_for('disconnect', 2)
        assert event is not None
        assert isinstance(event[1], UnicodeEncodeError)
        assert client.state == mqtt.SessionState.DISCONNECTED
        assert memory.closed


def test_close_while_connecting(worker, memory, recorder, session):
    connect = encode_packet(ConnectPacket(client_id='memory-client'))
    assert memory.wait_written(connect)
    session.close()

    assert recorder.wait_for('disconnected') == ('disconnected', None)
    assert memory.closed
    assert recorder.names().count('disconnected') == 1
