import threading

import pytest

import mqtt


class FakeSession:
    """ Stands in for mqtt.Session: records what the client asks of it, and
        lets the test play the part of the network by calling back into
        the client the same way a live session would.
    """

    def __init__(self, host, port, delegate):
        self.host = host
        self.port = port
        self.delegate = delegate
        self.connect_packets = list()
        self.sent = list()
        self.closed = False

    def connect(self, packet):
        self.connect_packets.append(packet)

    def send(self, packet):
        self.sent.append(packet)

    def close(self):
        self.closed = True
        self.delegate.on_session_disconnected(self, None)

    def accept(self):
        address = '%s:%d' % (self.host, self.port)
        self.delegate.on_session_connected(self, address)

    def drop(self, error=None):
        self.delegate.on_session_disconnected(self, error)


class RecordingDelegate(mqtt.ClientDelegate):

    def __init__(self):
        self.events = list()
        self.threads = set()
        self.condition = threading.Condition()

    def record(self, name, *args):
        with self.condition:
            self.threads.add(threading.current_thread().name)
            self.events.append((name,) + args)
            self.condition.notify_all()

    def names(self):
        with self.condition:
            return [event[0] for event in self.events]

    def wait_for(self, name, timeout=5):
        """ Block until an event with the given name arrives, and return
            the first such event, or None if it never shows up.
        """

        def find():
            for event in self.events:
                if event[0] == name:
                    return event

        with self.condition:
            self.condition.wait_for(find, timeout)
            return find()

    def on_connect(self, client, address):
        self.record('connect', address)

    def on_publish(self, client, packet):
        self.record('publish', packet)

    def on_message(self, client, packet):
        self.record('message', packet)

    def on_subscribe(self, client, results):
        self.record('subscribe', results)

    def on_unsubscribe(self, client, topics):
        self.record('unsubscribe', topics)

    def on_disconnect(self, client, error):
        self.record('disconnect', error)

    def on_pong(self, client, packet):
        self.record('pong', packet)


@pytest.fixture
def sessions():
    return list()


@pytest.fixture
def session_factory(sessions):

    def create(host, port, delegate):
        session = FakeSession(host, port, delegate)
        sessions.append(session)
        return session

    return create


@pytest.fixture
def delegate():
    return RecordingDelegate()


@pytest.fixture
def client(session_factory, delegate):
    config = mqtt.ClientConfig(client_id='test-client')
    client = mqtt.MqttClient(
        config, delegate=delegate, session_factory=session_factory
    )

    yield client

    client.close()


@pytest.fixture
def connected(client, sessions):
    """ A client whose fake session has already been accepted. Returns the
        session so the test can keep driving it.
    """

    client.connect('broker.example', 1883)
    session = sessions[-1]
    session.accept()
    return session
