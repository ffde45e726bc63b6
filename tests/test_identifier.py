import threading

from mqtt.identifier import PacketIdAllocator


def test_first_identifier():
    allocator = PacketIdAllocator()
    assert allocator.current == 0

    assert allocator.next_id() == 1
    assert allocator.next_id() == 2
    assert allocator.current == 2


def test_wraparound():
    """ Identifiers run from 1 through 65534; neither 0 nor 65535 is ever
        issued, and the counter starts over at 1 after 65534.
    """

    allocator = PacketIdAllocator()
    issued = [allocator.next_id() for _ in range(65534)]

    assert issued == list(range(1, 65535))
    assert allocator.next_id() == 1
    assert allocator.next_id() == 2


def test_concurrent_allocation():
    allocator = PacketIdAllocator()
    results = list()
    lock = threading.Lock()

    def allocate():
        mine = [allocator.next_id() for _ in range(1000)]
        with lock:
            results.extend(mine)

    threads = [threading.Thread(target=allocate) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 8000
    assert len(set(results)) == 8000
    assert 0 not in results
