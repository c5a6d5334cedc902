import queue
import time

import pytest

from client.net import ChatClient
from server.relay import RelayServer

TIMEOUT = 3.0


def wait_until(predicate, timeout=TIMEOUT, interval=0.01):
    ''' Poll predicate until it is true or timeout passes; returns its last value '''
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def drain(q: queue.Queue, wait=0.2):
    ''' Collect whatever arrives on q within wait seconds '''
    items = []
    deadline = time.monotonic() + wait
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return items
        try:
            items.append(q.get(timeout=remaining))
        except queue.Empty:
            return items


@pytest.fixture
def server():
    srv = RelayServer(host="127.0.0.1", port=0, stop_timeout=TIMEOUT)
    srv.start()
    yield srv
    srv.stop()


@pytest.fixture
def make_client(server):
    ''' Factory: connected ChatClient plus the queue its lines land in '''
    clients = []

    def factory(**kwargs):
        lines = queue.Queue()
        expected = len(server.registry) + 1
        c = ChatClient(on_line=lines.put, connect_timeout=TIMEOUT, **kwargs)
        host, port = server.address
        c.connect(host, port)
        clients.append(c)
        assert wait_until(lambda: len(server.registry) >= expected)
        return c, lines

    yield factory
    for c in clients:
        c.disconnect()
