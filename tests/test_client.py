import queue
import socket
import time

import pytest

from client.net import ChatClient, ClientStatus
from common.crypto import CipherContext, CipherMode
from common.errors import TransportError
from common.messages import PeerEvent
from server.relay import RelayServer

from conftest import TIMEOUT, drain, wait_until


def free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def test_connect_failure_is_retryable():
    logs = []
    port = free_port()
    client = ChatClient(on_log=logs.append, connect_timeout=TIMEOUT)
    with pytest.raises(TransportError):
        client.connect("127.0.0.1", port)
    assert client.status is ClientStatus.DISCONNECTED
    assert logs

    srv = RelayServer(host="127.0.0.1", port=port)
    srv.start()
    try:
        client.connect("127.0.0.1", port)
        assert client.status is ClientStatus.CONNECTED
    finally:
        client.disconnect()
        srv.stop()


def test_connect_twice_is_refused(server, make_client):
    c1, _ = make_client()
    with pytest.raises(RuntimeError):
        c1.connect(*server.address)


def test_send_requires_connection():
    logs = []
    client = ChatClient(on_log=logs.append)
    with pytest.raises(TransportError):
        client.send_line("hello")
    assert client.submit_line("hello") is None
    assert any("not connected" in msg for msg in logs)


def test_disconnect_is_idempotent(server, make_client):
    events = queue.Queue()
    ChatClient().disconnect()
    c1, _ = make_client(on_connection_event=lambda p, e: events.put(e))
    assert events.get(timeout=TIMEOUT) is PeerEvent.CONNECTED
    c1.disconnect()
    c1.disconnect()
    assert c1.status is ClientStatus.DISCONNECTED
    assert events.get(timeout=TIMEOUT) is PeerEvent.DISCONNECTED
    assert drain(events) == []


def test_outgoing_lines_use_local_cipher(server, make_client):
    (c1, _), (_, q2) = make_client(cipher=CipherContext(CipherMode.SHIFT_ENCRYPT, 3)), make_client()
    assert c1.send_line("hi") == "kl"
    assert q2.get(timeout=TIMEOUT) == "kl"


def test_encrypt_mode_does_not_touch_incoming(server, make_client):
    (_, q1), (c2, _) = make_client(cipher=CipherContext(CipherMode.SHIFT_ENCRYPT, 3)), make_client()
    c2.send_line("plain")
    assert q1.get(timeout=TIMEOUT) == "plain"


def test_decrypt_mode_decrypts_incoming(server, make_client):
    _, q1 = make_client(cipher=CipherContext(CipherMode.SHIFT_DECRYPT, 3))
    server.broadcast_from_operator("Dwwdfn dw gdzq")
    assert q1.get(timeout=TIMEOUT) == "Attack at dawn"


def test_submit_line_per_line_cipher(server, make_client):
    logs = []
    (c1, _), (_, q2) = make_client(on_log=logs.append), make_client()
    assert c1.submit_line("Hello, World!", CipherMode.RUNNING_KEY_ENCRYPT, "key") == "Rijvs, Uyvjn!"
    assert q2.get(timeout=TIMEOUT) == "Rijvs, Uyvjn!"
    assert c1.submit_line("oops", CipherMode.SHIFT_ENCRYPT, "x") is None
    assert any("not sent" in msg for msg in logs)
    assert drain(q2) == []
    assert c1.connected


def test_lines_before_handler_are_backlogged(server):
    client = ChatClient(connect_timeout=TIMEOUT)
    client.connect(*server.address)
    try:
        assert wait_until(lambda: len(server.registry) == 1)
        server.broadcast_from_operator("early 1")
        server.broadcast_from_operator("early 2")
        assert wait_until(lambda: len(client._backlog) == 2)
        got = queue.Queue()
        client.on_line = got.put
        assert [got.get(timeout=TIMEOUT), got.get(timeout=TIMEOUT)] == ["early 1", "early 2"]
        server.broadcast_from_operator("late")
        assert got.get(timeout=TIMEOUT) == "late"
    finally:
        client.disconnect()


def test_failing_callback_does_not_stop_receiving(server, make_client):
    got = queue.Queue()

    def picky(line):
        if line == "bad":
            raise RuntimeError("display broke")
        got.put(line)

    c1, _ = make_client()
    c1.on_line = picky
    server.broadcast_from_operator("bad")
    server.broadcast_from_operator("good")
    assert got.get(timeout=TIMEOUT) == "good"
    assert c1.connected


def test_server_going_away_disconnects_client(server, make_client):
    events = queue.Queue()
    c1, _ = make_client(on_connection_event=lambda p, e: events.put(e))
    assert events.get(timeout=TIMEOUT) is PeerEvent.CONNECTED
    server.stop()
    assert events.get(timeout=TIMEOUT) is PeerEvent.DISCONNECTED
    assert c1.status is ClientStatus.DISCONNECTED
    with pytest.raises(TransportError):
        c1.send_line("anyone?")


def test_lines_arriving_during_replay_wait_their_turn(server):
    client = ChatClient(connect_timeout=TIMEOUT)
    client.connect(*server.address)
    try:
        assert wait_until(lambda: len(server.registry) == 1)
        server.broadcast_from_operator("early")
        assert wait_until(lambda: len(client._backlog) == 1)
        seen = []

        def slow(line):
            if line == "early":
                # "late" reaches the receive thread while this callback still runs
                server.broadcast_from_operator("late")
                time.sleep(0.3)
            seen.append(line)

        client.on_line = slow
        assert wait_until(lambda: len(seen) == 2)
        assert seen == ["early", "late"]
        server.broadcast_from_operator("last")
        assert wait_until(lambda: len(seen) == 3)
        assert seen[-1] == "last"
    finally:
        client.disconnect()


def test_submit_line_with_line_break_is_rejected(server, make_client):
    logs = []
    (c1, _), (_, q2) = make_client(on_log=logs.append), make_client()
    assert c1.submit_line("two\nlines") is None
    assert any("not sent" in msg for msg in logs)
    assert drain(q2) == []
    assert c1.connected
