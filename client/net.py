import logging
import socket
import threading
from enum import Enum
from typing import List, Optional

from common.config import DEFAULT_CONNECT_TIMEOUT
from common.crypto import CipherContext, Key
from common.errors import EndOfStream, InvalidKey, TransportError
from common.messages import (
    ConnectionEventCallback, LineCallback, LogCallback, PeerEvent, notify,
)
from common.protocol import Connection

logger = logging.getLogger(__name__)


class ClientStatus(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ChatClient:
    ''' Network client for the relay '''
    def __init__(self, cipher: Optional[CipherContext] = None,
                 on_line: Optional[LineCallback] = None,
                 on_connection_event: Optional[ConnectionEventCallback] = None,
                 on_log: Optional[LogCallback] = None,
                 connect_timeout: float = DEFAULT_CONNECT_TIMEOUT):
        self.cipher = cipher or CipherContext.identity()   # replaced whole, never mutated
        self.on_connection_event = on_connection_event
        self.on_log = on_log
        self.connect_timeout = connect_timeout
        # Backlog lines until the caller attaches a handler; then flush
        self._on_line: Optional[LineCallback] = None
        self._backlog: List[str] = []
        self._flushing = False   # set while the backlog is being replayed
        self._lock = threading.Lock()   # guards status, conn, backlog
        self._status = ClientStatus.DISCONNECTED
        self.conn: Optional[Connection] = None
        self.recv_thread: Optional[threading.Thread] = None
        if on_line:
            self.on_line = on_line

    @property
    def status(self) -> ClientStatus:
        return self._status

    @property
    def connected(self) -> bool:
        return self._status is ClientStatus.CONNECTED

    @property
    def on_line(self) -> Optional[LineCallback]:
        ''' The callback for incoming lines '''
        return self._on_line

    @on_line.setter
    def on_line(self, cb: Optional[LineCallback]):
        '''
        Set the callback for incoming lines. Lines that arrived before any callback
        was attached are replayed to it now, oldest first. Lines arriving during
        the replay queue behind it, so cb always sees them in arrival order.
        '''
        with self._lock:
            if not cb or not self._backlog:
                self._on_line = cb
                return
            self._flushing = True
        while True:
            with self._lock:
                pending, self._backlog = self._backlog, []
                if not pending:
                    # backlog drained; the receive thread may call cb directly now
                    self._on_line = cb
                    self._flushing = False
                    return
            for line in pending:
                notify(cb, line)

    def _log(self, msg: str, level: int = logging.INFO):
        logger.log(level, msg)
        notify(self.on_log, msg)

    def connect(self, host: str, port: int):
        '''
        Dial the relay and start the receive thread.
        On failure the client is left DISCONNECTED and TransportError is raised; the
        call can simply be retried.
        '''
        with self._lock:
            if self._status is not ClientStatus.DISCONNECTED:
                raise RuntimeError(f"cannot connect while {self._status.value}")
            self._status = ClientStatus.CONNECTING
        try:
            sock = socket.create_connection((host, port), timeout=self.connect_timeout)
        except OSError as e:
            with self._lock:
                self._status = ClientStatus.DISCONNECTED
            self._log(f"Waiting for the server at {host}:{port}: {e}", logging.WARNING)
            raise TransportError(f"cannot connect to {host}:{port}: {e}") from e
        sock.settimeout(None)  # no timeout once connected
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        conn = Connection(sock, f"{host}:{port}")
        with self._lock:
            self.conn = conn
            self._status = ClientStatus.CONNECTED
            self.recv_thread = threading.Thread(target=self._recv_loop, args=(conn,),
                                                name="relay-client-recv", daemon=True)
        self._log(f"Connected to {conn.peer_id}")
        notify(self.on_connection_event, conn.peer_id, PeerEvent.CONNECTED)
        self.recv_thread.start()

    def send_line(self, text: str, cipher: Optional[CipherContext] = None) -> str:
        '''
        Transform and send one line.
        Input:
            - text: message text
            - cipher: context for this line only; the client's own if omitted
        Output: the text as written to the wire
        Raises TransportError when not connected or the write fails (the client is
        then disconnected).
        '''
        conn = self.conn
        if conn is None or self._status is not ClientStatus.CONNECTED:
            raise TransportError("not connected")
        out = (cipher or self.cipher).apply(text)
        try:
            conn.send(out)
        except TransportError:
            self._release(conn)
            raise
        return out

    def submit_line(self, text: str, mode=None, key: Key = None) -> Optional[str]:
        '''
        Presentation entry point for a typed line. Returns what was sent, or None if
        the line was rejected (bad key, line break in the text, not connected); the
        reason goes to on_log.
        '''
        try:
            ctx = CipherContext(mode, key) if mode is not None else None
            return self.send_line(text, ctx)
        except (InvalidKey, TransportError, ValueError) as e:
            self._log(f"Line not sent: {e}", logging.WARNING)
        return None

    def _deliver(self, line: str):
        with self._lock:
            cb = self._on_line
            if cb is None or self._flushing:  # no handler yet, or replay in progress
                self._backlog.append(line)
                return
        notify(cb, line)

    def _recv_loop(self, conn: Connection):
        ''' Thread function to receive lines from the relay '''
        try:
            while True:
                line = conn.receive()
                cipher = self.cipher   # one snapshot per line
                if cipher.decrypts:
                    line = cipher.apply(line)
                self._deliver(line)
        except EndOfStream:
            pass
        except TransportError as e:
            self._log(f"Connection error: {e}", logging.WARNING)
        finally:
            self._release(conn)

    def _release(self, conn: Connection):
        ''' Close conn and go DISCONNECTED, unless conn was already replaced or released '''
        with self._lock:
            current = self.conn is conn
            if current:
                self.conn = None
                self._status = ClientStatus.DISCONNECTED
        conn.close()
        if current:
            self._log("Disconnected from the server.")
            notify(self.on_connection_event, conn.peer_id, PeerEvent.DISCONNECTED)

    def disconnect(self):
        ''' Close the connection if there is one; does nothing otherwise '''
        conn = self.conn
        if conn is None:
            return
        thread = self.recv_thread
        self._release(conn)
        if thread is not None and thread is not threading.current_thread() and thread.is_alive():
            thread.join(self.connect_timeout)
