import logging
import socket
import threading
from typing import Optional

from common.errors import EndOfStream, TransportError

ENC = "utf-8"   # encoding for line text
DELIM = b"\n"    # line terminator on the wire
MAX_LINE_BYTES = 64 * 1024
RECV_CHUNK = 4096

logger = logging.getLogger(__name__)


def format_peer(addr) -> str:
    ''' This function turns a socket address tuple into "host:port" '''
    if isinstance(addr, tuple) and len(addr) >= 2:
        return f"{addr[0]}:{addr[1]}"
    return str(addr)


def encode_line(line: str) -> bytes:
    '''
    The function encodes one chat line for the wire and adds the \\n terminator.
    A \\n inside the line would split it, and a trailing \\r is eaten by the receiver,
    so both are refused.
    '''
    if "\n" in line or line.endswith("\r"):
        raise ValueError("chat line must not contain line breaks")
    return line.encode(ENC) + DELIM


class Connection:
    '''
    One live stream to a peer, read and written a line at a time.

    send() may be called from several threads (a broadcast and the owner at once), so
    writes are serialized. receive() is meant for a single reader thread. close() may be
    called from any thread at any time; a blocked receive() then ends with EndOfStream
    and later send() calls fail with TransportError.
    '''

    def __init__(self, sock: socket.socket, peer_id: Optional[str] = None):
        self.sock = sock
        if peer_id is None:
            try:
                peer_id = format_peer(sock.getpeername())
            except OSError:
                peer_id = f"fd{sock.fileno()}"
        self.peer_id = peer_id
        self._buf = bytearray()   # residual bytes after the last complete line
        self._send_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._closed = False

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<Connection {self.peer_id} {state}>"

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, line: str) -> None:
        ''' Write one line followed by the terminator; blocks while the transport applies backpressure '''
        data = encode_line(line)
        if self._closed:
            raise TransportError(f"{self.peer_id}: connection closed")
        with self._send_lock:
            try:
                self.sock.sendall(data)
            except OSError as e:
                raise TransportError(f"{self.peer_id}: send failed: {e}") from e

    def receive(self) -> str:
        '''
        Block until a full line is available and return it without the terminator
        (trailing \\r characters from CRLF peers are dropped too).
        Raises:
            - EndOfStream: the peer closed cleanly, or this side closed the connection
            - TransportError: reset, invalid UTF-8, oversized line, or EOF in the middle of a line
        '''
        buf = self._buf
        while True:
            nl = buf.find(DELIM)
            if nl != -1:  # one full line has arrived
                line_bytes = bytes(buf[:nl])
                del buf[:nl + 1]
                # CRLF peers; strip every trailing \r
                line_bytes = line_bytes.rstrip(b"\r")
                try:
                    return line_bytes.decode(ENC)
                except UnicodeDecodeError as e:
                    raise TransportError(f"{self.peer_id}: line is not valid {ENC}") from e

            if len(buf) > MAX_LINE_BYTES:
                raise TransportError(f"{self.peer_id}: line exceeds {MAX_LINE_BYTES} bytes")
            if self._closed:
                raise EndOfStream(self.peer_id)

            try:
                chunk = self.sock.recv(RECV_CHUNK)
            except OSError as e:
                if self._closed:  # closed under us by another thread
                    raise EndOfStream(self.peer_id) from None
                raise TransportError(f"{self.peer_id}: receive failed: {e}") from e
            if not chunk:
                if buf and not self._closed:
                    raise TransportError(f"{self.peer_id}: stream ended mid-line")
                raise EndOfStream(self.peer_id)
            buf.extend(chunk)

    def close(self) -> None:
        ''' Release the socket. Safe to call more than once and from any thread '''
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
        try:
            # shutdown wakes a recv() blocked in another thread; close() alone does not
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # already reset by the peer
        self.sock.close()
        logger.debug("closed %s", self.peer_id)
