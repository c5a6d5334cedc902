"""
Relay server: accepts connections and forwards every line to all other parties.

One thread runs the accept loop, one thread serves each connection. The only state
shared between those threads is the ConnectionRegistry; the cipher context is an
immutable value read once per line.
"""

import logging
import socket
import threading
from enum import Enum
from typing import Optional, Set

from common.config import DEFAULT_HOST, DEFAULT_PORT, DEFAULT_STOP_TIMEOUT
from common.crypto import CipherContext, Key
from common.errors import BindError, EndOfStream, InvalidKey, TransportError
from common.messages import (
    ConnectionEventCallback, LineReceivedCallback, LogCallback, PeerEvent, notify,
)
from common.protocol import Connection, format_peer
from server.state import ConnectionRegistry

logger = logging.getLogger(__name__)


class ServerStatus(Enum):
    STOPPED = "stopped"
    LISTENING = "listening"


class RelayServer:
    ''' Multi-client line relay with an optional cipher applied to every relayed line '''

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT,
                 cipher: Optional[CipherContext] = None,
                 on_connection_event: Optional[ConnectionEventCallback] = None,
                 on_line_received: Optional[LineReceivedCallback] = None,
                 on_log: Optional[LogCallback] = None,
                 registry: Optional[ConnectionRegistry] = None,
                 stop_timeout: float = DEFAULT_STOP_TIMEOUT):
        self.host, self.port = host, port
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.on_connection_event = on_connection_event
        self.on_line_received = on_line_received
        self.on_log = on_log
        self.stop_timeout = stop_timeout
        self._cipher = cipher or CipherContext.identity()
        self._lock = threading.Lock()   # guards status, listener and handler set
        self._status = ServerStatus.STOPPED
        self._listener: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._handlers: Set[threading.Thread] = set()
        # held while a connect is announced; stop() waits on it once the listener
        # is gone. Reentrant so a connect callback may call stop()
        self._announce_lock = threading.RLock()

    def __enter__(self):
        if self._status is ServerStatus.STOPPED:
            self.start()
        return self

    def __exit__(self, *exc):
        self.stop()

    @property
    def status(self) -> ServerStatus:
        return self._status

    @property
    def cipher(self) -> CipherContext:
        return self._cipher

    @cipher.setter
    def cipher(self, ctx: Optional[CipherContext]):
        # swapped as a whole; lines already being processed keep the old one
        self._cipher = ctx or CipherContext.identity()
        self._log(f"Cipher set to {self._cipher.mode}")

    @property
    def address(self):
        ''' The (host, port) actually bound, or None when stopped '''
        listener = self._listener
        if listener is None:
            return None
        return listener.getsockname()[:2]

    def _log(self, msg: str, level: int = logging.INFO):
        logger.log(level, msg)
        notify(self.on_log, msg)

    def start(self, port: Optional[int] = None):
        '''
        Bind the listening socket and start the accept loop.
        Input:
            - port: overrides the port given to the constructor (0 picks a free one)
        Raises BindError if the port cannot be bound; the server then stays STOPPED.
        '''
        with self._lock:
            if self._status is not ServerStatus.STOPPED:
                raise RuntimeError("server is already listening")
            if port is not None:
                self.port = port
            try:
                listener = socket.create_server((self.host, self.port))
            except OSError as e:
                error = e
            else:
                error = None
                self._listener = listener
                self._status = ServerStatus.LISTENING
                self._accept_thread = threading.Thread(
                    target=self._accept_loop, args=(listener,), name="relay-accept", daemon=True)
                self._accept_thread.start()
        if error is not None:
            self._log(f"Cannot listen on {self.host}:{self.port}: {error}", logging.ERROR)
            raise BindError(f"{self.host}:{self.port}: {error}") from error
        host, bound_port = listener.getsockname()[:2]
        self._log(f"Server listening on {host}:{bound_port}")

    def _accept_loop(self, listener: socket.socket):
        try:
            while True:
                try:
                    sock, addr = listener.accept()
                except OSError as e:
                    if self._status is ServerStatus.LISTENING:
                        self._log(f"Listener failed: {e}", logging.ERROR)
                    break
                try:
                    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
                except OSError as e:  # peer already gone
                    self._log(f"Dropping {format_peer(addr)}: {e}", logging.WARNING)
                    sock.close()
                    continue
                conn = Connection(sock, format_peer(addr))
                with self._lock:
                    # stop() may have run while accept() was returning
                    if self._listener is not listener:
                        conn.close()
                        break
                    added = self.registry.add(conn)
                    if added:
                        t = threading.Thread(target=self._handle, args=(conn,),
                                             name=f"relay-{conn.peer_id}", daemon=True)
                        self._handlers.add(t)
                if not added:
                    self._log(f"Duplicate peer {conn.peer_id}, dropping", logging.WARNING)
                    conn.close()
                    continue
                with self._announce_lock:
                    # stop() passes through this lock before "Server stopped", so a
                    # connect is either reported ahead of that or not at all
                    if self._listener is not listener:
                        with self._lock:
                            self._handlers.discard(t)
                        conn.close()
                        self.registry.remove(conn)
                        break
                    self._log(f"Client connected: {conn.peer_id}")
                    notify(self.on_connection_event, conn.peer_id, PeerEvent.CONNECTED)
                    t.start()
        finally:
            with self._lock:
                if self._listener is listener:
                    # listener died on its own, not through stop()
                    self._listener = None
                    self._status = ServerStatus.STOPPED
            listener.close()
            logger.debug("accept loop finished")

    def _handle(self, conn: Connection):
        ''' Serve one connection until it ends; always unregisters it on the way out '''
        try:
            while True:
                line = conn.receive()
                cipher = self._cipher   # one snapshot per line
                out = cipher.apply(line)
                notify(self.on_line_received, conn.peer_id, line)
                try:
                    self.registry.broadcast(out, exclude=conn)
                except ValueError as e:
                    self._log(f"Line from {conn.peer_id} not relayed: {e}", logging.WARNING)
        except EndOfStream:
            pass
        except TransportError as e:
            self._log(f"Connection error from {conn.peer_id}: {e}", logging.WARNING)
        finally:
            conn.close()
            self.registry.remove(conn)
            with self._lock:
                self._handlers.discard(threading.current_thread())
            self._log(f"Client disconnected: {conn.peer_id}")
            notify(self.on_connection_event, conn.peer_id, PeerEvent.DISCONNECTED)

    def broadcast_from_operator(self, line: str, cipher: Optional[CipherContext] = None) -> int:
        '''
        Send a line typed by the server operator to every connected client.
        Input:
            - line: message text
            - cipher: context for this line only; the server's configured one if omitted
        Output: number of clients the line reached
        '''
        ctx = cipher or self._cipher
        return self.registry.broadcast(ctx.apply(line), exclude=None)

    def submit_line(self, text: str, mode=None, key: Key = None) -> Optional[str]:
        '''
        Operator entry point. Returns the text that went out, or None if the key or
        the text was rejected (nothing is sent in that case and the reason is logged).
        '''
        try:
            ctx = CipherContext(mode, key) if mode is not None else self._cipher
            out = ctx.apply(text)
            self.registry.broadcast(out)
        except (InvalidKey, ValueError) as e:
            self._log(f"Line not sent: {e}", logging.WARNING)
            return None
        return out

    def stop(self):
        '''
        Close the listener and every registered connection, then wait (up to
        stop_timeout) for the handler threads to finish. Safe to call when stopped.
        '''
        with self._lock:
            listener, self._listener = self._listener, None
            if listener is None:
                return
            self._status = ServerStatus.STOPPED
            accept_thread = self._accept_thread
            # shutdown wakes the blocked accept(); close() alone does not
            try:
                listener.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            listener.close()
        with self._announce_lock:
            # wait out a connect being announced; later ones see the listener gone
            with self._lock:
                handlers = list(self._handlers)
        for conn in self.registry.snapshot():
            conn.close()
        me = threading.current_thread()
        for t in handlers:
            if t is not me and t.is_alive():
                t.join(self.stop_timeout)
        if accept_thread is not None and accept_thread is not threading.current_thread():
            accept_thread.join(self.stop_timeout)
        self.registry.clear()
        self._log("Server stopped")
