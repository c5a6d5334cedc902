import logging
from threading import Lock
from typing import Dict, List, Optional

from common.errors import TransportError
from common.protocol import Connection, encode_line

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    # This class tracks every connection the server currently considers live.
    # The lock only guards the dict; socket I/O always happens outside it.
    def __init__(self):
        self.lock = Lock()  # guards self.connections
        self.connections: Dict[str, Connection] = {}   # peer id -> live Connection

    def __len__(self) -> int:
        with self.lock:
            return len(self.connections)

    def __contains__(self, conn: Connection) -> bool:
        with self.lock:
            return self.connections.get(conn.peer_id) is conn

    def add(self, conn: Connection) -> bool:
        ''' This function registers a connection; False if its peer id is already taken '''
        with self.lock:
            if conn.peer_id in self.connections:
                return False
            self.connections[conn.peer_id] = conn
            return True

    def remove(self, conn: Connection) -> bool:
        '''
        This function unregisters a connection.
        Only the exact object registered under its peer id is removed, so when close()
        and a failing handler race, exactly one caller gets True.
        '''
        with self.lock:
            if self.connections.get(conn.peer_id) is not conn:
                return False
            del self.connections[conn.peer_id]
            return True

    def get(self, peer_id: str) -> Optional[Connection]:
        with self.lock:
            return self.connections.get(peer_id)

    def peers(self) -> List[str]:
        ''' This function returns the peer ids of all registered connections '''
        with self.lock:
            return list(self.connections.keys())

    def snapshot(self, exclude: Optional[Connection] = None) -> List[Connection]:
        ''' This function returns a copy of the membership, minus exclude '''
        with self.lock:
            return [c for c in self.connections.values() if c is not exclude]

    def clear(self) -> List[Connection]:
        ''' This function empties the registry and returns what was in it '''
        with self.lock:
            conns = list(self.connections.values())
            self.connections.clear()
            return conns

    def broadcast(self, line: str, exclude: Optional[Connection] = None) -> int:
        '''
        This function sends a line to every registered connection except exclude.
        Input:
            - line: text to deliver
            - exclude: connection that must not get the line (usually its sender)
        Output: number of connections the line was written to

        Raises ValueError, before any recipient is tried, if the line holds a \\n or
        ends in \\r.

        Recipients are fixed when the call starts. A recipient whose send fails is
        closed and removed on its own; the others still get the line.
        Sends run one after another on the calling thread, so a peer that stops
        reading holds up this call (and the handler or operator that made it)
        until its socket buffer drains or the peer is dropped. The registry lock
        is not held meanwhile, so joins and leaves are never blocked by it.
        '''
        encode_line(line)  # reject bad text once, not per recipient
        delivered = 0
        failed = []
        for conn in self.snapshot(exclude):
            try:
                conn.send(line)
                delivered += 1
            except TransportError as e:
                logger.warning("dropping %s: %s", conn.peer_id, e)
                failed.append(conn)
        for conn in failed:
            conn.close()
            self.remove(conn)
        return delivered
