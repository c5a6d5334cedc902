import logging
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeerEvent(Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"

    def __str__(self) -> str:
        return self.value


# Callback signatures the presentation layer can hand to the core.
# They run on whichever core thread produced the event.
ConnectionEventCallback = Callable[[str, PeerEvent], None]   # (peer_id, event)
LineReceivedCallback = Callable[[str, str], None]            # (peer_id, text), server side
LineCallback = Callable[[str], None]                         # (text), client side
LogCallback = Callable[[str], None]                          # (text)


def notify(cb: Optional[Callable], *args) -> None:
    '''
    Call a presentation callback if one is attached.
    An exception raised by the callback is logged and does not reach the network thread.
    '''
    if cb is None:
        return
    try:
        cb(*args)
    except Exception:
        logger.exception("callback %r failed", cb)
