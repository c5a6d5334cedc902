"""
Exceptions raised by the relay core.
"""


class RelayError(Exception):
    """Base exception for relay errors."""
    pass


class TransportError(RelayError):
    """Stream I/O failed: closed, reset, or malformed."""
    pass


class EndOfStream(RelayError):
    """Peer closed the stream (or it was closed locally)."""
    pass


class InvalidKey(RelayError):
    """Cipher parameters do not fit the selected mode."""
    pass


class BindError(RelayError):
    """Listening port unavailable."""
    pass


class CommandError(RelayError):
    """Slash command not recognised or missing arguments."""
    pass
