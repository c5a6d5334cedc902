"""
Console client for the relay.

Connects, prints every line relayed to it and sends every line typed on stdin.
Slash commands (/ce, /dece, /vi, /devi) encrypt or decrypt a single line;
"/quit" disconnects and exits.
"""
import argparse
import sys

from common.commands import parse_command
from common.config import configure_logging, load_settings
from common.crypto import CipherContext, CipherMode
from common.errors import CommandError, InvalidKey, TransportError
from .net import ChatClient


def main(argv=None):
    """
    Start the console client.

    Step 1: Read settings and arguments (host, port, cipher)
    Step 2: Connect to the relay
    Step 3: Pump stdin lines to the relay until EOF or /quit
    """
    settings = load_settings()
    ap = argparse.ArgumentParser(description="Chat relay client")
    ap.add_argument("--host", default=settings.host, help="Server host address")
    ap.add_argument("--port", type=int, default=settings.port, help="Server port")
    ap.add_argument("--mode", default=CipherMode.NONE.value,
                    choices=[m.value for m in CipherMode],
                    help="Cipher for outgoing lines (decrypt modes also decrypt incoming lines)")
    ap.add_argument("--key", default=None, help="Shift (integer) or running key (letters)")
    args = ap.parse_args(argv)
    configure_logging(settings.log_level)

    try:
        cipher = CipherContext(args.mode, args.key)
    except InvalidKey as e:
        print(f"Invalid cipher settings: {e}", file=sys.stderr)
        return 2

    net = ChatClient(cipher=cipher, on_line=lambda text: print(f"Server: {text}"),
                     connect_timeout=settings.connect_timeout)
    try:
        net.connect(args.host, args.port)
    except TransportError as e:
        print(f"Could not connect: {e}", file=sys.stderr)
        return 1

    try:
        for raw in sys.stdin:
            text = raw.rstrip("\r\n")
            if not text:
                continue
            if text == "/quit" or not net.connected:
                break
            if not text.startswith("/"):
                net.submit_line(text)
                continue
            try:
                ctx, body = parse_command(text)
            except (CommandError, InvalidKey) as e:
                print(f"Command not recognised: {e}")
                continue
            sent = net.submit_line(body, ctx.mode, ctx.key)
            if sent is not None:
                print(f"You ({ctx.mode}): {sent}")
    except KeyboardInterrupt:
        pass
    finally:
        net.disconnect()
    return 0


if __name__ == "__main__":
    sys.exit(main())
