"""
Console operator for the relay server.

Every line typed on stdin is broadcast to all clients. Slash commands pick a cipher
for that line (see common.commands); "/quit" stops the server.
"""
import argparse
import sys

from common.commands import parse_command
from common.config import configure_logging, load_settings
from common.crypto import CipherContext, CipherMode
from common.errors import BindError, CommandError, InvalidKey
from server.relay import RelayServer


def build_parser(settings) -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Run the chat relay server")
    ap.add_argument("--host", default=settings.host, help="Address to bind")
    ap.add_argument("--port", type=int, default=settings.port, help="Port to listen on")
    ap.add_argument("--mode", default=CipherMode.NONE.value,
                    choices=[m.value for m in CipherMode],
                    help="Cipher applied to every relayed line")
    ap.add_argument("--key", default=None, help="Shift (integer) or running key (letters)")
    return ap


def main(argv=None):
    settings = load_settings()
    args = build_parser(settings).parse_args(argv)
    configure_logging(settings.log_level)

    try:
        cipher = CipherContext(args.mode, args.key)
    except InvalidKey as e:
        print(f"Invalid cipher settings: {e}", file=sys.stderr)
        return 2

    server = RelayServer(
        host=args.host, port=args.port, cipher=cipher,
        on_line_received=lambda peer, text: print(f"{peer}: {text}"),
        stop_timeout=settings.stop_timeout,
    )
    try:
        server.start()
    except BindError as e:
        print(f"Server info: {e}", file=sys.stderr)
        return 1

    try:
        for raw in sys.stdin:
            text = raw.rstrip("\r\n")
            if not text:
                continue
            if text == "/quit":
                break
            if not text.startswith("/"):
                server.submit_line(text)   # configured cipher
                continue
            try:
                ctx, body = parse_command(text)
            except (CommandError, InvalidKey) as e:
                print(f"Command not sent: {e}")
                continue
            server.submit_line(body, ctx.mode, ctx.key)
    except KeyboardInterrupt:
        pass
    finally:
        server.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
