"""
Slash commands for picking a cipher per line.

    /ce <shift> <text>     shift-encrypt
    /dece <shift> <text>   shift-decrypt
    /vi <key> <text>       running-key encrypt
    /devi <key> <text>     running-key decrypt

Anything not starting with "/" is sent as-is.
"""

from typing import Tuple

from common.crypto import CipherContext, CipherMode
from common.errors import CommandError

COMMANDS = {
    "/ce": CipherMode.SHIFT_ENCRYPT,
    "/dece": CipherMode.SHIFT_DECRYPT,
    "/vi": CipherMode.RUNNING_KEY_ENCRYPT,
    "/devi": CipherMode.RUNNING_KEY_DECRYPT,
}


def parse_command(text: str) -> Tuple[CipherContext, str]:
    '''
    Split a typed line into the cipher it asks for and the message body.
    Input:
        - text: raw input line
    Output: (CipherContext, body); plain text gives the identity context
    Raises CommandError for unknown commands or missing parts, InvalidKey for a bad key.
    '''
    if not text.startswith("/"):
        return CipherContext.identity(), text

    parts = text.split(" ", 2)
    command = parts[0].lower()
    mode = COMMANDS.get(command)
    if mode is None:
        raise CommandError(f"unknown command {parts[0]!r}")
    if len(parts) < 3 or not parts[1] or not parts[2]:
        raise CommandError(f"usage: {command} <key> <message>")
    return CipherContext(mode, parts[1]), parts[2]
