import pytest

from common.commands import parse_command
from common.crypto import CipherMode
from common.errors import CommandError, InvalidKey


def test_plain_text_passes_through():
    ctx, body = parse_command("just chatting")
    assert ctx.mode is CipherMode.NONE
    assert body == "just chatting"


def test_shift_command():
    ctx, body = parse_command("/ce 3 Attack at dawn")
    assert ctx.mode is CipherMode.SHIFT_ENCRYPT
    assert ctx.key == 3
    assert body == "Attack at dawn"
    assert ctx.apply(body) == "Dwwdfn dw gdzq"


def test_commands_are_case_insensitive():
    ctx, body = parse_command("/DEVI key Rijvs, Uyvjn!")
    assert ctx.mode is CipherMode.RUNNING_KEY_DECRYPT
    assert ctx.apply(body) == "Hello, World!"


@pytest.mark.parametrize("text", ["/rot13 1 hi", "/", "/ce", "/ce 3", "/vi key "])
def test_bad_commands(text):
    with pytest.raises(CommandError):
        parse_command(text)


@pytest.mark.parametrize("text", ["/ce three hi", "/vi k3y hi"])
def test_bad_keys(text):
    with pytest.raises(InvalidKey):
        parse_command(text)
