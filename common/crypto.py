from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from common.errors import InvalidKey

ALPHABET = 26

Key = Optional[Union[int, str]]


class CipherMode(Enum):
    NONE = "none"
    SHIFT_ENCRYPT = "shift-encrypt"
    SHIFT_DECRYPT = "shift-decrypt"
    RUNNING_KEY_ENCRYPT = "running-key-encrypt"
    RUNNING_KEY_DECRYPT = "running-key-decrypt"

    def __str__(self) -> str:
        return self.value


SHIFT_MODES = (CipherMode.SHIFT_ENCRYPT, CipherMode.SHIFT_DECRYPT)
RUNNING_KEY_MODES = (CipherMode.RUNNING_KEY_ENCRYPT, CipherMode.RUNNING_KEY_DECRYPT)
DECRYPT_MODES = (CipherMode.SHIFT_DECRYPT, CipherMode.RUNNING_KEY_DECRYPT)


def _rotate(ch: str, shift: int) -> str:
    ''' This function rotates one ASCII letter by shift within its own case; anything else is returned as-is '''
    if 'a' <= ch <= 'z':
        return chr((ord(ch) - ord('a') + shift) % ALPHABET + ord('a'))
    if 'A' <= ch <= 'Z':
        return chr((ord(ch) - ord('A') + shift) % ALPHABET + ord('A'))
    return ch


def _is_letter(ch: str) -> bool:
    return 'a' <= ch <= 'z' or 'A' <= ch <= 'Z'


def normalize_shift(key) -> int:
    '''
    This function turns a shift key into an integer in [0, 26).
    Input:
        - key: int, or a string holding a base-10 integer (e.g. "3", "-5")
    Output: normalized shift
    Raises InvalidKey for anything else (bools and floats included).
    '''
    if isinstance(key, bool):
        raise InvalidKey(f"shift key must be an integer, got {key!r}")
    if isinstance(key, int):
        return key % ALPHABET
    if isinstance(key, str):
        try:
            return int(key.strip(), 10) % ALPHABET
        except ValueError:
            pass
    raise InvalidKey(f"shift key must be an integer, got {key!r}")


def normalize_running_key(key) -> str:
    ''' This function validates a running key: non-empty, ASCII letters only; returned lower-cased '''
    if not isinstance(key, str) or not key:
        raise InvalidKey("running key must be a non-empty string")
    if not all(_is_letter(c) for c in key):
        raise InvalidKey(f"running key must contain letters only, got {key!r}")
    return key.lower()


def shift_encrypt(text: str, shift) -> str:
    s = normalize_shift(shift)
    return "".join(_rotate(c, s) for c in text)


def shift_decrypt(text: str, shift) -> str:
    # decrypt(k) is encrypt(-k)
    s = normalize_shift(shift)
    return "".join(_rotate(c, -s) for c in text)


def _running_key(text: str, key: str, sign: int) -> str:
    key = normalize_running_key(key)
    out = []
    j = 0  # key index, only advanced by letters
    for c in text:
        if _is_letter(c):
            out.append(_rotate(c, sign * (ord(key[j]) - ord('a'))))
            j = (j + 1) % len(key)
        else:
            out.append(c)
    return "".join(out)


def running_key_encrypt(text: str, key: str) -> str:
    return _running_key(text, key, 1)


def running_key_decrypt(text: str, key: str) -> str:
    return _running_key(text, key, -1)


@dataclass(frozen=True)
class CipherContext:
    '''
    Immutable (mode, key) pair. The key is validated and normalized on construction,
    so apply() never fails and a bad key is rejected before any text is produced.
        - NONE: key ignored (stored as None)
        - SHIFT_*: key normalized to an int in [0, 26)
        - RUNNING_KEY_*: key normalized to a lower-case letter string
    '''
    mode: CipherMode = CipherMode.NONE
    key: Key = None

    def __post_init__(self):
        try:
            mode = CipherMode(self.mode)  # also accepts the string value
        except ValueError:
            raise InvalidKey(f"unknown cipher mode {self.mode!r}") from None
        if mode in SHIFT_MODES:
            key = normalize_shift(self.key)
        elif mode in RUNNING_KEY_MODES:
            key = normalize_running_key(self.key)
        else:
            key = None
        object.__setattr__(self, "mode", mode)
        object.__setattr__(self, "key", key)

    @classmethod
    def identity(cls) -> "CipherContext":
        return cls(CipherMode.NONE)

    @property
    def decrypts(self) -> bool:
        return self.mode in DECRYPT_MODES

    def apply(self, text: str) -> str:
        if self.mode is CipherMode.SHIFT_ENCRYPT:
            return shift_encrypt(text, self.key)
        if self.mode is CipherMode.SHIFT_DECRYPT:
            return shift_decrypt(text, self.key)
        if self.mode is CipherMode.RUNNING_KEY_ENCRYPT:
            return running_key_encrypt(text, self.key)
        if self.mode is CipherMode.RUNNING_KEY_DECRYPT:
            return running_key_decrypt(text, self.key)
        return text


def transform(text: str, mode=CipherMode.NONE, key: Key = None) -> str:
    '''
    This function applies one cipher mode to text.
    Input:
        - text: line to transform
        - mode: CipherMode (or its string value)
        - key: shift (int / int-like str) or running key (letters); ignored for NONE
    Output: transformed text
    Raises InvalidKey before producing output if the key does not fit the mode.
    '''
    return CipherContext(mode, key).apply(text)
