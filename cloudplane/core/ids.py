from __future__ import annotations

import base64
import secrets
import string
from typing import Protocol, Sequence


# Base32 alphabet without ambiguous characters (no 0/O, 2/Z, l/I, v).
ID_ALPHABET = "ybndrfg8ejkmcpqxot1uwisza345h769"
ID_LENGTH = 26

_STANDARD_B32 = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"


class RandomSource(Protocol):
    def getrandbits(self, k: int) -> int:
        ...

    def choice(self, seq: Sequence[str]) -> str:
        ...


class IdGenerator:
    """Generates 26 character identifiers from 128 random bits.

    The randomness source and alphabet are injected so tests can pass a seeded
    ``random.Random`` and get reproducible identifiers. The default source is
    ``secrets.SystemRandom``; failures of the OS entropy pool propagate.
    """

    def __init__(self, rng: RandomSource | None = None, alphabet: str = ID_ALPHABET) -> None:
        if len(alphabet) != 32 or len(set(alphabet)) != 32:
            raise ValueError("id alphabet must contain 32 distinct characters")
        self._rng = rng if rng is not None else secrets.SystemRandom()
        self._alphabet = alphabet
        self._table = str.maketrans(_STANDARD_B32, alphabet)

    @property
    def alphabet(self) -> str:
        return self._alphabet

    def new_id(self) -> str:
        raw = self._rng.getrandbits(128).to_bytes(16, "big")
        encoded = base64.b32encode(raw).decode("ascii").rstrip("=")
        return encoded.translate(self._table)[:ID_LENGTH]

    def new_cluster_id(self) -> str:
        # Cluster IDs end up in DNS names and must start with a letter.
        value = self.new_id()
        if value[0].isdigit():
            value = self._rng.choice(string.ascii_lowercase) + value[1:]
        return value


_default_generator: IdGenerator | None = None


def _generator() -> IdGenerator:
    global _default_generator
    if _default_generator is None:
        _default_generator = IdGenerator()
    return _default_generator


def new_id() -> str:
    return _generator().new_id()


def new_cluster_id() -> str:
    return _generator().new_cluster_id()


def is_valid_id(value: str, alphabet: str = ID_ALPHABET) -> bool:
    return len(value) == ID_LENGTH and all(char in alphabet for char in value)
