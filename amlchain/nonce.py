"""
AMLChain Nonce Generation

A nonce is the single-use token that blocks replay of a signed declaration.
Two strategies are supported; a deployment picks one and validates incoming
nonces against the same strategy:

- RandomIdNonceGenerator: 11 base58 symbols (58^11 ~ 2.5e19 keyspace).
- TimestampNonceGenerator: millisecond clock followed by a random suffix,
  as a decimal integer that fits a uint256 nonce argument.

Both draw from the operating system CSPRNG via ``secrets``. If that source
is unavailable, generation raises NonceGenerationError; there is no fallback
to a predictable generator.
"""

import re
import secrets
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from .errors import NonceGenerationError
from .hashing import UINT256_MAX

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


class NonceGenerator(ABC):
    """Interface shared by nonce strategies."""

    name = "abstract"

    @abstractmethod
    def generate(self) -> str:
        """Produce a new nonce."""
        pass

    @abstractmethod
    def is_valid(self, nonce: str) -> bool:
        """Check that a nonce has the format this strategy produces."""
        pass

    @property
    def numeric(self) -> bool:
        """True when nonces are decimal integers (usable as a uint256)."""
        return False


class RandomIdNonceGenerator(NonceGenerator):
    """Fixed-length random identifier over the base58 alphabet."""

    name = "random_id"

    def __init__(self, length: int = 11, alphabet: str = BASE58_ALPHABET):
        if length < 11:
            raise ValueError("length must be at least 11 symbols")
        if len(alphabet) < 58 or len(set(alphabet)) != len(alphabet):
            raise ValueError("alphabet must hold at least 58 distinct symbols")
        self.length = length
        self.alphabet = alphabet
        self._pattern = re.compile("^[" + re.escape(alphabet) + "]{" + str(length) + "}$")

    def generate(self) -> str:
        try:
            return "".join(secrets.choice(self.alphabet) for _ in range(self.length))
        except (NotImplementedError, OSError) as e:
            raise NonceGenerationError() from e

    def is_valid(self, nonce: str) -> bool:
        return isinstance(nonce, str) and bool(self._pattern.match(nonce))


class TimestampNonceGenerator(NonceGenerator):
    """
    Millisecond timestamp concatenated with a random suffix.

    ``nonce = now_ms * 10**suffix_digits + random_suffix`` so nonces sort
    roughly chronologically while staying unique within the same millisecond.
    """

    name = "timestamp"
    _PATTERN = re.compile(r"^[1-9][0-9]*$")

    def __init__(self, suffix_digits: int = 6, clock: Optional[Callable[[], float]] = None):
        if suffix_digits < 6:
            raise ValueError("suffix_digits must be at least 6")
        self.suffix_digits = suffix_digits
        self._clock = clock or time.time

    @property
    def numeric(self) -> bool:
        return True

    def generate(self) -> str:
        now_ms = int(self._clock() * 1000)
        try:
            suffix = secrets.randbelow(10 ** self.suffix_digits)
        except (NotImplementedError, OSError) as e:
            raise NonceGenerationError() from e
        return str(now_ms * 10 ** self.suffix_digits + suffix)

    def is_valid(self, nonce: str) -> bool:
        if not isinstance(nonce, str) or not self._PATTERN.match(nonce):
            return False
        return int(nonce) <= UINT256_MAX


def get_nonce_generator(name: str) -> NonceGenerator:
    if name == RandomIdNonceGenerator.name:
        return RandomIdNonceGenerator()
    if name == TimestampNonceGenerator.name:
        return TimestampNonceGenerator()
    raise ValueError(f"Unknown nonce strategy: {name}")
