"""Short identifier codec.

Random generation and numeric encoding are independent paths that share one
62-symbol alphabet, so ``is_valid_alphabet`` is the single validity predicate
for both.

Alphabet Layout
===============
::
    index   0 ........ 9 10 ....... 35 36 ....... 61
    symbol  0 ........ 9  a ........ z  A ........ Z

Examples::

    >>> encode(0)
    '0'
    >>> encode(62)
    '10'
    >>> decode("3d7")
    12345
    >>> len(generate_random(6))
    6
"""

from nanoid import generate

__all__ = [
    "ALPHABET",
    "BASE",
    "InvalidCharacterError",
    "RandomSourceError",
    "generate_random",
    "encode",
    "decode",
    "is_valid_alphabet",
]

ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
BASE = len(ALPHABET)

_INDEX = {symbol: position for position, symbol in enumerate(ALPHABET)}


class InvalidCharacterError(ValueError):
    """Raised by ``decode`` for a symbol outside the alphabet."""

    def __init__(self, character: str, position: int) -> None:
        super().__init__(f"Invalid character {character!r} at position {position}")
        self.character = character
        self.position = position


class RandomSourceError(RuntimeError):
    """The operating system's secure random source is unavailable."""


def generate_random(length: int) -> str:
    """Return ``length`` symbols drawn uniformly from the alphabet.

    Uses nanoid, which reads ``os.urandom`` and rejects out-of-range bytes so
    every symbol is equally likely.
    """
    if length < 1:
        raise ValueError(f"length must be positive, got {length!r}")
    try:
        return generate(ALPHABET, length)
    except (NotImplementedError, OSError) as exc:
        raise RandomSourceError("secure random source unavailable") from exc


def encode(number: int) -> str:
    """Encode a non-negative integer, most significant digit first."""
    if number < 0:
        raise ValueError("Number must be non-negative")

    if number == 0:
        return ALPHABET[0]

    result = []
    while number > 0:
        number, remainder = divmod(number, BASE)
        result.append(ALPHABET[remainder])

    return "".join(result[::-1])


def decode(text: str) -> int:
    """Inverse of ``encode``.

    Raises:
        InvalidCharacterError: naming the first offending character and its
            zero-based position from the left.
    """
    if not text:
        raise InvalidCharacterError("", 0)

    number = 0
    for position, character in enumerate(text):
        digit = _INDEX.get(character)
        if digit is None:
            raise InvalidCharacterError(character, position)
        number = number * BASE + digit
    return number


def is_valid_alphabet(text: str) -> bool:
    return bool(text) and all(character in _INDEX for character in text)
