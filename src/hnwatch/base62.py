"""Base-X encoding of item ids for short links.

The alphabet drops look-alike symbols (0, 1, l, o, I, O) so that short ids
survive being read aloud or retyped.
"""

from __future__ import annotations

ALPHABET = "23456789abcdefghijkmnpqrstuvwxyzABCDEFGHJKLMNPQRSTUVWXYZ"


def encode(num: int, alphabet: str = ALPHABET) -> str:
    """Encode a non-negative integer."""
    if num < 0:
        raise ValueError(f"Cannot encode negative number: {num}")
    if num == 0:
        return alphabet[0]

    base = len(alphabet)
    chars: list[str] = []
    while num > 0:
        num, rem = divmod(num, base)
        chars.append(alphabet[rem])
    return "".join(reversed(chars))


def decode(text: str, alphabet: str = ALPHABET) -> int:
    """Decode a string produced by :func:`encode`."""
    base = len(alphabet)
    num = 0
    for char in text:
        index = alphabet.find(char)
        if index == -1:
            raise ValueError(f'Character "{char}" is not in alphabet')
        num = num * base + index
    return num
