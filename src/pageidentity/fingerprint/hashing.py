"""
64-bit SimHash signatures for sampled page tokens.

Tokens are hashed with FNV-1a over UTF-16 code units (matching what a browser
client computes from ``charCodeAt``), then folded into a locality-sensitive
signature: near-identical token sets yield signatures a few bits apart,
disjoint sets land about 32 bits apart.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Union

FNV_OFFSET_BASIS = 0xCBF29CE484222325
FNV_PRIME = 0x100000001B3
BIT_SIZE = 64
MASK_64 = (1 << BIT_SIZE) - 1

SignatureLike = Union[int, str]


def _utf16_code_units(token: str) -> Iterator[int]:
    for char in token:
        code_point = ord(char)
        if code_point > 0xFFFF:
            code_point -= 0x10000
            yield 0xD800 + (code_point >> 10)
            yield 0xDC00 + (code_point & 0x3FF)
        else:
            yield code_point


def hash_token(token: str) -> int:
    """FNV-1a hash of a token, masked to 64 bits."""
    value = FNV_OFFSET_BASIS
    for unit in _utf16_code_units(token):
        value ^= unit
        value = (value * FNV_PRIME) & MASK_64
    return value


def sim_hash(tokens: Iterable[str]) -> int:
    """
    Compute a 64-bit SimHash over tokens.

    Empty tokens are ignored. Accumulation is commutative, so token order
    never changes the signature.

    Args:
        tokens: Token sequence (duplicates count with their multiplicity)

    Returns:
        Unsigned 64-bit signature
    """
    vector = [0] * BIT_SIZE

    for token in tokens:
        if not token:
            continue

        token_hash = hash_token(token)
        for bit in range(BIT_SIZE):
            if token_hash & (1 << bit):
                vector[bit] += 1
            else:
                vector[bit] -= 1

    signature = 0
    for bit in range(BIT_SIZE):
        if vector[bit] >= 0:
            signature |= 1 << bit

    return signature


def parse_signature(value: SignatureLike) -> int:
    """
    Parse a signature from an int, a decimal string, or a ``0x`` hex string.

    Raises:
        ValueError: If the string is not a valid integer literal
    """
    if isinstance(value, bool):
        raise TypeError("Signature must be an int or a numeric string")
    if isinstance(value, int):
        return value & MASK_64

    text = str(value).strip()
    if text[:2].lower() == "0x":
        return int(text[2:], 16) & MASK_64
    return int(text, 10) & MASK_64


def hamming_distance(first: SignatureLike, second: SignatureLike) -> int:
    """Number of differing bits between two 64-bit signatures (0..64)."""
    value = parse_signature(first) ^ parse_signature(second)
    count = 0

    while value:
        value &= value - 1
        count += 1

    return count
