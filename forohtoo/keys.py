"""Base58 keys and signatures, curve checks and program-derived addresses."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Iterable

ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_INDEX = {char: value for value, char in enumerate(ALPHABET)}

PUBLIC_KEY_LENGTH = 32
SIGNATURE_LENGTH = 64
MAX_SEEDS = 16
MAX_SEED_LENGTH = 32
_PDA_MARKER = b"ProgramDerivedAddress"

# Field prime and curve constant of edwards25519.
_P = 2**255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P


class KeyError_(ValueError):
    """Raised for malformed keys, signatures, base58 text or seeds."""


def b58encode(data: bytes) -> str:
    """Encode bytes as base58 text."""
    data = bytes(data)
    zeros = len(data) - len(data.lstrip(b"\0"))
    number = int.from_bytes(data, "big")
    chars = []
    while number:
        number, rem = divmod(number, 58)
        chars.append(ALPHABET[rem])
    return "1" * zeros + "".join(reversed(chars))


def b58decode(text: str) -> bytes:
    """Decode base58 text into bytes."""
    if not text:
        raise KeyError_("zero length string")
    zeros = len(text) - len(text.lstrip("1"))
    number = 0
    for char in text:
        try:
            number = number * 58 + _INDEX[char]
        except KeyError:
            raise KeyError_(f"invalid base58 character {char!r}") from None
    body = number.to_bytes((number.bit_length() + 7) // 8, "big")
    return b"\0" * zeros + body


def is_on_curve(data: bytes) -> bool:
    """Tell whether 32 bytes decode to a point on edwards25519."""
    if len(data) != PUBLIC_KEY_LENGTH:
        raise KeyError_(f"point must be {PUBLIC_KEY_LENGTH} bytes, got {len(data)}")
    y = (int.from_bytes(data, "little") & ((1 << 255) - 1)) % _P
    yy = y * y % _P
    u = (yy - 1) % _P
    v = (_D * yy + 1) % _P
    ratio = u * pow(v, _P - 2, _P) % _P
    return ratio == 0 or pow(ratio, (_P - 1) // 2, _P) == 1


@dataclass(frozen=True)
class PublicKey:
    """A 32-byte account address."""

    data: bytes

    def __post_init__(self) -> None:
        raw = bytes(self.data)
        if len(raw) != PUBLIC_KEY_LENGTH:
            raise KeyError_(
                f"public key must be {PUBLIC_KEY_LENGTH} bytes, got {len(raw)}"
            )
        object.__setattr__(self, "data", raw)

    @classmethod
    def from_base58(cls, value: str) -> "PublicKey":
        return cls(b58decode(value))

    def is_zero(self) -> bool:
        return not any(self.data)

    def __bytes__(self) -> bytes:
        return self.data

    def __str__(self) -> str:
        return b58encode(self.data)


@dataclass(frozen=True)
class Signature:
    """A 64-byte transaction signature."""

    data: bytes

    def __post_init__(self) -> None:
        raw = bytes(self.data)
        if len(raw) != SIGNATURE_LENGTH:
            raise KeyError_(
                f"signature must be {SIGNATURE_LENGTH} bytes, got {len(raw)}"
            )
        object.__setattr__(self, "data", raw)

    @classmethod
    def from_base58(cls, value: str) -> "Signature":
        return cls(b58decode(value))

    def __bytes__(self) -> bytes:
        return self.data

    def __str__(self) -> str:
        return b58encode(self.data)


TOKEN_PROGRAM_ID = PublicKey.from_base58("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = PublicKey.from_base58(
    "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
)


def find_program_address(
    seeds: Iterable[bytes], program_id: PublicKey
) -> tuple[PublicKey, int]:
    """Find the off-curve address and bump seed derived from seeds and a program."""
    seed_list = [bytes(seed) for seed in seeds]
    if len(seed_list) + 1 > MAX_SEEDS:
        raise KeyError_(f"too many seeds: {len(seed_list)}")
    for seed in seed_list:
        if len(seed) > MAX_SEED_LENGTH:
            raise KeyError_(f"seed too long: {len(seed)} bytes")
    for bump in range(255, 0, -1):
        digest = hashlib.sha256()
        for seed in seed_list:
            digest.update(seed)
        digest.update(bytes([bump]))
        digest.update(bytes(program_id))
        digest.update(_PDA_MARKER)
        candidate = digest.digest()
        if not is_on_curve(candidate):
            return PublicKey(candidate), bump
    raise KeyError_("unable to find a valid program address")


def find_associated_token_address(
    wallet: PublicKey, mint: PublicKey
) -> tuple[PublicKey, int]:
    """Return the associated token account of a wallet for a mint, with its bump."""
    return find_program_address(
        [bytes(wallet), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )