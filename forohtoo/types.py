"""Domain records for parsed transactions and signature metadata."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from forohtoo.keys import Signature

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_U64_MAX = 2**64 - 1


@dataclass
class Transaction:
    """A parsed transaction, independent of the RPC response format."""

    signature: str
    slot: int = 0
    block_time: datetime = ZERO_TIME
    amount: int = 0
    token_mint: str | None = None  # None for native SOL transfers
    memo: str | None = None
    from_address: str | None = None
    err: str | None = None  # None if the transaction succeeded

    def __post_init__(self) -> None:
        for name in ("slot", "amount"):
            value = getattr(self, name)
            if not 0 <= value <= _U64_MAX:
                raise ValueError(f"{name} out of range: {value}")


@dataclass(frozen=True)
class TransactionSignature:
    """Signature metadata as listed for an address."""

    signature: Signature
    slot: int = 0
    block_time: int | None = None  # Unix seconds
    err: Any = None