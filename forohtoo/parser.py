"""Wire-format transactions and extraction of transfers and memos from them."""

from __future__ import annotations

import base64
import binascii
import struct
from dataclasses import dataclass, field
from datetime import datetime, timezone

from forohtoo.keys import TOKEN_PROGRAM_ID, PublicKey, Signature
from forohtoo.types import ZERO_TIME, Transaction, TransactionSignature

SYSTEM_PROGRAM_ID = PublicKey.from_base58("11111111111111111111111111111112")
TOKEN_2022_PROGRAM_ID = PublicKey.from_base58(
    "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"
)
MEMO_PROGRAM_ID_SPL = PublicKey.from_base58("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")
MEMO_PROGRAM_ID_LEGACY = PublicKey.from_base58(
    "Memo1UhkJRfHyvLMcVucJwxXeuD728EqVDDwQDxFMNo"
)

SYSTEM_PROGRAM_TRANSFER_INSTRUCTION = 2
TOKEN_PROGRAM_TRANSFER_INSTRUCTION = 3
TOKEN_PROGRAM_TRANSFER_CHECKED_INSTRUCTION = 12

_TOKEN_PROGRAMS = (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID)
_MEMO_PROGRAMS = (MEMO_PROGRAM_ID_SPL, MEMO_PROGRAM_ID_LEGACY)


class ParseError(ValueError):
    """Raised when transaction data or an instruction cannot be parsed."""


@dataclass
class CompiledInstruction:
    """An instruction referring to accounts by index into the message keys."""

    program_id_index: int
    accounts: list[int] = field(default_factory=list)
    data: bytes = b""


@dataclass
class Message:
    """A transaction message; version None means the legacy format."""

    account_keys: list[PublicKey] = field(default_factory=list)
    instructions: list[CompiledInstruction] = field(default_factory=list)
    recent_blockhash: bytes = bytes(32)
    num_required_signatures: int = 0
    num_readonly_signed: int = 0
    num_readonly_unsigned: int = 0
    version: int | None = None
    # (table account, writable indexes, readonly indexes), versioned messages only
    address_table_lookups: list[tuple[PublicKey, list[int], list[int]]] = field(
        default_factory=list
    )


@dataclass
class SolanaTransaction:
    """A signed transaction."""

    message: Message
    signatures: list[Signature] = field(default_factory=list)


@dataclass
class TransactionResult:
    """A fetched transaction holding its raw wire bytes."""

    transaction: bytes | None = None

    def get_transaction(self) -> SolanaTransaction:
        if self.transaction is None:
            raise ParseError("transaction data is missing")
        return decode_transaction(self.transaction)


def _compact_u16(value: int) -> bytes:
    if not 0 <= value <= 0xFFFF:
        raise ParseError(f"length out of range: {value}")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _u8(value: int, what: str) -> bytes:
    if not 0 <= value <= 0xFF:
        raise ParseError(f"{what} out of range: {value}")
    return bytes([value])


def _u8_list(values: list[int], what: str) -> bytes:
    return _compact_u16(len(values)) + b"".join(_u8(v, what) for v in values)


def _encode_message(message: Message) -> bytes:
    out = bytearray()
    if message.version is not None:
        if not 0 <= message.version <= 0x7F:
            raise ParseError(f"message version out of range: {message.version}")
        out.append(0x80 | message.version)
    out += _u8(message.num_required_signatures, "header")
    out += _u8(message.num_readonly_signed, "header")
    out += _u8(message.num_readonly_unsigned, "header")
    out += _compact_u16(len(message.account_keys))
    for key in message.account_keys:
        out += bytes(key)
    if len(message.recent_blockhash) != 32:
        raise ParseError("recent blockhash must be 32 bytes")
    out += message.recent_blockhash
    out += _compact_u16(len(message.instructions))
    for instruction in message.instructions:
        out += _u8(instruction.program_id_index, "program id index")
        out += _u8_list(instruction.accounts, "account index")
        out += _compact_u16(len(instruction.data))
        out += instruction.data
    if message.version is not None:
        out += _compact_u16(len(message.address_table_lookups))
        for table, writable, readonly in message.address_table_lookups:
            out += bytes(table)
            out += _u8_list(writable, "lookup index")
            out += _u8_list(readonly, "lookup index")
    return bytes(out)


def encode_transaction(tx: SolanaTransaction) -> bytes:
    """Serialise a transaction into its wire format."""
    out = bytearray(_compact_u16(len(tx.signatures)))
    for signature in tx.signatures:
        out += bytes(signature)
    out += _encode_message(tx.message)
    return bytes(out)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def take(self, count: int) -> bytes:
        end = self._pos + count
        if end > len(self._data):
            raise ParseError("unexpected end of transaction data")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def peek(self) -> int:
        if self._pos >= len(self._data):
            raise ParseError("unexpected end of transaction data")
        return self._data[self._pos]

    def u8(self) -> int:
        return self.take(1)[0]

    def compact_u16(self) -> int:
        value = 0
        for shift in (0, 7, 14):
            byte = self.u8()
            value |= (byte & 0x7F) << shift
            if not byte & 0x80:
                if value > 0xFFFF:
                    raise ParseError("compact-u16 value out of range")
                return value
        raise ParseError("compact-u16 value is too long")

    def u8_list(self) -> list[int]:
        return list(self.take(self.compact_u16()))


def decode_transaction(data: bytes) -> SolanaTransaction:
    """Parse a transaction from its wire format."""
    reader = _Reader(data)
    signatures = [Signature(reader.take(64)) for _ in range(reader.compact_u16())]
    version = None
    if reader.peek() & 0x80:
        version = reader.u8() & 0x7F
    required, readonly_signed, readonly_unsigned = reader.take(3)
    keys = [PublicKey(reader.take(32)) for _ in range(reader.compact_u16())]
    blockhash = reader.take(32)
    instructions = []
    for _ in range(reader.compact_u16()):
        program_id_index = reader.u8()
        accounts = reader.u8_list()
        payload = reader.take(reader.compact_u16())
        instructions.append(CompiledInstruction(program_id_index, accounts, payload))
    lookups = []
    if version is not None:
        for _ in range(reader.compact_u16()):
            table = PublicKey(reader.take(32))
            writable = reader.u8_list()
            readonly = reader.u8_list()
            lookups.append((table, writable, readonly))
    message = Message(
        account_keys=keys,
        instructions=instructions,
        recent_blockhash=blockhash,
        num_required_signatures=required,
        num_readonly_signed=readonly_signed,
        num_readonly_unsigned=readonly_unsigned,
        version=version,
        address_table_lookups=lookups,
    )
    return SolanaTransaction(message=message, signatures=signatures)


def signature_to_domain(sig: TransactionSignature) -> Transaction:
    """Build a transaction from signature metadata alone."""
    if sig.block_time is not None:
        block_time = datetime.fromtimestamp(sig.block_time, timezone.utc)
    else:
        block_time = ZERO_TIME
    err = f"transaction failed: {sig.err}" if sig.err is not None else None
    return Transaction(
        signature=str(sig.signature),
        slot=sig.slot,
        block_time=block_time,
        err=err,
    )


def _account(account_keys: list[PublicKey], index: int) -> PublicKey | None:
    if 0 <= index < len(account_keys):
        return account_keys[index]
    return None


def parse_transaction_from_result(
    sig: TransactionSignature, result: TransactionResult | None
) -> Transaction:
    """Extract amount, token mint, sender and memo from a fetched transaction."""
    txn = signature_to_domain(sig)
    if sig.err is not None or result is None:
        return txn

    try:
        tx = result.get_transaction()
    except ParseError as exc:
        raise ParseError(f"failed to decode transaction: {exc}") from exc

    account_keys = tx.message.account_keys
    for instruction in tx.message.instructions:
        program_id = _account(account_keys, instruction.program_id_index)
        if program_id is None:
            raise ParseError(
                f"program id index out of range: {instruction.program_id_index}"
            )

        if program_id == SYSTEM_PROGRAM_ID:
            try:
                amount, source = parse_system_transfer(instruction, account_keys)
            except ParseError:
                pass
            else:
                txn.amount = amount
                if source is not None:
                    txn.from_address = str(source)

        if program_id in _TOKEN_PROGRAMS:
            try:
                amount, mint, source = parse_token_transfer(instruction, account_keys)
            except ParseError:
                pass
            else:
                txn.amount = amount
                if mint is not None and not mint.is_zero():
                    txn.token_mint = str(mint)
                if source is not None:
                    txn.from_address = str(source)

        if program_id in _MEMO_PROGRAMS:
            memo = parse_memo(instruction.data)
            if memo:
                txn.memo = memo

    return txn


def parse_system_transfer(
    instruction: CompiledInstruction, account_keys: list[PublicKey]
) -> tuple[int, PublicKey | None]:
    """Return the lamports and source account of a System Program transfer."""
    data = instruction.data
    if len(data) < 12:
        raise ParseError(f"instruction data too short: {len(data)} bytes")
    instruction_type, amount = struct.unpack_from("<IQ", data)
    if instruction_type != SYSTEM_PROGRAM_TRANSFER_INSTRUCTION:
        raise ParseError(f"not a transfer instruction: type {instruction_type}")
    source = None
    if instruction.accounts:
        source = _account(account_keys, instruction.accounts[0])
    return amount, source


def parse_token_transfer(
    instruction: CompiledInstruction, account_keys: list[PublicKey]
) -> tuple[int, PublicKey | None, PublicKey | None]:
    """Return the amount, mint and signing authority of a token transfer.

    A plain Transfer names neither mint nor owner, so both come back as None.
    """
    data = instruction.data
    if not data:
        raise ParseError("empty instruction data")
    instruction_type = data[0]

    if instruction_type == TOKEN_PROGRAM_TRANSFER_INSTRUCTION:
        if len(data) < 9:
            raise ParseError("transfer instruction data too short")
        (amount,) = struct.unpack_from("<Q", data, 1)
        return amount, None, None

    if instruction_type == TOKEN_PROGRAM_TRANSFER_CHECKED_INSTRUCTION:
        if len(data) < 10:
            raise ParseError("transferChecked instruction data too short")
        (amount,) = struct.unpack_from("<Q", data, 1)
        if len(instruction.accounts) < 4:
            raise ParseError("transferChecked missing accounts")
        mint = _account(account_keys, instruction.accounts[1])
        if mint is None:
            raise ParseError("mint account index out of bounds")
        authority = _account(account_keys, instruction.accounts[3])
        return amount, mint, authority

    raise ParseError(f"unknown token instruction type: {instruction_type}")


def parse_memo(data: bytes) -> str:
    """Return memo text, decoding it first when it is base64 of null-free bytes."""
    text = bytes(data).decode("utf-8", errors="replace")
    candidate = bytes(data).replace(b"\r", b"").replace(b"\n", b"")
    try:
        decoded = base64.b64decode(candidate, validate=True)
    except (binascii.Error, ValueError):
        return text
    if 0 in decoded:
        return text
    return decoded.decode("utf-8", errors="replace")