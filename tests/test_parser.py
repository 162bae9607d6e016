import base64
import struct
import time
from datetime import datetime, timezone

import pytest

from forohtoo.keys import TOKEN_PROGRAM_ID, PublicKey, Signature
from forohtoo.parser import (
    MEMO_PROGRAM_ID_LEGACY,
    MEMO_PROGRAM_ID_SPL,
    SYSTEM_PROGRAM_ID,
    SYSTEM_PROGRAM_TRANSFER_INSTRUCTION,
    TOKEN_2022_PROGRAM_ID,
    TOKEN_PROGRAM_TRANSFER_CHECKED_INSTRUCTION,
    TOKEN_PROGRAM_TRANSFER_INSTRUCTION,
    CompiledInstruction,
    Message,
    ParseError,
    SolanaTransaction,
    TransactionResult,
    decode_transaction,
    encode_transaction,
    parse_memo,
    parse_system_transfer,
    parse_token_transfer,
    parse_transaction_from_result,
    signature_to_domain,
)
from forohtoo.types import TransactionSignature

SIG1 = "5j7s6NiJS3JAkvgkoc18WVAsiSaci2pxB2A6ueCJP4tprA2TFg9wSyTLeYouxPBJEMzJinENTkpA52YStRW5Dia7"
SIG2 = "2TgM4N8qCMqLvfR8dxqTQgKygPNzT5KQkN5b5sT7eZPEkdxyLTXGnNQB3j7KG4DPFg5Qez5yNJBQRQ5r7DDnFfjG"

FROM_ADDR = PublicKey.from_base58("11111111111111111111111111111112")
TO_ADDR = PublicKey.from_base58("So11111111111111111111111111111111111111112")
USDC_MINT = PublicKey.from_base58("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v")
AUTHORITY = PublicKey.from_base58("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")


def _sig_record(text=SIG1, slot=100, err=None):
    return TransactionSignature(
        Signature.from_base58(text), slot=slot, block_time=int(time.time()), err=err
    )


def _result(message):
    return TransactionResult(encode_transaction(SolanaTransaction(message)))


def _system_data(lamports):
    return struct.pack("<IQ", SYSTEM_PROGRAM_TRANSFER_INSTRUCTION, lamports)


def _checked_data(amount, decimals=6):
    return struct.pack("<BQB", TOKEN_PROGRAM_TRANSFER_CHECKED_INSTRUCTION, amount, decimals)


def test_parse_sol_transfer():
    message = Message(
        account_keys=[FROM_ADDR, TO_ADDR, SYSTEM_PROGRAM_ID],
        instructions=[CompiledInstruction(2, [0, 1], _system_data(1000000000))],
    )
    txn = parse_transaction_from_result(_sig_record(), _result(message))
    assert txn.signature == SIG1
    assert txn.amount == 1000000000
    assert txn.token_mint is None
    assert txn.from_address == str(FROM_ADDR)
    assert txn.err is None


def test_parse_spl_token_transfer():
    message = Message(
        account_keys=[FROM_ADDR, USDC_MINT, TO_ADDR, AUTHORITY, TOKEN_PROGRAM_ID],
        instructions=[CompiledInstruction(4, [0, 1, 2, 3], _checked_data(1000000))],
    )
    txn = parse_transaction_from_result(_sig_record(SIG2), _result(message))
    assert txn.signature == SIG2
    assert txn.amount == 1000000
    assert txn.token_mint == str(USDC_MINT)
    assert txn.from_address == str(AUTHORITY)
    assert txn.err is None


def test_parse_with_memo():
    memo_text = '{"workflow_id": "test-123"}'
    message = Message(
        account_keys=[FROM_ADDR, TO_ADDR, SYSTEM_PROGRAM_ID, MEMO_PROGRAM_ID_SPL],
        instructions=[
            CompiledInstruction(2, [0, 1], _system_data(1000000000)),
            CompiledInstruction(3, [], memo_text.encode()),
        ],
    )
    txn = parse_transaction_from_result(_sig_record(), _result(message))
    assert txn.signature == SIG1
    assert txn.amount == 1000000000
    assert txn.memo == memo_text
    assert txn.from_address == str(FROM_ADDR)


def test_parse_with_legacy_memo_program():
    message = Message(
        account_keys=[MEMO_PROGRAM_ID_LEGACY],
        instructions=[CompiledInstruction(0, [], b"test payment")],
    )
    txn = parse_transaction_from_result(_sig_record(), _result(message))
    assert txn.memo == "test payment"
    assert txn.amount == 0


def test_parse_no_memo():
    message = Message(
        account_keys=[FROM_ADDR, TO_ADDR, SYSTEM_PROGRAM_ID],
        instructions=[CompiledInstruction(2, [0, 1], _system_data(500000000))],
    )
    txn = parse_transaction_from_result(_sig_record(), _result(message))
    assert txn.signature == SIG1
    assert txn.amount == 500000000
    assert txn.memo is None
    assert txn.from_address == str(FROM_ADDR)


def test_parse_failed_transaction():
    record = _sig_record(err={"InstructionError": [0, "InsufficientFunds"]})
    txn = parse_transaction_from_result(record, TransactionResult())
    assert txn.signature == SIG1
    assert txn.err is not None
    assert "transaction failed" in txn.err
    assert txn.amount == 0


def test_parse_missing_result_returns_metadata():
    txn = parse_transaction_from_result(_sig_record(slot=77), None)
    assert txn.slot == 77
    assert txn.amount == 0


def test_parse_undecodable_transaction_raises():
    with pytest.raises(ParseError, match="failed to decode transaction"):
        parse_transaction_from_result(_sig_record(), TransactionResult(b"\x01"))


def test_parse_token_2022_plain_transfer():
    data = struct.pack("<BQ", TOKEN_PROGRAM_TRANSFER_INSTRUCTION, 42)
    message = Message(
        account_keys=[FROM_ADDR, TO_ADDR, AUTHORITY, TOKEN_2022_PROGRAM_ID],
        instructions=[CompiledInstruction(3, [0, 1, 2], data)],
    )
    txn = parse_transaction_from_result(_sig_record(), _result(message))
    assert txn.amount == 42
    assert txn.token_mint is None
    assert txn.from_address is None


def test_non_transfer_system_instruction_is_ignored():
    data = struct.pack("<IQ", 0, 999)
    message = Message(
        account_keys=[FROM_ADDR, TO_ADDR, SYSTEM_PROGRAM_ID],
        instructions=[CompiledInstruction(2, [0, 1], data)],
    )
    txn = parse_transaction_from_result(_sig_record(), _result(message))
    assert txn.amount == 0
    assert txn.from_address is None


def test_signature_to_domain():
    now = int(time.time())
    record = TransactionSignature(Signature.from_base58(SIG1), slot=12345, block_time=now)
    txn = signature_to_domain(record)
    assert txn.signature == SIG1
    assert txn.slot == 12345
    assert txn.block_time == datetime.fromtimestamp(now, timezone.utc)
    assert txn.err is None


def test_signature_to_domain_without_block_time():
    record = TransactionSignature(Signature.from_base58(SIG1), slot=1)
    assert signature_to_domain(record).block_time.year == 1


def test_parse_memo_plain_text():
    assert parse_memo(b"test payment") == "test payment"


def test_parse_memo_base64():
    encoded = base64.b64encode(b"secret message")
    assert parse_memo(encoded) == "secret message"


def test_parse_memo_base64_with_null_bytes_is_kept():
    encoded = base64.b64encode(b"a\x00b")
    assert parse_memo(encoded) == encoded.decode()


def test_parse_system_transfer():
    instruction = CompiledInstruction(0, [0, 1], _system_data(2000000000))
    amount, source = parse_system_transfer(instruction, [FROM_ADDR, TO_ADDR])
    assert amount == 2000000000
    assert source == FROM_ADDR


def test_parse_system_transfer_short_data():
    with pytest.raises(ParseError):
        parse_system_transfer(CompiledInstruction(0, [0], b"\x02\x00\x00"), [FROM_ADDR])


def test_parse_system_transfer_source_out_of_range():
    amount, source = parse_system_transfer(
        CompiledInstruction(0, [5], _system_data(7)), [FROM_ADDR]
    )
    assert amount == 7
    assert source is None


def test_parse_token_transfer():
    instruction = CompiledInstruction(0, [0, 1, 2, 3], _checked_data(5000000))
    keys = [FROM_ADDR, USDC_MINT, TO_ADDR, AUTHORITY]
    amount, mint, source = parse_token_transfer(instruction, keys)
    assert amount == 5000000
    assert mint == USDC_MINT
    assert source == AUTHORITY


def test_parse_token_transfer_checked_missing_accounts():
    instruction = CompiledInstruction(0, [0, 1], _checked_data(5))
    with pytest.raises(ParseError, match="missing accounts"):
        parse_token_transfer(instruction, [FROM_ADDR, USDC_MINT])


def test_parse_token_transfer_unknown_type():
    with pytest.raises(ParseError, match="unknown token instruction type"):
        parse_token_transfer(CompiledInstruction(0, [], b"\x07"), [])


def test_parse_token_transfer_empty_data():
    with pytest.raises(ParseError):
        parse_token_transfer(CompiledInstruction(0, [], b""), [])


def test_legacy_transaction_round_trip():
    tx = SolanaTransaction(
        message=Message(
            account_keys=[FROM_ADDR, TO_ADDR, SYSTEM_PROGRAM_ID],
            instructions=[CompiledInstruction(2, [0, 1], _system_data(1))],
            recent_blockhash=bytes(range(32)),
            num_required_signatures=1,
            num_readonly_unsigned=1,
        ),
        signatures=[Signature.from_base58(SIG1)],
    )
    assert decode_transaction(encode_transaction(tx)) == tx


def test_versioned_transaction_round_trip():
    tx = SolanaTransaction(
        message=Message(
            account_keys=[FROM_ADDR, MEMO_PROGRAM_ID_SPL],
            instructions=[CompiledInstruction(1, [], b"hello")],
            version=0,
            address_table_lookups=[(USDC_MINT, [1, 2], [3])],
        ),
        signatures=[Signature.from_base58(SIG1), Signature.from_base58(SIG2)],
    )
    decoded = decode_transaction(encode_transaction(tx))
    assert decoded == tx
    assert decoded.message.version == 0


def test_decode_truncated_raises():
    tx = SolanaTransaction(
        message=Message(
            account_keys=[FROM_ADDR],
            instructions=[CompiledInstruction(0, [0], b"data")],
        )
    )
    with pytest.raises(ParseError):
        decode_transaction(encode_transaction(tx)[:-1])


def test_decode_empty_raises():
    with pytest.raises(ParseError):
        decode_transaction(b"")


def test_get_transaction_without_data_raises():
    with pytest.raises(ParseError):
        TransactionResult().get_transaction()


def test_encode_rejects_wide_account_index():
    tx = SolanaTransaction(
        message=Message(account_keys=[FROM_ADDR], instructions=[CompiledInstruction(0, [256])])
    )
    with pytest.raises(ParseError):
        encode_transaction(tx)