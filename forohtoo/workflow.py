"""The wallet polling workflow and the retry policy its activities run under."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol, TypeVar

from forohtoo.activities import (
    GetExistingTransactionSignaturesInput,
    GetExistingTransactionSignaturesResult,
    PollSolanaInput,
    PollSolanaResult,
    PollWalletInput,
    PollWalletResult,
    WriteTransactionsInput,
    WriteTransactionsResult,
)
from forohtoo.keys import KeyError_, PublicKey, find_associated_token_address

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
POLL_LIMIT = 1000
EXISTING_SIGNATURES_WINDOW = timedelta(hours=24)

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class WorkflowError(Exception):
    """Raised when the workflow fails; ``result`` holds what was gathered so far."""

    def __init__(self, message: str, result: PollWalletResult | None = None) -> None:
        super().__init__(message)
        self.result = result


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for activity calls; zero maximum_attempts means unlimited."""

    initial_interval: float = 1.0
    backoff_coefficient: float = 2.0
    maximum_interval: float = 30.0
    maximum_attempts: int = 3

    def __post_init__(self) -> None:
        if self.initial_interval < 0:
            raise ValueError("initial_interval must not be negative")
        if self.backoff_coefficient < 1:
            raise ValueError("backoff_coefficient must be at least 1")
        if self.maximum_interval < self.initial_interval:
            raise ValueError("maximum_interval must not be below initial_interval")
        if self.maximum_attempts < 0:
            raise ValueError("maximum_attempts must not be negative")


class WalletActivities(Protocol):
    """The activities the workflow runs."""

    def get_existing_transaction_signatures(
        self, input: GetExistingTransactionSignaturesInput
    ) -> GetExistingTransactionSignaturesResult: ...

    def poll_solana(self, input: PollSolanaInput) -> PollSolanaResult: ...

    def write_transactions(
        self, input: WriteTransactionsInput
    ) -> WriteTransactionsResult: ...


def get_usdc_associated_token_account(wallet_address: str) -> str:
    """Return the wallet's USDC token account, or "" if the address is invalid."""
    try:
        wallet = PublicKey.from_base58(wallet_address)
        mint = PublicKey.from_base58(USDC_MINT)
        ata, _ = find_associated_token_address(wallet, mint)
    except KeyError_:
        return ""
    return str(ata)


def run_with_retry(
    func: Callable[[T], R],
    arg: T,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> R:
    """Call ``func(arg)``, retrying failures with backoff; re-raise the last failure."""
    policy = policy if policy is not None else RetryPolicy()
    interval = policy.initial_interval
    attempt = 0
    while True:
        attempt += 1
        try:
            return func(arg)
        except Exception:
            if policy.maximum_attempts and attempt >= policy.maximum_attempts:
                raise
        logger.debug("retrying activity attempt=%d interval=%s", attempt, interval)
        sleep(interval)
        interval = min(interval * policy.backoff_coefficient, policy.maximum_interval)


def _fail(result: PollWalletResult, message: str, exc: BaseException) -> WorkflowError:
    result.error = f"{message}: {exc}"
    return WorkflowError(result.error, result)


def poll_wallet_workflow(
    activities: WalletActivities,
    input: PollWalletInput,
    now: datetime | None = None,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> PollWalletResult:
    """Poll a wallet and its USDC token account, store new transactions, summarise."""
    now = now if now is not None else datetime.now(timezone.utc)
    policy = policy if policy is not None else RetryPolicy()
    logger.info("poll wallet workflow started address=%s", input.address)

    result = PollWalletResult(address=input.address, poll_time=now)

    def run(func: Callable[[Any], Any], arg: Any) -> Any:
        return run_with_retry(func, arg, policy, sleep)

    try:
        existing = run(
            activities.get_existing_transaction_signatures,
            GetExistingTransactionSignaturesInput(
                wallet_address=input.address, since=now - EXISTING_SIGNATURES_WINDOW
            ),
        )
    except Exception as exc:
        raise _fail(result, "failed to get existing transaction signatures", exc) from exc
    logger.info("got existing transaction signatures count=%d", len(existing.signatures))

    try:
        main = run(
            activities.poll_solana,
            PollSolanaInput(
                address=input.address,
                last_signature=None,
                limit=POLL_LIMIT,
                existing_signatures=list(existing.signatures),
            ),
        )
    except Exception as exc:
        logger.error("failed to poll main wallet address=%s error=%s", input.address, exc)
        raise _fail(result, "failed to poll main wallet", exc) from exc
    logger.info(
        "polled main wallet address=%s transaction_count=%d",
        input.address,
        len(main.transactions),
    )

    transactions = list(main.transactions)
    ata = get_usdc_associated_token_account(input.address)
    if ata:
        try:
            ata_result = run(
                activities.poll_solana,
                PollSolanaInput(
                    address=ata,
                    last_signature=None,
                    limit=POLL_LIMIT,
                    existing_signatures=list(existing.signatures),
                ),
            )
        except Exception as exc:
            logger.warning("failed to poll USDC ATA ata=%s error=%s", ata, exc)
        else:
            seen = {txn.signature for txn in transactions}
            for txn in ata_result.transactions:
                if txn.signature not in seen:
                    transactions.append(txn)
                    seen.add(txn.signature)
            logger.info(
                "merged transactions main=%d ata=%d unique=%d",
                len(main.transactions),
                len(ata_result.transactions),
                len(transactions),
            )

    result.transaction_count = len(transactions)
    if transactions:
        result.newest_signature = max(transactions, key=lambda t: t.slot).signature
        result.oldest_signature = min(transactions, key=lambda t: t.slot).signature
    else:
        logger.info("no new transactions found address=%s", input.address)
        return result

    try:
        written = run(
            activities.write_transactions,
            WriteTransactionsInput(wallet_address=input.address, transactions=transactions),
        )
    except Exception as exc:
        logger.error("failed to write transactions address=%s error=%s", input.address, exc)
        raise _fail(result, "failed to write transactions", exc) from exc

    result.last_signature_seen = result.newest_signature
    logger.info(
        "poll wallet workflow completed address=%s transaction_count=%d written=%d skipped=%d",
        input.address,
        result.transaction_count,
        written.written,
        written.skipped,
    )
    return result