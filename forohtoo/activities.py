"""Activities that poll a wallet, store its transactions and publish them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Protocol, Sequence

from forohtoo.keys import KeyError_, PublicKey, Signature
from forohtoo.rpc import GetTransactionsSinceParams
from forohtoo.types import ZERO_TIME, Transaction

DEFAULT_POLL_LIMIT = 100

_DUPLICATE_MARKERS = (
    "duplicate key value violates unique constraint",
    "unique constraint",
    "already exists",
)

logger = logging.getLogger(__name__)


class ActivityError(Exception):
    """Raised when an activity fails."""


@dataclass
class PollWalletInput:
    address: str


@dataclass
class PollWalletResult:
    address: str
    transaction_count: int = 0
    newest_signature: str | None = None
    oldest_signature: str | None = None
    poll_time: datetime = ZERO_TIME
    last_signature_seen: str | None = None
    error: str | None = None


@dataclass
class PollSolanaInput:
    address: str
    last_signature: str | None = None
    limit: int = 0
    existing_signatures: list[str] = field(default_factory=list)


@dataclass
class PollSolanaResult:
    transactions: list[Transaction] = field(default_factory=list)
    newest_signature: str | None = None
    oldest_signature: str | None = None


@dataclass
class WriteTransactionsInput:
    wallet_address: str
    transactions: list[Transaction] = field(default_factory=list)


@dataclass
class WriteTransactionsResult:
    written: int = 0
    skipped: int = 0  # already stored


@dataclass
class GetExistingTransactionSignaturesInput:
    wallet_address: str
    since: datetime | None = None


@dataclass
class GetExistingTransactionSignaturesResult:
    signatures: list[str] = field(default_factory=list)


@dataclass
class CreateTransactionParams:
    """A row to insert into the transaction store."""

    signature: str
    wallet_address: str
    slot: int
    block_time: datetime
    amount: int = 0
    token_mint: str | None = None
    memo: str | None = None
    from_address: str | None = None
    confirmation_status: str = "confirmed"


class Store(Protocol):
    """The storage operations the activities need."""

    def create_transaction(self, params: CreateTransactionParams) -> Any: ...

    def update_wallet_poll_time(self, address: str, poll_time: datetime) -> Any: ...

    def get_transaction(self, signature: str) -> Any: ...

    def get_wallet(self, address: str) -> Any: ...

    def get_transaction_signatures_by_wallet(
        self, wallet_address: str, since: datetime | None
    ) -> list[str]: ...


class TransactionSource(Protocol):
    """Something that can list an address's transactions."""

    def get_transactions_since(
        self, params: GetTransactionsSinceParams
    ) -> list[Transaction]: ...


class Publisher(Protocol):
    """Publishes stored transactions to subscribers."""

    def publish_transaction(self, event: Any) -> None: ...

    def publish_transaction_batch(self, events: Sequence[Any]) -> None: ...


def is_duplicate_key_error(err: BaseException | None) -> bool:
    """Tell whether an error reports an already existing row."""
    if err is None:
        return False
    message = str(err)
    return any(marker in message for marker in _DUPLICATE_MARKERS)


def _to_int64(value: int) -> int:
    value &= (1 << 64) - 1
    return value - (1 << 64) if value >= 1 << 63 else value


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Activities:
    """The wallet polling activities with their dependencies."""

    def __init__(
        self,
        store: Store | None,
        solana_client: TransactionSource | None,
        publisher: Publisher | None,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.solana_client = solana_client
        self.publisher = publisher
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self._clock = clock

    def poll_solana(self, input: PollSolanaInput) -> PollSolanaResult:
        """Fetch an address's new transactions, newest first."""
        self.logger.debug(
            "polling solana address=%s last_signature=%s limit=%d",
            input.address,
            input.last_signature,
            input.limit,
        )
        try:
            wallet = PublicKey.from_base58(input.address)
        except KeyError_ as exc:
            self.logger.error("invalid wallet address=%s error=%s", input.address, exc)
            raise ActivityError(f"invalid wallet address: {exc}") from exc

        last_sig = None
        if input.last_signature is not None:
            try:
                last_sig = Signature.from_base58(input.last_signature)
            except KeyError_ as exc:
                self.logger.error(
                    "invalid last signature=%s error=%s", input.last_signature, exc
                )
                raise ActivityError(f"invalid last signature: {exc}") from exc

        params = GetTransactionsSinceParams(
            wallet=wallet,
            last_signature=last_sig,
            limit=input.limit or DEFAULT_POLL_LIMIT,
            existing_signatures=list(input.existing_signatures),
        )
        try:
            transactions = self.solana_client.get_transactions_since(params)
        except Exception as exc:
            self.logger.error(
                "failed to poll solana address=%s error=%s", input.address, exc
            )
            raise ActivityError(f"failed to poll solana: {exc}") from exc

        result = PollSolanaResult(transactions=transactions)
        if transactions:
            result.newest_signature = transactions[0].signature
            result.oldest_signature = transactions[-1].signature

        self.logger.info(
            "polled solana successfully address=%s count=%d newest_signature=%s",
            input.address,
            len(transactions),
            result.newest_signature,
        )
        return result

    def get_existing_transaction_signatures(
        self, input: GetExistingTransactionSignaturesInput
    ) -> GetExistingTransactionSignaturesResult:
        """Return the signatures already stored for a wallet."""
        self.logger.debug(
            "fetching existing transaction signatures wallet_address=%s since=%s",
            input.wallet_address,
            input.since,
        )
        try:
            signatures = self.store.get_transaction_signatures_by_wallet(
                input.wallet_address, input.since
            )
        except Exception as exc:
            self.logger.error(
                "failed to get existing transaction signatures "
                "wallet_address=%s error=%s",
                input.wallet_address,
                exc,
            )
            raise ActivityError(
                f"failed to get existing transaction signatures: {exc}"
            ) from exc

        self.logger.info(
            "fetched existing transaction signatures wallet_address=%s count=%d",
            input.wallet_address,
            len(signatures),
        )
        return GetExistingTransactionSignaturesResult(signatures=list(signatures))

    def write_transactions(
        self, input: WriteTransactionsInput
    ) -> WriteTransactionsResult:
        """Store transactions, skipping duplicates, then publish the new ones."""
        self.logger.debug(
            "writing transactions wallet=%s count=%d",
            input.wallet_address,
            len(input.transactions),
        )
        written = 0
        skipped = 0
        stored: list[Any] = []

        for txn in input.transactions:
            params = CreateTransactionParams(
                signature=txn.signature,
                wallet_address=input.wallet_address,
                slot=_to_int64(txn.slot),
                block_time=txn.block_time,
                amount=_to_int64(txn.amount),
                token_mint=txn.token_mint,
                memo=txn.memo,
                from_address=txn.from_address,
                confirmation_status="failed" if txn.err is not None else "confirmed",
            )
            try:
                record = self.store.create_transaction(params)
            except Exception as exc:
                if is_duplicate_key_error(exc):
                    self.logger.debug(
                        "transaction already exists, skipping signature=%s",
                        txn.signature,
                    )
                    skipped += 1
                    continue
                self.logger.error(
                    "failed to write transaction signature=%s error=%s",
                    txn.signature,
                    exc,
                )
                raise ActivityError(
                    f"failed to write transaction {txn.signature}: {exc}"
                ) from exc
            written += 1
            stored.append(record)

        try:
            self.store.update_wallet_poll_time(input.wallet_address, self._clock())
        except Exception as exc:
            self.logger.warning(
                "failed to update wallet last poll time wallet=%s error=%s",
                input.wallet_address,
                exc,
            )

        self.logger.info(
            "wrote transactions to database wallet=%s written=%d skipped=%d total=%d",
            input.wallet_address,
            written,
            skipped,
            len(input.transactions),
        )

        if stored and self.publisher is not None:
            try:
                self.publisher.publish_transaction_batch(stored)
            except Exception as exc:
                # Publishing is best effort: the rows are already stored.
                self.logger.error(
                    "failed to publish transactions wallet=%s count=%d error=%s",
                    input.wallet_address,
                    len(stored),
                    exc,
                )
            else:
                self.logger.debug(
                    "published transactions wallet=%s count=%d",
                    input.wallet_address,
                    len(stored),
                )

        return WriteTransactionsResult(written=written, skipped=skipped)