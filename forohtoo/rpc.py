"""JSON-RPC access to a Solana node and polling of an address's transactions."""

from __future__ import annotations

import base64
import binascii
import itertools
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

import requests

from forohtoo.keys import KeyError_, PublicKey, Signature
from forohtoo.parser import (
    ParseError,
    TransactionResult,
    parse_transaction_from_result,
    signature_to_domain,
)
from forohtoo.types import Transaction, TransactionSignature

DEFAULT_TIMEOUT = 60.0
MAX_ATTEMPTS = 10
REQUEST_DELAY = 0.1
RATE_LIMIT_DELAY = 5.0
RETRY_DELAY = 2.0
_LEGACY_PARSE_ERROR = "expects '\"' or 'n', but found '{'"

logger = logging.getLogger(__name__)


class RPCError(Exception):
    """Raised when an RPC request fails or the node reports an error."""


class RPCClient(ABC):
    """The node operations needed for polling."""

    @abstractmethod
    def get_signatures_for_address(
        self, address: PublicKey, limit: int | None, until: Signature | None
    ) -> list[TransactionSignature]:
        """List signatures for an address, newest first, stopping at ``until``."""

    @abstractmethod
    def get_transaction(
        self, signature: Signature, max_supported_transaction_version: int | None
    ) -> TransactionResult | None:
        """Fetch a transaction in base64 encoding; None if the node has none."""


class HttpRPCClient(RPCClient):
    """An RPC client that speaks JSON-RPC over HTTP.

    Endpoints that need an API key take it as part of the URL.
    """

    def __init__(
        self,
        url: str,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._session = session if session is not None else requests.Session()
        self._ids = itertools.count(1)

    def _call(self, method: str, params: list[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            response = self._session.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise RPCError(f"{method} request failed: {exc}") from exc
        if response.status_code == 429:
            raise RPCError(f"{method}: HTTP 429 Too Many Requests")
        if not 200 <= response.status_code < 300:
            raise RPCError(f"{method}: HTTP {response.status_code}")
        try:
            body = response.json()
        except ValueError as exc:
            raise RPCError(f"{method}: invalid JSON response") from exc
        if not isinstance(body, dict):
            raise RPCError(f"{method}: malformed response")
        error = body.get("error")
        if error is not None:
            if isinstance(error, dict):
                raise RPCError(
                    f"{method}: rpc error {error.get('code')}: {error.get('message')}"
                )
            raise RPCError(f"{method}: rpc error {error}")
        return body.get("result")

    def get_signatures_for_address(
        self, address: PublicKey, limit: int | None, until: Signature | None
    ) -> list[TransactionSignature]:
        options: dict[str, Any] = {}
        if limit is not None:
            options["limit"] = limit
        if until is not None:
            options["until"] = str(until)
        result = self._call("getSignaturesForAddress", [str(address), options])
        if not isinstance(result, list):
            raise RPCError("getSignaturesForAddress: expected a list")
        try:
            return [
                TransactionSignature(
                    signature=Signature.from_base58(entry["signature"]),
                    slot=int(entry.get("slot") or 0),
                    block_time=entry.get("blockTime"),
                    err=entry.get("err"),
                )
                for entry in result
            ]
        except (KeyError, TypeError, KeyError_) as exc:
            raise RPCError(f"getSignaturesForAddress: malformed entry: {exc}") from exc

    def get_transaction(
        self, signature: Signature, max_supported_transaction_version: int | None
    ) -> TransactionResult | None:
        options: dict[str, Any] = {"encoding": "base64"}
        if max_supported_transaction_version is not None:
            options["maxSupportedTransactionVersion"] = max_supported_transaction_version
        result = self._call("getTransaction", [str(signature), options])
        if result is None:
            return None
        encoded = result.get("transaction") if isinstance(result, dict) else None
        if isinstance(encoded, list) and encoded:
            encoded = encoded[0]
        if not isinstance(encoded, str):
            raise RPCError("getTransaction: transaction is not base64 encoded")
        try:
            raw = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise RPCError(f"getTransaction: invalid base64: {exc}") from exc
        return TransactionResult(transaction=raw)


@dataclass
class GetTransactionsSinceParams:
    """What to poll: a wallet, where to stop, how many, and what to skip."""

    wallet: PublicKey
    last_signature: Signature | None = None
    limit: int = 0
    existing_signatures: Sequence[str] = field(default_factory=list)


class SolanaClient:
    """Polls an address for transactions and parses them into domain records."""

    def __init__(
        self,
        rpc: RPCClient,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.rpc = rpc
        self.logger = logger if logger is not None else globals_logger()
        self._sleep = sleep

    def get_transactions_since(
        self, params: GetTransactionsSinceParams
    ) -> list[Transaction]:
        """Return transactions newer than ``params.last_signature``, newest first.

        Transactions whose details cannot be fetched or parsed are returned
        with their signature metadata only.
        """
        wallet = str(params.wallet)
        try:
            signatures = self.rpc.get_signatures_for_address(
                params.wallet, params.limit, params.last_signature
            )
        except Exception as exc:
            self.logger.error("failed to get signatures wallet=%s error=%s", wallet, exc)
            raise

        self.logger.debug(
            "fetched transaction signatures wallet=%s count=%d", wallet, len(signatures)
        )

        existing = set(params.existing_signatures)
        transactions: list[Transaction] = []
        for sig in signatures:
            sig_text = str(sig.signature)
            if sig_text in existing:
                self.logger.debug(
                    "skipping already processed transaction signature=%s", sig_text
                )
                continue

            # Stay under typical provider rate limits.
            self._sleep(REQUEST_DELAY)

            try:
                result = self._fetch_with_retry(sig.signature)
            except Exception as exc:
                self.logger.warning(
                    "failed to get transaction details after retries, "
                    "using metadata only signature=%s error=%s",
                    sig_text,
                    exc,
                )
                transactions.append(signature_to_domain(sig))
                continue

            try:
                transactions.append(parse_transaction_from_result(sig, result))
            except ParseError as exc:
                self.logger.warning(
                    "failed to parse transaction, using metadata only "
                    "signature=%s error=%s",
                    sig_text,
                    exc,
                )
                transactions.append(signature_to_domain(sig))

        self.logger.info(
            "fetched and parsed transactions wallet=%s count=%d",
            wallet,
            len(transactions),
        )
        return transactions

    def _fetch_with_retry(self, signature: Signature) -> TransactionResult | None:
        sig_text = str(signature)
        last_error: Exception | None = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                return self.rpc.get_transaction(signature, 0)
            except Exception as exc:
                last_error = exc

            if "429" in str(last_error):
                self.logger.warning(
                    "rate limited, sleeping before retry signature=%s attempt=%d",
                    sig_text,
                    attempt,
                )
                self._sleep(RATE_LIMIT_DELAY)
                continue

            if _LEGACY_PARSE_ERROR in str(last_error):
                self.logger.warning(
                    "could not parse as versioned tx, retrying as legacy signature=%s",
                    sig_text,
                )
                try:
                    return self.rpc.get_transaction(signature, None)
                except Exception as exc:
                    last_error = exc

            self.logger.warning(
                "failed to get transaction on attempt signature=%s attempt=%d error=%s",
                sig_text,
                attempt,
                last_error,
            )
            self._sleep(RETRY_DELAY)

        assert last_error is not None
        raise last_error


def globals_logger() -> logging.Logger:
    """Return the module's default logger."""
    return logger