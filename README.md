# forohtoo

Keep an eye on Solana wallets. `forohtoo` polls a wallet's transaction
history over JSON-RPC, decodes each transaction and pulls out what matters
for payments:

- the amount moved (lamports for native SOL, base units for SPL tokens),
- the token mint of an SPL `TransferChecked` instruction,
- the sender's address where it can be determined,
- the memo text, plain or base64-encoded, from the SPL and legacy memo programs,
- whether the transaction failed.

A wallet poll also covers the wallet's USDC associated token account, so
incoming USDC payments are picked up alongside SOL transfers.

## Modules

| Module | What it holds |
| --- | --- |
| `forohtoo.keys` | Base58, `PublicKey`, `Signature`, `is_on_curve`, `find_program_address`, `find_associated_token_address` |
| `forohtoo.types` | `Transaction` (the parsed record) and `TransactionSignature` (signature metadata from the node) |
| `forohtoo.parser` | Wire-format `encode_transaction` / `decode_transaction` and the instruction parsers |
| `forohtoo.rpc` | The `RPCClient` interface, `HttpRPCClient` and `SolanaClient` |
| `forohtoo.activities` | `Activities`, their input and result records, and the `Store`, `TransactionSource` and `Publisher` interfaces |
| `forohtoo.workflow` | `poll_wallet_workflow`, `RetryPolicy`, `run_with_retry` and the USDC token-account lookup |

Malformed keys, signatures or base58 text raise `forohtoo.keys.KeyError_`
(a `ValueError`); undecodable transactions and instructions raise
`forohtoo.parser.ParseError`.

## Examples

Keys and addresses:

```python
from forohtoo.keys import PublicKey, find_associated_token_address

wallet = PublicKey.from_base58("11111111111111111111111111111111")
usdc = PublicKey.from_base58("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v")
ata, bump = find_associated_token_address(wallet, usdc)
```

Memo decoding:

```python
from forohtoo.parser import parse_memo

parse_memo(b"test payment")            # "test payment"
parse_memo(b"c2VjcmV0IG1lc3NhZ2U=")    # "secret message"
```

## Polling a wallet

```python
from forohtoo.keys import PublicKey
from forohtoo.rpc import GetTransactionsSinceParams, HttpRPCClient, SolanaClient

client = SolanaClient(HttpRPCClient("https://api.mainnet-beta.solana.com"))
transactions = client.get_transactions_since(
    GetTransactionsSinceParams(wallet=PublicKey.from_base58("..."), limit=10)
)
```

`SolanaClient.get_transactions_since` returns parsed `Transaction` records,
newest first. Signatures listed in `existing_signatures` are skipped. Each
transaction fetch is tried up to ten times, waiting longer after an HTTP 429
reply; a transaction whose details still cannot be fetched, or cannot be
parsed, is returned with its signature metadata only.

`HttpRPCClient` speaks JSON-RPC over HTTP with a 60-second timeout by
default. For providers that need an API key, put the key in the endpoint URL
the way the provider documents it.

## Activities and the workflow

`Activities` ties a `Store`, a `TransactionSource` (such as `SolanaClient`)
and an optional `Publisher` together:

- `poll_solana` fetches transactions for an address (default limit 100) and
  reports the newest and oldest signatures,
- `get_existing_transaction_signatures` reads what the store already holds,
- `write_transactions` stores each transaction as `confirmed` or `failed`,
  counts duplicates as skipped, updates the wallet's poll time, and hands the
  newly stored records to the publisher. Publishing failures are logged, not
  raised.

Activity failures raise `ActivityError`.

`poll_wallet_workflow(activities, input)` runs those steps for one wallet: it
reads signatures stored during the last 24 hours, polls the wallet and its
USDC token account (up to 1000 each), merges them without duplicates, and
writes them. Each step runs through `run_with_retry` under a `RetryPolicy`
(by default three attempts, starting at one second and doubling up to thirty).
A failed step raises `WorkflowError`, whose `result` holds the
`PollWalletResult` gathered so far; a failure to poll the token account is
only logged.

## What this package does not do

`Store` and `Publisher` are interfaces only: the package ships no database
storage and no message-bus publisher, so you supply both. It has no
scheduler that runs the workflow on an interval, no long-running worker,
and no command-line program; call `poll_wallet_workflow` from your own
scheduling code.