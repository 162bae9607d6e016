"""Poll Solana wallets and parse their transactions for storage and publishing."""

__version__ = "0.1.0"

__all__ = ["activities", "keys", "parser", "rpc", "types", "workflow"]