"""Token balances and the debit-then-compensate charge contract."""

from .repository import PostgresTokenBalanceStore
from .service import InsufficientTokens, TokenBalanceStore, charged_tokens

__all__ = ["InsufficientTokens", "PostgresTokenBalanceStore", "TokenBalanceStore", "charged_tokens"]
