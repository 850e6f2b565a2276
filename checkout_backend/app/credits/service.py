"""Token charging with a compensating refund when the paid work fails."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Protocol

from fastapi import status

from ..billing.exceptions import CheckoutError

logger = logging.getLogger("billing.credits")


class InsufficientTokens(CheckoutError):
    def __init__(self, *, user_id: str, required: int) -> None:
        super().__init__(
            code="insufficient_tokens",
            message=f"Not enough tokens: {required} required.",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
        )
        self.user_id = user_id
        self.required = required


class TokenBalanceStore(Protocol):
    def try_debit(self, user_id: str, amount: int) -> bool:
        """Atomically decrement when the balance covers ``amount``."""

    def credit(self, user_id: str, amount: int, reason: str) -> None:
        ...


@contextmanager
def charged_tokens(store: TokenBalanceStore, user_id: str, amount: int, reason: str) -> Iterator[int]:
    """Debit ``amount`` tokens for the wrapped work, refunding them if it raises.

    The debit happens up front so concurrent requests cannot overspend; the
    refund is the compensating step when the work fails afterwards.
    """

    if amount <= 0:
        yield 0
        return

    if not store.try_debit(user_id, amount):
        raise InsufficientTokens(user_id=user_id, required=amount)

    try:
        yield amount
    except BaseException:
        try:
            store.credit(user_id, amount, f"refund: {reason}")
        except Exception:
            logger.exception("Token refund failed", extra={"user_id": user_id, "amount": amount, "reason": reason})
        else:
            logger.info("Tokens refunded", extra={"user_id": user_id, "amount": amount, "reason": reason})
        raise


__all__ = ["InsufficientTokens", "TokenBalanceStore", "charged_tokens"]
