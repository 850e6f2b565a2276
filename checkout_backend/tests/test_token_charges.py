"""Tests for the token debit and compensating refund contract."""
from __future__ import annotations

from typing import Dict, List, Tuple

import pytest

from checkout_backend.app.credits import InsufficientTokens, charged_tokens


class InMemoryTokenStore:
    def __init__(self, balances: Dict[str, int]) -> None:
        self.balances = dict(balances)
        self.credits: List[Tuple[str, int, str]] = []

    def try_debit(self, user_id: str, amount: int) -> bool:
        if self.balances.get(user_id, 0) < amount:
            return False
        self.balances[user_id] -= amount
        return True

    def credit(self, user_id: str, amount: int, reason: str) -> None:
        self.balances[user_id] = self.balances.get(user_id, 0) + amount
        self.credits.append((user_id, amount, reason))


def test_successful_work_keeps_the_debit():
    store = InMemoryTokenStore({"user-1": 100})

    with charged_tokens(store, "user-1", 30, "tts") as charged:
        assert charged == 30

    assert store.balances["user-1"] == 70
    assert store.credits == []


def test_failed_work_is_refunded_and_reraised():
    store = InMemoryTokenStore({"user-1": 100})

    with pytest.raises(RuntimeError, match="render failed"):
        with charged_tokens(store, "user-1", 30, "tts"):
            raise RuntimeError("render failed")

    assert store.balances["user-1"] == 100
    assert store.credits == [("user-1", 30, "refund: tts")]


def test_insufficient_balance_skips_the_work():
    store = InMemoryTokenStore({"user-1": 10})
    ran = []

    with pytest.raises(InsufficientTokens) as excinfo:
        with charged_tokens(store, "user-1", 30, "tts"):
            ran.append(True)

    assert ran == []
    assert excinfo.value.status_code == 402
    assert store.balances["user-1"] == 10


def test_zero_cost_work_touches_nothing():
    store = InMemoryTokenStore({})

    with charged_tokens(store, "user-1", 0, "preview") as charged:
        assert charged == 0

    assert store.balances == {}
