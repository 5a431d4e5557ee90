import math

import pytest

from friendsplit.errors import InvalidSplitError, ValidationError
from friendsplit.models import Expense
from friendsplit.splits import category_totals, compute_shares, filter_by_category, split_members


@pytest.mark.parametrize("amount,n", [(20.0, 2), (100.0, 3), (0.01, 7), (1234.56, 11)])
def test_compute_shares_even_split_sums_to_total(amount, n):
    ids = [f"p{i}" for i in range(n)]
    shares = compute_shares(amount, ids)
    assert list(shares) == ids
    assert all(s == amount / n for s in shares.values())
    assert math.isclose(sum(shares.values()), amount, rel_tol=1e-9)


def test_compute_shares_does_not_round():
    shares = compute_shares(10.0, ["a", "b", "c"])
    assert shares["a"] == 10.0 / 3


def test_compute_shares_rejects_empty_participants():
    with pytest.raises(InvalidSplitError):
        compute_shares(20.0, [])


def test_compute_shares_rejects_duplicates():
    with pytest.raises(InvalidSplitError):
        compute_shares(20.0, ["a", "a"])


@pytest.mark.parametrize("amount", [0, -5.0, float("nan"), float("inf"), "abc"])
def test_compute_shares_rejects_bad_amount(amount):
    with pytest.raises(ValidationError):
        compute_shares(amount, ["a"])


def test_split_members_puts_self_first_and_dedupes():
    assert split_members(["alice", "bob", "alice"], "me") == ["me", "alice", "bob"]
    assert split_members(["alice", "me"], "me") == ["alice", "me"]
    assert split_members([], "me") == ["me"]


def _expenses():
    return [
        Expense(id="1", description="Pizza", amount=20.0, category="Food"),
        Expense(id="2", description="Train", amount=35.0, category="Travel"),
        Expense(id="3", description="Sushi", amount=40.0, category="Food"),
    ]


def test_filter_by_category_keeps_order():
    filtered = filter_by_category(_expenses(), "Food")
    assert [e.id for e in filtered] == ["1", "3"]


def test_filter_by_category_unset_returns_everything():
    assert [e.id for e in filter_by_category(_expenses(), None)] == ["1", "2", "3"]
    assert [e.id for e in filter_by_category(_expenses(), "")] == ["1", "2", "3"]
    assert filter_by_category(_expenses(), "Bills") == []


def test_category_totals():
    assert category_totals(_expenses()) == {"Food": 60.0, "Travel": 35.0}
