"""
splits.py - even-split arithmetic and expense filters

Pure functions only; the ledger owns every mutation.
"""

from typing import Dict, Iterable, List, Optional
import math

from friendsplit.errors import InvalidSplitError
from friendsplit.models import Expense


def compute_shares(amount: float, participant_ids: Iterable[str]) -> Dict[str, float]:
    """
    Even split: every participant owes amount / n.

    No rounding to currency precision and no remainder redistribution, so
    sum(shares) == amount within float tolerance.
    """
    ids = list(participant_ids)
    if not ids:
        raise InvalidSplitError("An expense needs at least one participant.")
    if len(set(ids)) != len(ids):
        raise InvalidSplitError("Participants must not be listed twice.")
    try:
        amount = float(amount)
    except (TypeError, ValueError):
        raise InvalidSplitError(f"Amount is not a number: {amount!r}")
    if not math.isfinite(amount) or amount <= 0:
        raise InvalidSplitError("Amount must be greater than 0.")
    share = amount / len(ids)
    return {pid: share for pid in ids}


def split_members(participant_ids: Iterable[str], self_id: str) -> List[str]:
    """De-duplicate ids keeping first-seen order; self goes first when missing."""
    out: List[str] = []
    for pid in participant_ids:
        if pid and pid not in out:
            out.append(pid)
    if self_id and self_id not in out:
        out.insert(0, self_id)
    return out


def filter_by_category(expenses: List[Expense], category: Optional[str] = None) -> List[Expense]:
    if not category:
        return list(expenses)
    return [e for e in expenses if e.category == category]


def category_totals(expenses: Iterable[Expense]) -> Dict[str, float]:
    # dict keeps first-seen category order
    totals: Dict[str, float] = {}
    for e in expenses:
        totals[e.category] = totals.get(e.category, 0.0) + e.amount
    return totals
