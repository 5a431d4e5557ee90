"""
models.py - Data model definitions

This file defines the Participant and Expense dataclasses used across the
ledger, the stores and the UI. Both are serialized to/from simple dicts so
they can be persisted as JSON records or spreadsheet rows.
"""

from dataclasses import dataclass, field, replace
from typing import List, Dict
import datetime


def utc_now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="seconds")


@dataclass
class Participant:
    """
    A friend (or the acting user) who can take a share of an expense.

    Fields:
      - id: opaque unique id assigned by the store
      - name: display label; the self participant carries the configured self name
      - balance: negative => owes money, positive => is owed money
      - is_self: True for the participant representing the signed-in user
      - created_by: owner id the record is scoped to
    """
    id: str = ""
    name: str = ""
    balance: float = 0.0
    is_self: bool = False
    created_by: str = ""

    def copy(self) -> "Participant":
        return replace(self)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "balance": self.balance,
            "is_self": self.is_self,
            "created_by": self.created_by,
        }

    @staticmethod
    def from_dict(d: Dict) -> "Participant":
        return Participant(
            id=str(d.get("id", "") or ""),
            name=d.get("name", "") or "",
            balance=float(d.get("balance", 0.0) or 0.0),
            is_self=bool(d.get("is_self", False)),
            created_by=d.get("created_by", "") or "",
        )


@dataclass
class Expense:
    """
    Represents a single shared expense.

    Fields:
      - id: opaque unique id assigned by the store at creation
      - description: free-text label
      - amount: positive total cost
      - category: one of the configured categories (e.g. Food)
      - participants: ordered participant ids splitting this expense (self included)
      - share_owed: mapping participant id -> amount owed; derived from amount/participants
      - created_by: owner id
      - created_at: ISO timestamp, never changed after creation
    """
    id: str = ""
    description: str = ""
    amount: float = 0.0
    category: str = "Other"
    participants: List[str] = field(default_factory=list)
    share_owed: Dict[str, float] = field(default_factory=dict)
    created_by: str = ""
    created_at: str = ""

    def copy(self) -> "Expense":
        return replace(self, participants=list(self.participants), share_owed=dict(self.share_owed))

    def to_dict(self) -> Dict:
        """
        Convert to a plain dict suitable for JSON serialization.
        """
        return {
            "id": self.id,
            "description": self.description,
            "amount": self.amount,
            "category": self.category,
            "participants": list(self.participants),
            "share_owed": dict(self.share_owed),
            "created_by": self.created_by,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(d: Dict) -> "Expense":
        """
        Construct an Expense from a dict (inverse of to_dict).
        Uses defaults for missing keys so older/corrupted records are tolerated.
        """
        return Expense(
            id=str(d.get("id", "") or ""),
            description=d.get("description", "") or "",
            amount=float(d.get("amount", 0.0) or 0.0),
            category=d.get("category", "Other") or "Other",
            participants=list(d.get("participants", []) or []),
            share_owed={str(k): float(v) for k, v in (d.get("share_owed", {}) or {}).items()},
            created_by=d.get("created_by", "") or "",
            created_at=d.get("created_at", "") or "",
        )
