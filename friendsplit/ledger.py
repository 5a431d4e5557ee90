"""
ledger.py - the balance ledger of one signed-in owner

Responsibilities:
 - keep the owner's roster (participants) and live expenses in memory
 - compute even splits for new/edited expenses (friendsplit.splits)
 - keep every participant's cached balance equal to minus the sum of its
   shares over the live expenses; the self participant never moves
 - provide read helpers consumed by the UI: filtered expense lists, totals,
   derived balances, consistency check, CSV/XLSX export

Mutations follow apply-then-commit-or-revert: new values are computed first,
written to the store, and only copied into memory once every write
succeeded. When a later write fails, earlier writes of the same operation are
reverted best-effort and PersistenceError propagates to the caller with the
in-memory state untouched.
"""

from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Tuple
import logging

from friendsplit.config import DEFAULT_CATEGORIES, DEFAULT_SELF_NAME
from friendsplit.errors import (
    NotSignedInError,
    ParticipantInUseError,
    PersistenceError,
    UnknownParticipantError,
    ValidationError,
)
from friendsplit.export import expenses_to_csv, expenses_to_xlsx
from friendsplit.models import Expense, Participant, utc_now_iso
from friendsplit.splits import category_totals, compute_shares, filter_by_category, split_members
from friendsplit.storage import LedgerStore

# ensure a logger is available
logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class LedgerReconciler:
    """
    One instance per browser session. Callers get copies of participants and
    expenses; balances and shares only change through the methods below.
    """

    def __init__(self, store: LedgerStore, self_name: str = DEFAULT_SELF_NAME,
                 categories: Optional[Iterable[str]] = None):
        self._store = store
        self.self_name = self_name
        self.categories: List[str] = list(categories or DEFAULT_CATEGORIES)
        self.owner_id: Optional[str] = None
        self._participants: List[Participant] = []
        self._expenses: List[Expense] = []

    # -----------------------
    # Owner lifecycle
    # -----------------------
    def load(self, owner_id: str):
        """
        Load roster and expenses of owner_id, provisioning the self
        participant on first use. Self is always first in the roster.
        """
        me = self.provision_self(owner_id)
        others = [p for p in self._store.list_participants(owner_id) if p.id != me.id]
        expenses = self._store.list_expenses(owner_id)
        self.owner_id = owner_id
        self._participants = [me] + others
        self._expenses = expenses
        logger.info(
            "Loaded ledger for owner=%s (participants=%d, expenses=%d)",
            owner_id, len(self._participants), len(self._expenses),
        )

    def switch_owner(self, identity):
        """Session listener: load the new identity's ledger, or clear on sign-out."""
        if identity is None:
            self.clear()
        else:
            self.load(identity.uid)

    def clear(self):
        self.owner_id = None
        self._participants = []
        self._expenses = []

    def provision_self(self, owner_id: str) -> Participant:
        """Return the owner's self participant, creating it with balance 0 if absent."""
        selves = [p for p in self._store.list_participants(owner_id) if p.is_self]
        if selves:
            if len(selves) > 1:
                logger.warning("Owner %s has %d self records; using %s", owner_id, len(selves), selves[0].id)
            return selves[0]
        logger.info("Provisioning self participant for owner=%s", owner_id)
        return self._store.create_participant(owner_id, self.self_name, 0.0, is_self=True)

    # -----------------------
    # Reads
    # -----------------------
    @property
    def signed_in(self) -> bool:
        return self.owner_id is not None

    @property
    def participants(self) -> Tuple[Participant, ...]:
        return tuple(p.copy() for p in self._participants)

    @property
    def expenses(self) -> Tuple[Expense, ...]:
        return tuple(e.copy() for e in self._expenses)

    @property
    def self_participant(self) -> Participant:
        return self._self().copy()

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        p = self._find_participant(participant_id)
        return p.copy() if p else None

    def get_expense(self, expense_id: str) -> Optional[Expense]:
        e = self._find_expense(expense_id)
        return e.copy() if e else None

    def list_expenses(self, category: Optional[str] = None) -> List[Expense]:
        """Live expenses in creation order, optionally only one category."""
        return [e.copy() for e in filter_by_category(self._expenses, category)]

    def total_amount(self, category: Optional[str] = None) -> float:
        return sum(e.amount for e in filter_by_category(self._expenses, category))

    def category_totals(self) -> Dict[str, float]:
        return category_totals(self._expenses)

    def derived_balances(self) -> Dict[str, float]:
        """Balances recomputed from the live expense set, keyed by participant id."""
        self_id = self._self().id
        out = {p.id: 0.0 for p in self._participants}
        for e in self._expenses:
            for pid, share in self._stored_shares(e).items():
                if pid in out and pid != self_id:
                    out[pid] -= share
        return out

    def check_consistency(self, tolerance: float = 1e-6) -> Dict[str, Tuple[float, float]]:
        """Participants whose cached balance drifted: id -> (cached, derived)."""
        derived = self.derived_balances()
        drift = {}
        for p in self._participants:
            if abs(p.balance - derived[p.id]) > tolerance:
                drift[p.id] = (p.balance, derived[p.id])
        return drift

    def export_csv(self, category: Optional[str] = None) -> str:
        return expenses_to_csv(self._expenses, category)

    def export_xlsx(self, category: Optional[str] = None) -> bytes:
        return expenses_to_xlsx(filter_by_category(self._expenses, category), self._participants)

    # -----------------------
    # Roster
    # -----------------------
    def add_participant(self, name: str) -> Participant:
        self._require_owner()
        name = (name or "").strip()
        if not name:
            raise ValidationError("Friend name is required.")
        if name == self.self_name:
            raise ValidationError(f"'{name}' is reserved for yourself.")
        participant = self._store.create_participant(self.owner_id, name, 0.0)
        self._participants.append(participant)
        return participant.copy()

    def remove_participant(self, participant_id: str) -> bool:
        """
        Remove a friend from the roster. Refused for self and for anyone still
        listed on a live expense. Returns False if the id is unknown.
        """
        self._require_owner()
        participant = self._find_participant(participant_id)
        if participant is None:
            logger.info("Participant id=%s not found", participant_id)
            return False
        if participant.id == self._self().id:
            raise ValidationError("You cannot remove yourself.")
        in_use = [e.id for e in self._expenses if participant_id in e.participants]
        if in_use:
            raise ParticipantInUseError(participant_id, in_use)
        if not self._store.delete_participant(participant_id):
            raise PersistenceError(f"Participant {participant_id} is missing from the store")
        self._participants = [p for p in self._participants if p.id != participant_id]
        logger.info("Removed participant id=%s (%s)", participant_id, participant.name)
        return True

    # -----------------------
    # Expenses
    # -----------------------
    def add_expense(self, description: str, amount: float, category: str,
                    participant_ids: Iterable[str]) -> Expense:
        """
        Record a new expense split evenly over participant_ids (self is always
        added) and charge each non-self participant its share.
        """
        self._require_owner()
        self._validate_category(category)
        members, shares = self._prepare_split(amount, participant_ids)
        draft = Expense(
            description=(description or "").strip(),
            amount=float(amount),
            category=category,
            participants=members,
            share_owed=shares,
            created_at=utc_now_iso(),
        )
        created = self._store.create_expense(self.owner_id, draft)
        try:
            new_balances = self._commit_balances(self._balance_deltas({}, shares))
        except PersistenceError:
            self._compensate(self._store.delete_expense, created.id)
            raise
        self._expenses.append(created)
        self._apply_balances(new_balances)
        logger.info("Added expense id=%s amount=%s over %d participants", created.id, created.amount, len(members))
        return created.copy()

    def edit_expense(self, expense_id: str, description: Optional[str] = None,
                     amount: Optional[float] = None, category: Optional[str] = None,
                     participant_ids: Optional[Iterable[str]] = None) -> Optional[Expense]:
        """
        Replace the given fields of an expense and recompute its shares.
        Balances are moved by (old share - new share) per participant.
        Returns the updated Expense or None if id not found.
        """
        self._require_owner()
        idx, old = self._index_of_expense(expense_id)
        if old is None:
            logger.info("Expense id=%s not found for edit", expense_id)
            return None
        if category is not None:
            self._validate_category(category)
        members, shares = self._prepare_split(
            old.amount if amount is None else amount,
            old.participants if participant_ids is None else participant_ids,
        )
        fields = {
            "description": old.description if description is None else description.strip(),
            "amount": old.amount if amount is None else float(amount),
            "category": old.category if category is None else category,
            "participants": members,
            "share_owed": shares,
        }
        previous = {k: getattr(old, k) for k in fields}
        if not self._store.update_expense(old.id, fields):
            raise PersistenceError(f"Expense {old.id} is missing from the store")
        try:
            new_balances = self._commit_balances(self._balance_deltas(self._stored_shares(old), shares))
        except PersistenceError:
            self._compensate(self._store.update_expense, old.id, previous)
            raise
        updated = replace(old, **fields)
        self._expenses[idx] = updated
        self._apply_balances(new_balances)
        logger.info("Edited expense id=%s amount=%s", updated.id, updated.amount)
        return updated.copy()

    def delete_expense(self, expense_id: str) -> bool:
        """
        Remove an expense and give back every non-self participant the share
        stored on it. Returns False if the id is unknown.
        """
        self._require_owner()
        idx, old = self._index_of_expense(expense_id)
        if old is None:
            logger.info("Expense id=%s not found for delete", expense_id)
            return False
        new_balances = self._commit_balances(self._balance_deltas(self._stored_shares(old), {}))
        try:
            if not self._store.delete_expense(old.id):
                raise PersistenceError(f"Expense {old.id} is missing from the store")
        except PersistenceError:
            self._revert_balances(new_balances)
            raise
        self._expenses.pop(idx)
        self._apply_balances(new_balances)
        logger.info(
            "Deleted expense id=%s (category=%s, amount=%s). Remaining expenses=%d.",
            old.id, old.category, old.amount, len(self._expenses),
        )
        return True

    # -----------------------
    # internals
    # -----------------------
    def _require_owner(self):
        if self.owner_id is None:
            raise NotSignedInError("Sign in to use the ledger.")

    def _self(self) -> Participant:
        self._require_owner()
        for p in self._participants:
            if p.is_self:
                return p
        raise NotSignedInError("Ledger has no self participant loaded.")

    def _find_participant(self, participant_id: str) -> Optional[Participant]:
        return next((p for p in self._participants if p.id == participant_id), None)

    def _find_expense(self, expense_id: str) -> Optional[Expense]:
        return self._index_of_expense(expense_id)[1]

    def _index_of_expense(self, expense_id: str) -> Tuple[int, Optional[Expense]]:
        for i, e in enumerate(self._expenses):
            if e.id == expense_id:
                return i, e
        return -1, None

    def _validate_category(self, category: str):
        if category not in self.categories:
            raise ValidationError(f"Unknown category: {category!r}")

    def _prepare_split(self, amount: float, participant_ids: Iterable[str]) -> Tuple[List[str], Dict[str, float]]:
        members = split_members(participant_ids, self._self().id)
        for pid in members:
            if self._find_participant(pid) is None:
                raise UnknownParticipantError(pid)
        return members, compute_shares(amount, members)

    @staticmethod
    def _stored_shares(expense: Expense) -> Dict[str, float]:
        # records written before shares were stored: fall back to the even split
        if expense.share_owed or not expense.participants:
            return dict(expense.share_owed)
        return compute_shares(expense.amount, expense.participants)

    def _balance_deltas(self, released: Dict[str, float], charged: Dict[str, float]) -> Dict[str, float]:
        """Per participant: + every released share, - every charged share. Self excluded."""
        self_id = self._self().id
        deltas: Dict[str, float] = {}
        for pid, share in released.items():
            deltas[pid] = deltas.get(pid, 0.0) + share
        for pid, share in charged.items():
            deltas[pid] = deltas.get(pid, 0.0) - share
        return {pid: d for pid, d in deltas.items() if pid != self_id and d != 0.0}

    def _commit_balances(self, deltas: Dict[str, float]) -> Dict[str, float]:
        """
        Persist balance + delta for every participant in deltas and return the
        new balances. Memory is not touched; on failure the writes already
        made are reverted and PersistenceError is re-raised.
        """
        new_balances: Dict[str, float] = {}
        for pid, delta in deltas.items():
            participant = self._find_participant(pid)
            if participant is None:
                logger.warning("Share for participant id=%s not on the roster; skipped", pid)
                continue
            new_balances[pid] = participant.balance + delta

        written: Dict[str, float] = {}
        try:
            for pid, balance in new_balances.items():
                if not self._store.update_participant(pid, {"balance": balance}):
                    raise PersistenceError(f"Participant {pid} is missing from the store")
                written[pid] = balance
        except PersistenceError:
            self._revert_balances(written)
            raise
        return new_balances

    def _revert_balances(self, written: Dict[str, float]):
        for pid in written:
            participant = self._find_participant(pid)
            self._compensate(self._store.update_participant, pid, {"balance": participant.balance})

    def _apply_balances(self, new_balances: Dict[str, float]):
        for p in self._participants:
            if p.id in new_balances:
                p.balance = new_balances[p.id]

    @staticmethod
    def _compensate(action: Callable, *args):
        try:
            found = action(*args)
        except PersistenceError:
            logger.exception("Could not revert %s%r; store and ledger may disagree", action.__name__, args)
            return
        if found is False:
            logger.warning("Could not revert %s%r: record is missing from the store", action.__name__, args)
