"""
session.py - sign-up / sign-in / sign-out and the current identity

Accounts are kept in the same LedgerStore as the ledger ("accounts" table),
so they live in Google Sheets whenever the ledger does. Passwords are stored
as werkzeug hashes. The uid is derived from the normalized email, so owner
scoping of records survives losing the account table. Listeners registered
with on_identity_change() are called with the new Identity (or None) on
every sign-in/sign-out transition; the ledger uses this to load or drop an
owner's records.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional
import logging
import uuid

from werkzeug.security import check_password_hash, generate_password_hash

from friendsplit.errors import AuthenticationError
from friendsplit.storage import LedgerStore

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

MIN_PASSWORD_LENGTH = 6
UID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_DNS, "friendsplit.accounts")


def uid_for_email(email: str) -> str:
    return uuid.uuid5(UID_NAMESPACE, email.strip().lower()).hex


@dataclass(frozen=True)
class Identity:
    uid: str
    email: str


IdentityCallback = Callable[[Optional[Identity]], None]


class SessionService:
    def __init__(self, store: LedgerStore):
        self.store = store
        self._current: Optional[Identity] = None
        self._listeners: List[IdentityCallback] = []

    def current_identity(self) -> Optional[Identity]:
        return self._current

    def on_identity_change(self, callback: IdentityCallback) -> Callable[[], None]:
        """Register callback; returns a function that unregisters it."""
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def sign_up(self, email: str, password: str) -> Identity:
        email = (email or "").strip().lower()
        password = password or ""
        if not email or not password:
            raise AuthenticationError("missing_fields", "Email and password are required.")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthenticationError(
                "weak_password", f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
            )
        if self.store.get_account(email) is not None:
            raise AuthenticationError("email_in_use", "An account with this email already exists.")
        account = self.store.create_account(uid_for_email(email), email, generate_password_hash(password))
        logger.info("Registered account %s", email)
        return self._set_identity(Identity(uid=account["id"], email=email))

    def sign_in(self, email: str, password: str) -> Identity:
        email = (email or "").strip().lower()
        password = password or ""
        if not email or not password:
            raise AuthenticationError("missing_fields", "Email and password are required.")
        account = self.store.get_account(email)
        if not account or not check_password_hash(account["password_hash"], password):
            logger.info("Rejected sign-in for %s", email)
            raise AuthenticationError("invalid_credentials", "Invalid email or password.")
        return self._set_identity(Identity(uid=account["id"], email=email))

    def sign_out(self):
        if self._current is not None:
            logger.info("Signed out %s", self._current.email)
            self._set_identity(None)

    def _set_identity(self, identity: Optional[Identity]) -> Optional[Identity]:
        if identity == self._current:
            return identity
        self._current = identity
        for callback in list(self._listeners):
            callback(identity)
        return identity
