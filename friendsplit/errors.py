"""
errors.py - exception types raised by the ledger, the stores and the session

The Streamlit layer catches LedgerError at each call site and shows the
message to the user; nothing below the UI swallows these.
"""


class LedgerError(Exception):
    """Base class for every error surfaced to the user."""


class ValidationError(LedgerError):
    """Input rejected before any state was touched."""


class InvalidSplitError(ValidationError):
    """Split requested over an empty/duplicated participant set or a bad amount."""


class UnknownParticipantError(ValidationError):
    def __init__(self, participant_id: str):
        super().__init__(f"Unknown participant: {participant_id}")
        self.participant_id = participant_id


class ParticipantInUseError(ValidationError):
    def __init__(self, participant_id: str, expense_ids):
        super().__init__(
            f"Participant {participant_id} still has shares in {len(expense_ids)} expense(s)"
        )
        self.participant_id = participant_id
        self.expense_ids = list(expense_ids)


class PersistenceError(LedgerError):
    """The backing store rejected or failed a read/write."""


class NotSignedInError(LedgerError):
    """Ledger operation attempted with no owner loaded."""


class AuthenticationError(LedgerError):
    """
    Sign-in / sign-up failure. `code` is a short machine-readable reason:
    missing_fields, weak_password, email_in_use, invalid_credentials.
    """

    def __init__(self, code: str, message: str = ""):
        super().__init__(message or code)
        self.code = code
