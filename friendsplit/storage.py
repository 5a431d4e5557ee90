"""
storage.py - persistence for participants and expenses

Two backends share one record-level API (LedgerStore):
 - GoogleSheetsStore: worksheets "expenses", "participants" and "accounts"
   in one spreadsheet
 - LocalJsonStore: a single JSON file, written atomically

Records are scoped by owner id (`created_by`). Every call reads the current
tables, applies one change and writes back the table it changed, so a store
never holds state between calls. A missing record is reported as False; a
backend failure raises PersistenceError.
"""

from typing import List, Dict, Optional, Tuple, Any
import ast
import json
import logging
import os
import shutil
import tempfile
import uuid

import google.auth
import gspread
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1

from friendsplit.errors import PersistenceError
from friendsplit.models import Expense, Participant, utc_now_iso

# ensure a logger is available
logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

EXPENSES = "expenses"
PARTICIPANTS = "participants"
ACCOUNTS = "accounts"
TABLES = (EXPENSES, PARTICIPANTS, ACCOUNTS)
# fields a caller may never overwrite through update_*
_IMMUTABLE_FIELDS = ("id", "created_by", "created_at")


def _new_id() -> str:
    return uuid.uuid4().hex


def _empty_tables() -> Dict[str, List[Dict[str, Any]]]:
    return {name: [] for name in TABLES}


class LedgerStore:
    """
    Record-level CRUD shared by both backends. Subclasses provide
    _load_tables() / _save_tables() and a storage_status() message.

    _save_tables(tables, changed) receives every table plus the name of the
    one that was modified; a backend may rewrite only that one.
    """

    backend_name = "base"

    def _load_tables(self) -> Dict[str, List[Dict[str, Any]]]:
        raise NotImplementedError

    def _save_tables(self, tables: Dict[str, List[Dict[str, Any]]], changed: str):
        raise NotImplementedError

    def storage_status(self) -> Tuple[str, str]:
        return self.backend_name, ""

    # -----------------------
    # Expenses
    # -----------------------
    def create_expense(self, owner_id: str, expense: Expense) -> Expense:
        """
        Persist a new expense for owner_id and return the stored copy.
        An id already set on `expense` is kept (used to restore a deleted record).
        """
        tables = self._load_tables()
        record = expense.to_dict()
        record["id"] = expense.id or _new_id()
        record["created_by"] = owner_id
        record["created_at"] = expense.created_at or utc_now_iso()
        if any(r.get("id") == record["id"] for r in tables[EXPENSES]):
            raise PersistenceError(f"Expense id {record['id']} already exists")
        tables[EXPENSES].append(record)
        self._save_tables(tables, EXPENSES)
        logger.info("Created expense id=%s owner=%s amount=%s", record["id"], owner_id, record["amount"])
        return Expense.from_dict(record)

    def list_expenses(self, owner_id: str) -> List[Expense]:
        tables = self._load_tables()
        return [Expense.from_dict(r) for r in tables[EXPENSES] if r.get("created_by") == owner_id]

    def update_expense(self, expense_id: str, fields: Dict[str, Any]) -> bool:
        return self._update_record(EXPENSES, expense_id, fields, Expense)

    def delete_expense(self, expense_id: str) -> bool:
        return self._delete_record(EXPENSES, expense_id)

    # -----------------------
    # Participants
    # -----------------------
    def create_participant(self, owner_id: str, name: str, balance: float = 0.0,
                           is_self: bool = False) -> Participant:
        tables = self._load_tables()
        participant = Participant(
            id=_new_id(),
            name=name,
            balance=float(balance),
            is_self=is_self,
            created_by=owner_id,
        )
        tables[PARTICIPANTS].append(participant.to_dict())
        self._save_tables(tables, PARTICIPANTS)
        logger.info("Created participant id=%s owner=%s self=%s", participant.id, owner_id, is_self)
        return participant

    def list_participants(self, owner_id: str) -> List[Participant]:
        tables = self._load_tables()
        return [Participant.from_dict(r) for r in tables[PARTICIPANTS] if r.get("created_by") == owner_id]

    def update_participant(self, participant_id: str, fields: Dict[str, Any]) -> bool:
        return self._update_record(PARTICIPANTS, participant_id, fields, Participant)

    def delete_participant(self, participant_id: str) -> bool:
        return self._delete_record(PARTICIPANTS, participant_id)

    # -----------------------
    # Accounts
    # -----------------------
    def get_account(self, email: str) -> Optional[Dict[str, str]]:
        """Return the account record {id, email, password_hash, created_at} or None."""
        tables = self._load_tables()
        for record in tables[ACCOUNTS]:
            if record.get("email") == email:
                return dict(record)
        return None

    def create_account(self, uid: str, email: str, password_hash: str) -> Dict[str, str]:
        tables = self._load_tables()
        if any(r.get("email") == email for r in tables[ACCOUNTS]):
            raise PersistenceError(f"Account {email} already exists")
        record = {"id": uid, "email": email, "password_hash": password_hash, "created_at": utc_now_iso()}
        tables[ACCOUNTS].append(record)
        self._save_tables(tables, ACCOUNTS)
        logger.info("Created account id=%s", uid)
        return dict(record)

    # -----------------------
    # helpers
    # -----------------------
    def _update_record(self, table: str, record_id: str, fields: Dict[str, Any], model) -> bool:
        tables = self._load_tables()
        rows = tables[table]
        for i, row in enumerate(rows):
            if row.get("id") != record_id:
                continue
            merged = dict(row)
            merged.update({k: v for k, v in fields.items() if k not in _IMMUTABLE_FIELDS})
            # normalize through the model so both backends store the same shape
            rows[i] = model.from_dict(merged).to_dict()
            self._save_tables(tables, table)
            logger.info("Updated %s id=%s fields=%s", table, record_id, sorted(fields))
            return True
        logger.info("%s id=%s not found for update", table, record_id)
        return False

    def _delete_record(self, table: str, record_id: str) -> bool:
        tables = self._load_tables()
        rows = tables[table]
        for i, row in enumerate(rows):
            if row.get("id") == record_id:
                rows.pop(i)
                self._save_tables(tables, table)
                logger.info("Deleted %s id=%s. Remaining=%d.", table, record_id, len(rows))
                return True
        logger.info("%s id=%s not found for delete", table, record_id)
        return False


class LocalJsonStore(LedgerStore):
    """Single JSON file: {"expenses": [...], "participants": [...], "accounts": [...]}."""

    backend_name = "local_json"

    def __init__(self, path: str, reason: str = ""):
        self.path = os.path.abspath(path)
        self.reason = reason

    def storage_status(self) -> Tuple[str, str]:
        if self.reason:
            return self.backend_name, f"Using local file fallback: {self.reason}."
        return self.backend_name, f"Using local file {self.path}."

    def _load_tables(self) -> Dict[str, List[Dict[str, Any]]]:
        if not os.path.exists(self.path):
            return _empty_tables()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            logger.exception("Failed to read data file %s", self.path)
            raise PersistenceError(f"Could not read {self.path}") from exc
        return {name: list(data.get(name, []) or []) for name in TABLES}

    def _save_tables(self, tables: Dict[str, List[Dict[str, Any]]], changed: str):
        """
        Persist all tables as JSON atomically: write to a temp file in the
        same directory, fsync, then move over the target.
        """
        dirn = os.path.dirname(self.path)
        logger.info(
            "Saving data to %s after %s change (expenses=%d, participants=%d)",
            self.path, changed, len(tables[EXPENSES]), len(tables[PARTICIPANTS]),
        )
        try:
            os.makedirs(dirn, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix="tmp_ledger_", dir=dirn, text=True)
        except OSError as exc:
            logger.exception("Failed to prepare data directory %s", dirn)
            raise PersistenceError(f"Could not write {self.path}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(tables, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            shutil.move(tmp_path, self.path)
        except OSError as exc:
            logger.exception("Failed to save data file")
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise PersistenceError(f"Could not write {self.path}") from exc


class GoogleSheetsStore(LedgerStore):
    """
    Google Sheets persistence backend.

    Data layout:
      - worksheet "expenses": one row per expense, lists/maps as JSON strings
      - worksheet "participants": one row per participant
      - worksheet "accounts": one row per sign-up, password as a hash

    A save rewrites only the worksheet of the changed table. New rows are
    written over the old ones first and only the leftover tail is blanked
    afterwards, so a failed request never leaves a worksheet empty.
    """

    backend_name = "google_sheets"

    EXPENSE_HEADERS = [
        "id",
        "description",
        "amount",
        "category",
        "participants_json",
        "share_owed_json",
        "created_by",
        "created_at",
    ]
    PARTICIPANT_HEADERS = ["id", "name", "balance", "is_self", "created_by"]
    ACCOUNT_HEADERS = ["id", "email", "password_hash", "created_at"]
    SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

    def __init__(self, sheet_id: str, service_account_json: str = "", service_account_file: str = ""):
        self.available = False
        self.reason = ""
        self.sheet_id = (sheet_id or "").strip()
        self._service_account_json = (service_account_json or "").strip()
        self._service_account_file = (service_account_file or "").strip()
        self._spreadsheet = None
        self._expenses_ws = None
        self._participants_ws = None
        self._accounts_ws = None

        if not self.sheet_id:
            self.reason = "GOOGLE_SHEET_ID is not set"
            return

        try:
            creds = self._build_credentials()
            client = gspread.authorize(creds)
            self._spreadsheet = client.open_by_key(self.sheet_id)
            self._expenses_ws = self._get_or_create_worksheet(
                EXPENSES, rows=1000, cols=len(self.EXPENSE_HEADERS)
            )
            self._participants_ws = self._get_or_create_worksheet(
                PARTICIPANTS, rows=200, cols=len(self.PARTICIPANT_HEADERS)
            )
            self._accounts_ws = self._get_or_create_worksheet(
                ACCOUNTS, rows=100, cols=len(self.ACCOUNT_HEADERS)
            )
            self._ensure_headers()
            self.available = True
        except Exception as exc:
            self.available = False
            self.reason = f"Google Sheets init failed ({exc.__class__.__name__})"
            logger.warning("Google Sheets backend unavailable: %s", self.reason)

    def storage_status(self) -> Tuple[str, str]:
        if self.available:
            return self.backend_name, "Persistent storage active (Google Sheets)."
        return self.backend_name, f"Google Sheets unavailable: {self.reason}."

    def _build_credentials(self):
        if self._service_account_json:
            try:
                info = json.loads(self._service_account_json)
            except ValueError:
                # tolerate Python-dict style strings often used by mistake in env vars
                info = ast.literal_eval(self._service_account_json)
            if not isinstance(info, dict):
                raise ValueError("GOOGLE_SERVICE_ACCOUNT_JSON must decode to an object")
            return Credentials.from_service_account_info(info, scopes=self.SCOPES)

        if self._service_account_file:
            return Credentials.from_service_account_file(self._service_account_file, scopes=self.SCOPES)

        # Fallback to application default credentials if available.
        creds, _ = google.auth.default(scopes=self.SCOPES)
        return creds

    def _get_or_create_worksheet(self, title: str, rows: int, cols: int):
        try:
            return self._spreadsheet.worksheet(title)
        except gspread.exceptions.WorksheetNotFound:
            return self._spreadsheet.add_worksheet(title=title, rows=rows, cols=cols)

    @staticmethod
    def _ensure_sheet_size(ws, min_rows: int, min_cols: int):
        new_rows = max(ws.row_count, min_rows)
        new_cols = max(ws.col_count, min_cols)
        if new_rows != ws.row_count or new_cols != ws.col_count:
            ws.resize(rows=new_rows, cols=new_cols)

    def _ensure_headers(self):
        for ws, headers, _, _ in self._layout().values():
            first = ws.row_values(1) or []
            if [x.strip() for x in first] != headers:
                self._ensure_sheet_size(ws, 2, len(headers))
                ws.update(range_name="A1", values=[headers], value_input_option="RAW")

    @staticmethod
    def _to_float(value: Any, default: float = 0.0) -> float:
        try:
            return float(str(value).strip())
        except ValueError:
            return default

    @staticmethod
    def _to_bool(value: Any) -> bool:
        return str(value).strip().lower() in ("true", "1", "yes")

    @staticmethod
    def _parse_json_or_literal(value: Any):
        if isinstance(value, (list, dict)):
            return value
        text = str(value or "").strip()
        if not text:
            return None
        for parser in (json.loads, ast.literal_eval):
            try:
                return parser(text)
            except (ValueError, SyntaxError):
                continue
        return None

    @staticmethod
    def _read_records(ws) -> List[Dict[str, str]]:
        values = ws.get_all_values() or []
        if not values:
            return []
        headers = [str(h).strip().lower() for h in values[0]]
        records = []
        for row in values[1:]:
            if not any(str(c).strip() for c in row):
                continue
            record = {}
            for idx, header in enumerate(headers):
                if header:
                    record[header] = row[idx] if idx < len(row) else ""
            records.append(record)
        return records

    @classmethod
    def _record_to_expense_dict(cls, record: Dict[str, Any]) -> Dict[str, Any]:
        participants = cls._parse_json_or_literal(record.get("participants_json", ""))
        shares = cls._parse_json_or_literal(record.get("share_owed_json", ""))
        return {
            "id": str(record.get("id", "")).strip(),
            "description": str(record.get("description", "")),
            "amount": cls._to_float(record.get("amount", 0.0)),
            "category": str(record.get("category", "")).strip(),
            "participants": [str(p) for p in participants] if isinstance(participants, list) else [],
            "share_owed": (
                {str(k): cls._to_float(v) for k, v in shares.items()} if isinstance(shares, dict) else {}
            ),
            "created_by": str(record.get("created_by", "")).strip(),
            "created_at": str(record.get("created_at", "")).strip(),
        }

    @classmethod
    def _record_to_participant_dict(cls, record: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": str(record.get("id", "")).strip(),
            "name": str(record.get("name", "")),
            "balance": cls._to_float(record.get("balance", 0.0)),
            "is_self": cls._to_bool(record.get("is_self", "")),
            "created_by": str(record.get("created_by", "")).strip(),
        }

    @classmethod
    def _record_to_account_dict(cls, record: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": str(record.get("id", "")).strip(),
            "email": str(record.get("email", "")).strip().lower(),
            "password_hash": str(record.get("password_hash", "")).strip(),
            "created_at": str(record.get("created_at", "")).strip(),
        }

    @staticmethod
    def _expense_row(e: Dict[str, Any]) -> List[str]:
        return [
            str(e.get("id", "")),
            str(e.get("description", "") or ""),
            # repr keeps full float precision for uneven splits
            repr(float(e.get("amount", 0.0) or 0.0)),
            str(e.get("category", "") or ""),
            json.dumps(e.get("participants", []) or [], ensure_ascii=False),
            json.dumps(e.get("share_owed", {}) or {}, ensure_ascii=False),
            str(e.get("created_by", "") or ""),
            str(e.get("created_at", "") or ""),
        ]

    @staticmethod
    def _participant_row(p: Dict[str, Any]) -> List[str]:
        return [
            str(p.get("id", "")),
            str(p.get("name", "") or ""),
            repr(float(p.get("balance", 0.0) or 0.0)),
            "TRUE" if p.get("is_self") else "FALSE",
            str(p.get("created_by", "") or ""),
        ]

    @staticmethod
    def _account_row(a: Dict[str, Any]) -> List[str]:
        return [
            str(a.get("id", "")),
            str(a.get("email", "") or ""),
            str(a.get("password_hash", "") or ""),
            str(a.get("created_at", "") or ""),
        ]

    def _layout(self):
        """table name -> (worksheet, headers, record-to-row, row-to-record)"""
        return {
            EXPENSES: (self._expenses_ws, self.EXPENSE_HEADERS,
                       self._expense_row, self._record_to_expense_dict),
            PARTICIPANTS: (self._participants_ws, self.PARTICIPANT_HEADERS,
                           self._participant_row, self._record_to_participant_dict),
            ACCOUNTS: (self._accounts_ws, self.ACCOUNT_HEADERS,
                       self._account_row, self._record_to_account_dict),
        }

    @staticmethod
    def _drop_duplicate_ids(table: str, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        # a trailing copy can survive when blanking the old tail failed after a shorter write
        seen = set()
        unique = []
        for record in records:
            if record["id"] in seen:
                logger.warning("Ignoring duplicate %s row id=%s", table, record["id"])
                continue
            seen.add(record["id"])
            unique.append(record)
        return unique

    def _load_tables(self) -> Dict[str, List[Dict[str, Any]]]:
        if not self.available:
            raise PersistenceError(f"Google Sheets unavailable: {self.reason}")
        try:
            raw = {name: self._read_records(ws) for name, (ws, _, _, _) in self._layout().items()}
        except Exception as exc:
            logger.exception("Failed to load ledger from Google Sheets")
            raise PersistenceError("Could not read from Google Sheets") from exc
        tables = {}
        for name, (_, _, _, to_record) in self._layout().items():
            tables[name] = self._drop_duplicate_ids(name, [to_record(r) for r in raw[name]])
        return tables

    def _save_tables(self, tables: Dict[str, List[Dict[str, Any]]], changed: str):
        if not self.available:
            raise PersistenceError(f"Google Sheets unavailable: {self.reason}")

        ws, headers, to_row, _ = self._layout()[changed]
        rows = [headers] + [to_row(r) for r in tables[changed]]
        logger.info("Saving %s to Google Sheets (rows=%d)", changed, len(rows) - 1)
        try:
            self._ensure_sheet_size(ws, len(rows) + 10, len(headers))
            # Use RAW to store user content as plain values (not spreadsheet formulas).
            ws.update(range_name="A1", values=rows, value_input_option="RAW")
            if ws.row_count > len(rows):
                ws.batch_clear([f"A{len(rows) + 1}:{rowcol_to_a1(ws.row_count, ws.col_count)}"])
        except Exception as exc:
            logger.exception("Failed to save %s to Google Sheets", changed)
            raise PersistenceError("Could not write to Google Sheets") from exc


def open_store(settings) -> LedgerStore:
    """
    Google Sheets when configured and reachable, otherwise the local JSON file.
    """
    reason = "GOOGLE_SHEET_ID is not set"
    if settings.google_sheet_id:
        gs = GoogleSheetsStore(
            settings.google_sheet_id,
            service_account_json=settings.google_service_account_json,
            service_account_file=settings.google_service_account_file,
        )
        if gs.available:
            return gs
        reason = gs.reason
        logger.warning("Falling back to local JSON storage: %s", reason)
    return LocalJsonStore(settings.ledger_file, reason=reason)
