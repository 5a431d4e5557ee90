import gspread
import pytest

from friendsplit.config import Settings
from friendsplit.errors import PersistenceError
from friendsplit.models import Expense
from friendsplit.storage import GoogleSheetsStore, LocalJsonStore, open_store


@pytest.fixture
def json_store(tmp_path):
    return LocalJsonStore(str(tmp_path / "data" / "ledger_data.json"))


def _expense(**kwargs):
    defaults = dict(description="Dinner", amount=10.0, category="Food",
                    participants=["a", "b", "c"], share_owed={"a": 10.0 / 3, "b": 10.0 / 3, "c": 10.0 / 3})
    defaults.update(kwargs)
    return Expense(**defaults)


@pytest.mark.parametrize("store_fixture", ["json_store", "sheets_store"])
def test_records_are_scoped_by_owner(request, store_fixture):
    store = request.getfixturevalue(store_fixture)
    created = store.create_expense("owner-1", _expense())
    store.create_expense("owner-2", _expense(description="Other owner"))
    friend = store.create_participant("owner-1", "Alice")
    me = store.create_participant("owner-1", "me", is_self=True)

    expenses = store.list_expenses("owner-1")
    assert [e.id for e in expenses] == [created.id]
    assert expenses[0].share_owed == created.share_owed
    assert expenses[0].participants == ["a", "b", "c"]
    assert expenses[0].created_by == "owner-1"
    assert expenses[0].created_at

    participants = store.list_participants("owner-1")
    assert [(p.id, p.name, p.is_self) for p in participants] == [
        (friend.id, "Alice", False),
        (me.id, "me", True),
    ]
    assert store.list_participants("owner-2") == []


@pytest.mark.parametrize("store_fixture", ["json_store", "sheets_store"])
def test_update_and_delete(request, store_fixture):
    store = request.getfixturevalue(store_fixture)
    alice = store.create_participant("owner-1", "Alice")
    assert store.update_participant(alice.id, {"balance": -12.5}) is True
    assert store.list_participants("owner-1")[0].balance == -12.5

    expense = store.create_expense("owner-1", _expense())
    assert store.update_expense(expense.id, {"amount": 30.0, "created_by": "intruder"}) is True
    stored = store.list_expenses("owner-1")[0]
    assert stored.amount == 30.0
    assert stored.created_by == "owner-1"

    assert store.delete_expense(expense.id) is True
    assert store.delete_expense(expense.id) is False
    assert store.update_expense(expense.id, {"amount": 1.0}) is False
    assert store.delete_participant(alice.id) is True
    assert store.list_participants("owner-1") == []


def test_create_expense_keeps_given_id(json_store):
    restored = json_store.create_expense("owner-1", _expense(id="fixed", created_at="2024-01-01T00:00:00+00:00"))
    assert restored.id == "fixed"
    assert restored.created_at == "2024-01-01T00:00:00+00:00"
    with pytest.raises(PersistenceError):
        json_store.create_expense("owner-1", _expense(id="fixed"))


def test_generated_ids_are_unique(json_store):
    ids = {json_store.create_participant("owner-1", "Alice").id for _ in range(20)}
    assert len(ids) == 20


def test_corrupt_json_file_raises(tmp_path):
    path = tmp_path / "ledger_data.json"
    path.write_text("{not json", encoding="utf-8")
    store = LocalJsonStore(str(path))
    with pytest.raises(PersistenceError):
        store.list_expenses("owner-1")


def test_missing_file_reads_as_empty(json_store):
    assert json_store.list_expenses("owner-1") == []
    assert json_store.list_participants("owner-1") == []


def test_sheets_rows_use_documented_headers(sheets_store):
    sheets_store.create_participant("owner-1", "me", is_self=True)
    assert sheets_store._expenses_ws.values[0] == GoogleSheetsStore.EXPENSE_HEADERS
    assert sheets_store._participants_ws.values[0] == GoogleSheetsStore.PARTICIPANT_HEADERS
    assert sheets_store._accounts_ws.values[0] == GoogleSheetsStore.ACCOUNT_HEADERS
    assert sheets_store._participants_ws.values[1][3] == "TRUE"


def test_sheets_store_without_sheet_id_is_unavailable():
    store = GoogleSheetsStore("")
    assert store.available is False
    assert store.reason == "GOOGLE_SHEET_ID is not set"
    with pytest.raises(PersistenceError):
        store.list_expenses("owner-1")


def test_open_store_falls_back_to_local_json(tmp_path):
    settings = Settings(data_dir=str(tmp_path))
    store = open_store(settings)
    assert isinstance(store, LocalJsonStore)
    backend, message = store.storage_status()
    assert backend == "local_json"
    assert "GOOGLE_SHEET_ID is not set" in message


@pytest.mark.parametrize("store_fixture", ["json_store", "sheets_store"])
def test_accounts_round_trip(request, store_fixture):
    store = request.getfixturevalue(store_fixture)
    assert store.get_account("alice@example.com") is None
    created = store.create_account("uid-1", "alice@example.com", "hashed")
    account = store.get_account("alice@example.com")
    assert account["id"] == "uid-1"
    assert account["password_hash"] == "hashed"
    assert account["created_at"] == created["created_at"]
    with pytest.raises(PersistenceError):
        store.create_account("uid-2", "alice@example.com", "other")


@pytest.mark.parametrize(
    "error",
    [ConnectionError("network unreachable"), gspread.exceptions.GSpreadException("quota exceeded")],
)
def test_sheets_write_failure_keeps_existing_rows(sheets_store, error):
    alice = sheets_store.create_participant("owner-1", "Alice", balance=-5.0)
    expense = sheets_store.create_expense("owner-1", _expense())
    sheets_store._participants_ws.fail_with = error

    with pytest.raises(PersistenceError):
        sheets_store.create_participant("owner-1", "Bob")
    with pytest.raises(PersistenceError):
        sheets_store.update_participant(alice.id, {"balance": 0.0})

    assert [(p.name, p.balance) for p in sheets_store.list_participants("owner-1")] == [("Alice", -5.0)]
    assert [e.id for e in sheets_store.list_expenses("owner-1")] == [expense.id]


def test_sheets_save_writes_only_the_changed_worksheet(sheets_store):
    sheets_store.create_participant("owner-1", "Alice")
    sheets_store._participants_ws.fail_with = ConnectionError("network unreachable")
    sheets_store._accounts_ws.fail_with = ConnectionError("network unreachable")

    created = sheets_store.create_expense("owner-1", _expense())

    assert [e.id for e in sheets_store.list_expenses("owner-1")] == [created.id]
    assert [p.name for p in sheets_store.list_participants("owner-1")] == ["Alice"]


def test_sheets_read_failure_raises_persistence_error(sheets_store):
    sheets_store._expenses_ws.fail_reads = ConnectionError("network unreachable")
    with pytest.raises(PersistenceError):
        sheets_store.list_participants("owner-1")


def test_sheets_delete_blanks_leftover_rows(sheets_store):
    first = sheets_store.create_participant("owner-1", "Alice")
    sheets_store.create_participant("owner-1", "Bob")
    sheets_store.create_participant("owner-1", "Carol")

    assert sheets_store.delete_participant(first.id) is True

    rows = sheets_store._participants_ws.values
    assert rows[0] == GoogleSheetsStore.PARTICIPANT_HEADERS
    assert [r[1] for r in rows[1:]] == ["Bob", "Carol"]


def test_sheets_duplicate_row_left_by_failed_trim_is_ignored(sheets_store):
    sheets_store.create_participant("owner-1", "Alice")
    bob = sheets_store.create_participant("owner-1", "Bob")
    # what a shorter write leaves behind when blanking the old tail fails
    sheets_store._participants_ws.values.append(list(sheets_store._participants_ws.values[2]))

    participants = sheets_store.list_participants("owner-1")
    assert [p.id for p in participants].count(bob.id) == 1
    assert len(participants) == 2
