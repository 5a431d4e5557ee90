from io import BytesIO

import pandas as pd

from friendsplit.config import DEFAULT_CATEGORIES, Settings
from friendsplit.export import expenses_to_csv, expenses_to_xlsx
from friendsplit.models import Expense, Participant


def _expenses():
    return [
        Expense(id="1", description="Pizza, large", amount=20.0, category="Food", participants=["me", "a"]),
        Expense(id="2", description="Train", amount=35.5, category="Travel", participants=["me"]),
    ]


def test_csv_has_header_and_one_row_per_expense():
    lines = expenses_to_csv(_expenses()).splitlines()
    assert lines == [
        "Description,Amount,Category",
        '"Pizza, large",20,Food',
        "Train,35.5,Travel",
    ]


def test_csv_amounts_drop_trailing_zero_only_for_whole_numbers():
    expenses = [
        Expense(id="1", description="Rent", amount=1250000.0, category="Bills", participants=["me"]),
        Expense(id="2", description="Snack", amount=0.1 + 0.2, category="Food", participants=["me"]),
    ]
    assert expenses_to_csv(expenses).splitlines()[1:] == [
        "Rent,1250000,Bills",
        "Snack,0.30000000000000004,Food",
    ]


def test_csv_category_filter_and_empty_list():
    assert expenses_to_csv(_expenses(), "Travel").splitlines()[1:] == ["Train,35.5,Travel"]
    assert expenses_to_csv([]) == "Description,Amount,Category\n"


def test_xlsx_contains_expenses_sheet():
    participants = [Participant(id="me", name="me", is_self=True), Participant(id="a", name="Alice")]
    data = expenses_to_xlsx(_expenses(), participants)
    df = pd.read_excel(BytesIO(data), sheet_name="expenses", engine="openpyxl")
    assert list(df["description"]) == ["Pizza, large", "Train"]
    assert list(df["participants"]) == ["me, Alice", "me"]
    assert list(df["share_each"]) == [10.0, 35.5]


def test_settings_from_env_mapping():
    settings = Settings.from_env({
        "FRIENDSPLIT_DATA_DIR": "/tmp/friendsplit",
        "FRIENDSPLIT_CATEGORIES": "Food, Rent ,,",
        "FRIENDSPLIT_SELF_NAME": "self",
        "FRIENDSPLIT_LOG_LEVEL": "debug",
        "GOOGLE_SHEET_ID": " sheet-123 ",
    })
    assert settings.categories == ["Food", "Rent"]
    assert settings.self_name == "self"
    assert settings.log_level == "DEBUG"
    assert settings.google_sheet_id == "sheet-123"
    assert settings.ledger_file == "/tmp/friendsplit/ledger_data.json"


def test_settings_defaults():
    settings = Settings.from_env({})
    assert settings.categories == DEFAULT_CATEGORIES
    assert settings.self_name == "me"
    assert settings.google_sheet_id == ""
